"""Failure types raised by provider adapters and the registry."""

from enum import Enum


class ProviderErrorKind(str, Enum):
    """Why a single provider call failed."""

    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    AUTH_FAILURE = "auth_failure"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    UNSUPPORTED_OPERATION = "unsupported_operation"


class ProviderError(Exception):
    """A provider call failed; scoped to one adapter invocation."""

    def __init__(
        self,
        kind: ProviderErrorKind,
        source: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.source = source
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return (
            f"ProviderError(kind={self.kind.value!r}, source={self.source!r}, "
            f"message={self.message!r})"
        )


class ProviderNotFoundError(LookupError):
    """Requested provider is unknown or was not ready at startup."""

    def __init__(self, name: str, detail: str | None = None) -> None:
        message = f"Provider {name!r} is not available"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.name = name
        self.detail = detail
