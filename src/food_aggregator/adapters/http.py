"""Translate httpx failures into provider errors."""

import httpx

from food_aggregator.domain.errors import ProviderError, ProviderErrorKind

_AUTH_STATUSES = {401, 403}
_RATE_LIMITED_STATUS = 429
_MAX_BODY_IN_MESSAGE = 300


async def send(
    http_client: httpx.AsyncClient,
    source: str,
    action: str,
    request: httpx.Request,
) -> httpx.Response:
    """Send a prepared request, mapping transport failures and bad statuses."""
    try:
        response = await http_client.send(request)
    except httpx.TimeoutException as exc:
        raise ProviderError(
            ProviderErrorKind.TIMEOUT, source, f"{action} timed out"
        ) from exc
    except httpx.TransportError as exc:
        raise ProviderError(
            ProviderErrorKind.UNREACHABLE,
            source,
            f"{action} failed: {type(exc).__name__}: {exc}".strip(),
        ) from exc
    raise_for_status(response, source, action)
    return response


def raise_for_status(response: httpx.Response, source: str, action: str) -> None:
    """Raise a :class:`ProviderError` for non-success responses."""
    if response.is_success:
        return
    status_code = response.status_code
    body = response.text[:_MAX_BODY_IN_MESSAGE]
    message = f"{action} failed: {status_code} {body}".strip()
    if status_code in _AUTH_STATUSES:
        kind = ProviderErrorKind.AUTH_FAILURE
    elif status_code == _RATE_LIMITED_STATUS:
        kind = ProviderErrorKind.RATE_LIMITED
    else:
        kind = ProviderErrorKind.UNREACHABLE
    raise ProviderError(kind, source, message, status_code=status_code)


def json_object(
    response: httpx.Response, source: str, action: str
) -> dict[str, object]:
    """Decode a JSON object body or raise a malformed-response error."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderError(
            ProviderErrorKind.MALFORMED_RESPONSE,
            source,
            f"{action} returned invalid JSON",
        ) from exc
    if not isinstance(payload, dict):
        raise ProviderError(
            ProviderErrorKind.MALFORMED_RESPONSE,
            source,
            f"{action} returned {type(payload).__name__}, expected an object",
        )
    return payload
