"""Startup-time registry of food data providers."""

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from food_aggregator.adapters.food_provider import FoodDataProvider
from food_aggregator.domain.errors import ProviderNotFoundError
from food_aggregator.domain.food import ProviderInfo

READINESS_CHECK_FAILED = "Readiness check failed"

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderDefinition:
    """How to build one provider and which settings it cannot run without.

    ``required_settings`` maps an environment variable name to its configured
    value so the not-ready detail can name what is missing.
    """

    name: str
    label: str
    supports_barcode_lookup: bool
    factory: Callable[[], FoodDataProvider]
    required_settings: Mapping[str, str | None] = field(default_factory=dict)

    def missing_settings(self) -> list[str]:
        return [
            key
            for key, value in self.required_settings.items()
            if value is None or not value.strip()
        ]


class ProviderRegistry:
    """Ready adapters plus immutable metadata for every known provider.

    Readiness is decided once in :meth:`build` and never re-checked.
    """

    def __init__(
        self,
        infos: Iterable[ProviderInfo],
        adapters: Mapping[str, FoodDataProvider],
    ) -> None:
        self._infos: tuple[ProviderInfo, ...] = tuple(infos)
        self._adapters = dict(adapters)

    @classmethod
    def build(cls, definitions: Sequence[ProviderDefinition]) -> "ProviderRegistry":
        """Construct configured adapters and record readiness for all of them."""
        infos: list[ProviderInfo] = []
        adapters: dict[str, FoodDataProvider] = {}
        for definition in definitions:
            missing = definition.missing_settings()
            if missing:
                detail = f"Missing {', '.join(missing)}"
                infos.append(_info(definition, ready=False, detail=detail))
                _logger.warning(
                    "Food provider %s is not ready: %s", definition.name, detail
                )
                continue

            adapter = definition.factory()
            adapters[definition.name] = adapter
            if adapter.check_readiness():
                infos.append(_info(definition, ready=True))
                _logger.info("Food provider %s is ready", definition.name)
            else:
                infos.append(
                    _info(definition, ready=False, detail=READINESS_CHECK_FAILED)
                )
                _logger.warning(
                    "Food provider %s is not ready: %s",
                    definition.name,
                    READINESS_CHECK_FAILED,
                )
        return cls(infos, adapters)

    def list_all(self) -> tuple[ProviderInfo, ...]:
        return self._infos

    def list_ready(self) -> tuple[ProviderInfo, ...]:
        return tuple(info for info in self._infos if info.ready)

    def list_barcode_capable(self) -> tuple[ProviderInfo, ...]:
        return tuple(
            info for info in self._infos if info.ready and info.supports_barcode_lookup
        )

    def canonical_name(self, name: str) -> str | None:
        """Match a user-supplied provider name case-insensitively."""
        wanted = name.strip().casefold()
        for info in self._infos:
            if info.name.casefold() == wanted:
                return info.name
        return None

    def get_info(self, name: str) -> ProviderInfo | None:
        canonical = self.canonical_name(name)
        if canonical is None:
            return None
        return next(info for info in self._infos if info.name == canonical)

    def resolve(self, name: str) -> FoodDataProvider:
        """Return the adapter for a ready provider."""
        info = self.get_info(name)
        if info is None:
            raise ProviderNotFoundError(name)
        if not info.ready:
            raise ProviderNotFoundError(info.name, info.detail)
        return self._adapters[info.name]

    def preferred_order(self, preference: Sequence[str]) -> list[ProviderInfo]:
        """Ready providers in preference order, unlisted ones last."""
        ordered: list[ProviderInfo] = []
        for name in preference:
            info = self.get_info(name)
            if info is None:
                _logger.warning("Ignoring unknown food provider %r in preference", name)
                continue
            if info.ready and info not in ordered:
                ordered.append(info)
        ordered.extend(info for info in self.list_ready() if info not in ordered)
        return ordered

    async def close(self) -> None:
        """Close every adapter that was constructed, ready or not."""
        for adapter in self._adapters.values():
            await adapter.close()


def _info(
    definition: ProviderDefinition, *, ready: bool, detail: str | None = None
) -> ProviderInfo:
    return ProviderInfo(
        name=definition.name,
        label=definition.label,
        supports_barcode_lookup=definition.supports_barcode_lookup,
        ready=ready,
        detail=detail,
    )
