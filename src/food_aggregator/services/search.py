"""Production food search: one provider, one call, degraded on failure."""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from food_aggregator.domain.errors import ProviderError, ProviderErrorKind
from food_aggregator.domain.food import (
    FoodSearchRequest,
    FoodSearchResult,
    NormalizedFoodItem,
    ProviderInfo,
)
from food_aggregator.services.registry import ProviderRegistry

DEFAULT_PROVIDER_ORDER = ("fatsecret", "usda", "openFoodFacts")

_logger = logging.getLogger(__name__)


@dataclass
class FoodSearchService:
    """Picks the preferred ready provider and runs a single search or lookup."""

    registry: ProviderRegistry
    provider_order: Sequence[str] = DEFAULT_PROVIDER_ORDER
    timeout_seconds: float = 8

    async def search(self, request: FoodSearchRequest) -> FoodSearchResult:
        """Search by text or barcode, whichever the request carries."""
        return await self._run(request, barcode=bool(request.barcode))

    def select_provider(self, *, barcode: bool) -> ProviderInfo | None:
        """Return the first ready provider able to serve the request shape."""
        for info in self.registry.preferred_order(self.provider_order):
            if not barcode or info.supports_barcode_lookup:
                return info
        return None

    async def _run(
        self, request: FoodSearchRequest, *, barcode: bool
    ) -> FoodSearchResult:
        info = self.select_provider(barcode=barcode)
        if info is None:
            _logger.warning(
                "No ready food provider for %s request",
                "barcode" if barcode else "text",
            )
            return FoodSearchResult(provider="", supports_barcode_lookup=False)

        provider = self.registry.resolve(info.name)
        action = "barcode lookup" if barcode else "search"
        try:
            async with asyncio.timeout(self.timeout_seconds):
                if barcode:
                    items = await provider.lookup_barcode(request)
                else:
                    items = await provider.search(request)
        except TimeoutError:
            _logger.warning(
                "Food %s via %s timed out after %ss",
                action,
                info.name,
                self.timeout_seconds,
            )
            items = []
        except ProviderError as exc:
            if exc.kind is ProviderErrorKind.MALFORMED_RESPONSE:
                _logger.warning(
                    "Malformed %s response from %s: %s", action, exc.source, exc.message
                )
            else:
                _logger.warning(
                    "Food %s via %s failed (%s): %s",
                    action,
                    info.name,
                    exc.kind.value,
                    exc.message,
                )
            items = []
        return FoodSearchResult(
            provider=info.name,
            supports_barcode_lookup=info.supports_barcode_lookup,
            items=items,
        )


def merge_pages(*pages: Iterable[NormalizedFoodItem]) -> list[NormalizedFoodItem]:
    """Concatenate result pages, keeping the first occurrence of each ``id``."""
    merged: dict[str, NormalizedFoodItem] = {}
    for page in pages:
        for item in page:
            merged.setdefault(item.id, item)
    return list(merged.values())
