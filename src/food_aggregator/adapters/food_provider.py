"""Contract every food data provider adapter implements."""

from typing import Protocol

from food_aggregator.domain.errors import ProviderError, ProviderErrorKind
from food_aggregator.domain.food import FoodSearchRequest, NormalizedFoodItem


class FoodDataProvider(Protocol):
    """Interface for one third-party nutrition database."""

    name: str
    label: str
    supports_barcode_lookup: bool

    async def search(self, request: FoodSearchRequest) -> list[NormalizedFoodItem]:
        """Return one page of free-text search results."""

    async def lookup_barcode(
        self, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        """Return the products matching a UPC/EAN barcode."""

    def check_readiness(self) -> bool:
        """Return true when the provider can be queried at all."""

    async def close(self) -> None:
        """Release network resources."""


def unsupported_barcode_lookup(source: str) -> ProviderError:
    """Error for barcode calls against a text-only provider."""
    return ProviderError(
        ProviderErrorKind.UNSUPPORTED_OPERATION,
        source,
        f"{source} does not support barcode lookup",
    )
