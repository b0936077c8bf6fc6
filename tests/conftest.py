"""Shared test fixtures."""

import asyncio
from dataclasses import dataclass, field

import pytest

from food_aggregator.adapters.food_provider import (
    FoodDataProvider,
    unsupported_barcode_lookup,
)
from food_aggregator.config import Settings
from food_aggregator.containers import AppContainer, build_container
from food_aggregator.domain.food import (
    FoodMeasure,
    FoodSearchRequest,
    NormalizedFoodItem,
    Nutrients,
)
from food_aggregator.services.registry import ProviderDefinition


def make_item(
    item_id: str,
    source: str = "fake",
    description: str = "Chicken breast",
    calories: float | None = 165.0,
    barcode: str | None = None,
) -> NormalizedFoodItem:
    """Build a canonical item with a per 100g measure."""
    return NormalizedFoodItem(
        id=item_id,
        source=source,
        description=description,
        barcode=barcode,
        available_measures=(FoodMeasure(label="per 100g", gram_weight=100.0),),
        nutrients_per_100g=Nutrients(calories=calories) if calories is not None else None,
    )


@dataclass
class FakeProvider(FoodDataProvider):
    """In-memory provider that pages through a fixed item list."""

    name: str = "fake"
    label: str = "Fake provider"
    supports_barcode_lookup: bool = True
    items: list[NormalizedFoodItem] = field(default_factory=list)
    barcode_items: list[NormalizedFoodItem] = field(default_factory=list)
    delay_seconds: float = 0
    error: Exception | None = None
    ready: bool = True
    repeat_last_item: bool = False
    calls: list[tuple[str, FoodSearchRequest]] = field(default_factory=list)
    closed: bool = False

    async def search(self, request: FoodSearchRequest) -> list[NormalizedFoodItem]:
        self.calls.append(("search", request))
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        start = (request.page - 1) * request.page_size
        page = self.items[start : start + request.page_size]
        if self.repeat_last_item and request.page > 1 and start > 0:
            page = [self.items[start - 1], *page[:-1]]
        return page

    async def lookup_barcode(
        self, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        self.calls.append(("barcode", request))
        if not self.supports_barcode_lookup:
            raise unsupported_barcode_lookup(self.name)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        return [item for item in self.barcode_items if item.barcode == request.barcode]

    def check_readiness(self) -> bool:
        return self.ready

    async def close(self) -> None:
        self.closed = True


def definition_for(
    provider: FakeProvider, required_settings: dict[str, str | None] | None = None
) -> ProviderDefinition:
    return ProviderDefinition(
        name=provider.name,
        label=provider.label,
        supports_barcode_lookup=provider.supports_barcode_lookup,
        factory=lambda: provider,
        required_settings=required_settings or {},
    )


def _never_built() -> FoodDataProvider:
    raise AssertionError("providers with missing settings must not be constructed")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        usda_api_key="usda-key",
        fatsecret_client_id="client-id",
        fatsecret_client_secret="client-secret",
        food_data_providers="fatsecret,usda,textOnly",
        dev_token=None,
    )


@pytest.fixture
def usda_provider() -> FakeProvider:
    return FakeProvider(
        name="usda",
        label="USDA FoodData Central",
        items=[
            make_item(f"usda-{index}", source="usda", description=f"Chicken breast {index}")
            for index in range(25)
        ],
        barcode_items=[
            make_item(
                "usda-granola",
                source="usda",
                description="Granola",
                barcode="012345678905",
            )
        ],
    )


@pytest.fixture
def text_only_provider() -> FakeProvider:
    return FakeProvider(
        name="textOnly",
        label="Text only",
        supports_barcode_lookup=False,
        items=[make_item("text-apple", source="textOnly", description="Apple")],
    )


@pytest.fixture
def provider_definitions(
    usda_provider: FakeProvider, text_only_provider: FakeProvider
) -> list[ProviderDefinition]:
    return [
        ProviderDefinition(
            name="fatsecret",
            label="FatSecret",
            supports_barcode_lookup=True,
            factory=_never_built,
            required_settings={
                "FATSECRET_CLIENT_ID": None,
                "FATSECRET_CLIENT_SECRET": "",
            },
        ),
        definition_for(text_only_provider),
        definition_for(usda_provider),
    ]


@pytest.fixture
def container(
    settings: Settings, provider_definitions: list[ProviderDefinition]
) -> AppContainer:
    return build_container(settings, definitions=provider_definitions)
