"""Pydantic response models for the food search API."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from food_aggregator.domain.food import (
    ComparisonEntry,
    FoodSearchResult,
    NormalizedFoodItem,
    ProviderInfo,
)


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class NutrientsModel(CamelModel):
    calories: float
    protein: float | None = None
    fat: float | None = None
    carbs: float | None = None


class NutrientsForQuantityModel(CamelModel):
    grams: float
    nutrients: NutrientsModel


class FoodMeasureModel(CamelModel):
    label: str
    gram_weight: float | None = None
    quantity: float | None = None
    unit: str | None = None


class FoodItemModel(CamelModel):
    """Canonical food item as returned to clients."""

    id: str
    source: str
    description: str
    brand: str | None = None
    barcode: str | None = None
    locale: str | None = None
    available_measures: list[FoodMeasureModel] = Field(default_factory=list)
    nutrients_per_100g: NutrientsModel | None = Field(
        default=None, alias="nutrientsPer100g"
    )
    nutrients_for_request: NutrientsForQuantityModel | None = None
    preferred_measure: FoodMeasureModel | None = None

    @classmethod
    def from_domain(cls, item: NormalizedFoodItem) -> "FoodItemModel":
        return cls.model_validate(item)


class FoodSearchResponse(CamelModel):
    provider: str
    supports_barcode_lookup: bool
    items: list[FoodItemModel] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, result: FoodSearchResult) -> "FoodSearchResponse":
        return cls.model_validate(result)


class ProviderInfoModel(CamelModel):
    name: str
    label: str
    supports_barcode_lookup: bool
    ready: bool
    detail: str | None = None


class ProvidersResponse(CamelModel):
    providers: list[ProviderInfoModel]

    @classmethod
    def from_domain(cls, infos: tuple[ProviderInfo, ...]) -> "ProvidersResponse":
        return cls(providers=[ProviderInfoModel.model_validate(info) for info in infos])


class ComparisonResultModel(ProviderInfoModel):
    """Provider metadata flattened together with that provider's outcome."""

    items: list[FoodItemModel] = Field(default_factory=list)
    error: str | None = None
    elapsed_ms: int | None = None

    @classmethod
    def from_domain(cls, entry: ComparisonEntry) -> "ComparisonResultModel":
        info = entry.info
        return cls(
            name=info.name,
            label=info.label,
            supports_barcode_lookup=info.supports_barcode_lookup,
            ready=info.ready,
            detail=info.detail,
            items=[FoodItemModel.from_domain(item) for item in entry.items],
            error=entry.error,
            elapsed_ms=entry.elapsed_ms,
        )


class ComparisonResponse(CamelModel):
    query: str | None = None
    barcode: str | None = None
    results: list[ComparisonResultModel]
