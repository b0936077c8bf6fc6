"""Canonical food data models shared by every provider."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Nutrients:
    """Calories and macros for a fixed amount of food."""

    calories: float
    protein: float | None = None
    fat: float | None = None
    carbs: float | None = None


@dataclass(frozen=True)
class NutrientsForQuantity:
    """Nutrients scaled to the gram quantity a caller asked about."""

    grams: float
    nutrients: Nutrients


@dataclass(frozen=True)
class FoodMeasure:
    """One serving representation, e.g. ``1 cup = 240 g``."""

    label: str
    gram_weight: float | None = None
    quantity: float | None = None
    unit: str | None = None


@dataclass(frozen=True)
class NormalizedFoodItem:
    """Provider-agnostic search result."""

    id: str
    source: str
    description: str
    brand: str | None = None
    barcode: str | None = None
    locale: str | None = None
    available_measures: tuple[FoodMeasure, ...] = ()
    nutrients_per_100g: Nutrients | None = None
    nutrients_for_request: NutrientsForQuantity | None = None
    preferred_measure: FoodMeasure | None = None


@dataclass(frozen=True)
class FoodSearchRequest:
    """Parameters passed from an orchestrator to a provider adapter."""

    query: str | None = None
    barcode: str | None = None
    page: int = 1
    page_size: int = 10
    quantity_in_grams: float | None = None
    include_incomplete: bool = False
    language_code: str | None = None


@dataclass(frozen=True)
class ProviderInfo:
    """Registry entry describing one configured provider."""

    name: str
    label: str
    supports_barcode_lookup: bool
    ready: bool
    detail: str | None = None


@dataclass(frozen=True)
class FoodSearchResult:
    """Production search response."""

    provider: str
    supports_barcode_lookup: bool
    items: list[NormalizedFoodItem] = field(default_factory=list)


@dataclass(frozen=True)
class ComparisonEntry:
    """Outcome of one provider call in the comparison harness."""

    info: ProviderInfo
    items: list[NormalizedFoodItem] = field(default_factory=list)
    error: str | None = None
    elapsed_ms: int | None = None
