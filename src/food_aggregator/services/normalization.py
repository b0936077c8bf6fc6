"""Shared normalization helpers used by every provider adapter.

Vendors report nutrients per serving, per arbitrary weight, or per 100 g, and
describe servings with free-text labels. Everything here is pure: adapters
feed vendor figures in and get canonical :class:`NormalizedFoodItem` pieces
back.
"""

import logging
import math
import re
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from food_aggregator.domain.food import (
    FoodMeasure,
    FoodSearchRequest,
    NormalizedFoodItem,
    Nutrients,
    NutrientsForQuantity,
)

KCAL_PER_KJ = 1 / 4.184
GRAMS_PER_OUNCE = 28.3495
PER_100G_LABEL = "per 100g"

_GRAM_UNITS = {"g", "gram", "grams", "grm"}
# Volumes are treated as 1 ml == 1 g.
_MILLILITER_UNITS = {"ml", "milliliter", "milliliters", "millilitre", "mlt"}
_KILOGRAM_UNITS = {"kg", "kilogram", "kilograms"}
_OUNCE_UNITS = {"oz", "ounce", "ounces", "onz"}

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_GRAM_HINT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(g|ml|oz)\b", re.IGNORECASE)
_BARCODE = re.compile(r"[0-9][0-9 \-]*")

_logger = logging.getLogger(__name__)

MeasurePolicy = Callable[[Sequence[FoodMeasure]], FoodMeasure | None]


def round_to(value: float, precision: int = 2) -> float:
    """Round half up (ties go toward positive infinity, so -0.5 becomes 0).

    This matches what users see on nutrition labels.
    """
    multiplier = 10**precision
    return math.floor(value * multiplier + 0.5) / multiplier


def barcode_digits(value: str | None) -> str:
    """Return the digits of a UPC/EAN barcode, or "" for anything else.

    Spaces and hyphens between digits are accepted and dropped.
    """
    text = (value or "").strip()
    if not _BARCODE.fullmatch(text):
        return ""
    return text.replace(" ", "").replace("-", "")


def parse_number(value: object) -> float | None:
    """Return a finite float from numbers or numeric-prefixed strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if match is None:
            return None
        number = float(match.group(0))
        return number if math.isfinite(number) else None
    return None


def kilojoules_to_kcal(value: float) -> float:
    """Convert an energy value in kJ to kcal."""
    return round_to(value * KCAL_PER_KJ, 1)


def to_grams(amount: object, unit: object) -> float | None:
    """Convert a metric or imperial weight into grams."""
    quantity = parse_number(amount)
    if not quantity:
        return None
    normalized_unit = unit.strip().lower() if isinstance(unit, str) else ""
    if normalized_unit in _GRAM_UNITS or normalized_unit in _MILLILITER_UNITS:
        return quantity
    if normalized_unit in _KILOGRAM_UNITS:
        return quantity * 1000
    if normalized_unit in _OUNCE_UNITS:
        return round_to(quantity * GRAMS_PER_OUNCE, 2)
    return None


def parse_gram_weight(text: str | None) -> float | None:
    """Pull a gram weight hint such as ``30 g`` or ``1.5 oz`` out of free text."""
    if not text:
        return None
    match = _GRAM_HINT.search(text)
    if match is None:
        return None
    return to_grams(match.group(1).replace(",", "."), match.group(2))


def scale_nutrients(nutrients: Nutrients, factor: float) -> Nutrients:
    """Scale every nutrient by ``factor``."""
    return Nutrients(
        calories=round_to(nutrients.calories * factor, 1),
        protein=_scale_optional(nutrients.protein, factor),
        fat=_scale_optional(nutrients.fat, factor),
        carbs=_scale_optional(nutrients.carbs, factor),
    )


def nutrients_per_100g(nutrients: Nutrients, grams: float | None) -> Nutrients | None:
    """Convert nutrients reported for ``grams`` of food onto a 100 g basis.

    Returns ``None`` when the figure is not anchored to a usable weight.
    """
    if not is_positive_weight(grams):
        return None
    return scale_nutrients(nutrients, 100 / grams)


def nutrients_from_values(
    calories: float | None,
    protein: float | None,
    fat: float | None,
    carbs: float | None,
) -> Nutrients | None:
    """Build a nutrient profile when at least one value is known."""
    if calories is None and protein is None and fat is None and carbs is None:
        return None
    return Nutrients(
        calories=calories if calories is not None else 0.0,
        protein=protein,
        fat=fat,
        carbs=carbs,
    )


def is_positive_weight(value: float | None) -> bool:
    """Return true for positive, finite gram weights."""
    return value is not None and math.isfinite(value) and value > 0


def is_selectable(measure: FoodMeasure) -> bool:
    """A measure can drive calorie math only with a usable gram weight."""
    return is_positive_weight(measure.gram_weight)


def selectable_measures(measures: Iterable[FoodMeasure]) -> list[FoodMeasure]:
    """Filter measures down to the ones usable for calorie computation."""
    return [measure for measure in measures if is_selectable(measure)]


def first_weighted_measure(measures: Sequence[FoodMeasure]) -> FoodMeasure | None:
    """Pick the first measure with a gram weight."""
    for measure in measures:
        if is_selectable(measure):
            return measure
    return None


def largest_weighted_measure(measures: Sequence[FoodMeasure]) -> FoodMeasure | None:
    """Pick the heaviest selectable measure; earlier entries win ties."""
    best: FoodMeasure | None = None
    for measure in measures:
        if not is_selectable(measure):
            continue
        if best is None or measure.gram_weight > best.gram_weight:  # type: ignore[operator]
            best = measure
    return best


def preferred_measure(
    measures: Sequence[FoodMeasure], policy: MeasurePolicy = first_weighted_measure
) -> FoodMeasure | None:
    """Return the measure used to pre-populate a serving selector.

    The policy only ever sees selectable measures, so whatever it returns can
    drive calorie math.
    """
    return policy(selectable_measures(measures))


@dataclass
class MeasureListBuilder:
    """Collects vendor measures, collapsing repeated labels.

    Measures without a gram weight are kept for display; callers use
    :func:`selectable_measures` to get the calorie-capable subset.
    """

    _measures: list[FoodMeasure] = field(default_factory=list)
    _seen_labels: set[str] = field(default_factory=set)

    def add(
        self,
        label: str | None,
        gram_weight: float | None = None,
        quantity: float | None = None,
        unit: str | None = None,
    ) -> bool:
        """Add a measure unless one with the same label is already present."""
        resolved_label = (label or "").strip() or "serving"
        key = resolved_label.casefold()
        if key in self._seen_labels:
            return False
        self._seen_labels.add(key)
        self._measures.append(
            FoodMeasure(
                label=resolved_label,
                gram_weight=gram_weight if is_positive_weight(gram_weight) else None,
                quantity=quantity,
                unit=(unit or "").strip() or None,
            )
        )
        return True

    def add_per_100g(self) -> None:
        """Add the universal ``per 100g`` measure."""
        self.add(PER_100G_LABEL, 100.0)

    def build(self) -> tuple[FoodMeasure, ...]:
        """Return the collected measures in insertion order."""
        return tuple(self._measures)


def build_item(  # noqa: PLR0913
    *,
    source: str,
    item_id: str,
    description: str | None,
    request: FoodSearchRequest,
    measures: Sequence[FoodMeasure] = (),
    nutrients: Nutrients | None = None,
    brand: str | None = None,
    barcode: str | None = None,
    locale: str | None = None,
    measure_policy: MeasurePolicy = first_weighted_measure,
) -> NormalizedFoodItem | None:
    """Assemble a canonical item, enforcing the shared item invariants.

    Returns ``None`` for items without nutrients unless the request asked for
    incomplete items.
    """
    if nutrients is not None and not _has_valid_calories(nutrients):
        _logger.debug(
            "Dropping invalid nutrient profile: source=%s id=%s calories=%s",
            source,
            item_id,
            nutrients.calories,
        )
        nutrients = None
    if nutrients is None and not request.include_incomplete:
        return None

    for_request = None
    if nutrients is not None and is_positive_weight(request.quantity_in_grams):
        grams = float(request.quantity_in_grams)  # type: ignore[arg-type]
        for_request = NutrientsForQuantity(
            grams=grams, nutrients=scale_nutrients(nutrients, grams / 100)
        )

    return NormalizedFoodItem(
        id=item_id,
        source=source,
        description=(description or "").strip() or "Unknown food",
        brand=_clean(brand),
        barcode=_clean(barcode),
        locale=_clean(locale),
        available_measures=tuple(measures),
        nutrients_per_100g=nutrients,
        nutrients_for_request=for_request,
        preferred_measure=preferred_measure(measures, measure_policy),
    )


def _has_valid_calories(nutrients: Nutrients) -> bool:
    return math.isfinite(nutrients.calories) and nutrients.calories >= 0


def _scale_optional(value: float | None, factor: float) -> float | None:
    if value is None:
        return None
    return round_to(value * factor, 2)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None
