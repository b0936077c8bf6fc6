"""USDA FoodData Central provider adapter."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

import httpx

from food_aggregator.adapters.food_provider import FoodDataProvider
from food_aggregator.adapters.http import json_object, send
from food_aggregator.adapters.paging import PageWindow, plan_page_window
from food_aggregator.domain.errors import ProviderError, ProviderErrorKind
from food_aggregator.domain.food import (
    FoodMeasure,
    FoodSearchRequest,
    NormalizedFoodItem,
    Nutrients,
)
from food_aggregator.services.normalization import (
    MeasureListBuilder,
    MeasurePolicy,
    barcode_digits,
    build_item,
    first_weighted_measure,
    kilojoules_to_kcal,
    nutrients_from_values,
    nutrients_per_100g,
    parse_number,
    to_grams,
)
from food_aggregator.services.relevance import (
    QueryTokens,
    RankingWeights,
    RelevanceRanker,
    Tokenizer,
    query_from_tokens,
    split_query_tokens,
)

USDA_DEFAULT_DATA_TYPES = ["Branded", "Foundation", "SR Legacy", "Survey (FNDDS)"]
USDA_BRANDED_DATA_TYPES = ["Branded"]
USDA_MAX_PAGE_SIZE = 50
# Over-fetch for multi-term queries so local ranking has enough candidates.
USDA_MAX_UPSTREAM_PAGE_SIZE = 200
USDA_MAX_PORTIONS = 8

# (nutrient numbers, name fragments) per macro; ids and legacy numbers both occur.
_NUTRIENT_KEYS: dict[str, tuple[set[str], tuple[str, ...]]] = {
    "calories": ({"1008", "208"}, ("energy",)),
    "protein": ({"1003", "203"}, ("protein",)),
    "fat": ({"1004", "204"}, ("total lipid", "fat")),
    "carbs": ({"1005", "205"}, ("carbohydrate",)),
}
_HTTP_BAD_REQUEST = 400

_logger = logging.getLogger(__name__)


def _default_ranker() -> RelevanceRanker:
    return RelevanceRanker(
        tokenizer=Tokenizer(),
        weights=RankingWeights(has_calories=2, has_brand_or_barcode=5),
    )


@dataclass
class HttpxUsdaProvider(FoodDataProvider):
    """FoodData Central search backed by httpx."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient
    request_timeout_seconds: float = 15
    measure_policy: MeasurePolicy = first_weighted_measure
    ranker: RelevanceRanker = field(default_factory=_default_ranker)

    name = "usda"
    label = "USDA FoodData Central"
    supports_barcode_lookup = True

    @classmethod
    def create(
        cls, api_key: str, base_url: str, request_timeout_seconds: float = 15
    ) -> "HttpxUsdaProvider":
        """Create a USDA provider with a managed httpx session."""
        return cls(
            api_key=api_key,
            base_url=base_url,
            http_client=httpx.AsyncClient(),
            request_timeout_seconds=request_timeout_seconds,
        )

    def check_readiness(self) -> bool:
        """USDA only needs an API key."""
        return bool(self.api_key.strip())

    async def search(self, request: FoodSearchRequest) -> list[NormalizedFoodItem]:
        """Search foods, re-ranking upstream candidates locally."""
        query = (request.query or "").strip()
        if not query:
            return []
        page_size = min(request.page_size, USDA_MAX_PAGE_SIZE)
        tokens = split_query_tokens(query, self.ranker.tokenizer)
        min_candidates = (
            USDA_MAX_UPSTREAM_PAGE_SIZE if len(tokens.all_tokens) >= 2 else page_size
        )
        window = plan_page_window(
            request.page, page_size, min_candidates, USDA_MAX_UPSTREAM_PAGE_SIZE
        )

        responses = await self._collect_responses(tokens, window)
        foods = _merge_foods_unique(responses)
        items = self._normalize_foods(foods, request)
        ranked = self.ranker.rank_items(items, tokens)
        return window.slice(ranked)

    async def lookup_barcode(
        self, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        """Find branded foods whose GTIN/UPC matches the barcode."""
        digits = barcode_digits(request.barcode)
        if not digits:
            return []
        payload = await self._search_foods(
            _search_body(digits, USDA_MAX_PAGE_SIZE, 1, USDA_DEFAULT_DATA_TYPES)
        )
        items = self._normalize_foods(_foods(payload), request)
        wanted = _gtin_key(digits)
        return [
            replace(item, barcode=digits)
            for item in items
            if _gtin_key(item.barcode) == wanted
        ]

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _collect_responses(
        self, tokens: QueryTokens, window: PageWindow
    ) -> list[dict[str, object]]:
        """Run the primary search plus brand-scoped variants for possessive queries."""
        size, page = window.upstream_size, window.upstream_page
        require_all_words = len(tokens.product_tokens) >= 2
        brand_scoped = tokens.is_brand_scoped
        upstream_query = query_from_tokens(
            tokens.product_tokens,
            tokens.normalized_product_query
            if brand_scoped
            else tokens.normalized_query,
        )
        data_types = (
            USDA_BRANDED_DATA_TYPES if brand_scoped else USDA_DEFAULT_DATA_TYPES
        )

        responses: list[dict[str, object]] = []
        combined: dict[str, object] | None = None
        if brand_scoped:
            combined = await self._search_relaxing(
                _search_body(
                    query_from_tokens(tokens.all_tokens, tokens.normalized_query),
                    size,
                    page,
                    USDA_BRANDED_DATA_TYPES,
                ),
                require_all_words=True,
            )
            responses.append(combined)

        primary = await self._search_relaxing(
            _search_body(upstream_query, size, page, data_types),
            require_all_words=require_all_words,
        )
        responses.append(primary)

        if brand_scoped:
            responses.append(
                await self._search_relaxing(
                    _search_body(
                        query_from_tokens(
                            tokens.brand_tokens, tokens.normalized_brand_query or ""
                        ),
                        size,
                        page,
                        USDA_BRANDED_DATA_TYPES,
                    ),
                    require_all_words=len(tokens.brand_tokens) >= 2,
                )
            )
            if not _foods(primary) and not _foods(combined or {}):
                # Branded-only data is sparse for some queries; widen to all types.
                responses.append(
                    await self._search_relaxing(
                        _search_body(
                            upstream_query, size, page, USDA_DEFAULT_DATA_TYPES
                        ),
                        require_all_words=require_all_words,
                    )
                )
        return responses

    async def _search_relaxing(
        self, body: dict[str, object], *, require_all_words: bool
    ) -> dict[str, object]:
        """Try ``requireAllWords`` first, relaxing when it is empty or rejected."""
        if not require_all_words:
            return await self._search_foods(body)
        try:
            strict = await self._search_foods({**body, "requireAllWords": True})
        except ProviderError as exc:
            if exc.status_code != _HTTP_BAD_REQUEST:
                raise
            _logger.info("USDA rejected requireAllWords, retrying relaxed query")
            return await self._search_foods(body)
        if _foods(strict):
            return strict
        return await self._search_foods(body)

    async def _search_foods(self, body: dict[str, object]) -> dict[str, object]:
        """POST ``/foods/search`` and validate the response envelope."""
        request = self.http_client.build_request(
            "POST",
            f"{self.base_url}/foods/search",
            params={"api_key": self.api_key},
            json=body,
            timeout=self.request_timeout_seconds,
        )
        response = await send(self.http_client, self.name, "USDA search", request)
        payload = json_object(response, self.name, "USDA search")
        foods = payload.get("foods")
        if foods is not None and not isinstance(foods, list):
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE,
                self.name,
                "USDA search returned a non-list 'foods' field",
            )
        return payload

    def _normalize_foods(
        self, foods: Iterable[object], request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        items: list[NormalizedFoodItem] = []
        for food in foods:
            if not isinstance(food, dict) or food.get("fdcId") is None:
                continue
            item = self._normalize_food(food, request)
            if item is not None:
                items.append(item)
        return items

    def _normalize_food(
        self, food: dict[str, object], request: FoodSearchRequest
    ) -> NormalizedFoodItem | None:
        measures = _build_measures(food)
        return build_item(
            source=self.name,
            item_id=str(food["fdcId"]),
            description=_text(food.get("description")),
            brand=_text(food.get("brandOwner")) or _text(food.get("brandName")),
            barcode=_text(food.get("gtinUpc")),
            measures=measures,
            nutrients=_nutrients_per_100g(food),
            request=request,
            measure_policy=self.measure_policy,
        )


def _search_body(
    query: str, page_size: int, page_number: int, data_types: list[str]
) -> dict[str, object]:
    return {
        "query": query,
        "pageSize": page_size,
        "pageNumber": page_number,
        "dataType": data_types,
    }


def _foods(payload: dict[str, object]) -> list[object]:
    foods = payload.get("foods")
    return foods if isinstance(foods, list) else []


def _merge_foods_unique(responses: list[dict[str, object]]) -> list[dict[str, object]]:
    """Merge responses keyed by ``fdcId``.

    A later duplicate replaces the earlier food object but keeps the position
    where that ``fdcId`` was first seen; ranking ties fall back to this order.
    """
    seen: dict[object, dict[str, object]] = {}
    for response in responses:
        for food in _foods(response):
            if isinstance(food, dict) and food.get("fdcId") is not None:
                seen[food["fdcId"]] = food
    return list(seen.values())


def _gtin_key(value: str | None) -> str:
    """Normalize UPC/EAN strings; leading zeros vary between GTIN-12/13/14."""
    digits = "".join(ch for ch in (value or "") if ch.isdigit())
    return digits.lstrip("0")


def _text(value: object) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _serving_unit(food: dict[str, object]) -> str:
    unit = food.get("servingSizeUnit")
    return unit.strip().lower() if isinstance(unit, str) else ""


def _serving_label(food: dict[str, object]) -> str:
    return _text(food.get("householdServingFullText")) or "serving"


def _build_measures(food: dict[str, object]) -> tuple[FoodMeasure, ...]:
    builder = MeasureListBuilder()
    serving_size = parse_number(food.get("servingSize"))
    if serving_size:
        unit = _serving_unit(food)
        builder.add(
            _serving_label(food),
            to_grams(serving_size, unit),
            quantity=serving_size,
            unit=unit or None,
        )

    portions = food.get("foodPortions")
    if isinstance(portions, list):
        for portion in portions[:USDA_MAX_PORTIONS]:
            if not isinstance(portion, dict):
                continue
            gram_weight = parse_number(portion.get("gramWeight"))
            if not gram_weight:
                continue
            measure_unit = portion.get("measureUnit")
            unit_name = (
                _text(measure_unit.get("name"))
                if isinstance(measure_unit, dict)
                else None
            )
            builder.add(
                _text(portion.get("modifier"))
                or _text(portion.get("portionDescription"))
                or unit_name
                or "portion",
                gram_weight,
                quantity=parse_number(portion.get("amount")),
                unit=unit_name,
            )

    builder.add_per_100g()
    return builder.build()


def _nutrients_per_100g(food: dict[str, object]) -> Nutrients | None:
    """``foodNutrients`` are per 100 g; ``labelNutrients`` are per serving."""
    from_nutrients = _extract_food_nutrients(food.get("foodNutrients"))
    if from_nutrients is not None:
        return from_nutrients

    label = food.get("labelNutrients")
    if not isinstance(label, dict):
        return None
    calories = _label_value(label, "calories")
    if calories is None:
        return None
    per_serving = Nutrients(
        calories=calories,
        protein=_label_value(label, "protein"),
        fat=_label_value(label, "fat"),
        carbs=_label_value(label, "carbohydrates"),
    )
    serving_size = parse_number(food.get("servingSize"))
    grams = to_grams(serving_size, _serving_unit(food)) if serving_size else None
    return nutrients_per_100g(per_serving, grams)


def _label_value(label: dict[str, object], key: str) -> float | None:
    entry = label.get(key)
    if not isinstance(entry, dict):
        return None
    return parse_number(entry.get("value"))


def _extract_food_nutrients(food_nutrients: object) -> Nutrients | None:
    if not isinstance(food_nutrients, list):
        return None
    entries = [entry for entry in food_nutrients if isinstance(entry, dict)]
    calories = _find_nutrient(entries, "calories")
    if calories is None:
        return None
    return nutrients_from_values(
        calories,
        _find_nutrient(entries, "protein"),
        _find_nutrient(entries, "fat"),
        _find_nutrient(entries, "carbs"),
    )


def _find_nutrient(entries: list[dict[str, object]], key: str) -> float | None:
    """Match by nutrient number first, then by name."""
    codes, names = _NUTRIENT_KEYS[key]
    match = next((entry for entry in entries if _nutrient_code(entry) in codes), None)
    if match is None:
        match = next(
            (
                entry
                for entry in entries
                if any(name in _nutrient_name(entry) for name in names)
            ),
            None,
        )
    if match is None:
        return None
    amount = parse_number(match.get("amount"))
    if amount is None:
        amount = parse_number(match.get("value"))
    if amount is None:
        return None
    unit = match.get("unitName")
    if key == "calories" and isinstance(unit, str) and unit.strip().lower() == "kj":
        return kilojoules_to_kcal(amount)
    return amount


def _nutrient_code(entry: dict[str, object]) -> str:
    number = entry.get("nutrientNumber")
    if isinstance(number, str) and number:
        return number
    nutrient = entry.get("nutrient")
    if isinstance(nutrient, dict):
        nested = nutrient.get("number") or nutrient.get("id")
        if nested is not None:
            return str(nested)
    nutrient_id = entry.get("nutrientId")
    return str(nutrient_id) if nutrient_id is not None else ""


def _nutrient_name(entry: dict[str, object]) -> str:
    name = entry.get("nutrientName")
    if not isinstance(name, str):
        nutrient = entry.get("nutrient")
        name = nutrient.get("name") if isinstance(nutrient, dict) else ""
    return name.lower() if isinstance(name, str) else ""
