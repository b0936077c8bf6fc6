"""Open Food Facts provider adapter."""

import logging
import re
from dataclasses import dataclass, field
from typing import Literal

import httpx

from food_aggregator.adapters.food_provider import FoodDataProvider
from food_aggregator.adapters.http import json_object, send
from food_aggregator.adapters.paging import plan_page_window
from food_aggregator.domain.errors import ProviderError
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
    parse_gram_weight,
    parse_number,
    round_to,
)
from food_aggregator.services.relevance import (
    STOP_WORDS,
    QueryTokens,
    RankingWeights,
    RelevanceRanker,
    Tokenizer,
    query_from_tokens,
    split_query_tokens,
)

SearchMode = Literal["auto", "v2", "legacy"]

OFF_MAX_UPSTREAM_PAGE_SIZE = 50
OFF_UPSTREAM_PAGE_SIZE_BOOST = 25
OFF_SEARCH_FIELDS = (
    "product_name,generic_name,brands,code,nutriments,serving_size,"
    "serving_quantity,product_quantity,quantity,lc"
)
OFF_USER_AGENT = "food-aggregator/food-search"
_HTTP_NOT_FOUND = 404
_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")

_logger = logging.getLogger(__name__)


def _default_ranker() -> RelevanceRanker:
    # Tiny tokens like "s" from "joe's" would match almost everything.
    return RelevanceRanker(
        tokenizer=Tokenizer(stop_words=STOP_WORDS, min_length=2),
        weights=RankingWeights(
            has_calories=5,
            has_brand_or_barcode=2,
            brand_phrase_match=10,
            locale_match=10,
        ),
    )


@dataclass
class HttpxOpenFoodFactsProvider(FoodDataProvider):
    """Open Food Facts search and product lookup backed by httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    search_mode: SearchMode = "auto"
    request_timeout_seconds: float | None = 8
    measure_policy: MeasurePolicy = first_weighted_measure
    ranker: RelevanceRanker = field(default_factory=_default_ranker)

    name = "openFoodFacts"
    label = "Open Food Facts"
    supports_barcode_lookup = True

    @classmethod
    def create(
        cls,
        base_url: str,
        search_mode: SearchMode = "auto",
        request_timeout_seconds: float | None = 8,
    ) -> "HttpxOpenFoodFactsProvider":
        """Create an Open Food Facts provider with a managed httpx session."""
        return cls(
            base_url=base_url,
            http_client=httpx.AsyncClient(headers={"User-Agent": OFF_USER_AGENT}),
            search_mode=search_mode,
            request_timeout_seconds=request_timeout_seconds,
        )

    def check_readiness(self) -> bool:
        """Open Food Facts is public; only a base URL is needed."""
        return bool(self.base_url.strip())

    async def search(self, request: FoodSearchRequest) -> list[NormalizedFoodItem]:
        """Search products by free text, filtering and ranking locally."""
        query = (request.query or "").strip()
        if not query:
            return []
        page_size = min(request.page_size, OFF_MAX_UPSTREAM_PAGE_SIZE)
        tokens = split_query_tokens(query, self.ranker.tokenizer)
        upstream_query = query_from_tokens(
            tokens.all_tokens, tokens.normalized_query or query
        )
        window = plan_page_window(
            request.page,
            page_size,
            _min_candidates(page_size, tokens),
            OFF_MAX_UPSTREAM_PAGE_SIZE,
        )
        params = {
            "search_terms": upstream_query,
            "page_size": window.upstream_size,
            "page": window.upstream_page,
        }

        if self.search_mode == "legacy":
            items = await self._search_legacy(params, request)
        elif self.search_mode == "v2":
            items = await self._search_v2(params, request)
        else:
            items = await self._search_auto(params, request, tokens)

        if self.search_mode != "v2":
            items = await self._merge_brand_scoped(items, tokens, params, request)

        filtered = self.ranker.filter_items(items, tokens)
        ranked = self.ranker.rank_items(filtered, tokens, request.language_code)
        return window.slice(ranked)

    async def lookup_barcode(
        self, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        """Fetch a single product by barcode; unknown codes yield no items."""
        barcode = barcode_digits(request.barcode)
        if not barcode:
            return []
        http_request = self.http_client.build_request(
            "GET",
            f"{self.base_url}/api/v2/product/{barcode}",
            params=self._params({"fields": OFF_SEARCH_FIELDS}, request),
            timeout=self.request_timeout_seconds,
        )
        try:
            response = await send(
                self.http_client, self.name, "Open Food Facts product", http_request
            )
        except ProviderError as exc:
            if exc.status_code == _HTTP_NOT_FOUND:
                return []
            raise
        payload = json_object(response, self.name, "Open Food Facts product")
        product = payload.get("product")
        if payload.get("status") != 1 or not isinstance(product, dict):
            return []
        item = self._normalize_product(product, request)
        return [item] if item is not None else []

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _search_auto(
        self,
        params: dict[str, object],
        request: FoodSearchRequest,
        tokens: QueryTokens,
    ) -> list[NormalizedFoodItem]:
        """Prefer the fast v2 search; fall back to legacy for weak or failed results."""
        v2_error: ProviderError | None = None
        items: list[NormalizedFoodItem] = []
        try:
            items = await self._search_v2(params, request)
        except ProviderError as exc:
            v2_error = exc
            _logger.info("Open Food Facts v2 search failed, trying legacy: %s", exc)

        if v2_error is None and self.ranker.filter_items(items, tokens):
            return items

        try:
            return await self._search_legacy(params, request)
        except ProviderError as legacy_error:
            if v2_error is None:
                _logger.warning(
                    "Open Food Facts legacy search failed; keeping v2 results: %s",
                    legacy_error,
                )
                return items
            raise ProviderError(
                legacy_error.kind,
                self.name,
                f"Open Food Facts search failed. v2: {v2_error.message}; "
                f"legacy: {legacy_error.message}",
                status_code=legacy_error.status_code,
            ) from legacy_error

    async def _search_v2(
        self, params: dict[str, object], request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        return await self._fetch_products(
            "/api/v2/search", "Open Food Facts v2 search", params, request
        )

    async def _search_legacy(
        self,
        params: dict[str, object],
        request: FoodSearchRequest,
        brand_tag: str | None = None,
    ) -> list[NormalizedFoodItem]:
        legacy_params = {
            **params,
            "search_simple": 1,
            "json": 1,
            "action": "process",
        }
        if brand_tag:
            legacy_params.update(
                {
                    "tagtype_0": "brands",
                    "tag_contains_0": "contains",
                    "tag_0": brand_tag,
                }
            )
        return await self._fetch_products(
            "/cgi/search.pl", "Open Food Facts legacy search", legacy_params, request
        )

    async def _merge_brand_scoped(
        self,
        items: list[NormalizedFoodItem],
        tokens: QueryTokens,
        params: dict[str, object],
        request: FoodSearchRequest,
    ) -> list[NormalizedFoodItem]:
        """Add brand-tagged legacy results when the text search missed the brand."""
        if not tokens.is_brand_scoped:
            return items
        filtered = self.ranker.filter_items(items, tokens)
        if filtered and self._mentions_any(filtered, tokens.brand_tokens):
            return items
        brand_tag = _brand_tag(tokens.normalized_brand_query)
        if not brand_tag:
            return items
        product_query = query_from_tokens(
            tokens.product_tokens, tokens.normalized_product_query
        )
        try:
            brand_items = await self._search_legacy(
                {**params, "search_terms": product_query}, request, brand_tag
            )
        except ProviderError as exc:
            _logger.warning(
                "Open Food Facts brand-scoped search failed, keeping unscoped "
                "results: %s",
                exc,
            )
            return items
        merged = {item.id: item for item in items}
        merged.update((item.id, item) for item in brand_items)
        return list(merged.values())

    def _mentions_any(
        self, items: list[NormalizedFoodItem], brand_tokens: list[str]
    ) -> bool:
        wanted = set(brand_tokens)
        tokenize = self.ranker.tokenizer.tokenize
        return any(
            wanted & set(tokenize(f"{item.description} {item.brand or ''}"))
            for item in items
        )

    async def _fetch_products(
        self,
        path: str,
        action: str,
        params: dict[str, object],
        request: FoodSearchRequest,
    ) -> list[NormalizedFoodItem]:
        http_request = self.http_client.build_request(
            "GET",
            f"{self.base_url}{path}",
            params=self._params(
                {**params, "fields": OFF_SEARCH_FIELDS, "sort_by": "unique_scans_n"},
                request,
            ),
            timeout=self.request_timeout_seconds,
        )
        response = await send(self.http_client, self.name, action, http_request)
        payload = json_object(response, self.name, action)
        products = payload.get("products")
        if not isinstance(products, list):
            return []
        items: list[NormalizedFoodItem] = []
        for product in products:
            if not isinstance(product, dict):
                continue
            item = self._normalize_product(product, request)
            if item is not None:
                items.append(item)
        return items

    def _params(
        self, params: dict[str, object], request: FoodSearchRequest
    ) -> dict[str, object]:
        if request.language_code:
            return {**params, "lc": request.language_code}
        return params

    def _normalize_product(
        self, product: dict[str, object], request: FoodSearchRequest
    ) -> NormalizedFoodItem | None:
        code = _text(product.get("code"))
        name = _text(product.get("product_name")) or _text(product.get("generic_name"))
        nutriments = product.get("nutriments")
        return build_item(
            source=self.name,
            item_id=code or name or "openfoodfacts-item",
            description=name,
            brand=_text(product.get("brands")),
            barcode=code,
            locale=_text(product.get("lc")),
            measures=_build_measures(product),
            nutrients=_nutrients_per_100g(
                nutriments if isinstance(nutriments, dict) else {}
            ),
            request=request,
            measure_policy=self.measure_policy,
        )


def _min_candidates(page_size: int, tokens: QueryTokens) -> int:
    """Fetch extra candidates for multi-term searches so ranking has signal."""
    token_count = len(tokens.all_tokens)
    if token_count >= 3:
        return OFF_MAX_UPSTREAM_PAGE_SIZE
    if token_count == 2:
        return min(
            max(page_size, OFF_UPSTREAM_PAGE_SIZE_BOOST), OFF_MAX_UPSTREAM_PAGE_SIZE
        )
    return page_size


def _brand_tag(normalized_brand: str | None) -> str | None:
    """Slugify a brand phrase the way Open Food Facts ``brands`` tags are written."""
    slug = _SLUG_SEPARATORS.sub("-", (normalized_brand or "").strip()).strip("-")
    return slug or None


def _text(value: object) -> str | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def _nutrients_per_100g(nutriments: dict[str, object]) -> Nutrients | None:
    calories = parse_number(nutriments.get("energy-kcal_100g"))
    if calories is None:
        kilojoules = parse_number(nutriments.get("energy_100g"))
        if kilojoules is None:
            return None
        calories = kilojoules_to_kcal(kilojoules)
    return Nutrients(
        calories=calories,
        protein=_rounded(nutriments.get("proteins_100g")),
        fat=_rounded(nutriments.get("fat_100g")),
        carbs=_rounded(nutriments.get("carbohydrates_100g")),
    )


def _rounded(value: object) -> float | None:
    number = parse_number(value)
    return round_to(number, 2) if number is not None else None


def _build_measures(product: dict[str, object]) -> tuple[FoodMeasure, ...]:
    builder = MeasureListBuilder()
    builder.add_per_100g()

    serving_size = _text(product.get("serving_size"))
    serving_grams = parse_number(product.get("serving_quantity")) or parse_gram_weight(
        serving_size
    )
    if serving_grams:
        builder.add(
            f"per serving ({serving_size})" if serving_size else "per serving",
            serving_grams,
        )

    package_grams = parse_number(product.get("product_quantity"))
    if package_grams:
        builder.add(_text(product.get("quantity")) or "package", package_grams)
    return builder.build()
