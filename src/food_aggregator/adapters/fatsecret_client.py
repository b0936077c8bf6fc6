"""FatSecret Platform API provider adapter."""

import asyncio
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from food_aggregator.adapters.food_provider import FoodDataProvider
from food_aggregator.adapters.http import json_object, send
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
    nutrients_from_values,
    nutrients_per_100g,
    parse_gram_weight,
    parse_number,
    to_grams,
)

FATSECRET_MAX_PAGE_SIZE = 50
FATSECRET_MAX_SERVINGS = 8
# Refresh tokens a minute early so in-flight calls never carry an expired one.
FATSECRET_TOKEN_EXPIRY_BUFFER_SECONDS = 60
FATSECRET_DEFAULT_TOKEN_TTL_SECONDS = 3600
_AUTH_REJECTED_STATUSES = {400, 401, 403}

_CALORIES = re.compile(r"Calories:\s*([0-9.]+)\s*k?cal", re.IGNORECASE)
_FAT = re.compile(r"Fat:\s*([0-9.]+)\s*g", re.IGNORECASE)
_CARBS = re.compile(r"Carb(?:s|ohydrates?)?:\s*([0-9.]+)\s*g", re.IGNORECASE)
_PROTEIN = re.compile(r"Protein:\s*([0-9.]+)\s*g", re.IGNORECASE)
_PER_AMOUNT = re.compile(r"Per\s+([0-9.]+)\s*(g|ml)\b", re.IGNORECASE)

_logger = logging.getLogger(__name__)


@dataclass
class HttpxFatSecretProvider(FoodDataProvider):
    """FatSecret search backed by httpx and OAuth2 client credentials."""

    client_id: str
    client_secret: str
    base_url: str
    auth_url: str
    http_client: httpx.AsyncClient
    request_timeout_seconds: float = 15
    measure_policy: MeasurePolicy = first_weighted_measure
    clock: Callable[[], float] = time.monotonic
    _access_token: str | None = field(default=None, init=False, repr=False)
    _token_expires_at: float = field(default=0.0, init=False, repr=False)
    _token_lock: asyncio.Lock = field(
        default_factory=asyncio.Lock, init=False, repr=False
    )

    name = "fatsecret"
    label = "FatSecret"
    supports_barcode_lookup = True

    @classmethod
    def create(
        cls,
        client_id: str,
        client_secret: str,
        base_url: str,
        auth_url: str,
        request_timeout_seconds: float = 15,
    ) -> "HttpxFatSecretProvider":
        """Create a FatSecret provider with a managed httpx session."""
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            base_url=base_url,
            auth_url=auth_url,
            http_client=httpx.AsyncClient(),
            request_timeout_seconds=request_timeout_seconds,
        )

    def check_readiness(self) -> bool:
        """Both OAuth client credentials must be present."""
        return bool(self.client_id.strip() and self.client_secret.strip())

    async def search(self, request: FoodSearchRequest) -> list[NormalizedFoodItem]:
        """Run ``foods.search`` and enrich every hit with ``food.get`` details."""
        query = (request.query or "").strip()
        if not query:
            return []
        payload = await self._call_api(
            {
                "method": "foods.search",
                "search_expression": query,
                "page_number": max(0, request.page - 1),
                "max_results": min(request.page_size, FATSECRET_MAX_PAGE_SIZE),
            }
        )
        foods_envelope = payload.get("foods")
        summaries = _as_list(
            foods_envelope.get("food") if isinstance(foods_envelope, dict) else None
        )
        if not summaries:
            return []

        details = await asyncio.gather(
            *(self._fetch_details_or_none(summary) for summary in summaries)
        )
        items: list[NormalizedFoodItem] = []
        for summary, detail in zip(summaries, details, strict=True):
            item = self._normalize_food(_merge_summary(summary, detail), request)
            if item is not None:
                items.append(item)
        return items

    async def lookup_barcode(
        self, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        """Resolve a barcode to a food id, then fetch that food."""
        barcode = barcode_digits(request.barcode)
        if not barcode:
            return []
        food_id = await self._find_id_for_barcode(barcode)
        if food_id is None:
            return []
        food = await self._fetch_details(food_id)
        if food is None:
            return []
        item = self._normalize_food(food, request, barcode=barcode)
        return [item] if item is not None else []

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _get_access_token(self) -> str:
        """Return a cached bearer token, refreshing it once for concurrent callers."""
        if self._access_token and self.clock() < self._token_expires_at:
            return self._access_token
        async with self._token_lock:
            if self._access_token and self.clock() < self._token_expires_at:
                return self._access_token
            return await self._request_access_token()

    async def _request_access_token(self) -> str:
        http_request = self.http_client.build_request(
            "POST",
            self.auth_url,
            data={"grant_type": "client_credentials", "scope": "basic"},
            auth=(self.client_id, self.client_secret),
            timeout=self.request_timeout_seconds,
        )
        try:
            response = await send(
                self.http_client, self.name, "FatSecret auth", http_request
            )
        except ProviderError as exc:
            if exc.status_code in _AUTH_REJECTED_STATUSES:
                raise ProviderError(
                    ProviderErrorKind.AUTH_FAILURE,
                    self.name,
                    exc.message,
                    status_code=exc.status_code,
                ) from exc
            raise
        payload = json_object(response, self.name, "FatSecret auth")
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise ProviderError(
                ProviderErrorKind.AUTH_FAILURE,
                self.name,
                "FatSecret auth failed: access_token is missing.",
            )
        expires_in = parse_number(payload.get("expires_in"))
        if expires_in is None:
            expires_in = FATSECRET_DEFAULT_TOKEN_TTL_SECONDS
        now = self.clock()
        self._access_token = token
        self._token_expires_at = max(
            now, now + expires_in - FATSECRET_TOKEN_EXPIRY_BUFFER_SECONDS
        )
        _logger.debug("Obtained FatSecret access token, expires in %ss", expires_in)
        return token

    async def _call_api(self, params: dict[str, object]) -> dict[str, object]:
        """Call the REST endpoint and surface FatSecret's in-band error envelope."""
        token = await self._get_access_token()
        query: dict[str, object] = {"format": "json"}
        query.update(
            (key, value)
            for key, value in params.items()
            if value is not None and str(value).strip()
        )
        action = f"FatSecret {params.get('method', 'request')}"
        http_request = self.http_client.build_request(
            "GET",
            self.base_url,
            params=query,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.request_timeout_seconds,
        )
        response = await send(self.http_client, self.name, action, http_request)
        payload = json_object(response, self.name, action)
        api_error = _api_error(payload)
        if api_error is not None:
            raise ProviderError(
                ProviderErrorKind.MALFORMED_RESPONSE, self.name, api_error
            )
        return payload

    async def _find_id_for_barcode(self, barcode: str) -> str | None:
        payload = await self._call_api(
            {"method": "food.find_id_for_barcode", "barcode": barcode}
        )
        candidates = [payload.get("food_id")]
        for key in ("food", "foods"):
            nested = payload.get(key)
            if isinstance(nested, dict):
                candidates.append(nested.get("food_id"))
        for candidate in candidates:
            if isinstance(candidate, dict):
                candidate = candidate.get("value")
            if isinstance(candidate, str | int) and not isinstance(candidate, bool):
                food_id = str(candidate).strip()
                # FatSecret answers unknown barcodes with food_id 0.
                if food_id and food_id != "0":
                    return food_id
        return None

    async def _fetch_details(self, food_id: str) -> dict[str, object] | None:
        payload = await self._call_api({"method": "food.get", "food_id": food_id})
        food = payload.get("food")
        return food if isinstance(food, dict) else None

    async def _fetch_details_or_none(
        self, summary: dict[str, object]
    ) -> dict[str, object] | None:
        food_id = summary.get("food_id")
        if food_id is None:
            return None
        try:
            return await self._fetch_details(str(food_id))
        except ProviderError as exc:
            _logger.debug(
                "FatSecret food.get failed for %s, using summary: %s", food_id, exc
            )
            return None

    def _normalize_food(
        self,
        food: dict[str, object],
        request: FoodSearchRequest,
        barcode: str | None = None,
    ) -> NormalizedFoodItem | None:
        food_id = food.get("food_id")
        name = _text(food.get("food_name"))
        return build_item(
            source=self.name,
            item_id=str(food_id) if food_id else f"fatsecret:{name or 'unknown'}",
            description=name,
            brand=_text(food.get("brand_name")),
            barcode=barcode,
            measures=_build_measures(food),
            nutrients=_nutrients_per_100g(food),
            request=request,
            measure_policy=self.measure_policy,
        )


def _as_list(value: object) -> list[dict[str, object]]:
    """FatSecret returns a bare object instead of a one-element list."""
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [entry for entry in value if isinstance(entry, dict)]
    return []


def _api_error(payload: dict[str, object]) -> str | None:
    error = payload.get("error")
    if not error:
        return None
    if isinstance(error, str):
        return f"FatSecret API error: {error}"
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message") or "Unknown error"
        suffix = f" ({code})" if code is not None else ""
        return f"FatSecret API error{suffix}: {message}"
    return None


def _merge_summary(
    summary: dict[str, object], detail: dict[str, object] | None
) -> dict[str, object]:
    """Keep summary fields the detail payload leaves out."""
    if detail is None:
        return summary
    merged = {**summary, **detail}
    for key in ("food_id", "food_name", "brand_name", "food_type", "food_description"):
        if detail.get(key) is None and summary.get(key) is not None:
            merged[key] = summary[key]
    return merged


def _text(value: object) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def _servings(food: dict[str, object]) -> list[dict[str, object]]:
    servings = food.get("servings")
    if isinstance(servings, dict):
        return _as_list(servings.get("serving"))
    return _as_list(servings)


def _metric_weight(serving: dict[str, object]) -> float | None:
    return to_grams(
        serving.get("metric_serving_amount"), serving.get("metric_serving_unit")
    )


def _build_measures(food: dict[str, object]) -> tuple[FoodMeasure, ...]:
    builder = MeasureListBuilder()
    for serving in _servings(food)[:FATSECRET_MAX_SERVINGS]:
        description = _text(serving.get("serving_description"))
        gram_weight = _metric_weight(serving) or parse_gram_weight(description)
        if not gram_weight:
            continue
        unit = _text(serving.get("measurement_description"))
        builder.add(
            description or unit,
            gram_weight,
            quantity=parse_number(serving.get("number_of_units")),
            unit=unit,
        )
    builder.add_per_100g()
    return builder.build()


def _nutrients_per_100g(food: dict[str, object]) -> Nutrients | None:
    """Use the first metric serving, then the summary description."""
    for serving in _servings(food):
        nutrients = nutrients_from_values(
            parse_number(serving.get("calories")),
            parse_number(serving.get("protein")),
            parse_number(serving.get("fat")),
            parse_number(serving.get("carbohydrate")),
        )
        grams = _metric_weight(serving)
        if nutrients is not None and grams:
            return nutrients_per_100g(nutrients, grams)
    return _nutrients_from_description(_text(food.get("food_description")))


def _nutrients_from_description(description: str | None) -> Nutrients | None:
    """Parse ``"Per 100g - Calories: 165kcal | Fat: 3.57g | ..."``.

    Summaries quoted per serving without a metric amount have no gram anchor
    and are not converted.
    """
    if not description:
        return None
    nutrients = nutrients_from_values(
        _match_number(_CALORIES, description),
        _match_number(_PROTEIN, description),
        _match_number(_FAT, description),
        _match_number(_CARBS, description),
    )
    if nutrients is None:
        return None
    amount = _PER_AMOUNT.search(description)
    if amount is None:
        return None
    return nutrients_per_100g(nutrients, to_grams(amount.group(1), amount.group(2)))


def _match_number(pattern: re.Pattern[str], text: str) -> float | None:
    match = pattern.search(text)
    return parse_number(match.group(1)) if match else None
