"""Tests for the FatSecret adapter."""

import asyncio

import httpx
import pytest

from food_aggregator.adapters.fatsecret_client import HttpxFatSecretProvider
from food_aggregator.domain.errors import ProviderError, ProviderErrorKind
from food_aggregator.domain.food import FoodMeasure, FoodSearchRequest, Nutrients

_CHICKEN_DETAIL = {
    "food": {
        "food_id": "1",
        "food_name": "Chicken breast",
        "food_type": "Generic",
        "servings": {
            "serving": [
                {
                    "serving_description": "1 cup, chopped or diced",
                    "measurement_description": "cup, chopped or diced",
                    "metric_serving_amount": "140.000",
                    "metric_serving_unit": "g",
                    "number_of_units": "1.000",
                    "calories": "231",
                    "protein": "43.43",
                    "fat": "5.00",
                    "carbohydrate": "0",
                },
                {
                    "serving_description": "100 g",
                    "measurement_description": "g",
                    "metric_serving_amount": "100.000",
                    "metric_serving_unit": "g",
                    "number_of_units": "100.000",
                    "calories": "165",
                },
            ]
        },
    }
}


class _FatSecretApi:
    """Routes mock requests to the auth or REST endpoint."""

    def __init__(self) -> None:
        self.token_requests: list[httpx.Request] = []
        self.api_requests: list[httpx.Request] = []
        self.responses: dict[str, tuple[int, object]] = {}
        self.auth_response: tuple[int, object] = (
            200,
            {"access_token": "token-1", "expires_in": 3600},
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "auth.test":
            self.token_requests.append(request)
            return httpx.Response(self.auth_response[0], json=self.auth_response[1])
        self.api_requests.append(request)
        method = request.url.params["method"]
        key = f"{method}:{request.url.params.get('food_id', '')}"
        status_code, payload = self.responses.get(key, self.responses.get(method))
        return httpx.Response(status_code, json=payload)


def _provider(api: _FatSecretApi, clock=None) -> HttpxFatSecretProvider:  # type: ignore[no-untyped-def]
    provider = HttpxFatSecretProvider(
        client_id="client-id",
        client_secret="client-secret",
        base_url="https://api.test/rest/server.api",
        auth_url="https://auth.test/connect/token",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(api)),
    )
    if clock is not None:
        provider.clock = clock
    return provider


def test_search_merges_details_and_summary_fallback() -> None:
    api = _FatSecretApi()
    api.responses["foods.search"] = (
        200,
        {
            "foods": {
                "food": [
                    {"food_id": "1", "food_name": "Chicken breast"},
                    {
                        "food_id": "2",
                        "food_name": "Roast chicken",
                        "brand_name": "Deli Co",
                        "food_description": (
                            "Per 100g - Calories: 190kcal | Fat: 9.00g | "
                            "Carbs: 1.00g | Protein: 25.00g"
                        ),
                    },
                ]
            }
        },
    )
    api.responses["food.get:1"] = (200, _CHICKEN_DETAIL)
    api.responses["food.get:2"] = (500, {"error": "boom"})

    items = asyncio.run(
        _provider(api).search(FoodSearchRequest(query="chicken", page=2, page_size=5))
    )

    search_request = api.api_requests[0]
    assert search_request.url.params["page_number"] == "1"
    assert search_request.url.params["max_results"] == "5"
    assert search_request.url.params["format"] == "json"
    assert search_request.headers["Authorization"] == "Bearer token-1"
    assert [item.id for item in items] == ["1", "2"]
    chicken, roast = items
    assert chicken.nutrients_per_100g == Nutrients(
        calories=165.0, protein=31.02, fat=3.57, carbs=0.0
    )
    assert chicken.available_measures == (
        FoodMeasure(
            label="1 cup, chopped or diced",
            gram_weight=140.0,
            quantity=1.0,
            unit="cup, chopped or diced",
        ),
        FoodMeasure(label="100 g", gram_weight=100.0, quantity=100.0, unit="g"),
        FoodMeasure(label="per 100g", gram_weight=100.0),
    )
    assert roast.brand == "Deli Co"
    assert roast.nutrients_per_100g == Nutrients(
        calories=190.0, protein=25.0, fat=9.0, carbs=1.0
    )


def test_search_accepts_single_food_object() -> None:
    api = _FatSecretApi()
    api.responses["foods.search"] = (
        200,
        {"foods": {"food": {"food_id": "1", "food_name": "Chicken breast"}}},
    )
    api.responses["food.get"] = (200, _CHICKEN_DETAIL)

    items = asyncio.run(_provider(api).search(FoodSearchRequest(query="chicken")))

    assert [item.id for item in items] == ["1"]
    assert api.api_requests[0].url.params["page_number"] == "0"


def test_token_is_cached_and_shared_by_concurrent_calls() -> None:
    api = _FatSecretApi()
    api.responses["foods.search"] = (200, {"foods": {}})
    provider = _provider(api)

    async def run_concurrently() -> None:
        await asyncio.gather(
            provider.search(FoodSearchRequest(query="apple")),
            provider.search(FoodSearchRequest(query="pear")),
        )

    asyncio.run(run_concurrently())
    asyncio.run(provider.search(FoodSearchRequest(query="plum")))

    assert len(api.token_requests) == 1
    assert len(api.api_requests) == 3
    assert api.token_requests[0].headers["Authorization"].startswith("Basic ")


def test_token_is_refreshed_before_expiry() -> None:
    api = _FatSecretApi()
    api.responses["foods.search"] = (200, {"foods": {}})
    now = [0.0]
    provider = _provider(api, clock=lambda: now[0])

    asyncio.run(provider.search(FoodSearchRequest(query="apple")))
    now[0] = 3539.0
    asyncio.run(provider.search(FoodSearchRequest(query="apple")))
    assert len(api.token_requests) == 1

    now[0] = 3541.0
    asyncio.run(provider.search(FoodSearchRequest(query="apple")))
    assert len(api.token_requests) == 2


def test_lookup_barcode_sets_input_barcode() -> None:
    api = _FatSecretApi()
    api.responses["food.find_id_for_barcode"] = (200, {"food_id": {"value": "1"}})
    api.responses["food.get"] = (200, _CHICKEN_DETAIL)

    items = asyncio.run(
        _provider(api).lookup_barcode(FoodSearchRequest(barcode="012345678905"))
    )

    assert api.api_requests[0].url.params["barcode"] == "012345678905"
    assert len(items) == 1
    assert items[0].barcode == "012345678905"


def test_lookup_barcode_unknown_code() -> None:
    api = _FatSecretApi()
    api.responses["food.find_id_for_barcode"] = (200, {"food_id": {"value": "0"}})

    items = asyncio.run(
        _provider(api).lookup_barcode(FoodSearchRequest(barcode="999"))
    )

    assert items == []
    assert len(api.api_requests) == 1


def test_lookup_barcode_rejects_non_digit_input() -> None:
    api = _FatSecretApi()

    items = asyncio.run(
        _provider(api).lookup_barcode(FoodSearchRequest(barcode="012345&method=x"))
    )

    assert items == []
    assert api.token_requests == []
    assert api.api_requests == []


def test_auth_rejection_is_auth_failure() -> None:
    api = _FatSecretApi()
    api.auth_response = (401, {"error": "invalid_client"})

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(_provider(api).search(FoodSearchRequest(query="apple")))

    assert exc_info.value.kind is ProviderErrorKind.AUTH_FAILURE
    assert api.api_requests == []


def test_api_error_envelope_is_malformed_response() -> None:
    api = _FatSecretApi()
    api.responses["foods.search"] = (
        200,
        {"error": {"code": 9, "message": "Invalid timestamp"}},
    )

    with pytest.raises(ProviderError) as exc_info:
        asyncio.run(_provider(api).search(FoodSearchRequest(query="apple")))

    assert exc_info.value.kind is ProviderErrorKind.MALFORMED_RESPONSE
    assert exc_info.value.message == "FatSecret API error (9): Invalid timestamp"


def test_readiness_requires_both_credentials() -> None:
    provider = HttpxFatSecretProvider.create(
        client_id="id",
        client_secret="",
        base_url="https://api.test",
        auth_url="https://auth.test",
    )

    assert not provider.check_readiness()
    asyncio.run(provider.close())
