"""Tests for the production food search endpoint."""

import asyncio

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from food_aggregator.api.app import create_app
from food_aggregator.api.common import CLIENT_CLOSED_REQUEST, run_until_disconnected
from food_aggregator.domain.errors import ProviderError, ProviderErrorKind


def test_health(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_search_returns_camel_case_items(container, usda_provider) -> None:
    client = TestClient(create_app(container))

    response = client.get(
        "/food/search",
        params={"q": "chicken", "page": 2, "pageSize": 5, "grams": 50},
        headers={"Accept-Language": "fr-CA,fr;q=0.9,en;q=0.8"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["provider"] == "usda"
    assert data["supportsBarcodeLookup"] is True
    assert [item["id"] for item in data["items"]] == [f"usda-{i}" for i in range(5, 10)]
    item = data["items"][0]
    assert item["nutrientsPer100g"] == {"calories": 165.0}
    assert item["availableMeasures"] == [{"label": "per 100g", "gramWeight": 100.0}]
    assert "brand" not in item
    assert "nutrientsForRequest" not in item

    _, request = usda_provider.calls[0]
    assert request.page == 2
    assert request.page_size == 5
    assert request.quantity_in_grams == 50
    assert request.language_code == "fr"
    assert not request.include_incomplete


def test_search_accepts_query_alias(container, usda_provider) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"query": "chicken", "lc": "DE"})

    assert response.status_code == 200
    _, request = usda_provider.calls[0]
    assert request.query == "chicken"
    assert request.language_code == "de"


def test_barcode_lookup(container, usda_provider) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"barcode": "012345678905"})

    assert response.status_code == 200
    data = response.json()
    assert data["provider"] == "usda"
    assert [item["id"] for item in data["items"]] == ["usda-granola"]
    assert data["items"][0]["barcode"] == "012345678905"
    assert usda_provider.calls[0][0] == "barcode"


def test_barcode_lookup_drops_separators(container, usda_provider) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"barcode": " 0123-4567 8905 "})

    assert response.status_code == 200
    assert usda_provider.calls[0][1].barcode == "012345678905"


@pytest.mark.parametrize("barcode", ["../../cgi/search.pl", "12a34", "1234?x=1"])
def test_search_rejects_non_digit_barcode(container, usda_provider, barcode) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"barcode": barcode})

    assert response.status_code == 400
    assert response.json() == {"detail": "Barcode must contain only digits."}
    assert usda_provider.calls == []


def test_search_requires_query_or_barcode(container) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"q": "  "})

    assert response.status_code == 400
    assert response.json() == {"detail": "Provide a search query or barcode."}


def test_search_rejects_query_and_barcode_together(container, usda_provider) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"q": "granola", "barcode": "123"})

    assert response.status_code == 400
    assert response.json() == {"detail": "Provide either a search query or a barcode."}
    assert usda_provider.calls == []


@pytest.mark.parametrize(
    "params",
    [
        {"q": "chicken", "page": 0},
        {"q": "chicken", "pageSize": 0},
        {"q": "chicken", "pageSize": 51},
    ],
)
def test_search_validates_paging(container, params) -> None:
    client = TestClient(create_app(container))

    response = client.get("/food/search", params=params)

    assert response.status_code == 422


def test_search_degrades_when_provider_fails(container, usda_provider) -> None:
    container.search_service.provider_order = ["fatsecret"]
    usda_provider.error = ProviderError(
        ProviderErrorKind.TIMEOUT, "usda", "USDA barcode lookup timed out"
    )
    client = TestClient(create_app(container))

    response = client.get("/food/search", params={"barcode": "012345678905"})

    # textOnly cannot serve barcodes, so usda is the fallback candidate.
    assert response.status_code == 200
    assert response.json() == {
        "provider": "usda",
        "supportsBarcodeLookup": True,
        "items": [],
    }


class _DisconnectedRequest:
    """Stand-in for a Starlette request whose client has already gone."""

    class url:  # noqa: N801
        path = "/food/search"

    async def is_disconnected(self) -> bool:
        return True


def test_run_until_disconnected_cancels_work() -> None:
    cancelled = asyncio.Event()

    async def slow_search() -> list[str]:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return ["late"]

    async def run() -> None:
        with pytest.raises(HTTPException) as exc_info:
            await run_until_disconnected(
                _DisconnectedRequest(),  # type: ignore[arg-type]
                slow_search(),
                poll_interval_seconds=0.01,
            )
        assert exc_info.value.status_code == CLIENT_CLOSED_REQUEST
        assert cancelled.is_set()

    asyncio.run(run())


def test_run_until_disconnected_returns_result() -> None:
    async def quick() -> str:
        return "done"

    result = asyncio.run(
        run_until_disconnected(_DisconnectedRequest(), quick())  # type: ignore[arg-type]
    )

    assert result == "done"
