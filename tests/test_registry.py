"""Tests for the provider registry."""

import asyncio

import pytest

from food_aggregator.domain.errors import ProviderNotFoundError
from food_aggregator.services.registry import (
    READINESS_CHECK_FAILED,
    ProviderRegistry,
)
from tests.conftest import FakeProvider, definition_for


def test_build_records_missing_settings(provider_definitions) -> None:
    registry = ProviderRegistry.build(provider_definitions)

    fatsecret = registry.get_info("fatsecret")
    assert fatsecret is not None
    assert not fatsecret.ready
    assert fatsecret.detail == "Missing FATSECRET_CLIENT_ID, FATSECRET_CLIENT_SECRET"
    assert [info.name for info in registry.list_all()] == [
        "fatsecret",
        "textOnly",
        "usda",
    ]
    assert [info.name for info in registry.list_ready()] == ["textOnly", "usda"]
    assert [info.name for info in registry.list_barcode_capable()] == ["usda"]


def test_build_records_failed_readiness_check() -> None:
    broken = FakeProvider(name="broken", ready=False)

    registry = ProviderRegistry.build([definition_for(broken)])

    info = registry.get_info("broken")
    assert info is not None
    assert not info.ready
    assert info.detail == READINESS_CHECK_FAILED
    assert registry.list_ready() == ()


def test_resolve(provider_definitions, usda_provider) -> None:
    registry = ProviderRegistry.build(provider_definitions)

    assert registry.resolve("usda") is usda_provider
    assert registry.resolve("USDA") is usda_provider

    with pytest.raises(ProviderNotFoundError) as unknown:
        registry.resolve("nutritionix")
    assert unknown.value.name == "nutritionix"
    assert unknown.value.detail is None

    with pytest.raises(ProviderNotFoundError) as not_ready:
        registry.resolve("fatsecret")
    assert not_ready.value.detail == (
        "Missing FATSECRET_CLIENT_ID, FATSECRET_CLIENT_SECRET"
    )


def test_canonical_name_is_case_insensitive(provider_definitions) -> None:
    registry = ProviderRegistry.build(provider_definitions)

    assert registry.canonical_name(" textonly ") == "textOnly"
    assert registry.canonical_name("unknown") is None


def test_preferred_order_skips_unknown_and_not_ready(provider_definitions) -> None:
    registry = ProviderRegistry.build(provider_definitions)

    ordered = registry.preferred_order(["nutritionix", "fatsecret", "usda"])

    assert [info.name for info in ordered] == ["usda", "textOnly"]


def test_close_closes_constructed_adapters() -> None:
    ready = FakeProvider(name="ready")
    not_ready = FakeProvider(name="notReady", ready=False)
    registry = ProviderRegistry.build([definition_for(ready), definition_for(not_ready)])

    asyncio.run(registry.close())

    assert ready.closed
    assert not_ready.closed
