"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from food_aggregator.adapters.fatsecret_client import HttpxFatSecretProvider
from food_aggregator.adapters.open_food_facts_client import HttpxOpenFoodFactsProvider
from food_aggregator.adapters.usda_client import HttpxUsdaProvider
from food_aggregator.app_logging import configure_logging
from food_aggregator.config import Settings, parse_provider_order
from food_aggregator.services.comparison import ProviderComparisonService
from food_aggregator.services.registry import ProviderDefinition, ProviderRegistry
from food_aggregator.services.search import FoodSearchService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    registry: ProviderRegistry
    search_service: FoodSearchService
    comparison_service: ProviderComparisonService
    close_resources: Callable[[], Awaitable[None]]


def provider_definitions(settings: Settings) -> list[ProviderDefinition]:
    """Known providers in registry order."""
    off_timeout = settings.off_timeout_seconds or None
    return [
        ProviderDefinition(
            name=HttpxFatSecretProvider.name,
            label=HttpxFatSecretProvider.label,
            supports_barcode_lookup=HttpxFatSecretProvider.supports_barcode_lookup,
            factory=lambda: HttpxFatSecretProvider.create(
                client_id=settings.fatsecret_client_id or "",
                client_secret=settings.fatsecret_client_secret or "",
                base_url=settings.fatsecret_base_url,
                auth_url=settings.fatsecret_auth_url,
            ),
            required_settings={
                "FATSECRET_CLIENT_ID": settings.fatsecret_client_id,
                "FATSECRET_CLIENT_SECRET": settings.fatsecret_client_secret,
            },
        ),
        ProviderDefinition(
            name=HttpxUsdaProvider.name,
            label=HttpxUsdaProvider.label,
            supports_barcode_lookup=HttpxUsdaProvider.supports_barcode_lookup,
            factory=lambda: HttpxUsdaProvider.create(
                api_key=settings.usda_api_key or "",
                base_url=settings.usda_base_url,
            ),
            required_settings={"USDA_API_KEY": settings.usda_api_key},
        ),
        ProviderDefinition(
            name=HttpxOpenFoodFactsProvider.name,
            label=HttpxOpenFoodFactsProvider.label,
            supports_barcode_lookup=HttpxOpenFoodFactsProvider.supports_barcode_lookup,
            factory=lambda: HttpxOpenFoodFactsProvider.create(
                base_url=settings.off_base_url,
                search_mode=settings.off_search_mode,
                request_timeout_seconds=off_timeout,
            ),
        ),
    ]


def build_container(
    settings: Settings | None = None,
    definitions: list[ProviderDefinition] | None = None,
) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    configure_logging(resolved_settings.log_level)
    registry = ProviderRegistry.build(
        definitions
        if definitions is not None
        else provider_definitions(resolved_settings)
    )
    search_service = FoodSearchService(
        registry=registry,
        provider_order=parse_provider_order(resolved_settings.food_data_providers),
        timeout_seconds=resolved_settings.provider_timeout_seconds,
    )
    comparison_service = ProviderComparisonService(
        registry=registry,
        timeout_seconds=resolved_settings.comparison_timeout_seconds,
    )

    async def close_resources() -> None:
        await registry.close()

    return AppContainer(
        settings=resolved_settings,
        registry=registry,
        search_service=search_service,
        comparison_service=comparison_service,
        close_resources=close_resources,
    )
