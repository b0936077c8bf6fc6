"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")
_PROTECTED_ENVIRONMENTS = {"production", "staging"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    environment: str = _ENVIRONMENT
    usda_api_key: str | None = None
    usda_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    fatsecret_client_id: str | None = None
    fatsecret_client_secret: str | None = None
    fatsecret_base_url: str = "https://platform.fatsecret.com/rest/server.api"
    fatsecret_auth_url: str = "https://oauth.fatsecret.com/connect/token"
    off_base_url: str = "https://world.openfoodfacts.org"
    off_search_mode: Literal["auto", "v2", "legacy"] = "auto"
    off_timeout_seconds: float = 8
    food_data_providers: str = "fatsecret,usda,openFoodFacts"
    provider_timeout_seconds: float = 8
    comparison_timeout_seconds: float = 8
    enable_dev_routes: bool | None = None
    dev_token: str | None = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def dev_routes_enabled(self) -> bool:
        """Dev routes default to on everywhere except production and staging."""
        if self.enable_dev_routes is not None:
            return self.enable_dev_routes
        return self.environment.strip().lower() not in _PROTECTED_ENVIRONMENTS


def parse_provider_order(raw: str | None) -> list[str]:
    """Parse the comma separated provider preference list."""
    if raw is None:
        return []
    names: list[str] = []
    for chunk in raw.split(","):
        value = chunk.strip()
        if value and value not in names:
            names.append(value)
    return names
