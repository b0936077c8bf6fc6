"""ASGI entrypoint for the food aggregation API."""

from food_aggregator.api.app import create_app
from food_aggregator.containers import build_container

app = create_app(build_container())
