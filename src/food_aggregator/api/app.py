"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from food_aggregator.api.dev import router as dev_router
from food_aggregator.api.food import router as food_router
from food_aggregator.app_logging import configure_logging
from food_aggregator.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ready = [info.name for info in app.state.container.registry.list_ready()]
        logger.info("Food providers ready: %s", ", ".join(ready) or "none")
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(food_router)
    if container.settings.dev_routes_enabled:
        app.include_router(dev_router)
    else:
        logger.info(
            "Dev food routes disabled for environment %s",
            container.settings.environment,
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app
