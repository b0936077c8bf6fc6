"""Diagnostic fan-out that queries several providers side by side."""

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from food_aggregator.adapters.food_provider import unsupported_barcode_lookup
from food_aggregator.domain.food import (
    ComparisonEntry,
    FoodSearchRequest,
    NormalizedFoodItem,
    ProviderInfo,
)
from food_aggregator.services.registry import ProviderRegistry

_logger = logging.getLogger(__name__)


@dataclass
class ProviderComparisonService:
    """Runs one request against every selected provider concurrently."""

    registry: ProviderRegistry
    timeout_seconds: float = 8

    def select(self, names: Sequence[str] | None) -> list[ProviderInfo]:
        """Resolve requested names, dropping unknown ones.

        An empty or fully unknown selection means every ready provider.
        """
        selected: list[ProviderInfo] = []
        for name in names or ():
            info = self.registry.get_info(name)
            if info is not None and info not in selected:
                selected.append(info)
        return selected or list(self.registry.list_ready())

    async def compare(
        self, providers: Sequence[ProviderInfo], request: FoodSearchRequest
    ) -> list[ComparisonEntry]:
        """Return one entry per provider, in the order given."""
        entries: list[ComparisonEntry | None] = [None] * len(providers)
        tasks: dict[int, asyncio.Task[ComparisonEntry]] = {}
        async with asyncio.TaskGroup() as group:
            for index, info in enumerate(providers):
                if not info.ready:
                    entries[index] = ComparisonEntry(
                        info=info, error=info.detail or "Provider is not ready."
                    )
                    continue
                tasks[index] = group.create_task(self._call(info, request))
        for index, task in tasks.items():
            entries[index] = task.result()
        return [entry for entry in entries if entry is not None]

    async def _call(
        self, info: ProviderInfo, request: FoodSearchRequest
    ) -> ComparisonEntry:
        started = time.perf_counter()
        items: list[NormalizedFoodItem] = []
        error: str | None = None
        try:
            async with asyncio.timeout(self.timeout_seconds):
                items = await self._dispatch(info, request)
        except TimeoutError:
            error = f"Timed out after {float(self.timeout_seconds)}s"
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
        elapsed_ms = round((time.perf_counter() - started) * 1000)
        if error is not None:
            _logger.warning("Provider comparison failed for %s: %s", info.name, error)
        return ComparisonEntry(
            info=info, items=items, error=error, elapsed_ms=elapsed_ms
        )

    async def _dispatch(
        self, info: ProviderInfo, request: FoodSearchRequest
    ) -> list[NormalizedFoodItem]:
        provider = self.registry.resolve(info.name)
        if request.barcode:
            if not info.supports_barcode_lookup:
                raise unsupported_barcode_lookup(info.name)
            return await provider.lookup_barcode(request)
        return await provider.search(request)
