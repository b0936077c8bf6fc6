"""Request parsing and disconnect handling shared by the food routes."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from fastapi import HTTPException, Request

from food_aggregator.domain.food import FoodSearchRequest
from food_aggregator.services.normalization import barcode_digits

MISSING_QUERY_DETAIL = "Provide a search query or barcode."
INVALID_BARCODE_DETAIL = "Barcode must contain only digits."
CLIENT_CLOSED_REQUEST = 499
_TRUTHY = {"true", "1", "yes"}

_logger = logging.getLogger(__name__)

T = TypeVar("T")


def language_code(lc: str | None, accept_language: str | None) -> str | None:
    """Prefer an explicit ``lc``, else the primary subtag of Accept-Language."""
    explicit = (lc or "").strip().lower()
    if explicit:
        return explicit
    if not accept_language:
        return None
    primary = accept_language.split(",")[0].strip().split(";")[0].split("-")[0]
    return primary.strip().lower() or None


def parse_flag(raw: str | None, default: bool) -> bool:
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def parse_names(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [name.strip() for name in raw.split(",") if name.strip()]


def build_search_request(  # noqa: PLR0913
    *,
    q: str | None,
    query: str | None,
    barcode: str | None,
    page: int,
    page_size: int,
    grams: float | None,
    include_incomplete: bool,
    lc: str | None,
    accept_language: str | None,
) -> FoodSearchRequest:
    """Validate the query/barcode pair and build an adapter request."""
    text = (q or query or "").strip() or None
    code = (barcode or "").strip() or None
    if text is None and code is None:
        raise HTTPException(status_code=400, detail=MISSING_QUERY_DETAIL)
    if code is not None:
        code = barcode_digits(code)
        if not code:
            raise HTTPException(status_code=400, detail=INVALID_BARCODE_DETAIL)
    return FoodSearchRequest(
        query=text,
        barcode=code,
        page=page,
        page_size=page_size,
        quantity_in_grams=grams,
        include_incomplete=include_incomplete,
        language_code=language_code(lc, accept_language),
    )


async def run_until_disconnected(
    request: Request, awaitable: Awaitable[T], poll_interval_seconds: float = 0.25
) -> T:
    """Await ``awaitable``, cancelling it if the client goes away first."""
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_interval_seconds)
            if done:
                return task.result()
            if await request.is_disconnected():
                _logger.info("Client disconnected, cancelling %s", request.url.path)
                task.cancel()
                await asyncio.wait({task})
                raise HTTPException(
                    status_code=CLIENT_CLOSED_REQUEST, detail="Client closed request."
                )
    finally:
        if not task.done():
            task.cancel()
