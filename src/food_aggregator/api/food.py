"""Production food search endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Header, HTTPException, Query, Request

from food_aggregator.api.common import build_search_request, run_until_disconnected
from food_aggregator.api.models import FoodSearchResponse

if TYPE_CHECKING:
    from food_aggregator.containers import AppContainer

router = APIRouter(prefix="/food", tags=["food"])


@router.get(
    "/search",
    response_model=FoodSearchResponse,
    response_model_exclude_none=True,
)
async def search_food(  # noqa: PLR0913
    request: Request,
    q: str | None = None,
    query: str | None = None,
    barcode: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=50, alias="pageSize"),
    grams: float | None = None,
    lc: str | None = None,
    accept_language: str | None = Header(default=None),
) -> FoodSearchResponse:
    """Search the preferred provider by text, or look up a barcode."""
    if (q or query or "").strip() and (barcode or "").strip():
        raise HTTPException(
            status_code=400, detail="Provide either a search query or a barcode."
        )
    search_request = build_search_request(
        q=q,
        query=query,
        barcode=barcode,
        page=page,
        page_size=page_size,
        grams=grams,
        include_incomplete=False,
        lc=lc,
        accept_language=accept_language,
    )
    container: AppContainer = request.app.state.container
    result = await run_until_disconnected(
        request, container.search_service.search(search_request)
    )
    return FoodSearchResponse.from_domain(result)
