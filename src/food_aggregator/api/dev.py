"""Developer endpoints for comparing food providers side by side."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import (
    APIRouter,
    Depends,
    Header,
    HTTPException,
    Query,
    Request,
    status,
)

from food_aggregator.api.common import (
    build_search_request,
    parse_flag,
    parse_names,
    run_until_disconnected,
)
from food_aggregator.api.models import (
    ComparisonResponse,
    ComparisonResultModel,
    ProvidersResponse,
)

if TYPE_CHECKING:
    from food_aggregator.containers import AppContainer


def _get_dev_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.dev_token


async def require_dev_token(
    x_dev_token: str | None = Header(default=None),
    dev_token: str | None = Depends(_get_dev_token),
) -> None:
    """Ensure requests include the dev token when one is configured."""
    if dev_token and x_dev_token != dev_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


router = APIRouter(
    prefix="/dev", tags=["dev"], dependencies=[Depends(require_dev_token)]
)


@router.get(
    "/food/providers",
    response_model=ProvidersResponse,
    response_model_exclude_none=True,
)
async def list_providers(request: Request) -> ProvidersResponse:
    """Return readiness and capabilities for every known provider."""
    container: AppContainer = request.app.state.container
    return ProvidersResponse.from_domain(container.registry.list_all())


@router.get(
    "/food/search",
    response_model=ComparisonResponse,
    response_model_exclude_none=True,
)
async def compare_providers(  # noqa: PLR0913
    request: Request,
    providers: str | None = None,
    q: str | None = None,
    query: str | None = None,
    barcode: str | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=50, alias="pageSize"),
    grams: float | None = None,
    include_incomplete: str | None = Query(default=None, alias="includeIncomplete"),
    lc: str | None = None,
    accept_language: str | None = Header(default=None),
) -> ComparisonResponse:
    """Run the same request against several providers concurrently."""
    search_request = build_search_request(
        q=q,
        query=query,
        barcode=barcode,
        page=page,
        page_size=page_size,
        grams=grams,
        include_incomplete=parse_flag(include_incomplete, default=True),
        lc=lc,
        accept_language=accept_language,
    )
    container: AppContainer = request.app.state.container
    selected = container.comparison_service.select(parse_names(providers))
    if not selected:
        raise HTTPException(
            status_code=400, detail="No providers are configured for search."
        )
    entries = await run_until_disconnected(
        request, container.comparison_service.compare(selected, search_request)
    )
    return ComparisonResponse(
        query=search_request.query,
        barcode=search_request.barcode,
        results=[ComparisonResultModel.from_domain(entry) for entry in entries],
    )
