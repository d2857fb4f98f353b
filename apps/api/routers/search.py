"""Catalog search, suggestion and trending-search router."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_viewer
from routers.rate_limit import rate_limit
from services.search import search_catalog_service
from services.search_analytics import (
    record_search_analytic,
    search_suggestions_service,
    trending_searches_service,
)
from services.search_cache import SearchCache, get_search_cache
from services.viewer import Viewer

router = APIRouter()


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None


class NumericBounds(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class SearchFilters(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    categories: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    premium: Optional[bool] = None
    featured: Optional[bool] = None
    verified: Optional[bool] = None
    date_range: Optional[DateRange] = Field(default=None, alias="dateRange")
    numeric_ranges: Optional[Dict[str, NumericBounds]] = Field(default=None, alias="numericRanges")


class SearchRequest(BaseModel):
    query: str = ""
    filters: Optional[SearchFilters] = None
    facets: bool = False
    # Bounds are checked by the service so errors name the field and constraint.
    page: Optional[int] = None
    limit: Optional[int] = None
    sort: Optional[str] = None


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def _run_search(
    payload: Dict[str, Any],
    request: Request,
    background_tasks: BackgroundTasks,
    viewer: Viewer,
    db: AsyncSession,
    cache: SearchCache,
) -> Dict[str, Any]:
    result = await search_catalog_service(payload=payload, viewer=viewer, db=db, cache=cache)
    background_tasks.add_task(
        record_search_analytic,
        query=str(payload.get("query") or ""),
        filters=payload.get("filters"),
        sort=result["searchInfo"]["sort"],
        user_id=viewer.user_id,
        ip_address=_client_ip(request),
        results_count=result["pagination"]["total"],
    )
    return result


@router.post("")
async def search_catalog(
    body: SearchRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    _rate_limit: None = Depends(rate_limit("search", limit=120, window_seconds=60)),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    payload = body.model_dump(by_alias=True, exclude_none=True)
    return await _run_search(payload, request, background_tasks, viewer, db, cache)


@router.get("")
async def search_catalog_get(
    request: Request,
    background_tasks: BackgroundTasks,
    q: str = Query(default=""),
    categories: Optional[str] = Query(default=None),
    tags: Optional[str] = Query(default=None),
    premium: Optional[bool] = Query(default=None),
    featured: Optional[bool] = Query(default=None),
    verified: Optional[bool] = Query(default=None),
    date_from: Optional[str] = Query(default=None, alias="dateFrom"),
    date_to: Optional[str] = Query(default=None, alias="dateTo"),
    facets: bool = Query(default=False),
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    sort: Optional[str] = Query(default=None),
    _rate_limit: None = Depends(rate_limit("search", limit=120, window_seconds=60)),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    """Query-string form of the search; lists are comma-separated."""
    filters: Dict[str, Any] = {
        "categories": categories,
        "tags": tags,
        "premium": premium,
        "featured": featured,
        "verified": verified,
    }
    if date_from or date_to:
        filters["dateRange"] = {"from": date_from, "to": date_to}
    payload = {
        "query": q,
        "filters": {key: value for key, value in filters.items() if value is not None},
        "facets": facets,
        "page": page,
        "limit": limit,
        "sort": sort,
    }
    return await _run_search(payload, request, background_tasks, viewer, db, cache)


@router.get("/suggestions")
async def search_suggestions(
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(default=10, ge=1, le=20),
    _rate_limit: None = Depends(rate_limit("search_suggestions", limit=300, window_seconds=60)),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    return await search_suggestions_service(query=q, limit=limit, db=db, cache=cache)


@router.get("/trending")
async def trending_searches(
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    return await trending_searches_service(viewer=viewer, db=db, cache=cache)
