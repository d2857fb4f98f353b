"""Interaction tracking and item ranking router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_authenticated_viewer, get_viewer, require_admin
from routers.rate_limit import rate_limit
from services.catalog import validate_code
from services.interaction_analytics import (
    DEFAULT_TIMEFRAME,
    analytics_dashboard_service,
    item_stats_service,
    popular_items_service,
    track_event_service,
    trending_items_service,
)
from services.search_cache import SearchCache, get_search_cache
from services.viewer import Viewer

router = APIRouter()


class TrackEventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sref_code: Optional[str] = Field(default=None, alias="srefCode")
    referrer: Optional[str] = Field(default=None, max_length=500)


class TrackEventRequest(BaseModel):
    event: str
    data: Optional[TrackEventData] = None


@router.post("/track")
async def track_event(
    body: TrackEventRequest,
    request: Request,
    _rate_limit: None = Depends(rate_limit("analytics_track", limit=600, window_seconds=60)),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await track_event_service(
        event=body.event,
        data=body.data.model_dump(by_alias=True, exclude_none=True) if body.data else None,
        viewer=viewer,
        db=db,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.get("/popular")
async def popular_items(
    timeframe: str = Query(default=DEFAULT_TIMEFRAME),
    limit: int = Query(default=20, ge=1, le=100),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await popular_items_service(viewer=viewer, db=db, timeframe=timeframe, limit=limit)


@router.get("/trending")
async def trending_items(
    limit: int = Query(default=20, ge=1, le=50),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await trending_items_service(viewer=viewer, db=db, limit=limit)


@router.get("/dashboard")
async def analytics_dashboard(
    viewer: Viewer = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    return await analytics_dashboard_service(viewer=viewer, db=db, cache=cache)


@router.get("/stats/{code}")
async def item_stats(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    """Event breakdown for one code; submitter or admin only."""
    return await item_stats_service(code=validate_code(code), viewer=viewer, db=db, cache=cache)
