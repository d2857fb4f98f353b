"""Catalog item router: listing, detail, submission, moderation and reactions."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.item_reaction import REACTION_FAVORITE, REACTION_LIKE
from routers.auth_scope import get_authenticated_viewer, get_viewer, require_admin
from routers.rate_limit import rate_limit
from services.catalog import (
    approve_item_service,
    build_browse_payload,
    delete_item_service,
    get_item_detail_service,
    set_reaction_service,
    submit_item_service,
)
from services.search import search_catalog_service
from services.search_cache import SearchCache, get_search_cache
from services.viewer import Viewer

router = APIRouter()


class SubmitItemRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    prompt_examples: List[str] = Field(default_factory=list, alias="promptExamples")
    category_ids: List[str] = Field(default_factory=list, alias="categoryIds")
    tags: List[str] = Field(default_factory=list)
    featured: bool = False
    premium: bool = False
    verified: bool = False


@router.get("")
async def list_items(
    search: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    tags: Optional[str] = Query(default=None),
    featured: Optional[bool] = Query(default=None),
    premium: Optional[bool] = Query(default=None),
    sort: Optional[str] = Query(default=None),
    time_range: Optional[str] = Query(default=None, alias="timeRange"),
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    payload = build_browse_payload(
        search=search,
        category=category,
        tags=tags,
        featured=featured,
        premium=premium,
        sort=sort,
        time_range=time_range,
        page=page,
        limit=limit,
    )
    return await search_catalog_service(payload=payload, viewer=viewer, db=db, cache=cache)


@router.get("/{code}")
async def get_item(
    code: str,
    request: Request,
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await get_item_detail_service(
        code=code,
        viewer=viewer,
        db=db,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("", status_code=201)
async def submit_item(
    body: SubmitItemRequest,
    _rate_limit: None = Depends(rate_limit("sref_submit", limit=30, window_seconds=3600)),
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await submit_item_service(viewer=viewer, payload=body.model_dump(), db=db)


@router.post("/{code}/approve")
async def approve_item(
    code: str,
    viewer: Viewer = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await approve_item_service(code=code, viewer=viewer, db=db)


@router.delete("/{code}")
async def delete_item(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await delete_item_service(code=code, viewer=viewer, db=db)


@router.post("/{code}/like")
async def like_item(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await set_reaction_service(code=code, kind=REACTION_LIKE, active=True, viewer=viewer, db=db)


@router.delete("/{code}/like")
async def unlike_item(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await set_reaction_service(code=code, kind=REACTION_LIKE, active=False, viewer=viewer, db=db)


@router.post("/{code}/favorite")
async def favorite_item(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await set_reaction_service(code=code, kind=REACTION_FAVORITE, active=True, viewer=viewer, db=db)


@router.delete("/{code}/favorite")
async def unfavorite_item(
    code: str,
    viewer: Viewer = Depends(get_authenticated_viewer),
    db: AsyncSession = Depends(get_db),
):
    return await set_reaction_service(code=code, kind=REACTION_FAVORITE, active=False, viewer=viewer, db=db)
