"""Category and tag browsing router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_viewer
from services.search import search_catalog_service
from services.search_cache import SearchCache, get_search_cache
from services.taxonomy import get_category_service, list_categories_service, list_tags_service
from services.viewer import Viewer

router = APIRouter()


@router.get("/categories")
async def list_categories(
    featured: Optional[bool] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return {"categories": await list_categories_service(db=db, featured=featured)}


@router.get("/categories/{slug}/sref")
async def list_category_items(
    slug: str,
    page: Optional[str] = Query(default=None),
    limit: Optional[str] = Query(default=None),
    sort: Optional[str] = Query(default=None),
    viewer: Viewer = Depends(get_viewer),
    db: AsyncSession = Depends(get_db),
    cache: SearchCache = Depends(get_search_cache),
):
    category = await get_category_service(slug=slug, db=db)
    payload = {
        "filters": {"categories": [category["slug"]]},
        "sort": sort or "popularity",
        "page": page,
        "limit": limit,
    }
    result = await search_catalog_service(payload=payload, viewer=viewer, db=db, cache=cache)
    result["category"] = category
    return result


@router.get("/tags")
async def list_tags(
    popular: bool = Query(default=False),
    search: Optional[str] = Query(default=None, max_length=50),
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return {"tags": await list_tags_service(db=db, popular=popular, search=search, limit=limit)}
