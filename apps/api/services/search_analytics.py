"""Search logging plus the suggestion and trending-search read models."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session_maker
from models.catalog_item import STATUS_ACTIVE, CatalogItem
from models.category import Category
from models.interaction_event import EVENT_VIEW, InteractionEvent
from models.search_analytic import SearchAnalytic
from models.tag import Tag
from services.catalog_payloads import summary_load_options
from services.search_cache import SearchCache, build_cache_key
from services.viewer import Viewer

logger = logging.getLogger(__name__)

POPULAR_QUERY_WINDOW = timedelta(days=30)
TRENDING_QUERY_WINDOW = timedelta(hours=24)


async def record_search_analytic(
    *,
    query: str,
    filters: Optional[Dict[str, Any]],
    sort: Optional[str],
    user_id: Optional[str],
    ip_address: Optional[str],
    results_count: Optional[int],
) -> None:
    """Persist one search log row on its own session; never raises."""
    try:
        async with async_session_maker() as db:
            db.add(
                SearchAnalytic(
                    query=query,
                    filters_json=filters or None,
                    sort=sort,
                    user_id=user_id,
                    ip_address=ip_address,
                    results_count=results_count,
                )
            )
            await db.commit()
    except Exception as exc:
        logger.warning("search_analytic_write_failed query=%s user=%s: %s", query, user_id or "anonymous", exc)


async def _popular_queries(
    db: AsyncSession,
    *,
    since: datetime,
    contains: Optional[str] = None,
    only_with_results: bool = False,
    limit: int,
) -> List[str]:
    hits = func.count(SearchAnalytic.id).label("hits")
    stmt = select(SearchAnalytic.query, hits).where(SearchAnalytic.created_at >= since)
    if contains:
        stmt = stmt.where(SearchAnalytic.query.icontains(contains, autoescape=True))
    if only_with_results:
        stmt = stmt.where(SearchAnalytic.results_count > 0)
    result = await db.execute(
        stmt.group_by(SearchAnalytic.query).order_by(hits.desc(), SearchAnalytic.query.asc()).limit(limit)
    )
    return [row.query for row in result.all()]


async def search_suggestions_service(
    *,
    query: str,
    limit: int,
    db: AsyncSession,
    cache: Optional[SearchCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Typeahead suggestions from titles, tags, categories and past searches."""
    text = query.strip()
    cache = cache or SearchCache()
    cache_key = build_cache_key("suggestions", {"q": text.lower(), "limit": limit})
    cached = await cache.get_json(cache_key)
    if cached is not None:
        return cached

    current = now or datetime.now(timezone.utc)
    titles_result = await db.execute(
        select(CatalogItem.title)
        .where(
            CatalogItem.status == STATUS_ACTIVE,
            CatalogItem.premium.is_(False),
            CatalogItem.title.icontains(text, autoescape=True),
        )
        .order_by(CatalogItem.popularity_score.desc(), CatalogItem.id.asc())
        .limit(min(limit, 5))
    )
    tags_result = await db.execute(
        select(Tag.name)
        .where(Tag.name.icontains(text, autoescape=True))
        .order_by(Tag.usage_count.desc(), Tag.name.asc())
        .limit(min(limit, 5))
    )
    categories_result = await db.execute(
        select(Category.name, Category.slug, Category.icon)
        .where(
            or_(
                Category.name.icontains(text, autoescape=True),
                Category.slug.icontains(text, autoescape=True),
            )
        )
        .order_by(Category.sref_count.desc(), Category.name.asc())
        .limit(3)
    )
    titles = [row.title for row in titles_result.all()]
    tag_names = [row.name for row in tags_result.all()]
    categories = [{"name": row.name, "slug": row.slug, "icon": row.icon} for row in categories_result.all()]
    popular = await _popular_queries(db, since=current - POPULAR_QUERY_WINDOW, contains=text, limit=3)

    merged: Dict[str, None] = {}
    for suggestion in [*titles, *tag_names, *popular]:
        merged.setdefault(suggestion, None)

    response = {
        "suggestions": list(merged)[:limit],
        "popular": popular,
        "categories": categories,
        "tags": [{"name": name} for name in tag_names],
    }
    await cache.set_json(cache_key, response, settings.SUGGESTIONS_CACHE_TTL_SECONDS)
    return response


async def trending_searches_service(
    *,
    viewer: Viewer,
    db: AsyncSession,
    cache: Optional[SearchCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Most frequent successful queries and most viewed items of the last day."""
    cache = cache or SearchCache()
    cache_key = build_cache_key("trending_searches", {"premium_visible": viewer.authenticated})
    cached = await cache.get_json(cache_key)
    if cached is not None:
        return cached

    since = (now or datetime.now(timezone.utc)) - TRENDING_QUERY_WINDOW
    searches = await _popular_queries(db, since=since, only_with_results=True, limit=10)

    recently_viewed = (
        select(InteractionEvent.id)
        .where(
            InteractionEvent.item_id == CatalogItem.id,
            InteractionEvent.event_type == EVENT_VIEW,
            InteractionEvent.created_at >= since,
        )
        .exists()
    )
    stmt = select(CatalogItem).where(CatalogItem.status == STATUS_ACTIVE, recently_viewed)
    if not viewer.authenticated:
        stmt = stmt.where(CatalogItem.premium.is_(False))
    result = await db.execute(
        stmt.order_by(CatalogItem.views.desc(), CatalogItem.id.asc()).limit(6).options(*summary_load_options())
    )
    srefs = []
    for item in result.scalars().all():
        thumbnail = item.images[0].thumbnail_url if item.images else None
        srefs.append({"id": item.id, "code": item.code, "title": item.title, "slug": item.slug, "thumbnailUrl": thumbnail})

    response = {"searches": searches, "srefs": srefs}
    await cache.set_json(cache_key, response, settings.TRENDING_SEARCHES_CACHE_TTL_SECONDS)
    return response
