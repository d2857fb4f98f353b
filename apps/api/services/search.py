"""Catalog search service: filter, rank, paginate and optionally facet."""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.catalog_item import CatalogItem
from services.catalog_payloads import catalog_item_summary, load_viewer_reactions, summary_load_options
from services.errors import TransientStorageError, ValidationError
from services.search_cache import SearchCache, build_cache_key
from services.search_facets import compute_facets
from services.search_filters import SearchCriteria, build_search_criteria, build_search_predicate
from services.search_ranking import (
    SORT_TRENDING,
    build_view_windows_subquery,
    compute_growth_rate,
    order_by_for,
    resolve_sort_key,
    trending_order_by,
)
from services.viewer import Viewer

logger = logging.getLogger(__name__)

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20


def _bounded_int(
    payload: Mapping[str, Any],
    key: str,
    *,
    default: int,
    minimum: int,
    maximum: Optional[int] = None,
) -> int:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer", field=key, constraint="integer")
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer", field=key, constraint="integer") from exc
    if number < minimum:
        raise ValidationError(f"{key} must be >= {minimum}", field=key, constraint=f">= {minimum}")
    if maximum is not None and number > maximum:
        raise ValidationError(
            f"{key} must be between {minimum} and {maximum}",
            field=key,
            constraint=f"{minimum}..{maximum}",
        )
    return number


def supports_full_text(db: AsyncSession) -> bool:
    """Full-text matching needs PostgreSQL's tsvector support."""
    return db.get_bind().dialect.name == "postgresql"


def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


async def _fetch_ranked_page(
    criteria: SearchCriteria,
    sort_key: str,
    page: int,
    limit: int,
    db: AsyncSession,
    *,
    full_text: bool,
) -> Tuple[int, List[CatalogItem]]:
    predicate = build_search_predicate(criteria, full_text=full_text)
    total = await db.scalar(select(func.count(CatalogItem.id)).where(predicate))
    result = await db.execute(
        select(CatalogItem)
        .where(predicate)
        .order_by(*order_by_for(sort_key))
        .offset((page - 1) * limit)
        .limit(limit)
        .options(*summary_load_options())
    )
    return int(total or 0), list(result.scalars().all())


async def _fetch_trending_page(
    criteria: SearchCriteria,
    page: int,
    limit: int,
    db: AsyncSession,
    *,
    full_text: bool,
    now: Optional[datetime],
) -> Tuple[int, List[Tuple[CatalogItem, int, int]]]:
    windows = build_view_windows_subquery(now)
    condition = and_(
        build_search_predicate(criteria, full_text=full_text),
        windows.c.recent_views > 0,
    )
    total = await db.scalar(
        select(func.count(CatalogItem.id))
        .select_from(CatalogItem)
        .join(windows, windows.c.item_id == CatalogItem.id)
        .where(condition)
    )
    result = await db.execute(
        select(CatalogItem, windows.c.recent_views, windows.c.prior_views)
        .join(windows, windows.c.item_id == CatalogItem.id)
        .where(condition)
        .order_by(*trending_order_by(windows))
        .offset((page - 1) * limit)
        .limit(limit)
        .options(*summary_load_options())
    )
    rows = [(item, int(recent or 0), int(prior or 0)) for item, recent, prior in result.all()]
    return int(total or 0), rows


async def search_catalog_service(
    *,
    payload: Mapping[str, Any],
    viewer: Viewer,
    db: AsyncSession,
    cache: Optional[SearchCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Run one catalog search.

    Validation and authorization failures are raised before any storage call.
    Storage failures are logged with the request context and re-raised as a
    generic ``TransientStorageError``.
    """
    page = _bounded_int(payload, "page", default=DEFAULT_PAGE, minimum=1)
    limit = _bounded_int(payload, "limit", default=DEFAULT_LIMIT, minimum=1, maximum=settings.SEARCH_MAX_LIMIT)
    sort_key = resolve_sort_key(payload.get("sort"))
    include_facets = bool(payload.get("facets"))
    criteria = build_search_criteria(payload, viewer)

    cache = cache or SearchCache()
    cache_key = build_cache_key(
        "search",
        {
            "criteria": criteria.cache_fingerprint(),
            "sort": sort_key,
            "page": page,
            "limit": limit,
            "facets": include_facets,
            "user": viewer.user_id or "anonymous",
        },
    )
    cached = await cache.get_json(cache_key)
    if cached is not None:
        logger.info("catalog_search_cache_hit user=%s query=%s", viewer.user_id or "anonymous", criteria.text)
        return cached

    full_text = supports_full_text(db)
    try:
        if sort_key == SORT_TRENDING:
            total, trending_rows = await _fetch_trending_page(
                criteria, page, limit, db, full_text=full_text, now=now
            )
            items = [row[0] for row in trending_rows]
        else:
            total, items = await _fetch_ranked_page(criteria, sort_key, page, limit, db, full_text=full_text)
            trending_rows = []
        facets = await compute_facets(criteria, db, full_text=full_text) if include_facets else None
        reactions = await load_viewer_reactions(viewer, [item.id for item in items], db)
    except SQLAlchemyError as exc:
        logger.exception(
            "catalog_search_storage_failure query=%s filters=%s user=%s",
            criteria.text,
            criteria.cache_fingerprint(),
            viewer.user_id or "anonymous",
        )
        raise TransientStorageError() from exc

    results = [catalog_item_summary(item, reactions) for item in items]
    for summary, (_, recent, prior) in zip(results, trending_rows):
        summary["recentViews"] = recent
        summary["previousViews"] = prior
        summary["growthRate"] = compute_growth_rate(recent, prior)

    response: Dict[str, Any] = {
        "results": results,
        "pagination": build_pagination(page, limit, total),
        "searchInfo": {"query": criteria.text, "terms": list(criteria.terms), "sort": sort_key},
    }
    if facets is not None:
        response["facets"] = facets

    if results:
        await cache.set_json(cache_key, response, settings.SEARCH_CACHE_TTL_SECONDS)

    logger.info(
        "catalog_search_run user=%s query=%s sort=%s page=%s limit=%s total=%s",
        viewer.user_id or "anonymous",
        criteria.text,
        sort_key,
        page,
        limit,
        total,
    )
    return response
