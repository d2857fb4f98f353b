"""Recompute denormalized catalog counters (category/tag counts, popularity)."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import async_session_maker
from models.catalog_item import STATUS_ACTIVE, CatalogItem
from models.category import Category, item_categories
from models.tag import Tag, item_tags

logger = logging.getLogger(__name__)

# Rows are not loaded into the session; skip in-memory synchronization.
_BULK = {"synchronize_session": False}


def _active_count(join_table, owner_key, owner_id):
    """Correlated count of ACTIVE items linked to the row being updated."""
    return (
        select(func.count(join_table.c.item_id))
        .select_from(join_table)
        .join(CatalogItem, CatalogItem.id == join_table.c.item_id)
        .where(owner_key == owner_id)
        .where(CatalogItem.status == STATUS_ACTIVE)
        .scalar_subquery()
    )


async def _refresh(db: AsyncSession) -> Dict[str, int]:
    category_count = _active_count(item_categories, item_categories.c.category_id, Category.id)
    tag_count = _active_count(item_tags, item_tags.c.tag_id, Tag.id)
    categories = await db.execute(update(Category).values(sref_count=category_count), execution_options=_BULK)
    tags = await db.execute(update(Tag).values(usage_count=tag_count), execution_options=_BULK)
    score = (
        CatalogItem.views * settings.POPULARITY_VIEW_WEIGHT
        + CatalogItem.likes * settings.POPULARITY_LIKE_WEIGHT
        + CatalogItem.favorites * settings.POPULARITY_FAVORITE_WEIGHT
        + CatalogItem.downloads * settings.POPULARITY_DOWNLOAD_WEIGHT
    )
    items = await db.execute(update(CatalogItem).values(popularity_score=score), execution_options=_BULK)
    await db.commit()
    return {
        "categories": int(categories.rowcount or 0),
        "tags": int(tags.rowcount or 0),
        "items": int(items.rowcount or 0),
    }


async def refresh_catalog_counters_service(db: Optional[AsyncSession] = None) -> Dict[str, int]:
    """Refresh ``sref_count``, ``usage_count`` and ``popularity_score``.

    Uses the given session, or opens one when running outside a request.
    """
    if db is not None:
        result = await _refresh(db)
    else:
        async with async_session_maker() as session:
            result = await _refresh(session)
    logger.info(
        "catalog_counters_refreshed categories=%s tags=%s items=%s",
        result["categories"],
        result["tags"],
        result["items"],
    )
    return result


def refresh_catalog_counters_job() -> Dict[str, int]:
    """RQ worker entrypoint for the counter refresh."""
    return asyncio.run(refresh_catalog_counters_service())
