"""Facet aggregator: category, tag and premium counts for filter UIs."""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.catalog_item import CatalogItem
from models.category import Category, item_categories
from models.tag import Tag, item_tags
from services.search_filters import SearchCriteria, build_search_predicate


async def category_facets(criteria: SearchCriteria, db: AsyncSession, *, full_text: bool = False) -> List[Dict[str, Any]]:
    predicate = build_search_predicate(criteria, full_text=full_text, exclude=("categories",))
    count = func.count(CatalogItem.id.distinct()).label("count")
    result = await db.execute(
        select(Category.slug, Category.name, count)
        .select_from(Category)
        .join(item_categories, item_categories.c.category_id == Category.id)
        .join(CatalogItem, CatalogItem.id == item_categories.c.item_id)
        .where(predicate)
        .group_by(Category.id, Category.slug, Category.name)
        .order_by(desc("count"), Category.name.asc())
        .limit(settings.FACET_BUCKET_LIMIT)
    )
    return [{"slug": row.slug, "name": row.name, "count": int(row.count)} for row in result.all()]


async def tag_facets(criteria: SearchCriteria, db: AsyncSession, *, full_text: bool = False) -> List[Dict[str, Any]]:
    predicate = build_search_predicate(criteria, full_text=full_text, exclude=("tags",))
    count = func.count(CatalogItem.id.distinct()).label("count")
    result = await db.execute(
        select(Tag.name, count)
        .select_from(Tag)
        .join(item_tags, item_tags.c.tag_id == Tag.id)
        .join(CatalogItem, CatalogItem.id == item_tags.c.item_id)
        .where(predicate)
        .group_by(Tag.id, Tag.name)
        .order_by(desc("count"), Tag.name.asc())
        .limit(settings.FACET_BUCKET_LIMIT)
    )
    return [{"name": row.name, "count": int(row.count)} for row in result.all()]


async def premium_split(criteria: SearchCriteria, db: AsyncSession, *, full_text: bool = False) -> Dict[str, int]:
    """Exactly two buckets. The caller's premium restriction is not applied here."""
    predicate = build_search_predicate(criteria, full_text=full_text, exclude=("premium",))
    result = await db.execute(
        select(CatalogItem.premium, func.count(CatalogItem.id))
        .where(predicate)
        .group_by(CatalogItem.premium)
    )
    split = {"free": 0, "premium": 0}
    for is_premium, count in result.all():
        split["premium" if is_premium else "free"] += int(count)
    return split


async def compute_facets(criteria: SearchCriteria, db: AsyncSession, *, full_text: bool = False) -> Dict[str, Any]:
    # One session cannot run statements concurrently, so the passes are sequential.
    return {
        "categories": await category_facets(criteria, db, full_text=full_text),
        "tags": await tag_facets(criteria, db, full_text=full_text),
        "premiumSplit": await premium_split(criteria, db, full_text=full_text),
    }
