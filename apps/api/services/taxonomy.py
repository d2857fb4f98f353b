"""Category and tag browsing."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.category import Category
from models.tag import Tag
from services.errors import NotFoundError


def _category_payload(category: Category) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "icon": category.icon,
        "color": category.color,
        "featured": bool(category.featured),
        "sortOrder": int(category.sort_order or 0),
        "srefCount": int(category.sref_count or 0),
    }


async def list_categories_service(*, db: AsyncSession, featured: Optional[bool] = None) -> List[Dict[str, Any]]:
    stmt = select(Category)
    if featured is not None:
        stmt = stmt.where(Category.featured.is_(featured))
    result = await db.execute(
        stmt.order_by(Category.featured.desc(), Category.sort_order.asc(), Category.name.asc())
    )
    return [_category_payload(category) for category in result.scalars().all()]


async def get_category_service(*, slug: str, db: AsyncSession) -> Dict[str, Any]:
    """Raise ``NotFoundError`` for an unknown slug instead of returning an empty listing."""
    result = await db.execute(select(Category).where(Category.slug == slug))
    category = result.scalar_one_or_none()
    if not category:
        raise NotFoundError("Category")
    return _category_payload(category)


async def list_tags_service(
    *,
    db: AsyncSession,
    popular: bool = False,
    search: Optional[str] = None,
    limit: int = 50,
) -> List[Dict[str, Any]]:
    stmt = select(Tag)
    if popular:
        stmt = stmt.where(Tag.usage_count > 0)
    if search:
        stmt = stmt.where(Tag.name.icontains(search.strip().lower(), autoescape=True))
    if popular:
        stmt = stmt.order_by(Tag.usage_count.desc(), Tag.name.asc())
    else:
        stmt = stmt.order_by(Tag.name.asc())
    result = await db.execute(stmt.limit(limit))
    return [
        {
            "id": tag.id,
            "name": tag.name,
            "slug": tag.slug,
            "color": tag.color,
            "usageCount": int(tag.usage_count or 0),
        }
        for tag in result.scalars().all()
    ]
