"""JSON payload shapes for catalog items returned by the API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from models.catalog_item import CatalogItem
from models.item_reaction import REACTION_FAVORITE, REACTION_LIKE, ItemReaction
from services.viewer import Viewer


def summary_load_options() -> List[Any]:
    """Eager loads needed by ``catalog_item_summary`` under an async session."""
    return [
        selectinload(CatalogItem.categories),
        selectinload(CatalogItem.tags),
        selectinload(CatalogItem.images),
    ]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _image_payload(image: Any) -> Dict[str, Any]:
    return {
        "id": image.id,
        "imageOrder": image.image_order,
        "imageUrl": image.image_url,
        "thumbnailUrl": image.thumbnail_url,
        "altText": image.alt_text,
        "width": image.width,
        "height": image.height,
        "format": image.format,
    }


def _category_payload(category: Any) -> Dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "icon": category.icon,
        "color": category.color,
    }


def _tag_payload(tag: Any) -> Dict[str, Any]:
    return {"id": tag.id, "name": tag.name, "slug": tag.slug}


def _interactions(item_id: str, reactions: Optional[Dict[str, Set[str]]]) -> Optional[Dict[str, bool]]:
    if reactions is None:
        return None
    kinds = reactions.get(item_id, set())
    return {"liked": REACTION_LIKE in kinds, "favorited": REACTION_FAVORITE in kinds}


def catalog_item_summary(
    item: CatalogItem,
    reactions: Optional[Dict[str, Set[str]]] = None,
) -> Dict[str, Any]:
    images = sorted(item.images or [], key=lambda image: image.image_order or 0)
    return {
        "id": item.id,
        "code": item.code,
        "slug": item.slug,
        "title": item.title,
        "description": item.description,
        "featured": bool(item.featured),
        "premium": bool(item.premium),
        "verified": bool(item.verified),
        "popularityScore": float(item.popularity_score or 0.0),
        "views": int(item.views or 0),
        "likes": int(item.likes or 0),
        "favorites": int(item.favorites or 0),
        "createdAt": _iso(item.created_at),
        "categories": [_category_payload(category) for category in item.categories],
        "tags": [_tag_payload(tag) for tag in item.tags],
        "image": _image_payload(images[0]) if images else None,
        "userInteractions": _interactions(item.id, reactions),
    }


def catalog_item_detail(
    item: CatalogItem,
    reactions: Optional[Dict[str, Set[str]]] = None,
    related: Iterable[CatalogItem] = (),
) -> Dict[str, Any]:
    payload = catalog_item_summary(item, reactions)
    payload.pop("image", None)
    payload.update(
        {
            "promptExamples": list(item.prompt_examples or []),
            "downloads": int(item.downloads or 0),
            "status": item.status,
            "updatedAt": _iso(item.updated_at),
            "images": [_image_payload(image) for image in sorted(item.images or [], key=lambda i: i.image_order or 0)],
            "related": [catalog_item_summary(other) for other in related],
        }
    )
    return payload


async def load_viewer_reactions(
    viewer: Viewer,
    item_ids: Iterable[str],
    db: AsyncSession,
) -> Optional[Dict[str, Set[str]]]:
    """Map item id -> reaction kinds for the caller; None for anonymous callers."""
    if not viewer.authenticated:
        return None
    ids = list(item_ids)
    reactions: Dict[str, Set[str]] = {}
    if not ids:
        return reactions
    result = await db.execute(
        select(ItemReaction.item_id, ItemReaction.kind).where(
            ItemReaction.user_id == viewer.user_id,
            ItemReaction.item_id.in_(ids),
        )
    )
    for item_id, kind in result.all():
        reactions.setdefault(item_id, set()).add(kind)
    return reactions
