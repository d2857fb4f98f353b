"""Catalog item detail, submission, moderation and per-user reactions."""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.catalog_item import STATUS_ACTIVE, STATUS_DELETED, STATUS_PENDING, CatalogItem
from models.category import Category
from models.interaction_event import EVENT_FAVORITE, EVENT_LIKE, EVENT_VIEW, InteractionEvent
from models.item_reaction import REACTION_FAVORITE, REACTION_LIKE, ItemReaction
from models.tag import Tag
from models.user import User
from services.catalog_payloads import (
    catalog_item_detail,
    load_viewer_reactions,
    summary_load_options,
)
from services.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from services.viewer import Viewer

logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r"^\d{8,12}$")
RELATED_LIMIT = 8
MAX_PROMPT_EXAMPLES = 10
MAX_TAGS = 20

# reaction kind -> (counter column, event type)
REACTION_COUNTERS = {
    REACTION_LIKE: ("likes", EVENT_LIKE),
    REACTION_FAVORITE: ("favorites", EVENT_FAVORITE),
}


def validate_code(code: str) -> str:
    text = str(code or "").strip()
    if not CODE_PATTERN.match(text):
        raise ValidationError("Invalid SREF code format", field="code", constraint="8-12 digits")
    return text


def build_item_slug(code: str, title: str) -> str:
    title_slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:50]
    return f"{code}-{title_slug}" if title_slug else code


def _tag_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name)


def ensure_can_view(item: CatalogItem, viewer: Viewer) -> None:
    if not item.premium:
        return
    if not viewer.authenticated:
        raise AuthorizationError.authentication_required("Authentication required to access premium content")
    if not viewer.entitled:
        raise AuthorizationError("Premium account required to access this SREF")


async def _require_known_user(viewer: Viewer, db: AsyncSession) -> None:
    result = await db.execute(select(User.id).where(User.id == viewer.user_id, User.deleted_at.is_(None)))
    if result.scalar_one_or_none() is None:
        raise AuthorizationError.authentication_required("Unknown or deleted account")


async def _get_item_by_code(code: str, db: AsyncSession, *, active_only: bool = True) -> CatalogItem:
    stmt = select(CatalogItem).where(CatalogItem.code == code).options(*summary_load_options())
    if active_only:
        stmt = stmt.where(CatalogItem.status == STATUS_ACTIVE)
    result = await db.execute(stmt)
    item = result.scalar_one_or_none()
    if not item:
        raise NotFoundError("SREF code")
    return item


async def _related_items(item: CatalogItem, viewer: Viewer, db: AsyncSession) -> List[CatalogItem]:
    category_ids = [category.id for category in item.categories]
    if not category_ids:
        return []
    stmt = select(CatalogItem).where(
        CatalogItem.id != item.id,
        CatalogItem.status == STATUS_ACTIVE,
        CatalogItem.categories.any(Category.id.in_(category_ids)),
    )
    if not viewer.authenticated:
        stmt = stmt.where(CatalogItem.premium.is_(False))
    result = await db.execute(
        stmt.order_by(CatalogItem.popularity_score.desc(), CatalogItem.id.asc())
        .limit(RELATED_LIMIT)
        .options(*summary_load_options())
    )
    return list(result.scalars().all())


async def get_item_detail_service(
    *,
    code: str,
    viewer: Viewer,
    db: AsyncSession,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Return the item detail and count the view."""
    item = await _get_item_by_code(validate_code(code), db)
    ensure_can_view(item, viewer)

    related = await _related_items(item, viewer, db)
    reactions = await load_viewer_reactions(viewer, [item.id], db)

    await db.execute(update(CatalogItem).where(CatalogItem.id == item.id).values(views=CatalogItem.views + 1))
    db.add(
        InteractionEvent(
            item_id=item.id,
            user_id=viewer.user_id,
            event_type=EVENT_VIEW,
            ip_address=ip_address,
            user_agent=user_agent,
        )
    )
    await db.commit()
    await db.refresh(item)
    return catalog_item_detail(item, reactions, related)


async def submit_item_service(
    *,
    viewer: Viewer,
    payload: Dict[str, Any],
    db: AsyncSession,
) -> Dict[str, Any]:
    """Create a PENDING item; it stays out of every public path until approved."""
    await _require_known_user(viewer, db)
    code = validate_code(payload.get("code"))
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", field="title", constraint="non-empty")
    prompt_examples = [str(example) for example in (payload.get("prompt_examples") or [])]
    if len(prompt_examples) > MAX_PROMPT_EXAMPLES:
        raise ValidationError("Too many prompt examples", field="promptExamples", constraint=f"<= {MAX_PROMPT_EXAMPLES}")
    tag_names = list(dict.fromkeys(str(tag).strip().lower() for tag in (payload.get("tags") or []) if str(tag).strip()))
    if len(tag_names) > MAX_TAGS:
        raise ValidationError("Too many tags", field="tags", constraint=f"<= {MAX_TAGS}")

    existing = await db.execute(select(CatalogItem.id).where(CatalogItem.code == code))
    if existing.scalar_one_or_none():
        raise ConflictError("SREF code already exists")

    category_ids = list(dict.fromkeys(payload.get("category_ids") or []))
    categories: List[Category] = []
    if category_ids:
        categories_result = await db.execute(select(Category).where(Category.id.in_(category_ids)))
        categories = list(categories_result.scalars().all())
        if len(categories) != len(category_ids):
            raise ValidationError("One or more categories not found", field="categoryIds", constraint="existing ids")

    tags: List[Tag] = []
    if tag_names:
        tags_result = await db.execute(select(Tag).where(Tag.name.in_(tag_names)))
        known = {tag.name: tag for tag in tags_result.scalars().all()}
        for name in tag_names:
            tag = known.get(name)
            if tag is None:
                tag = Tag(id=str(uuid.uuid4()), name=name, slug=_tag_slug(name))
                db.add(tag)
            tags.append(tag)

    item = CatalogItem(
        id=str(uuid.uuid4()),
        code=code,
        slug=build_item_slug(code, title),
        title=title,
        description=str(payload.get("description") or "").strip() or None,
        prompt_examples=prompt_examples,
        featured=bool(payload.get("featured", False)) and viewer.admin,
        premium=bool(payload.get("premium", False)),
        verified=bool(payload.get("verified", False)) and viewer.admin,
        status=STATUS_PENDING,
        submitted_by_id=viewer.user_id,
    )
    item.categories = categories
    item.tags = tags
    item.images = []
    db.add(item)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("SREF code already exists") from exc

    logger.info("catalog_item_submitted user=%s code=%s item=%s", viewer.user_id, code, item.id)
    item = await _get_item_by_code(code, db, active_only=False)
    return catalog_item_detail(item)


async def approve_item_service(*, code: str, viewer: Viewer, db: AsyncSession) -> Dict[str, Any]:
    await _require_known_user(viewer, db)
    if not viewer.admin:
        raise AuthorizationError("Admin access required")
    item = await _get_item_by_code(validate_code(code), db, active_only=False)
    if item.status == STATUS_DELETED:
        raise NotFoundError("SREF code")
    item.status = STATUS_ACTIVE
    item.approved_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("catalog_item_approved admin=%s code=%s", viewer.user_id, item.code)
    return {"code": item.code, "status": item.status}


async def delete_item_service(*, code: str, viewer: Viewer, db: AsyncSession) -> Dict[str, Any]:
    """Soft delete: images and events keep pointing at the row."""
    await _require_known_user(viewer, db)
    item = await _get_item_by_code(validate_code(code), db, active_only=False)
    if item.status == STATUS_DELETED:
        raise NotFoundError("SREF code")
    if not viewer.admin and item.submitted_by_id != viewer.user_id:
        raise AuthorizationError("Only the submitter or an admin can delete this SREF")
    item.status = STATUS_DELETED
    item.deleted_at = datetime.now(timezone.utc)
    await db.commit()
    logger.info("catalog_item_deleted user=%s code=%s", viewer.user_id, item.code)
    return {"code": item.code, "status": item.status}


async def set_reaction_service(
    *,
    code: str,
    kind: str,
    active: bool,
    viewer: Viewer,
    db: AsyncSession,
) -> Dict[str, Any]:
    """Add or remove a like/favorite; repeating the same call changes nothing."""
    counter_name, event_type = REACTION_COUNTERS[kind]
    await _require_known_user(viewer, db)
    item = await _get_item_by_code(validate_code(code), db)
    ensure_can_view(item, viewer)

    existing_result = await db.execute(
        select(ItemReaction).where(
            ItemReaction.user_id == viewer.user_id,
            ItemReaction.item_id == item.id,
            ItemReaction.kind == kind,
        )
    )
    existing = existing_result.scalar_one_or_none()
    counter = getattr(CatalogItem, counter_name)

    if active and existing is None:
        db.add(ItemReaction(user_id=viewer.user_id, item_id=item.id, kind=kind))
        db.add(InteractionEvent(item_id=item.id, user_id=viewer.user_id, event_type=event_type))
        await db.execute(update(CatalogItem).where(CatalogItem.id == item.id).values({counter_name: counter + 1}))
    elif not active and existing is not None:
        await db.delete(existing)
        await db.execute(
            update(CatalogItem)
            .where(CatalogItem.id == item.id, counter > 0)
            .values({counter_name: counter - 1})
        )
    await db.commit()
    await db.refresh(item)
    return {"code": item.code, kind: active, counter_name: int(getattr(item, counter_name) or 0)}


BROWSE_TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "all": None,
}


def build_browse_payload(
    *,
    search: Optional[str] = None,
    category: Optional[str] = None,
    tags: Optional[str] = None,
    featured: Optional[bool] = None,
    premium: Optional[bool] = None,
    sort: Optional[str] = None,
    time_range: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Translate listing query params into a search payload sorted by popularity by default."""
    key = (time_range or "all").strip().lower()
    if key not in BROWSE_TIME_RANGES:
        raise ValidationError("Unsupported timeRange", field="timeRange", constraint="24h, 7d, 30d or all")
    filters: Dict[str, Any] = {}
    if category:
        filters["categories"] = [category]
    if tags:
        filters["tags"] = tags
    if featured is not None:
        filters["featured"] = featured
    if premium is not None:
        filters["premium"] = premium
    window = BROWSE_TIME_RANGES[key]
    if window is not None:
        # minute granularity keeps the cache key stable across requests
        anchor = (now or datetime.now(timezone.utc)).replace(second=0, microsecond=0)
        filters["dateRange"] = {"from": anchor - window}
    return {
        "query": search or "",
        "filters": filters,
        "sort": sort or "popularity",
        "page": page,
        "limit": limit,
    }
