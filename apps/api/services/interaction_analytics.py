"""Interaction tracking, popular and trending rankings, and the stats read views."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models.catalog_item import STATUS_ACTIVE, CatalogItem
from models.category import Category
from models.interaction_event import EVENT_DOWNLOAD, EVENT_SHARE, EVENT_VIEW, InteractionEvent
from models.user import User
from services.catalog_payloads import catalog_item_summary, summary_load_options
from services.errors import AuthorizationError, NotFoundError, ValidationError
from services.search_cache import SearchCache, build_cache_key
from services.search_ranking import build_view_windows_subquery, compute_growth_rate, trending_order_by
from services.viewer import Viewer

logger = logging.getLogger(__name__)

TRACKED_EVENTS = {
    "sref_view": EVENT_VIEW,
    "download": EVENT_DOWNLOAD,
    "share": EVENT_SHARE,
}
POPULAR_TIMEFRAMES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}
DEFAULT_TIMEFRAME = "30d"
STATS_WINDOW = timedelta(days=30)
RECENT_SIGNUP_WINDOW = timedelta(days=7)
TOP_REFERRERS = 10
RECENT_ACTIVITY_LIMIT = 50
DASHBOARD_POPULAR_LIMIT = 10


async def track_event_service(
    *,
    event: str,
    data: Optional[Dict[str, Any]],
    viewer: Viewer,
    db: AsyncSession,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    """Append an interaction event for a known code; unknown codes are ignored."""
    event_type = TRACKED_EVENTS.get(event)
    if event_type is None:
        raise ValidationError(
            "Unsupported event",
            field="event",
            constraint="one of " + ", ".join(sorted(TRACKED_EVENTS)),
        )
    data = data or {}
    code = str(data.get("srefCode") or "").strip()
    tracked = False
    if code:
        result = await db.execute(select(CatalogItem.id).where(CatalogItem.code == code))
        item_id = result.scalar_one_or_none()
        if item_id:
            db.add(
                InteractionEvent(
                    item_id=item_id,
                    user_id=viewer.user_id,
                    event_type=event_type,
                    referrer=data.get("referrer"),
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
            )
            if event_type == EVENT_DOWNLOAD:
                await db.execute(
                    update(CatalogItem).where(CatalogItem.id == item_id).values(downloads=CatalogItem.downloads + 1)
                )
            await db.commit()
            tracked = True
    logger.info("interaction_tracked event=%s code=%s tracked=%s user=%s", event, code, tracked, viewer.user_id or "anonymous")
    return {"message": "Event tracked", "tracked": tracked}


async def popular_items_service(
    *,
    viewer: Viewer,
    db: AsyncSession,
    timeframe: str = DEFAULT_TIMEFRAME,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    window = POPULAR_TIMEFRAMES.get(timeframe)
    if window is None:
        raise ValidationError("Unsupported timeframe", field="timeframe", constraint="24h, 7d or 30d")
    since = (now or datetime.now(timezone.utc)) - window

    event_counts = (
        select(InteractionEvent.item_id, func.count(InteractionEvent.id).label("event_count"))
        .where(InteractionEvent.created_at >= since)
        .group_by(InteractionEvent.item_id)
        .subquery("window_events")
    )
    stmt = (
        select(CatalogItem, event_counts.c.event_count)
        .join(event_counts, event_counts.c.item_id == CatalogItem.id)
        .where(CatalogItem.status == STATUS_ACTIVE)
    )
    if not viewer.authenticated:
        stmt = stmt.where(CatalogItem.premium.is_(False))
    result = await db.execute(
        stmt.order_by(event_counts.c.event_count.desc(), CatalogItem.views.desc(), CatalogItem.id.asc())
        .limit(limit)
        .options(*summary_load_options())
    )
    items = []
    for item, event_count in result.all():
        summary = catalog_item_summary(item)
        summary["eventCount"] = int(event_count or 0)
        items.append(summary)
    return {"timeframe": timeframe, "items": items}


async def trending_items_service(
    *,
    viewer: Viewer,
    db: AsyncSession,
    limit: int = 20,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Items ranked by 24h view growth; items without recent views are left out."""
    windows = build_view_windows_subquery(now)
    stmt = (
        select(CatalogItem, windows.c.recent_views, windows.c.prior_views)
        .join(windows, windows.c.item_id == CatalogItem.id)
        .where(CatalogItem.status == STATUS_ACTIVE, windows.c.recent_views > 0)
    )
    if not viewer.authenticated:
        stmt = stmt.where(CatalogItem.premium.is_(False))
    result = await db.execute(
        stmt.order_by(*trending_order_by(windows)).limit(limit).options(*summary_load_options())
    )
    items = []
    for item, recent, prior in result.all():
        summary = catalog_item_summary(item)
        summary["recentViews"] = int(recent or 0)
        summary["previousViews"] = int(prior or 0)
        summary["growthRate"] = compute_growth_rate(int(recent or 0), int(prior or 0))
        items.append(summary)
    return {"items": items}


def _daily_views_query(since: datetime, item_id: Optional[str] = None):
    day = func.date(InteractionEvent.created_at)
    stmt = (
        select(
            day.label("day"),
            func.count(InteractionEvent.id).label("views"),
            func.count(func.distinct(InteractionEvent.user_id)).label("unique_users"),
        )
        .where(InteractionEvent.event_type == EVENT_VIEW, InteractionEvent.created_at >= since)
        .group_by(day)
        .order_by(day.desc())
    )
    if item_id is not None:
        stmt = stmt.where(InteractionEvent.item_id == item_id)
    return stmt


def _daily_rows(rows) -> List[Dict[str, Any]]:
    # DATE() comes back as a date on PostgreSQL and as text on SQLite
    return [
        {"date": str(row.day), "views": int(row.views), "uniqueUsers": int(row.unique_users)}
        for row in rows
    ]


async def item_stats_service(
    *,
    code: str,
    viewer: Viewer,
    db: AsyncSession,
    cache: Optional[SearchCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Per-item event breakdown, visible to the submitter and to admins."""
    result = await db.execute(
        select(CatalogItem.id, CatalogItem.code, CatalogItem.title, CatalogItem.submitted_by_id)
        .where(CatalogItem.code == code)
    )
    item = result.first()
    if item is None:
        raise NotFoundError("SREF code")
    if not viewer.admin and item.submitted_by_id != viewer.user_id:
        raise AuthorizationError("Only the submitter or an admin can view these stats")

    cache = cache or SearchCache()
    cache_key = build_cache_key("item_stats", {"item": item.id})
    cached = await cache.get_json(cache_key)
    if cached is not None:
        return cached

    since = (now or datetime.now(timezone.utc)) - STATS_WINDOW
    by_type = await db.execute(
        select(InteractionEvent.event_type, func.count(InteractionEvent.id))
        .where(InteractionEvent.item_id == item.id)
        .group_by(InteractionEvent.event_type)
    )
    daily = await db.execute(_daily_views_query(since, item.id))

    referrer_count = func.count(InteractionEvent.id).label("views")
    referrers = await db.execute(
        select(InteractionEvent.referrer, referrer_count)
        .where(
            InteractionEvent.item_id == item.id,
            InteractionEvent.event_type == EVENT_VIEW,
            InteractionEvent.referrer.is_not(None),
        )
        .group_by(InteractionEvent.referrer)
        .order_by(referrer_count.desc(), InteractionEvent.referrer.asc())
        .limit(TOP_REFERRERS)
    )

    view_split = (
        await db.execute(
            select(func.count(InteractionEvent.id), func.count(InteractionEvent.user_id))
            .where(InteractionEvent.item_id == item.id, InteractionEvent.event_type == EVENT_VIEW)
        )
    ).one()
    total_views, authenticated_views = int(view_split[0]), int(view_split[1])
    caller_split = [("anonymous", total_views - authenticated_views), ("authenticated", authenticated_views)]

    stats = {
        "sref": {"id": item.id, "code": item.code, "title": item.title},
        "summary": {event_type.lower(): int(count) for event_type, count in by_type.all()},
        "dailyViews": _daily_rows(daily.all()),
        "topReferrers": [
            {"referrer": referrer or "Direct", "views": int(views)} for referrer, views in referrers.all()
        ],
        "userActivity": [{"type": kind, "views": count} for kind, count in caller_split if count],
    }
    await cache.set_json(cache_key, stats, settings.ANALYTICS_STATS_CACHE_TTL_SECONDS)
    return stats


async def analytics_dashboard_service(
    *,
    viewer: Viewer,
    db: AsyncSession,
    cache: Optional[SearchCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Admin overview: totals, the month's popular items, recent events and daily views."""
    cache = cache or SearchCache()
    cache_key = build_cache_key("analytics_dashboard", {})
    cached = await cache.get_json(cache_key)
    if cached is not None:
        return cached

    now = now or datetime.now(timezone.utc)
    since = now - STATS_WINDOW
    total_users = await db.scalar(select(func.count(User.id)).where(User.deleted_at.is_(None)))
    total_items = await db.scalar(select(func.count(CatalogItem.id)).where(CatalogItem.status == STATUS_ACTIVE))
    total_views = await db.scalar(
        select(func.count(InteractionEvent.id)).where(InteractionEvent.event_type == EVENT_VIEW)
    )
    active_users = await db.scalar(
        select(func.count(User.id)).where(User.deleted_at.is_(None), User.last_login_at >= since)
    )
    popular = await popular_items_service(
        viewer=viewer, db=db, timeframe="30d", limit=DASHBOARD_POPULAR_LIMIT, now=now
    )

    recent = await db.execute(
        select(InteractionEvent, CatalogItem.code, CatalogItem.title, User.username)
        .join(CatalogItem, CatalogItem.id == InteractionEvent.item_id)
        .outerjoin(User, User.id == InteractionEvent.user_id)
        .order_by(InteractionEvent.created_at.desc(), InteractionEvent.id.asc())
        .limit(RECENT_ACTIVITY_LIMIT)
    )
    categories = await db.execute(
        select(Category).order_by(Category.sref_count.desc(), Category.name.asc())
    )
    daily = await db.execute(_daily_views_query(since))

    dashboard = {
        "overview": {
            "totalUsers": int(total_users or 0),
            "totalSrefs": int(total_items or 0),
            "totalViews": int(total_views or 0),
            "activeUsers": int(active_users or 0),
        },
        "popularSrefs": popular["items"],
        "recentActivity": [
            {
                "id": event.id,
                "event": event.event_type,
                "sref": {"code": code, "title": title},
                "user": username or "Anonymous",
                "timestamp": event.created_at.isoformat() if event.created_at else None,
            }
            for event, code, title, username in recent.all()
        ],
        "categoryStats": [
            {"name": category.name, "slug": category.slug, "srefCount": int(category.sref_count or 0)}
            for category in categories.scalars().all()
        ],
        "dailyStats": _daily_rows(daily.all()),
    }
    await cache.set_json(cache_key, dashboard, settings.ANALYTICS_STATS_CACHE_TTL_SECONDS)
    return dashboard


async def catalog_stats_service(*, db: AsyncSession, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    recent_since = now - RECENT_SIGNUP_WINDOW
    active = CatalogItem.status == STATUS_ACTIVE
    totals = (
        await db.execute(
            select(
                func.count(CatalogItem.id),
                func.coalesce(func.sum(CatalogItem.views), 0),
                func.coalesce(func.sum(CatalogItem.likes), 0),
            ).where(active)
        )
    ).one()
    total_users = await db.scalar(select(func.count(User.id)).where(User.deleted_at.is_(None)))
    recent_users = await db.scalar(select(func.count(User.id)).where(User.created_at >= recent_since))
    recent_items = await db.scalar(select(func.count(CatalogItem.id)).where(CatalogItem.created_at >= recent_since))
    return {
        "totalSrefs": int(totals[0]),
        "totalUsers": int(total_users or 0),
        "totalViews": int(totals[1]),
        "totalLikes": int(totals[2]),
        "recentUsers": int(recent_users or 0),
        "recentSrefs": int(recent_items or 0),
        "timestamp": now.isoformat(),
    }
