"""Sort/rank resolver: sort keys to orderings, plus the trending growth score."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import Float, case, cast, func, select
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.selectable import Subquery

from models.catalog_item import CatalogItem
from models.interaction_event import EVENT_VIEW, InteractionEvent

SORT_RELEVANCE = "relevance"
SORT_POPULARITY = "popularity"
SORT_NEWEST = "newest"
SORT_VIEWS = "views"
SORT_LIKES = "likes"
SORT_TRENDING = "trending"
SORT_KEYS = (SORT_RELEVANCE, SORT_POPULARITY, SORT_NEWEST, SORT_VIEWS, SORT_LIKES, SORT_TRENDING)
DEFAULT_SORT = SORT_RELEVANCE
FALLBACK_SORT = SORT_POPULARITY

TRENDING_WINDOW = timedelta(hours=24)


def resolve_sort_key(sort: Optional[str]) -> str:
    """Missing sort means relevance; an unrecognized one degrades to popularity."""
    key = str(sort or "").strip().lower()
    if not key:
        return DEFAULT_SORT
    return key if key in SORT_KEYS else FALLBACK_SORT


def order_by_for(sort_key: str) -> List[ColumnElement]:
    """Concrete ordering for a non-trending sort key.

    ``id`` is always the final key so equal rows page deterministically.
    """
    if sort_key == SORT_NEWEST:
        ordering = [CatalogItem.created_at.desc()]
    elif sort_key == SORT_VIEWS:
        ordering = [CatalogItem.views.desc(), CatalogItem.created_at.desc()]
    elif sort_key == SORT_LIKES:
        ordering = [CatalogItem.likes.desc(), CatalogItem.created_at.desc()]
    elif sort_key == SORT_RELEVANCE:
        # Curation flags first, then popularity; there is no term-match score.
        ordering = [
            CatalogItem.featured.desc(),
            CatalogItem.verified.desc(),
            CatalogItem.popularity_score.desc(),
        ]
    else:
        ordering = [CatalogItem.popularity_score.desc(), CatalogItem.views.desc()]
    ordering.append(CatalogItem.id.asc())
    return ordering


def compute_growth_rate(recent: int, prior: int) -> float:
    """Growth of the last 24h over the 24h before it. Unclamped on purpose."""
    if prior == 0:
        return float(recent)
    return (recent - prior) / prior


def trending_windows(now: Optional[datetime] = None) -> Tuple[datetime, datetime, datetime]:
    """Return ``(prior_start, recent_start, now)`` for the two 24h windows."""
    current = now or datetime.now(timezone.utc)
    recent_start = current - TRENDING_WINDOW
    return recent_start - TRENDING_WINDOW, recent_start, current


def build_view_windows_subquery(now: Optional[datetime] = None) -> Subquery:
    """Per-item VIEW counts for the recent and prior windows."""
    prior_start, recent_start, current = trending_windows(now)
    recent_views = func.sum(case((InteractionEvent.created_at >= recent_start, 1), else_=0))
    prior_views = func.sum(case((InteractionEvent.created_at < recent_start, 1), else_=0))
    return (
        select(
            InteractionEvent.item_id.label("item_id"),
            recent_views.label("recent_views"),
            prior_views.label("prior_views"),
        )
        .where(
            InteractionEvent.event_type == EVENT_VIEW,
            InteractionEvent.created_at >= prior_start,
            InteractionEvent.created_at <= current,
        )
        .group_by(InteractionEvent.item_id)
        .subquery("view_windows")
    )


def growth_rate_expression(windows: Subquery) -> ColumnElement:
    """SQL twin of ``compute_growth_rate`` evaluated in floating point."""
    recent = cast(windows.c.recent_views, Float)
    prior = cast(windows.c.prior_views, Float)
    return case((windows.c.prior_views == 0, recent), else_=(recent - prior) / prior)


def trending_order_by(windows: Subquery) -> List[ColumnElement]:
    return [
        growth_rate_expression(windows).desc(),
        windows.c.recent_views.desc(),
        CatalogItem.id.asc(),
    ]
