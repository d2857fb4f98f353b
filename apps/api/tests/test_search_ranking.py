from datetime import datetime, timedelta, timezone

from models.catalog_item import CatalogItem
from services.search_ranking import (
    SORT_KEYS,
    compute_growth_rate,
    order_by_for,
    resolve_sort_key,
    trending_windows,
)


def _ordering(sort_key):
    return [str(clause.compile()) for clause in order_by_for(sort_key)]


def test_missing_sort_defaults_to_relevance():
    assert resolve_sort_key(None) == "relevance"
    assert resolve_sort_key("") == "relevance"


def test_unknown_sort_falls_back_to_popularity():
    assert resolve_sort_key("alphabetical") == "popularity"
    assert resolve_sort_key("NEWEST") == "newest"


def test_growth_rate_without_prior_views_equals_recent_count():
    assert compute_growth_rate(5, 0) == 5


def test_growth_rate_can_be_negative():
    assert compute_growth_rate(5, 10) == -0.5


def test_growth_rate_is_not_clamped():
    assert compute_growth_rate(500, 1) == 499.0


def test_trending_windows_are_consecutive_days():
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    prior_start, recent_start, end = trending_windows(now)
    assert end == now
    assert recent_start == now - timedelta(hours=24)
    assert prior_start == now - timedelta(hours=48)


def test_relevance_orders_by_curation_flags_then_popularity():
    assert _ordering("relevance") == [
        "catalog_items.featured DESC",
        "catalog_items.verified DESC",
        "catalog_items.popularity_score DESC",
        "catalog_items.id ASC",
    ]


def test_counter_sorts_break_ties_by_recency():
    assert _ordering("views")[:2] == ["catalog_items.views DESC", "catalog_items.created_at DESC"]
    assert _ordering("likes")[:2] == ["catalog_items.likes DESC", "catalog_items.created_at DESC"]
    assert _ordering("popularity")[:2] == ["catalog_items.popularity_score DESC", "catalog_items.views DESC"]


def test_every_ordering_ends_with_the_primary_key():
    for key in SORT_KEYS:
        if key == "trending":
            continue
        last = order_by_for(key)[-1]
        assert last.compare(CatalogItem.id.asc())
