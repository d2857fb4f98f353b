from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from models.catalog_item import STATUS_DELETED, STATUS_PENDING
from services.errors import AuthorizationError, TransientStorageError, ValidationError
from services.search import build_pagination, search_catalog_service
from services.search_cache import SearchCache
from services.viewer import ANONYMOUS, Viewer


PREMIUM_MEMBER = Viewer(user_id="premium-1", premium=True)


def _titles(response):
    return [row["title"] for row in response["results"]]


@pytest.mark.asyncio
async def test_only_active_items_are_returned(db, catalog):
    await catalog.item("10000001", "Active style")
    await catalog.item("10000002", "Pending style", status=STATUS_PENDING)
    await catalog.item("10000003", "Deleted style", status=STATUS_DELETED)

    response = await search_catalog_service(payload={"query": "style"}, viewer=PREMIUM_MEMBER, db=db)

    assert _titles(response) == ["Active style"]
    assert response["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_anonymous_callers_never_see_premium_items(db, catalog):
    await catalog.item("10000001", "Free style", popularity=1)
    await catalog.item("10000002", "Premium style", premium=True, popularity=99)

    anonymous = await search_catalog_service(payload={"filters": {"premium": False}}, viewer=ANONYMOUS, db=db)
    unfiltered = await search_catalog_service(payload={}, viewer=ANONYMOUS, db=db)
    member = await search_catalog_service(payload={}, viewer=PREMIUM_MEMBER, db=db)

    assert _titles(anonymous) == ["Free style"]
    assert _titles(unfiltered) == ["Free style"]
    assert all(row["premium"] is False for row in unfiltered["results"])
    assert _titles(member) == ["Premium style", "Free style"]


@pytest.mark.asyncio
async def test_premium_request_fails_before_touching_storage():
    db = AsyncMock()
    with pytest.raises(AuthorizationError):
        await search_catalog_service(payload={"filters": {"premium": True}}, viewer=Viewer(user_id="u"), db=db)
    db.execute.assert_not_called()
    db.scalar.assert_not_called()


@pytest.mark.asyncio
async def test_category_and_tag_filters_are_or_within_and_across(db, catalog):
    x = await catalog.category("x")
    y = await catalog.category("y")
    p = await catalog.tag("p")
    q = await catalog.tag("q")
    await catalog.item("10000001", "A", categories=[x], tags=[p], popularity=2)
    await catalog.item("10000002", "B", categories=[y], tags=[p], popularity=1)
    await catalog.item("10000003", "C", categories=[x], tags=[q], popularity=3)

    only_a = await search_catalog_service(
        payload={"filters": {"categories": ["x"], "tags": ["p"]}}, viewer=ANONYMOUS, db=db
    )
    a_and_b = await search_catalog_service(
        payload={"filters": {"categories": ["x", "y"], "tags": ["p"]}}, viewer=ANONYMOUS, db=db
    )
    unknown = await search_catalog_service(
        payload={"filters": {"categories": ["does-not-exist"]}}, viewer=ANONYMOUS, db=db
    )

    assert _titles(only_a) == ["A"]
    assert _titles(a_and_b) == ["A", "B"]
    assert unknown["results"] == []
    assert unknown["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_anime_newest_scenario(db, catalog):
    await catalog.item("10000001", "Something else", age=timedelta(days=3))
    await catalog.item("10000002", "Anime B", age=timedelta(days=2))
    await catalog.item("10000003", "Anime A", age=timedelta(days=1))

    response = await search_catalog_service(
        payload={"query": "anime", "filters": {}, "sort": "newest", "page": 1, "limit": 2},
        viewer=ANONYMOUS,
        db=db,
    )

    assert _titles(response) == ["Anime A", "Anime B"]
    assert response["pagination"] == {
        "page": 1,
        "limit": 2,
        "total": 2,
        "totalPages": 1,
        "hasNext": False,
        "hasPrev": False,
    }
    assert response["searchInfo"] == {"query": "anime", "terms": ["anime"], "sort": "newest"}


@pytest.mark.asyncio
async def test_text_terms_are_conjunctive_and_match_code(db, catalog):
    await catalog.item("12345678", "Neon city", description="Rainy streets")
    await catalog.item("87654321", "Neon forest", description="Moss")

    both_terms = await search_catalog_service(payload={"query": "neon rainy"}, viewer=ANONYMOUS, db=db)
    by_code = await search_catalog_service(payload={"query": "8765"}, viewer=ANONYMOUS, db=db)

    assert _titles(both_terms) == ["Neon city"]
    assert _titles(by_code) == ["Neon forest"]


@pytest.mark.asyncio
async def test_relevance_ranks_curation_before_popularity(db, catalog):
    await catalog.item("10000001", "Popular", popularity=100)
    await catalog.item("10000002", "Verified", verified=True, popularity=1)
    await catalog.item("10000003", "Featured", featured=True, popularity=0)

    response = await search_catalog_service(payload={}, viewer=ANONYMOUS, db=db)

    assert _titles(response) == ["Featured", "Verified", "Popular"]


@pytest.mark.asyncio
async def test_unknown_sort_uses_popularity(db, catalog):
    await catalog.item("10000001", "Low", popularity=1, featured=True)
    await catalog.item("10000002", "High", popularity=9)

    response = await search_catalog_service(payload={"sort": "shuffle"}, viewer=ANONYMOUS, db=db)

    assert _titles(response) == ["High", "Low"]
    assert response["searchInfo"]["sort"] == "popularity"


@pytest.mark.asyncio
async def test_trending_excludes_items_without_recent_views(db, catalog):
    famous = await catalog.item("10000001", "All-time favourite", popularity=10_000, views=50_000)
    rising = await catalog.item("10000002", "Rising")
    steady = await catalog.item("10000003", "Steady")
    fading = await catalog.item("10000004", "Fading")
    await catalog.views(famous, 30, hours_ago=72)
    await catalog.views(rising, 5, hours_ago=2)
    await catalog.views(steady, 10, hours_ago=3)
    await catalog.views(steady, 10, hours_ago=30)
    await catalog.views(fading, 5, hours_ago=4)
    await catalog.views(fading, 10, hours_ago=36)

    response = await search_catalog_service(payload={"sort": "trending"}, viewer=ANONYMOUS, db=db)

    assert _titles(response) == ["Rising", "Steady", "Fading"]
    rows = {row["title"]: row for row in response["results"]}
    assert rows["Rising"]["growthRate"] == 5
    assert rows["Steady"]["growthRate"] == 0
    assert rows["Fading"]["growthRate"] == -0.5
    assert rows["Fading"]["recentViews"] == 5
    assert rows["Fading"]["previousViews"] == 10
    assert response["pagination"]["total"] == 3


@pytest.mark.asyncio
async def test_trending_ties_break_on_recent_views(db, catalog):
    small = await catalog.item("10000001", "Small")
    large = await catalog.item("10000002", "Large")
    await catalog.views(small, 2, hours_ago=1)
    await catalog.views(small, 1, hours_ago=30)
    await catalog.views(large, 4, hours_ago=1)
    await catalog.views(large, 2, hours_ago=30)

    response = await search_catalog_service(payload={"sort": "trending"}, viewer=ANONYMOUS, db=db)

    assert _titles(response) == ["Large", "Small"]


@pytest.mark.asyncio
async def test_pagination_metadata_is_consistent(db, catalog):
    for index in range(5):
        await catalog.item(f"2000000{index}", f"Item {index}", popularity=index)

    first = await search_catalog_service(payload={"page": 1, "limit": 2}, viewer=ANONYMOUS, db=db)
    last = await search_catalog_service(payload={"page": 3, "limit": 2}, viewer=ANONYMOUS, db=db)

    assert first["pagination"]["totalPages"] == 3
    assert first["pagination"]["hasNext"] is True
    assert first["pagination"]["hasPrev"] is False
    assert last["pagination"]["hasNext"] is False
    assert last["pagination"]["hasPrev"] is True
    assert len(last["results"]) == 1


def test_build_pagination_handles_empty_results():
    assert build_pagination(1, 20, 0) == {
        "page": 1,
        "limit": 20,
        "total": 0,
        "totalPages": 0,
        "hasNext": False,
        "hasPrev": False,
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, field",
    [
        ({"page": 0}, "page"),
        ({"page": -1}, "page"),
        ({"limit": 0}, "limit"),
        ({"limit": 101}, "limit"),
        ({"limit": "many"}, "limit"),
    ],
)
async def test_invalid_paging_is_a_validation_error(payload, field):
    db = AsyncMock()
    with pytest.raises(ValidationError) as exc_info:
        await search_catalog_service(payload=payload, viewer=ANONYMOUS, db=db)
    assert exc_info.value.detail["details"]["field"] == field
    db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_facet_counts_cover_the_filtered_set(db, catalog):
    anime = await catalog.category("anime")
    retro = await catalog.category("retro")
    neon = await catalog.tag("neon")
    await catalog.item("10000001", "Neon anime", categories=[anime], tags=[neon])
    await catalog.item("10000002", "Neon retro", categories=[retro], tags=[neon], premium=True)
    await catalog.item("10000003", "Plain anime", categories=[anime])
    await catalog.item("10000004", "Hidden", categories=[anime], status=STATUS_PENDING)

    response = await search_catalog_service(
        payload={"filters": {"tags": ["neon"]}, "facets": True},
        viewer=PREMIUM_MEMBER,
        db=db,
    )

    facets = response["facets"]
    split = facets["premiumSplit"]
    assert split["free"] + split["premium"] == response["pagination"]["total"] == 2
    assert {row["slug"]: row["count"] for row in facets["categories"]} == {"anime": 1, "retro": 1}
    # The tag facet ignores the tag filter itself.
    assert facets["tags"] == [{"name": "neon", "count": 2}]


@pytest.mark.asyncio
async def test_facets_are_omitted_unless_requested(db, catalog):
    await catalog.item("10000001", "Item")
    response = await search_catalog_service(payload={}, viewer=ANONYMOUS, db=db)
    assert "facets" not in response


@pytest.mark.asyncio
async def test_repeated_searches_are_identical(db, catalog):
    for index in range(4):
        await catalog.item(f"3000000{index}", f"Same score {index}", popularity=5)

    first = await search_catalog_service(payload={"limit": 3}, viewer=ANONYMOUS, db=db)
    second = await search_catalog_service(payload={"limit": 3}, viewer=ANONYMOUS, db=db)

    assert [row["id"] for row in first["results"]] == [row["id"] for row in second["results"]]
    assert first["pagination"] == second["pagination"]


@pytest.mark.asyncio
async def test_non_empty_results_are_cached_and_served_from_cache(db, catalog):
    await catalog.item("10000001", "Cached")
    client = AsyncMock()
    client.get.return_value = None
    cache = SearchCache(client)

    response = await search_catalog_service(payload={"query": "cached"}, viewer=ANONYMOUS, db=db, cache=cache)

    client.set.assert_awaited_once()
    key, raw = client.set.await_args.args
    assert client.set.await_args.kwargs["ex"] == 120

    client.get.return_value = raw
    broken_db = AsyncMock()
    hit = await search_catalog_service(payload={"query": "cached"}, viewer=ANONYMOUS, db=broken_db, cache=cache)
    assert hit["results"][0]["title"] == response["results"][0]["title"]
    assert client.get.await_args.args[0] == key
    broken_db.execute.assert_not_called()


@pytest.mark.asyncio
async def test_empty_results_are_not_cached(db):
    client = AsyncMock()
    client.get.return_value = None

    await search_catalog_service(payload={"query": "nothing"}, viewer=ANONYMOUS, db=db, cache=SearchCache(client))

    client.set.assert_not_awaited()


@pytest.mark.asyncio
async def test_storage_failures_surface_as_transient_errors():
    failure = OperationalError("SELECT", {}, Exception("connection reset"))
    db = AsyncMock()
    db.get_bind = MagicMock(return_value=SimpleNamespace(dialect=SimpleNamespace(name="sqlite")))
    db.execute.side_effect = failure
    db.scalar.side_effect = failure

    with pytest.raises(TransientStorageError) as exc_info:
        await search_catalog_service(payload={"query": "anything"}, viewer=ANONYMOUS, db=db)

    assert exc_info.value.status_code == 503
    assert "connection reset" not in exc_info.value.detail["message"]


@pytest.mark.asyncio
async def test_date_and_numeric_bounds_are_inclusive(db, catalog):
    created_at = catalog.now - timedelta(days=3)
    await catalog.item("10000001", "On the edge", views=10, popularity=4.5, age=timedelta(days=3))
    await catalog.item("10000002", "Too old", views=10, popularity=4.5, age=timedelta(days=4))
    await catalog.item("10000003", "Too busy", views=11, popularity=4.5, age=timedelta(days=3))

    response = await search_catalog_service(
        payload={
            "filters": {
                "dateRange": {"from": created_at.isoformat(), "to": created_at.isoformat()},
                "numericRanges": {
                    "views": {"min": 10, "max": 10},
                    "popularityScore": {"min": 4.5, "max": 4.5},
                },
            }
        },
        viewer=PREMIUM_MEMBER,
        db=db,
    )

    assert _titles(response) == ["On the edge"]
    assert response["pagination"]["total"] == 1
