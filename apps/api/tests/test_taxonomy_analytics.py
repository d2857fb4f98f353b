import pytest
from sqlalchemy.future import select

from models.catalog_item import CatalogItem
from models.interaction_event import EVENT_DOWNLOAD, EVENT_SHARE, EVENT_VIEW, InteractionEvent


@pytest.mark.asyncio
async def test_categories_are_ordered_featured_first(api_client, catalog):
    await catalog.category("zen", "Zen", sort_order=1)
    await catalog.category("anime", "Anime", sort_order=2)
    await catalog.category("retro", "Retro", featured=True, sort_order=5)

    response = await api_client.get("/categories")

    assert response.status_code == 200
    assert [row["slug"] for row in response.json()["categories"]] == ["retro", "zen", "anime"]

    featured = await api_client.get("/categories", params={"featured": "true"})
    assert [row["slug"] for row in featured.json()["categories"]] == ["retro"]


@pytest.mark.asyncio
async def test_category_listing_scopes_search_to_the_category(api_client, catalog):
    anime = await catalog.category("anime")
    await catalog.item("10000001", "In anime", categories=[anime])
    await catalog.item("10000002", "Elsewhere")

    response = await api_client.get("/categories/anime/sref")

    assert response.status_code == 200
    payload = response.json()
    assert payload["category"]["slug"] == "anime"
    assert [row["title"] for row in payload["results"]] == ["In anime"]


@pytest.mark.asyncio
async def test_unknown_category_slug_is_not_found(api_client):
    response = await api_client.get("/categories/nope/sref")

    assert response.status_code == 404
    assert response.json()["detail"] == {"code": "NOT_FOUND", "message": "Category not found", "details": None}


@pytest.mark.asyncio
async def test_popular_tags_are_ranked_by_usage(api_client, catalog):
    await catalog.tag("neon", usage_count=3)
    await catalog.tag("glow", usage_count=3)
    await catalog.tag("moss", usage_count=9)
    await catalog.tag("unused")

    popular = await api_client.get("/tags", params={"popular": "true"})
    searched = await api_client.get("/tags", params={"search": "NE"})

    assert [row["name"] for row in popular.json()["tags"]] == ["moss", "glow", "neon"]
    assert [row["name"] for row in searched.json()["tags"]] == ["neon"]


@pytest.mark.asyncio
async def test_track_appends_events_for_known_codes(api_client, catalog, session_maker):
    item = await catalog.item("10000001", "Tracked", downloads=2)

    view = await api_client.post(
        "/analytics/track",
        json={"event": "sref_view", "data": {"srefCode": "10000001", "referrer": "https://example.com"}},
    )
    download = await api_client.post("/analytics/track", json={"event": "download", "data": {"srefCode": "10000001"}})
    share = await api_client.post("/analytics/track", json={"event": "share", "data": {"srefCode": "10000001"}})
    unknown = await api_client.post("/analytics/track", json={"event": "share", "data": {"srefCode": "99999999"}})
    invalid = await api_client.post("/analytics/track", json={"event": "page_view"})

    assert view.json()["tracked"] is True
    assert download.status_code == share.status_code == 200
    assert unknown.json()["tracked"] is False
    assert invalid.status_code == 422

    async with session_maker() as session:
        events = (
            await session.execute(select(InteractionEvent).where(InteractionEvent.item_id == item.id))
        ).scalars().all()
        downloads = await session.scalar(select(CatalogItem.downloads).where(CatalogItem.id == item.id))
    assert sorted(event.event_type for event in events) == sorted([EVENT_VIEW, EVENT_DOWNLOAD, EVENT_SHARE])
    assert next(event for event in events if event.event_type == EVENT_VIEW).referrer == "https://example.com"
    assert downloads == 3


@pytest.mark.asyncio
async def test_popular_items_rank_by_events_in_the_timeframe(api_client, catalog):
    busy = await catalog.item("10000001", "Busy", views=1)
    quiet = await catalog.item("10000002", "Quiet", views=100)
    old = await catalog.item("10000003", "Old news")
    premium = await catalog.item("10000004", "Premium", premium=True)
    await catalog.views(busy, 4, hours_ago=2)
    await catalog.views(quiet, 1, hours_ago=2)
    await catalog.views(old, 9, hours_ago=24 * 10)
    await catalog.views(premium, 20, hours_ago=1)

    day = await api_client.get("/analytics/popular", params={"timeframe": "24h"})
    month = await api_client.get("/analytics/popular")
    bad = await api_client.get("/analytics/popular", params={"timeframe": "1y"})

    assert [row["code"] for row in day.json()["items"]] == ["10000001", "10000002"]
    assert day.json()["items"][0]["eventCount"] == 4
    assert [row["code"] for row in month.json()["items"]] == ["10000003", "10000001", "10000002"]
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_trending_items_carry_growth_metrics(api_client, catalog):
    climbing = await catalog.item("10000001", "Climbing")
    dormant = await catalog.item("10000002", "Dormant", popularity=1000)
    await catalog.views(climbing, 6, hours_ago=3)
    await catalog.views(climbing, 2, hours_ago=40)
    await catalog.views(dormant, 12, hours_ago=30)

    response = await api_client.get("/analytics/trending", params={"limit": 10})

    assert response.status_code == 200
    items = response.json()["items"]
    assert [row["code"] for row in items] == ["10000001"]
    assert items[0]["recentViews"] == 6
    assert items[0]["previousViews"] == 2
    assert items[0]["growthRate"] == 2.0


@pytest.mark.asyncio
async def test_trending_items_limit_is_bounded(api_client):
    response = await api_client.get("/analytics/trending", params={"limit": 51})
    assert response.status_code == 422
