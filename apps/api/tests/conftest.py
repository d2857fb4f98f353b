from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base, get_db
from main import app
from models.catalog_image import CatalogImage
from models.catalog_item import STATUS_ACTIVE, CatalogItem
from models.category import Category
from models.interaction_event import EVENT_VIEW, InteractionEvent
from models.search_analytic import SearchAnalytic
from models.tag import Tag
from models.user import User
from routers import rate_limit
from services.search_cache import SearchCache, get_search_cache


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "catalog.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def api_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_search_cache] = lambda: SearchCache()
    with patch("services.search_analytics.async_session_maker", session_maker):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_search_cache, None)


class CatalogFactory:
    """Seeds catalog rows on a session of its own."""

    def __init__(self, maker):
        self._maker = maker
        self.now = datetime.now(timezone.utc)

    async def _save(self, *rows):
        async with self._maker() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def user(self, user_id="user-1", *, premium=False, admin=False, deleted=False):
        return await self._save(
            User(
                id=user_id,
                email=f"{user_id}@example.com",
                username=user_id,
                premium=premium,
                admin=admin,
                deleted_at=self.now if deleted else None,
            )
        )

    async def category(self, slug, name=None, *, featured=False, sort_order=0):
        return await self._save(
            Category(slug=slug, name=name or slug.title(), featured=featured, sort_order=sort_order)
        )

    async def tag(self, name, *, usage_count=0):
        return await self._save(Tag(name=name, slug=name, usage_count=usage_count))

    async def item(
        self,
        code,
        title,
        *,
        description=None,
        status=STATUS_ACTIVE,
        premium=False,
        featured=False,
        verified=False,
        views=0,
        likes=0,
        favorites=0,
        downloads=0,
        popularity=0.0,
        age=timedelta(days=1),
        categories=(),
        tags=(),
        submitted_by=None,
        images=1,
    ):
        async with self._maker() as session:
            item = CatalogItem(
                code=code,
                slug=code,
                title=title,
                description=description,
                status=status,
                premium=premium,
                featured=featured,
                verified=verified,
                views=views,
                likes=likes,
                favorites=favorites,
                downloads=downloads,
                popularity_score=popularity,
                created_at=self.now - age,
                submitted_by_id=submitted_by,
            )
            item.categories = [await session.merge(category) for category in categories]
            item.tags = [await session.merge(tag) for tag in tags]
            item.images = [
                CatalogImage(
                    image_order=order,
                    image_url=f"https://cdn.example.com/{code}/{order}.webp",
                    thumbnail_url=f"https://cdn.example.com/{code}/{order}_thumb.webp",
                )
                for order in range(1, images + 1)
            ]
            session.add(item)
            await session.commit()
            return item

    async def views(self, item, count, *, hours_ago, event_type=EVENT_VIEW, user_id=None, referrer=None):
        at = self.now - timedelta(hours=hours_ago)
        rows = [
            InteractionEvent(item_id=item.id, event_type=event_type, created_at=at, user_id=user_id, referrer=referrer)
            for _ in range(count)
        ]
        if rows:
            await self._save(*rows)

    async def search_log(self, query, *, results_count, hours_ago=1):
        return await self._save(
            SearchAnalytic(
                query=query,
                results_count=results_count,
                created_at=self.now - timedelta(hours=hours_ago),
            )
        )


@pytest_asyncio.fixture
async def catalog(session_maker):
    return CatalogFactory(session_maker)
