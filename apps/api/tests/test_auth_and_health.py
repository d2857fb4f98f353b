from unittest.mock import patch

import pytest

from services.session_token import create_session_token, decode_session_token
from services.viewer import ANONYMOUS, resolve_viewer


def test_session_token_round_trip_keeps_subject_only():
    token = create_session_token("user-1", username="neo")["token"]
    claims = decode_session_token(token)
    assert claims["sub"] == "user-1"
    assert claims["username"] == "neo"
    assert "premium" not in claims


def test_tampered_token_is_rejected():
    token = create_session_token("user-1")["token"]
    with pytest.raises(ValueError):
        decode_session_token(token[:-2] + "xx")


@pytest.mark.asyncio
async def test_viewer_entitlements_come_from_the_database(db, catalog):
    await catalog.user("premium-1", premium=True)
    await catalog.user("admin-1", admin=True)
    await catalog.user("gone", premium=True, deleted=True)

    premium = await resolve_viewer("premium-1", db)
    admin = await resolve_viewer("admin-1", db)
    ghost = await resolve_viewer("ghost", db)

    assert premium.entitled and not premium.admin
    assert admin.entitled and admin.admin
    assert ghost is ANONYMOUS
    assert await resolve_viewer("gone", db) is ANONYMOUS
    assert await resolve_viewer(None, db) is ANONYMOUS


@pytest.mark.asyncio
async def test_liveness_and_root(api_client):
    live = await api_client.get("/health/live")
    root = await api_client.get("/")

    assert live.json() == {"alive": True}
    assert root.json()["name"] == "SREF Gallery API"


@pytest.mark.asyncio
async def test_readiness_reports_insecure_secret(api_client):
    with patch("config.settings.JWT_SECRET", "change_me_in_production"):
        response = await api_client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["missing"] == ["JWT_SECRET"]


@pytest.mark.asyncio
async def test_rate_limit_falls_back_to_local_counter(api_client):
    from main import app

    app.state.disable_rate_limits = False
    with patch("routers.rate_limit.settings.REDIS_URL", "redis://127.0.0.1:1/0"):
        statuses = [
            (await api_client.get("/search/suggestions", params={"q": "neon"})).status_code
            for _ in range(3)
        ]
    assert statuses == [200, 200, 200]


@pytest.mark.asyncio
async def test_rate_limit_rejects_requests_over_quota_with_retry_after():
    from types import SimpleNamespace
    from unittest.mock import AsyncMock

    from redis.exceptions import RedisError
    from starlette.requests import Request

    from routers.rate_limit import rate_limit
    from services.errors import RateLimitedError

    request = Request({
        "type": "http",
        "headers": [],
        "client": ("10.0.0.9", 4000),
        "app": SimpleNamespace(state=SimpleNamespace()),
    })
    dependency = rate_limit("quota_test", limit=2, window_seconds=60)

    with patch("routers.rate_limit._count_in_redis", AsyncMock(side_effect=RedisError("down"))):
        await dependency(request)
        await dependency(request)
        with pytest.raises(RateLimitedError) as excinfo:
            await dependency(request)

    assert excinfo.value.status_code == 429
    assert excinfo.value.detail["code"] == "RATE_LIMITED"
    assert 1 <= int(excinfo.value.headers["Retry-After"]) <= 60
