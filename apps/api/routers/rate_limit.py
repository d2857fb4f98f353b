"""Fixed-window request quotas backed by Redis, with an in-process fallback."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict

from fastapi import Request
import redis.asyncio as redis
from redis.exceptions import RedisError

from config import settings
from services.errors import RateLimitedError

logger = logging.getLogger(__name__)

# window key -> hits; keys embed the window index so stale windows never match
_local_counters: Dict[str, int] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _window_key(scope: str, client_id: str, window_seconds: int, now: float) -> str:
    return f"sref:rate:{scope}:{client_id}:{int(now // window_seconds)}"


async def _count_in_redis(key: str, window_seconds: int) -> int:
    client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    try:
        async with client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, window_seconds)
            hits, _ = await pipe.execute()
    finally:
        await client.aclose()
    return int(hits)


async def _count_locally(key: str) -> int:
    async with _local_lock:
        scope_prefix = key.rsplit(":", 1)[0] + ":"
        for stale in [k for k in _local_counters if k.startswith(scope_prefix) and k != key]:
            del _local_counters[stale]
        _local_counters[key] = _local_counters.get(key, 0) + 1
        return _local_counters[key]


def _limits_disabled(request: Request) -> bool:
    return not settings.RATE_LIMITS_ENABLED or getattr(request.app.state, "disable_rate_limits", False)


def rate_limit(scope: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Build a dependency allowing ``limit`` requests per client per window for ``scope``."""

    async def _dependency(request: Request) -> None:
        if _limits_disabled(request):
            return

        now = time.time()
        key = _window_key(scope, _client_identifier(request), window_seconds, now)
        try:
            hits = await _count_in_redis(key, window_seconds)
        except (RedisError, OSError) as exc:
            logger.debug("rate_limit_redis_unavailable scope=%s: %s", scope, exc)
            hits = await _count_locally(key)

        if hits > limit:
            retry_after = int(window_seconds - (now % window_seconds))
            logger.info("rate_limited scope=%s hits=%s limit=%s", scope, hits, limit)
            raise RateLimitedError(scope, limit=limit, window_seconds=window_seconds, retry_after=retry_after)

    return _dependency
