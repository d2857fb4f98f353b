"""Read-through JSON cache for search responses (Redis)."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "sref:cache"


def build_cache_key(namespace: str, parts: Dict[str, Any]) -> str:
    """Hash a normalized request tuple into a compact cache key."""
    canonical = json.dumps(parts, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{CACHE_KEY_PREFIX}:{namespace}:{digest}"


class SearchCache:
    """Best-effort cache: every Redis failure is logged and treated as a miss."""

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def get_json(self, key: str) -> Optional[Any]:
        if self._client is None:
            return None
        try:
            raw = await self._client.get(key)
        except Exception as exc:
            logger.warning("search_cache_get_failed key=%s: %s", key, exc)
            return None
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("search_cache_corrupt_entry key=%s", key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.set(key, json.dumps(value, default=str), ex=max(int(ttl_seconds), 1))
            return True
        except Exception as exc:
            logger.warning("search_cache_set_failed key=%s: %s", key, exc)
            return False

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        except Exception as exc:
            logger.debug("search_cache_close_failed: %s", exc)


async def get_search_cache() -> AsyncIterator[SearchCache]:
    """FastAPI dependency; yields a disabled cache when caching is switched off."""
    if not settings.SEARCH_CACHE_ENABLED:
        yield SearchCache()
        return
    cache = SearchCache(redis.from_url(settings.REDIS_URL, decode_responses=True))
    try:
        yield cache
    finally:
        await cache.close()
