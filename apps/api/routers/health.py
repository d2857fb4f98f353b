"""
Health probes for the catalog API.
"""

import logging
from typing import Tuple

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
import redis.asyncio as redis

from config import settings, validate_security_settings
from database import engine

logger = logging.getLogger(__name__)

router = APIRouter()


async def _probe_database() -> Tuple[bool, str]:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("health_database_down: %s", exc)
        return False, f"down: {exc}"
    return True, "up"


async def _probe_redis() -> Tuple[bool, str]:
    client = redis.from_url(settings.REDIS_URL)
    try:
        await client.ping()
    except Exception as exc:
        logger.warning("health_redis_down: %s", exc)
        return False, f"down: {exc}"
    finally:
        await client.aclose()
    return True, "up"


@router.get("/health")
async def health_check():
    """
    Report database and Redis reachability.

    Redis only backs the search cache, rate limits and the maintenance queue,
    so an outage there degrades the service rather than taking it down.
    """
    database_ok, database_state = await _probe_database()
    redis_ok, redis_state = await _probe_redis()
    return {
        "status": "healthy" if database_ok and redis_ok else "degraded",
        "api": "up",
        "database": database_state,
        "redis": redis_state,
        "searchCache": "enabled" if settings.SEARCH_CACHE_ENABLED else "disabled",
    }


@router.get("/health/ready")
async def readiness_check():
    try:
        validate_security_settings()
    except ValueError as exc:
        return JSONResponse(
            status_code=503,
            content={"ready": False, "missing": ["JWT_SECRET"], "reason": str(exc)},
        )
    return {"ready": True}


@router.get("/health/live")
async def liveness_check():
    return {"alive": True}
