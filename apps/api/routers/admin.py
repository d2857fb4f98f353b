"""Admin-only catalog maintenance and overview router."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import require_admin
from services.interaction_analytics import catalog_stats_service
from services.maintenance_queue import enqueue_counter_refresh_job
from services.viewer import Viewer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/stats")
async def catalog_stats(
    _admin: Viewer = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await catalog_stats_service(db=db)


@router.post("/counters/refresh", status_code=202)
async def refresh_counters(viewer: Viewer = Depends(require_admin)):
    """Queue a recompute of category/tag counts and popularity scores."""
    job = enqueue_counter_refresh_job()
    logger.info("counter_refresh_enqueued admin=%s job=%s", viewer.user_id, job.id)
    return {"job_id": job.id, "status": "queued"}
