"""Catalog maintenance job queue helpers (Redis/RQ)."""

from __future__ import annotations

from typing import Optional

from redis import Redis
from rq import Queue, Retry
from rq.exceptions import NoSuchJobError
from rq.job import Job, JobStatus

from config import settings


MAINTENANCE_QUEUE_NAME = "catalog_maintenance"
COUNTER_REFRESH_JOB_ID = "catalog:counters:refresh"
PENDING_STATUSES = (JobStatus.QUEUED, JobStatus.STARTED, JobStatus.DEFERRED, JobStatus.SCHEDULED)


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_maintenance_queue() -> Queue:
    return Queue(
        name=MAINTENANCE_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=600,
    )


def _pending_refresh_job(queue: Queue) -> Optional[Job]:
    try:
        job = Job.fetch(COUNTER_REFRESH_JOB_ID, connection=queue.connection)
    except NoSuchJobError:
        return None
    return job if job.get_status() in PENDING_STATUSES else None


def enqueue_counter_refresh_job() -> Job:
    """Enqueue a counter refresh unless one is already queued or running.

    RQ does not deduplicate on ``job_id``, so a pending job under the fixed id is
    returned as is instead of being enqueued a second time.
    """
    queue = get_maintenance_queue()
    pending = _pending_refresh_job(queue)
    if pending is not None:
        return pending
    return queue.enqueue(
        "services.catalog_maintenance.refresh_catalog_counters_job",
        job_id=COUNTER_REFRESH_JOB_ID,
        retry=Retry(max=3, interval=[15, 60, 180]),
        job_timeout=600,
        result_ttl=3600,
        failure_ttl=86400,
    )
