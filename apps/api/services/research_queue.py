"""Durable research worker trigger (Redis/RQ)."""

from __future__ import annotations

from redis import Redis
from rq import Queue, Retry
from rq.job import Job

from config import settings


RESEARCH_QUEUE_NAME = "research_jobs"
RESEARCH_JOB_PATH = "services.research_worker.process_research_cycle_job"
RESEARCH_JOB_TIMEOUT_SECONDS = 1800


def get_redis_connection() -> Redis:
    """Build Redis connection used by RQ."""
    return Redis.from_url(settings.REDIS_URL)


def get_research_queue() -> Queue:
    """Return the configured research queue."""
    return Queue(
        name=RESEARCH_QUEUE_NAME,
        connection=get_redis_connection(),
        default_timeout=RESEARCH_JOB_TIMEOUT_SECONDS,
    )


def enqueue_research_worker_cycle(request_id: str) -> Job:
    """Wake one worker cycle for a freshly created request.

    The cycle dequeues the oldest pending request, which is not necessarily
    ``request_id``; the id only keeps job ids unique per trigger.
    """
    queue = get_research_queue()
    return queue.enqueue(
        RESEARCH_JOB_PATH,
        job_id=f"research:{request_id}",
        retry=Retry(max=2, interval=[30, 120]),
        job_timeout=RESEARCH_JOB_TIMEOUT_SECONDS,
        result_ttl=86400,
        failure_ttl=86400,
    )
