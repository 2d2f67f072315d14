"""Redis-backed queue transport for review requests.

The gateway can hand reviews to a separate worker process instead of running
them in the API process. The job carries only the ``ReviewRequest`` fields;
the worker runs the same ``ReviewOrchestrator`` and stores the outcome
summary as the job result.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from redis import Redis
from rq import Queue
from rq.exceptions import NoSuchJobError
from rq.job import Job

from gitfox.config.settings import Settings, settings
from gitfox.models.github_types import ReviewRequest

logger = logging.getLogger(__name__)

QUEUE_NAME = "reviews"
ACTIVE_JOB_STATUSES = {"queued", "started", "deferred", "scheduled"}
CLAIM_KEY_PREFIX = "gitfox:review-claim:"


def build_redis_connection(config: Settings) -> Redis:
    if config.redis_url:
        return Redis.from_url(config.redis_url, socket_timeout=5)
    return Redis(
        host=config.redis_host,
        port=config.redis_port,
        password=config.redis_password,
        socket_timeout=5,
    )


# Single Redis connection per process; redis-py connects lazily on first use
redis_conn = build_redis_connection(settings)
review_queue = Queue(QUEUE_NAME, connection=redis_conn)


def get_all_queues() -> list[Queue]:
    """Return all queues a worker should listen on."""
    return [review_queue]


def _sanitize_repo(repo_name: str) -> str:
    """Return a Redis-safe repo identifier for job ids (Redis keys disallow ':')."""
    return repo_name.replace(":", "-").replace("/", "__")


def job_id_for(request: ReviewRequest) -> str:
    """Deterministic job id per (repository, commit) so redeliveries collapse."""
    return f"review-{_sanitize_repo(request.repository)}-{request.commit_sha}"


def _fetch_existing_job(job_id: str) -> Job | None:
    """Attempt to fetch an existing job by id without raising."""
    try:
        return Job.fetch(job_id, connection=redis_conn)
    except NoSuchJobError:
        return None


def _claim_key(job_id: str) -> str:
    return f"{CLAIM_KEY_PREFIX}{job_id}"


def _claim_review(job_id: str) -> bool:
    """Atomically claim ``job_id`` for the retention window (Redis SET NX EX).

    Concurrent webhook deliveries race on this key; exactly one wins.
    """
    ttl = max(int(settings.dedup_retention_seconds), 1)
    return bool(redis_conn.set(_claim_key(job_id), "1", nx=True, ex=ttl))


def _ended_recently(job: Job) -> bool:
    """True if ``job`` finished inside the dedup retention window."""
    ended_at = job.ended_at
    if ended_at is None:
        return False
    # rq stores naive UTC timestamps in older releases
    if ended_at.tzinfo is None:
        ended_at = ended_at.replace(tzinfo=timezone.utc)
    age = (datetime.now(timezone.utc) - ended_at).total_seconds()
    return age < settings.dedup_retention_seconds


def run_review_job(repository: str, pr_number: int, commit_sha: str) -> dict[str, Any]:
    """RQ job entrypoint that executes the async review pipeline.

    Deduplication already happened at enqueue time; the orchestrator's own
    guard only lives for this job (rq forks a work-horse per job).
    """
    request = ReviewRequest(repository=repository, pr_number=pr_number, commit_sha=commit_sha)
    logger.info(f"Starting review job for {request}")
    # Deferred import keeps queue config lightweight for non-worker processes
    from gitfox.api.handlers.pr_review_handler import ReviewOrchestrator

    orchestrator = ReviewOrchestrator.from_settings(settings)
    outcome = asyncio.run(orchestrator.run(request))
    if outcome is None:
        logger.info(f"Review job for {request} skipped as duplicate")
        return {"state": "duplicate"}

    logger.info(f"Finished review job for {request}: {outcome.state.value}")
    return outcome.summary()


def enqueue_review(request: ReviewRequest) -> tuple[str, bool]:
    """Enqueue a review job unless the same commit is queued, running or recently reviewed.

    Returns:
        (job_id, created) where ``created`` is False for a duplicate delivery

    Raises:
        redis.exceptions.ConnectionError: If Redis is unreachable
    """
    job_id = job_id_for(request)

    existing_job = _fetch_existing_job(job_id)
    if existing_job:
        status = existing_job.get_status(refresh=True)
        if status in ACTIVE_JOB_STATUSES or _ended_recently(existing_job):
            logger.info(f"Skipping duplicate review job for {request} (status={status})")
            return job_id, False

    if not _claim_review(job_id):
        logger.info(f"Skipping duplicate review job for {request} (claimed concurrently)")
        return job_id, False

    logger.info(f"Enqueuing review job for {request} on queue '{review_queue.name}'")
    review_queue.enqueue(
        run_review_job,
        request.repository,
        request.pr_number,
        request.commit_sha,
        job_id=job_id,
        job_timeout=settings.worker_job_timeout,
        result_ttl=max(int(settings.dedup_retention_seconds), 60),
    )
    return job_id, True
