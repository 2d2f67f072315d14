"""Entrypoint for the rq process that runs queued commit reviews."""

from __future__ import annotations

import logging
import socket
import sys
import uuid

from redis.exceptions import ConnectionError
from rq import Worker

from gitfox.config.settings import settings
from gitfox.errors import AuthConfigurationError
from gitfox.queue.config import get_all_queues, redis_conn
from gitfox.utils.logging import setup_observability

logger = logging.getLogger(__name__)

# rq marks a worker record with these states once its process is gone
DEAD_WORKER_STATES = ("dead", "failed")


def health_check() -> bool:
    """Return True if the review queue's Redis answers a ping."""
    try:
        return bool(redis_conn.ping())
    except Exception:
        logger.exception("Review worker cannot reach Redis")
        return False


def reap_dead_workers() -> int:
    """Deregister this deployment's dead worker records.

    Returns:
        Number of records removed
    """
    reaped = 0
    try:
        for record in Worker.all(connection=redis_conn):
            if not record.name.startswith(settings.worker_name):
                continue
            if record.state in DEAD_WORKER_STATES:
                logger.info(f"Deregistering dead review worker {record.name} ({record.state})")
                record.register_death()
                reaped += 1
    except Exception:
        logger.exception("Could not list review workers for cleanup")
    return reaped


def get_unique_worker_name() -> str:
    """rq needs distinct worker names; a configured replica id keeps restarts stable."""
    if settings.worker_replica_id:
        return f"{settings.worker_name}-{settings.worker_replica_id}"
    return f"{settings.worker_name}-{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


def _preflight() -> None:
    """Exit with status 1 when a review could never succeed in this process."""
    try:
        settings.require_credentials()
    except AuthConfigurationError:
        logger.exception("GitHub or model credentials missing; review worker not started")
        sys.exit(1)


def start_worker(run: bool = True) -> Worker:
    """Build the review worker and, when ``run`` is set, block processing jobs."""
    setup_observability()
    _preflight()
    reap_dead_workers()

    queues = get_all_queues()
    if not queues:
        logger.error("No review queues configured; review worker not started")
        sys.exit(1)

    name = get_unique_worker_name()
    logger.info(f"Review worker {name} listening on {', '.join(q.name for q in queues)}")
    review_worker = Worker(
        queues=queues,
        connection=redis_conn,
        name=name,
        # Registration must outlive the longest review job
        worker_ttl=settings.worker_job_timeout + 60,
    )
    if not run:
        return review_worker

    try:
        review_worker.work(
            with_scheduler=settings.worker_with_scheduler,
            logging_level=getattr(logging, settings.log_level),
        )
    except ConnectionError:
        logger.exception(f"Review worker {name} lost its Redis connection")
        sys.exit(1)
    except Exception:
        logger.exception(f"Review worker {name} stopped on an unexpected error")
        sys.exit(1)

    logger.info(f"Review worker {name} shut down")
    return review_worker


if __name__ == "__main__":
    start_worker(run=True)
