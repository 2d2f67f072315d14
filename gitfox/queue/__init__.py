"""Queue transport for review jobs."""

from .config import enqueue_review, get_all_queues, redis_conn, review_queue, run_review_job

__all__ = [
    "enqueue_review",
    "get_all_queues",
    "redis_conn",
    "review_queue",
    "run_review_job",
]
