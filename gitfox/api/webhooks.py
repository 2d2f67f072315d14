"""GitHub webhook gateway and queue inspection endpoints."""

import hashlib
import hmac
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError
from redis.exceptions import ConnectionError as RedisConnectionError
from rq import Worker
from rq.exceptions import NoSuchJobError
from rq.job import Job
from rq.registry import FailedJobRegistry, FinishedJobRegistry, StartedJobRegistry

from gitfox.api.handlers.pr_review_handler import ReviewOrchestrator
from gitfox.api.review import get_orchestrator
from gitfox.config.settings import Settings
from gitfox.models.github_types import ReviewRequest
from gitfox.queue.config import enqueue_review, redis_conn, review_queue

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhook", tags=["webhooks"])

REVIEW_ACTIONS = {"opened", "reopened", "synchronize"}


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/queue/status")
async def queue_status() -> dict[str, int]:
    """Return aggregate queue metrics."""
    queued_jobs = review_queue.count
    started_registry = StartedJobRegistry(queue=review_queue)
    finished_registry = FinishedJobRegistry(queue=review_queue)
    failed_registry = FailedJobRegistry(queue=review_queue)
    active_workers = len(Worker.all(connection=redis_conn))

    return {
        "queued": queued_jobs,
        "started": len(started_registry),
        "finished": len(finished_registry),
        "failed": len(failed_registry),
        "active_workers": active_workers,
    }


@router.get("/queue/job/{job_id}")
async def queue_job(job_id: str) -> dict[str, Any]:
    """Return details for a specific queued review, including its outcome summary."""
    try:
        job = Job.fetch(job_id, connection=redis_conn)
    except NoSuchJobError as err:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Job not found"
        ) from err

    status_value = job.get_status(refresh=True)
    latest_result = job.latest_result()
    latest_return = (
        getattr(latest_result, "return_value", None) if latest_result else None
    )
    latest_traceback = (
        getattr(latest_result, "exc_string", None) if latest_result else None
    )
    return {
        "job_id": job_id,
        "status": status_value,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "ended_at": job.ended_at.isoformat() if job.ended_at else None,
        "outcome": latest_return if status_value == "finished" else None,
        "exc_info": latest_traceback if status_value == "failed" else None,
    }


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    """
    Validate a GitHub webhook signature.

    Args:
        secret: Configured webhook secret
        body: Raw request body
        signature: Value of the X-Hub-Signature-256 header

    Raises:
        HTTPException: If signature is missing or invalid, or no secret is configured
    """
    if not signature:
        logger.warning("Missing X-Hub-Signature-256 header")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Hub-Signature-256 header",
        )

    if not secret:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured",
        )
    expected_signature = (
        f"sha256={hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()}"
    )

    if not hmac.compare_digest(expected_signature, signature):
        logger.warning("Invalid webhook signature")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )


def extract_review_request(payload: dict[str, Any]) -> ReviewRequest | None:
    """Build a ``ReviewRequest`` from a pull_request event payload, if complete."""
    pr_data = payload.get("pull_request") or {}
    try:
        return ReviewRequest(
            repository=(payload.get("repository") or {}).get("full_name") or "",
            pr_number=pr_data.get("number") or 0,
            commit_sha=(pr_data.get("head") or {}).get("sha") or "",
        )
    except ValidationError as exc:
        logger.warning(f"Ignoring pull_request event with incomplete payload: {exc}")
        return None


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: str | None = Header(None, alias="X-GitHub-Event"),
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    settings: Settings = Depends(get_settings),
) -> dict[str, str | int]:
    """
    Handle GitHub webhook events.

    The response is sent as soon as the review is dispatched; it never waits
    for the review itself.

    Raises:
        HTTPException: If the signature is invalid or the queue is unreachable
    """
    body = await request.body()
    verify_signature(settings.github_webhook_secret, body, x_hub_signature_256)

    payload: dict[str, Any] = await request.json()

    if x_github_event == "ping":
        logger.info("Received ping event from GitHub")
        return {"message": "pong"}

    if x_github_event != "pull_request":
        logger.info(f"Ignoring event type: {x_github_event}")
        return {"message": f"Event {x_github_event} not supported"}

    action = payload.get("action")
    pr_data = payload.get("pull_request") or {}
    pr_number = pr_data.get("number")
    pr_state = pr_data.get("state")

    logger.info(f"Received PR {action} event for PR #{pr_number} (state: {pr_state})")

    if action not in REVIEW_ACTIONS:
        logger.info(f"Ignoring PR {action} event")
        return {"message": f"Event {action} ignored"}

    if pr_state != "open":
        logger.info(f"Skipping review for PR #{pr_number} - PR is {pr_state}")
        return {
            "message": f"PR #{pr_number} is {pr_state}, skipping review",
            "status": "skipped",
        }

    review_request = extract_review_request(payload)
    if review_request is None:
        return {"message": "Invalid pull_request payload", "status": "error"}

    if settings.review_dispatch == "queue":
        return _dispatch_to_queue(review_request)
    return _dispatch_inline(review_request, get_orchestrator(request))


def _dispatch_inline(
    review_request: ReviewRequest, orchestrator: ReviewOrchestrator
) -> dict[str, str | int]:
    if orchestrator.handle(review_request) is None:
        return {
            "message": f"Review for {review_request.key} already running or recently completed",
            "status": "duplicate",
        }
    logger.info(f"Started background review for {review_request}")
    return {"message": f"PR #{review_request.pr_number} review started", "status": "accepted"}


def _dispatch_to_queue(review_request: ReviewRequest) -> dict[str, str | int]:
    try:
        job_id, created = enqueue_review(review_request)
    except RedisConnectionError as exc:
        logger.exception(f"Redis unavailable while enqueuing review job for {review_request}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Queue backend unavailable",
        ) from exc

    if not created:
        return {
            "message": f"Review for {review_request.key} already queued or recently completed",
            "status": "duplicate",
            "job_id": job_id,
        }
    logger.info(f"Queued background review for {review_request}")
    return {
        "message": f"PR #{review_request.pr_number} review queued",
        "status": "accepted",
        "job_id": job_id,
    }
