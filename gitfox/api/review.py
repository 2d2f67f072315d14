"""HTTP transport for review requests from a peer process."""

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status

from gitfox.api.handlers.pr_review_handler import ReviewOrchestrator
from gitfox.models.github_types import ReviewRequest

logger = logging.getLogger(__name__)
router = APIRouter(tags=["review"])


def get_orchestrator(request: Request) -> ReviewOrchestrator:
    """Return the app's orchestrator, or 503 while the app is not started."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Review service not initialized",
        )
    return orchestrator


@router.post("/review")
async def trigger_review(
    review_request: ReviewRequest,
    wait: bool = False,
    orchestrator: ReviewOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """
    Start a review for one commit of a pull request.

    Args:
        review_request: ``{repository, pr_number, commit_sha}``
        wait: Hold the response until the review finished and include its
            outcome summary. The review keeps running if the caller goes away.

    Returns:
        Acknowledgment, plus ``outcome`` when ``wait`` is set
    """
    task = orchestrator.handle(review_request)
    if task is None:
        return {
            "status": "duplicate",
            "message": f"Review for {review_request.key} already in progress or recently completed",
        }

    if not wait:
        return {"status": "AI review triggered", "review": str(review_request)}

    outcome = await asyncio.shield(task)
    return {
        "status": "completed",
        "review": str(review_request),
        "outcome": outcome.summary(),
    }
