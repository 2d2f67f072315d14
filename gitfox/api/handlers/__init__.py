"""Review pipeline handlers."""

from .pr_review_handler import ReviewOrchestrator

__all__ = ["ReviewOrchestrator"]
