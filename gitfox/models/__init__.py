"""Data models for the gitfox review service."""

from .github_types import CommitStatus, FileDiff, ReviewKey, ReviewRequest
from .outputs import FileReviewFragment, ReviewOutcome
from .review_state import ReviewLifecycle, ReviewState

__all__ = [
    "ReviewRequest",
    "ReviewKey",
    "FileDiff",
    "CommitStatus",
    "FileReviewFragment",
    "ReviewOutcome",
    "ReviewState",
    "ReviewLifecycle",
]
