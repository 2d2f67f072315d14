"""Review lifecycle state machine.

A review starts ``PENDING`` and moves exactly once to ``SUCCEEDED`` or
``FAILED``. Each state maps onto a commit status so the pull request checks
list mirrors the review.
"""

from enum import Enum

from gitfox.errors import InvalidTransitionError
from gitfox.models.github_types import CommitStatusState, ReviewKey


class ReviewState(str, Enum):
    """States of one review."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ReviewState.PENDING

    @property
    def commit_status(self) -> CommitStatusState:
        """Commit status state that reflects this review state."""
        return _COMMIT_STATUS[self]

    @property
    def default_description(self) -> str:
        return _DESCRIPTIONS[self]


_COMMIT_STATUS: dict[ReviewState, CommitStatusState] = {
    ReviewState.PENDING: "pending",
    ReviewState.SUCCEEDED: "success",
    ReviewState.FAILED: "failure",
}

_DESCRIPTIONS: dict[ReviewState, str] = {
    ReviewState.PENDING: "AI review in progress",
    ReviewState.SUCCEEDED: "AI review completed",
    ReviewState.FAILED: "AI review failed",
}

_ALLOWED_TRANSITIONS: dict[ReviewState, frozenset[ReviewState]] = {
    ReviewState.PENDING: frozenset({ReviewState.SUCCEEDED, ReviewState.FAILED}),
    ReviewState.SUCCEEDED: frozenset(),
    ReviewState.FAILED: frozenset(),
}


class ReviewLifecycle:
    """Tracks the state of a single review and rejects illegal transitions."""

    def __init__(self, key: ReviewKey) -> None:
        self.key = key
        self.state = ReviewState.PENDING
        self.history: list[ReviewState] = [ReviewState.PENDING]

    def __repr__(self) -> str:
        return f"<ReviewLifecycle(key={self.key}, state={self.state.value})>"

    @property
    def is_finished(self) -> bool:
        return self.state.is_terminal

    def transition(self, new_state: ReviewState) -> ReviewState:
        """
        Move the review to ``new_state``.

        Args:
            new_state: Target state, must be terminal

        Returns:
            The new state

        Raises:
            InvalidTransitionError: If the review already finished or the
                target is not reachable from the current state
        """
        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Review {self.key} cannot move from {self.state.value} "
                f"to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)
        return new_state

    def succeed(self) -> ReviewState:
        return self.transition(ReviewState.SUCCEEDED)

    def fail(self) -> ReviewState:
        return self.transition(ReviewState.FAILED)
