"""In-memory guard that allows one active review per commit."""

import asyncio
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from gitfox.errors import InvalidTransitionError
from gitfox.models.github_types import ReviewKey
from gitfox.models.review_state import ReviewLifecycle, ReviewState

logger = logging.getLogger(__name__)


@dataclass
class GuardEntry:
    """Lifecycle of one review plus the time it finished (monotonic clock)."""

    lifecycle: ReviewLifecycle
    completed_at: float | None = None

    @property
    def state(self) -> ReviewState:
        return self.lifecycle.state


class DedupGuard:
    """
    Tracks in-flight and recently finished reviews keyed by (repository, commit).

    ``try_begin`` is the only check-and-set in the system. It runs under a lock
    and contains no await, so concurrent callers for the same key (tasks on
    one loop or threads sharing the guard) cannot both win.

    A finished review keeps blocking the key for ``retention_seconds`` so
    rapid webhook redeliveries stay no-ops. After that the entry is evicted
    and the next request starts a fresh review. Eviction happens lazily on
    every ``try_begin`` and through ``evict`` / ``run_sweeper``.
    """

    def __init__(
        self,
        retention_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._entries: dict[ReviewKey, GuardEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def try_begin(self, key: ReviewKey) -> ReviewLifecycle | None:
        """
        Claim ``key`` for a new review.

        Returns:
            The new PENDING lifecycle when the caller may proceed, or None
            when the key is pending or still inside its retention window
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._is_expired(entry, self._clock()):
                del self._entries[key]
                entry = None

            if entry is not None:
                logger.info(
                    f"Review {key} already {entry.state.value}; ignoring duplicate request"
                )
                return None

            lifecycle = ReviewLifecycle(key)
            self._entries[key] = GuardEntry(lifecycle=lifecycle)
            return lifecycle

    def complete(self, key: ReviewKey, state: ReviewState) -> None:
        """
        Move the pending review for ``key`` to ``state`` and start its retention.

        Raises:
            InvalidTransitionError: If ``state`` is not terminal or no pending
                review exists for ``key``
        """
        if not state.is_terminal:
            raise InvalidTransitionError(f"Cannot complete review {key} as {state.value}")
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                raise InvalidTransitionError(f"No review in progress for {key}")
            if entry.lifecycle.state is not state:
                entry.lifecycle.transition(state)
            elif entry.completed_at is not None:
                raise InvalidTransitionError(f"Review {key} already {state.value}")
            entry.completed_at = self._clock()
            logger.debug(f"Review {key} finished as {state.value}")

    def release(self, key: ReviewKey) -> None:
        """Drop a pending entry without finishing it (review abandoned)."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.lifecycle.is_finished:
                del self._entries[key]
                logger.info(f"Released abandoned review {key}")

    def state_of(self, key: ReviewKey) -> ReviewState | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.state if entry else None

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries.values() if not e.lifecycle.is_finished)

    def evict(self) -> int:
        """Remove finished entries past the retention window.

        Returns:
            Number of evicted entries
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished reviews from dedup guard")
        return len(expired)

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Evict expired entries every ``interval_seconds`` until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            self.evict()

    def _is_expired(self, entry: GuardEntry, now: float) -> bool:
        if entry.completed_at is None:
            return False
        return now - entry.completed_at >= self.retention_seconds
