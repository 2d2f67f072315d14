"""Posts review comments and commit statuses with bounded retries."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from gitfox.config.settings import Settings
from gitfox.errors import SourceControlError
from gitfox.models.github_types import CommitStatus
from gitfox.models.review_state import ReviewState
from gitfox.services.source_control import SourceControlAPI
from gitfox.utils.retry import with_exponential_backoff

logger = logging.getLogger(__name__)


@dataclass
class ReportResult:
    """Outcome of one reporting call after retries.

    A failed result is a reporting failure: the caller logs it and carries on,
    nothing that already happened is rolled back.
    """

    operation: str
    ok: bool
    attempts: int
    error: SourceControlError | None = None

    def __bool__(self) -> bool:
        return self.ok


class StatusReporter:
    """
    Wraps the source-control capability for the pipeline's outbound side effects.

    Transient errors (timeouts, 5xx) are retried with exponential backoff up to
    ``report_max_attempts``. Auth and other 4xx errors return immediately.
    """

    def __init__(
        self,
        source_control: SourceControlAPI,
        settings: Settings,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.source_control = source_control
        self.context = settings.status_context
        self.max_attempts = settings.report_max_attempts
        self.initial_delay = settings.report_initial_delay_seconds
        self.max_delay = settings.report_max_delay_seconds
        self.sleep = sleep

    async def set_status(
        self,
        repository: str,
        commit_sha: str,
        state: ReviewState,
        description: str | None = None,
    ) -> ReportResult:
        """Reflect ``state`` on the commit as this service's status check."""
        status = CommitStatus(
            state=state.commit_status,
            description=(description or state.default_description)[:140],
            context=self.context,
        )
        return await self._report(
            f"set_status({status.state})",
            self.source_control.set_commit_status,
            repository,
            commit_sha,
            status.state,
            status.description,
            status.context,
        )

    async def post_comment(self, repository: str, pr_number: int, body: str) -> ReportResult:
        """Post ``body`` as a comment on the pull request conversation."""
        return await self._report(
            "post_comment", self.source_control.post_comment, repository, pr_number, body
        )

    async def _report(
        self, operation: str, func: Callable[..., Awaitable[None]], *args: Any
    ) -> ReportResult:
        attempts = 0

        async def _attempt() -> None:
            nonlocal attempts
            attempts += 1
            await func(*args)

        _attempt.__qualname__ = operation
        try:
            await with_exponential_backoff(
                _attempt,
                max_retries=self.max_attempts,
                initial_delay=self.initial_delay,
                max_delay=self.max_delay,
                sleep=self.sleep,
            )
        except SourceControlError as exc:
            logger.error(f"{operation} failed after {attempts} attempt(s): {exc}")
            return ReportResult(operation=operation, ok=False, attempts=attempts, error=exc)
        return ReportResult(operation=operation, ok=True, attempts=attempts)
