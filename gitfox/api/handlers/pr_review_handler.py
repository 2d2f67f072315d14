"""Pull request review orchestration.

Turns one ``ReviewRequest`` into the review's external side effects: commit
status ``pending``, per-file analysis, one aggregated comment, and a final
commit status. Both transports (HTTP in ``gitfox.api.review`` and the Redis
queue in ``gitfox.queue.config``) call into ``ReviewOrchestrator``.
"""

import asyncio
import logging
from functools import partial

from gitfox.agents.diff_analyzer import AgentDiffAnalyzer
from gitfox.config.settings import Settings
from gitfox.errors import (
    NotFoundError,
    RateLimitedError,
    SourceControlAuthError,
    SourceControlError,
    SourceControlTransientError,
    UpstreamFetchFailure,
)
from gitfox.models.github_types import FileDiff, ReviewKey, ReviewRequest
from gitfox.models.outputs import ReviewOutcome
from gitfox.models.review_state import ReviewState
from gitfox.services.dedup_guard import DedupGuard
from gitfox.services.fanout import DiffFanoutPool
from gitfox.services.github_auth import build_github_credentials
from gitfox.services.source_control import GitHubSourceControl, SourceControlAPI
from gitfox.services.status_reporter import StatusReporter
from gitfox.utils.retry import with_exponential_backoff

logger = logging.getLogger(__name__)


# === MAIN HANDLER ===


class ReviewOrchestrator:
    """
    Entry point of the review pipeline.

    === BEHAVIOR ===

    handle(request):
        Claim the request's key in the dedup guard. Duplicates return None
        with no side effects. Otherwise spawn one task running the pipeline
        and return its handle; the caller never waits on the review.

    Pipeline (one task per key):
        1. Set commit status "pending". A failure here is logged only.
        2. Fetch changed files. Transient errors are retried; any remaining
           error fails the review: status "failure", no comment.
        3. Drop files without a patch, fan out the rest.
        4. Post the aggregated comment, then set status "success".
        5. Finish the guard entry so redeliveries stay no-ops until the
           retention window passes.

    Edge Cases:
        - Comment or status post fails after retries: logged, the review
          still finishes; earlier side effects are not rolled back
        - Unexpected error inside the fan-out: review fails, no comment
        - Any other unexpected error: status "failure" is still attempted, the
          guard entry finishes as FAILED and the error propagates from the task
        - Task cancelled (shutdown): no further side effects, guard entry
          released so the commit can be reviewed again
    """

    def __init__(
        self,
        settings: Settings,
        source_control: SourceControlAPI,
        fanout: DiffFanoutPool,
        reporter: StatusReporter,
        guard: DedupGuard | None = None,
    ) -> None:
        self.settings = settings
        self.source_control = source_control
        self.fanout = fanout
        self.reporter = reporter
        self.guard = guard or DedupGuard(retention_seconds=settings.dedup_retention_seconds)
        self._tasks: dict[ReviewKey, asyncio.Task[ReviewOutcome]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    @classmethod
    def from_settings(
        cls, settings: Settings, guard: DedupGuard | None = None
    ) -> "ReviewOrchestrator":
        """Wire the GitHub and OpenAI backed collaborators from ``settings``."""
        source_control = GitHubSourceControl(settings, build_github_credentials(settings))
        fanout = DiffFanoutPool.from_settings(AgentDiffAnalyzer.from_settings(settings), settings)
        reporter = StatusReporter(source_control, settings)
        return cls(settings, source_control, fanout, reporter, guard)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def task_for(self, key: ReviewKey) -> asyncio.Task[ReviewOutcome] | None:
        return self._tasks.get(key)

    # --- entry points ---

    def handle(self, request: ReviewRequest) -> asyncio.Task[ReviewOutcome] | None:
        """Start reviewing ``request`` in the background.

        Must be called from a running event loop.

        Returns:
            The review task, or None when the request is a duplicate
        """
        key = request.key
        if self.guard.try_begin(key) is None:
            return None

        task = asyncio.create_task(self._execute(request), name=f"review:{request}")
        self._tasks[key] = task
        task.add_done_callback(partial(self._forget, key))
        logger.info(f"Started review for {request}")
        return task

    async def run(self, request: ReviewRequest) -> ReviewOutcome | None:
        """Review ``request`` in the current task and return the outcome.

        Returns:
            The outcome, or None when the request is a duplicate
        """
        if self.guard.try_begin(request.key) is None:
            return None
        logger.info(f"Running review for {request}")
        return await self._execute(request)

    # --- lifecycle ---

    def start(self) -> None:
        """Start the background eviction sweep of the dedup guard."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(
                self.guard.run_sweeper(self.settings.dedup_sweep_interval_seconds),
                name="dedup-sweeper",
            )

    async def drain(self) -> None:
        """Wait until every review started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Abandon in-flight reviews and stop the sweeper."""
        tasks = list(self._tasks.values())
        if self._sweeper is not None:
            tasks.append(self._sweeper)
        if tasks:
            logger.info(f"Cancelling {len(self._tasks)} in-flight reviews")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._sweeper = None

    def _forget(self, key: ReviewKey, task: asyncio.Task[ReviewOutcome]) -> None:
        # A newer review may already own the key when retention is zero
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if not task.cancelled():
            task.exception()  # logged in _execute

    # --- pipeline ---

    async def _execute(self, request: ReviewRequest) -> ReviewOutcome:
        key = request.key
        try:
            outcome = await self._review(request)
        except asyncio.CancelledError:
            logger.warning(f"Review for {request} cancelled before completion")
            self.guard.release(key)
            raise
        except Exception as exc:
            logger.exception(f"Review for {request} failed unexpectedly")
            try:
                await self._fail(request, f"review aborted: {type(exc).__name__}")
            finally:
                self.guard.complete(key, ReviewState.FAILED)
            raise

        self.guard.complete(key, outcome.state)
        logger.info(
            f"Review for {request} finished: {outcome.state.value} "
            f"({len(outcome.fragments)} files, {len(outcome.failed_files)} unavailable)"
        )
        return outcome

    async def _review(self, request: ReviewRequest) -> ReviewOutcome:
        pending = await self.reporter.set_status(
            request.repository, request.commit_sha, ReviewState.PENDING
        )
        if not pending:
            logger.warning(
                f"Could not mark {request} as pending ({pending.error}); reviewing anyway"
            )

        try:
            files = await self._fetch_changed_files(request)
        except UpstreamFetchFailure as failure:
            logger.error(str(failure))
            return await self._fail(request, _describe_fetch_failure(failure))

        reviewable, skipped = _partition_files(files)
        if skipped:
            logger.info(f"Skipping {len(skipped)} files without a patch in {request}")

        try:
            fragments = await self.fanout.analyze_all(reviewable)
        except Exception as exc:
            logger.exception(f"Diff analysis aborted for {request}")
            return await self._fail(request, f"analysis aborted: {type(exc).__name__}")

        outcome = ReviewOutcome(
            state=ReviewState.SUCCEEDED,
            fragments=fragments,
            skipped_files=[f.filename for f in skipped],
        )
        await self._publish(request, outcome)
        return outcome

    async def _fetch_changed_files(self, request: ReviewRequest) -> list[FileDiff]:
        try:
            return await with_exponential_backoff(
                self.source_control.fetch_changed_files,
                request.repository,
                request.pr_number,
                max_retries=self.settings.report_max_attempts,
                initial_delay=self.settings.report_initial_delay_seconds,
                max_delay=self.settings.report_max_delay_seconds,
                sleep=self.reporter.sleep,
            )
        except SourceControlError as exc:
            raise UpstreamFetchFailure(request.repository, request.pr_number, exc) from exc

    async def _publish(self, request: ReviewRequest, outcome: ReviewOutcome) -> None:
        body = outcome.format_comment_markdown(self.settings.bot_name, request.commit_sha)
        comment = await self.reporter.post_comment(request.repository, request.pr_number, body)
        if not comment:
            logger.error(f"Review comment for {request} was not posted: {comment.error}")

        status = await self.reporter.set_status(
            request.repository,
            request.commit_sha,
            ReviewState.SUCCEEDED,
            outcome.status_description(),
        )
        if not status:
            logger.error(f"Final status for {request} was not set: {status.error}")

    async def _fail(self, request: ReviewRequest, detail: str) -> ReviewOutcome:
        outcome = ReviewOutcome(state=ReviewState.FAILED, error_detail=detail)
        status = await self.reporter.set_status(
            request.repository,
            request.commit_sha,
            ReviewState.FAILED,
            outcome.status_description(),
        )
        if not status:
            logger.error(f"Failure status for {request} was not set: {status.error}")
        return outcome


# === HELPER FUNCTIONS ===


def _partition_files(files: list[FileDiff]) -> tuple[list[FileDiff], list[FileDiff]]:
    """Split files into (has a patch, no patch) keeping the original order."""
    reviewable = [f for f in files if f.has_patch]
    skipped = [f for f in files if not f.has_patch]
    return reviewable, skipped


def _describe_fetch_failure(failure: UpstreamFetchFailure) -> str:
    cause = failure.cause
    if isinstance(cause, RateLimitedError):
        kind = "rate limited"
    elif isinstance(cause, SourceControlAuthError):
        kind = "access denied"
    elif isinstance(cause, NotFoundError):
        kind = "pull request not found"
    elif isinstance(cause, SourceControlTransientError):
        kind = "GitHub unavailable"
    else:
        kind = "request failed"
    return f"could not fetch changed files ({kind})"
