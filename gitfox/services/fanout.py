"""Concurrent per-file analysis with bounded parallelism and ordered results."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from gitfox.agents.diff_analyzer import DiffAnalyzer
from gitfox.config.settings import Settings
from gitfox.errors import AnalysisError
from gitfox.models.github_types import FileDiff
from gitfox.models.outputs import FileReviewFragment
from gitfox.utils.retry import with_exponential_backoff

logger = logging.getLogger(__name__)


class DiffFanoutPool:
    """
    Analyzes every diff of a review through a ``DiffAnalyzer``.

    At most ``concurrency`` analyses run at once. A failing file degrades to
    a placeholder fragment and never fails the batch. Any other exception is
    fatal for the batch: the remaining analyses are cancelled and the error
    propagates to the orchestrator.
    """

    def __init__(
        self,
        analyzer: DiffAnalyzer,
        concurrency: int = 4,
        max_attempts: int = 2,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.analyzer = analyzer
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, analyzer: DiffAnalyzer, settings: Settings) -> "DiffFanoutPool":
        return cls(
            analyzer,
            concurrency=settings.fanout_concurrency,
            max_attempts=settings.analysis_max_attempts,
            retry_delay=settings.analysis_retry_delay_seconds,
        )

    async def analyze_all(self, diffs: Sequence[FileDiff]) -> list[FileReviewFragment]:
        """
        Analyze ``diffs`` concurrently.

        Returns:
            One fragment per diff, in the order of ``diffs`` regardless of
            which analysis finished first
        """
        if not diffs:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        results: list[FileReviewFragment | None] = [None] * len(diffs)

        async def _worker(index: int, diff: FileDiff) -> None:
            async with semaphore:
                results[index] = await self._analyze_one(diff)

        tasks = [
            asyncio.create_task(_worker(i, diff), name=f"analyze:{diff.filename}")
            for i, diff in enumerate(diffs)
        ]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        fragments = [r for r in results if r is not None]
        failed = sum(1 for f in fragments if not f.analyzed)
        logger.info(
            f"Analyzed {len(fragments)} files ({failed} unavailable) "
            f"with concurrency {self.concurrency}"
        )
        return fragments

    async def _analyze_one(self, diff: FileDiff) -> FileReviewFragment:
        patch = diff.patch or ""
        try:
            text = await with_exponential_backoff(
                self.analyzer.analyze_diff,
                diff.filename,
                patch,
                max_retries=self.max_attempts,
                initial_delay=self.retry_delay,
                max_delay=self.retry_delay,
                backoff_factor=1.0,
                sleep=self._sleep,
            )
        except AnalysisError as exc:
            logger.warning(f"Analysis unavailable for {diff.filename}: {exc}")
            return FileReviewFragment.unavailable(diff.filename, error=str(exc))
        return FileReviewFragment(filename=diff.filename, text=text)
