"""Tests for the review orchestrator pipeline."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from gitfox.errors import (
    AnalysisTransientError,
    AuthConfigurationError,
    NotFoundError,
    RateLimitedError,
    SourceControlAuthError,
    SourceControlTransientError,
)
from gitfox.models.github_types import ReviewRequest
from gitfox.models.outputs import ANALYSIS_UNAVAILABLE_TEXT
from gitfox.models.review_state import ReviewState
from gitfox.services.source_control import GitHubSourceControl
from tests.fakes import FakeAnalyzer, FakeSourceControl, FlakyCredentials, make_diff

REQUEST = ReviewRequest(repository="org/repo", pr_number=42, commit_sha="abc123")


@pytest.mark.asyncio
async def test_review_posts_ordered_comment_and_success_status(make_orchestrator, sleep):
    scm = FakeSourceControl(files=[make_diff("a.py"), make_diff("b.py")])
    analyzer = FakeAnalyzer(
        responses={
            "a.py": ["Nice refactor."],
            "b.py": [AnalysisTransientError("timed out"), AnalysisTransientError("timed out")],
        }
    )
    orchestrator = make_orchestrator(scm, analyzer)

    task = orchestrator.handle(REQUEST)
    outcome = await task

    assert outcome.state is ReviewState.SUCCEEDED
    assert [f.filename for f in outcome.fragments] == ["a.py", "b.py"]
    assert outcome.failed_files == ["b.py"]
    assert analyzer.calls.count("b.py") == 2
    assert sleep.delays == [0.5]

    assert scm.status_states == ["pending", "success"]
    assert scm.statuses[-1][3] == "AI review completed: 1/2 files analyzed"
    assert len(scm.comments) == 1
    repo, pr_number, body = scm.comments[0]
    assert (repo, pr_number) == ("org/repo", 42)
    assert body.index("📌 **a.py**") < body.index("📌 **b.py**")
    assert "Nice refactor." in body
    assert ANALYSIS_UNAVAILABLE_TEXT in body

    await orchestrator.drain()
    assert orchestrator.in_flight == 0
    assert orchestrator.guard.state_of(REQUEST.key) is ReviewState.SUCCEEDED


@pytest.mark.asyncio
async def test_rate_limited_fetch_fails_review_without_comment(make_orchestrator, clock):
    scm = FakeSourceControl(
        files=[make_diff("a.py")], fetch_errors=[RateLimitedError("rate limit", 403)]
    )
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.handle(REQUEST)

    assert outcome.state is ReviewState.FAILED
    assert scm.fetch_calls == 1
    assert scm.status_states == ["pending", "failure"]
    assert "rate limited" in scm.statuses[-1][3]
    assert scm.comments == []
    assert orchestrator.guard.state_of(REQUEST.key) is ReviewState.FAILED

    # Redelivery inside the retention window is a no-op
    await orchestrator.drain()
    assert orchestrator.handle(REQUEST) is None

    clock.advance(orchestrator.settings.dedup_retention_seconds)
    retry = await orchestrator.handle(REQUEST)

    assert retry.state is ReviewState.SUCCEEDED
    assert scm.status_states == ["pending", "failure", "pending", "success"]
    assert len(scm.comments) == 1


@pytest.mark.asyncio
async def test_missing_pull_request_is_reported(make_orchestrator):
    scm = FakeSourceControl(fetch_errors=[NotFoundError("gone", 404)])
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.error_detail == "could not fetch changed files (pull request not found)"


@pytest.mark.asyncio
async def test_transient_fetch_error_is_retried(make_orchestrator, sleep):
    scm = FakeSourceControl(
        files=[make_diff("a.py")], fetch_errors=[SourceControlTransientError("502", 502)]
    )
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.state is ReviewState.SUCCEEDED
    assert scm.fetch_calls == 2
    assert sleep.delays == [1.0]


@pytest.mark.asyncio
async def test_concurrent_duplicates_run_once(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("a.py")], fetch_delay=0.01)
    orchestrator = make_orchestrator(scm)

    first = orchestrator.handle(REQUEST)
    duplicate = orchestrator.handle(
        ReviewRequest(repository="org/repo", pr_number=43, commit_sha="abc123")
    )

    assert first is not None
    assert duplicate is None
    assert orchestrator.task_for(REQUEST.key) is first

    results = await asyncio.gather(*(orchestrator.run(REQUEST) for _ in range(5)))
    await orchestrator.drain()

    assert results == [None] * 5
    assert scm.fetch_calls == 1
    assert len(scm.comments) == 1
    assert scm.status_states == ["pending", "success"]


@pytest.mark.asyncio
async def test_different_commits_review_independently(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("a.py")])
    orchestrator = make_orchestrator(scm)

    orchestrator.handle(REQUEST)
    orchestrator.handle(ReviewRequest(repository="org/repo", pr_number=42, commit_sha="def456"))
    await orchestrator.drain()

    assert len(scm.comments) == 2


@pytest.mark.asyncio
async def test_pending_status_failure_is_not_fatal(make_orchestrator):
    scm = FakeSourceControl(
        files=[make_diff("a.py")], status_errors=[SourceControlAuthError("forbidden", 403)]
    )
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.state is ReviewState.SUCCEEDED
    assert scm.status_calls == 2
    assert scm.status_states == ["success"]
    assert len(scm.comments) == 1


@pytest.mark.asyncio
async def test_comment_failure_still_sets_final_status(make_orchestrator):
    scm = FakeSourceControl(
        files=[make_diff("a.py")], comment_errors=[SourceControlAuthError("forbidden", 403)]
    )
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.state is ReviewState.SUCCEEDED
    assert scm.comments == []
    assert scm.status_states == ["pending", "success"]


@pytest.mark.asyncio
async def test_files_without_patch_are_skipped(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("logo.png", patch=None), make_diff("a.py")])
    analyzer = FakeAnalyzer()
    orchestrator = make_orchestrator(scm, analyzer)

    outcome = await orchestrator.run(REQUEST)

    assert analyzer.calls == ["a.py"]
    assert outcome.skipped_files == ["logo.png"]
    assert "`logo.png`" in scm.comments[0][2]


@pytest.mark.asyncio
async def test_review_without_files_still_completes(make_orchestrator):
    scm = FakeSourceControl(files=[])
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.state is ReviewState.SUCCEEDED
    assert "No reviewable file changes" in scm.comments[0][2]
    assert scm.status_states == ["pending", "success"]


@pytest.mark.asyncio
async def test_unexpected_analysis_error_fails_review(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("a.py")])
    analyzer = FakeAnalyzer(responses={"a.py": [RuntimeError("boom")]})
    orchestrator = make_orchestrator(scm, analyzer)

    outcome = await orchestrator.run(REQUEST)

    assert outcome.state is ReviewState.FAILED
    assert outcome.error_detail == "analysis aborted: RuntimeError"
    assert scm.comments == []
    assert scm.status_states == ["pending", "failure"]


@pytest.mark.asyncio
async def test_cancelled_review_releases_key(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("a.py")], fetch_delay=5.0)
    orchestrator = make_orchestrator(scm)

    task = orchestrator.handle(REQUEST)
    while scm.fetch_calls == 0:
        await asyncio.sleep(0)
    await orchestrator.shutdown()

    assert task.cancelled()
    assert scm.comments == []
    assert scm.status_states == ["pending"]
    assert orchestrator.guard.state_of(REQUEST.key) is None
    assert orchestrator.in_flight == 0

    scm.fetch_delay = 0
    outcome = await orchestrator.handle(REQUEST)
    assert outcome.state is ReviewState.SUCCEEDED



def _github_scm(settings, credentials):
    gh = MagicMock()
    gh.get_repo.return_value.get_pull.return_value.get_files.return_value = [
        SimpleNamespace(
            filename="a.py",
            patch="@@ -1 +1 @@\n-old\n+new",
            status="modified",
            additions=1,
            deletions=1,
            previous_filename=None,
        )
    ]
    return GitHubSourceControl(settings, credentials, github_factory=MagicMock(return_value=gh)), gh


@pytest.mark.asyncio
async def test_token_exchange_outage_is_retried(make_orchestrator, settings, sleep):
    credentials = FlakyCredentials(httpx.ConnectError("connection refused"))
    scm, gh = _github_scm(settings, credentials)
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.handle(REQUEST)

    assert outcome.state is ReviewState.SUCCEEDED
    assert credentials.calls > 1
    assert sleep.delays == [1.0]
    create_status = gh.get_repo.return_value.get_commit.return_value.create_status
    assert [c.kwargs["state"] for c in create_status.call_args_list] == ["pending", "success"]
    gh.get_repo.return_value.get_issue.return_value.create_comment.assert_called_once()


@pytest.mark.asyncio
async def test_unusable_credentials_fail_review(make_orchestrator, settings):
    credentials = FlakyCredentials(AuthConfigurationError("private key unreadable"), failures=99)
    scm, gh = _github_scm(settings, credentials)
    orchestrator = make_orchestrator(scm)

    outcome = await orchestrator.handle(REQUEST)

    assert outcome.state is ReviewState.FAILED
    assert outcome.error_detail == "could not fetch changed files (access denied)"
    gh.get_repo.assert_not_called()
    assert orchestrator.guard.state_of(REQUEST.key) is ReviewState.FAILED


@pytest.mark.asyncio
async def test_unexpected_fetch_error_still_reports_failure(make_orchestrator):
    scm = FakeSourceControl(files=[make_diff("a.py")], fetch_errors=[RuntimeError("boom")])
    orchestrator = make_orchestrator(scm)

    task = orchestrator.handle(REQUEST)
    with pytest.raises(RuntimeError):
        await task

    assert scm.status_states == ["pending", "failure"]
    assert scm.statuses[-1][3] == "AI review failed: review aborted: RuntimeError"
    assert scm.comments == []
    assert orchestrator.guard.state_of(REQUEST.key) is ReviewState.FAILED
    await orchestrator.drain()
    assert orchestrator.in_flight == 0


@pytest.mark.asyncio
async def test_stale_completion_keeps_newer_review(make_orchestrator, clock):
    scm = FakeSourceControl(files=[make_diff("a.py")])
    orchestrator = make_orchestrator(scm)

    first = orchestrator.handle(REQUEST)
    await first
    await orchestrator.drain()
    clock.advance(orchestrator.settings.dedup_retention_seconds)

    scm.fetch_delay = 0.01
    second = orchestrator.handle(REQUEST)
    # First task's completion callback arriving after the key was reclaimed
    orchestrator._forget(REQUEST.key, first)

    assert orchestrator.task_for(REQUEST.key) is second
    assert orchestrator.in_flight == 1
    await orchestrator.drain()
    assert orchestrator.in_flight == 0
    assert len(scm.comments) == 2
