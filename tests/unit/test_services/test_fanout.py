import pytest

from gitfox.errors import AnalysisRequestError, AnalysisTransientError
from gitfox.models.outputs import ANALYSIS_UNAVAILABLE_TEXT
from gitfox.services.fanout import DiffFanoutPool
from tests.fakes import FakeAnalyzer, RecordingSleep, make_diff


def _pool(analyzer: FakeAnalyzer, sleep: RecordingSleep, concurrency: int = 4) -> DiffFanoutPool:
    return DiffFanoutPool(
        analyzer, concurrency=concurrency, max_attempts=2, retry_delay=0.5, sleep=sleep
    )


@pytest.mark.asyncio
async def test_results_follow_input_order_not_completion_order(sleep):
    analyzer = FakeAnalyzer(
        responses={"a.py": ["review a"], "b.py": ["review b"], "c.py": ["review c"]},
        delays={"a.py": 0.05, "b.py": 0.02, "c.py": 0.0},
    )
    diffs = [make_diff("a.py"), make_diff("b.py"), make_diff("c.py")]

    fragments = await _pool(analyzer, sleep).analyze_all(diffs)

    assert analyzer.completed == ["c.py", "b.py", "a.py"]
    assert [f.filename for f in fragments] == ["a.py", "b.py", "c.py"]
    assert [f.text for f in fragments] == ["review a", "review b", "review c"]


@pytest.mark.asyncio
async def test_concurrency_is_bounded(sleep):
    names = [f"f{i}.py" for i in range(6)]
    analyzer = FakeAnalyzer(delays={name: 0.01 for name in names})

    fragments = await _pool(analyzer, sleep, concurrency=2).analyze_all(
        [make_diff(n) for n in names]
    )

    assert len(fragments) == 6
    assert analyzer.max_active == 2


@pytest.mark.asyncio
async def test_empty_input_makes_no_calls(sleep):
    analyzer = FakeAnalyzer()
    assert await _pool(analyzer, sleep).analyze_all([]) == []
    assert analyzer.calls == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried_once(sleep):
    analyzer = FakeAnalyzer(responses={"a.py": [AnalysisTransientError("timeout"), "fine"]})

    fragments = await _pool(analyzer, sleep).analyze_all([make_diff("a.py")])

    assert analyzer.calls == ["a.py", "a.py"]
    assert sleep.delays == [0.5]
    assert fragments[0].analyzed
    assert fragments[0].text == "fine"


@pytest.mark.asyncio
async def test_exhausted_retries_yield_placeholder(sleep):
    analyzer = FakeAnalyzer(
        responses={
            "bad.py": [AnalysisTransientError("timeout"), AnalysisTransientError("timeout")]
        }
    )

    fragments = await _pool(analyzer, sleep).analyze_all(
        [make_diff("ok.py"), make_diff("bad.py")]
    )

    assert analyzer.calls.count("bad.py") == 2
    assert fragments[0].analyzed
    assert not fragments[1].analyzed
    assert fragments[1].text == ANALYSIS_UNAVAILABLE_TEXT
    assert "timeout" in fragments[1].error


@pytest.mark.asyncio
async def test_request_error_is_not_retried(sleep):
    analyzer = FakeAnalyzer(responses={"a.py": [AnalysisRequestError("400 bad request")]})

    fragments = await _pool(analyzer, sleep).analyze_all([make_diff("a.py")])

    assert analyzer.calls == ["a.py"]
    assert sleep.delays == []
    assert not fragments[0].analyzed


@pytest.mark.asyncio
async def test_unexpected_error_cancels_remaining_analyses(sleep):
    analyzer = FakeAnalyzer(
        responses={"boom.py": [RuntimeError("boom")]},
        delays={"slow.py": 5.0},
    )

    with pytest.raises(RuntimeError, match="boom"):
        await _pool(analyzer, sleep).analyze_all([make_diff("slow.py"), make_diff("boom.py")])

    assert "slow.py" not in analyzer.completed
    assert analyzer.active == 0


def test_rejects_zero_concurrency():
    with pytest.raises(ValueError, match="at least 1"):
        DiffFanoutPool(FakeAnalyzer(), concurrency=0)


def test_from_settings(settings):
    pool = DiffFanoutPool.from_settings(FakeAnalyzer(), settings)
    assert pool.concurrency == settings.fanout_concurrency
    assert pool.max_attempts == settings.analysis_max_attempts
    assert pool.retry_delay == settings.analysis_retry_delay_seconds
