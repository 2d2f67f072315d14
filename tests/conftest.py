"""Pytest configuration and fixtures."""

from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient

from gitfox.api.handlers.pr_review_handler import ReviewOrchestrator
from gitfox.config.settings import Settings
from gitfox.main import create_app
from gitfox.services.dedup_guard import DedupGuard
from gitfox.services.fanout import DiffFanoutPool
from gitfox.services.status_reporter import StatusReporter
from tests.fakes import FakeAnalyzer, FakeClock, FakeSourceControl, RecordingSleep

WEBHOOK_SECRET = "test-secret"  # pragma: allowlist secret

CREDENTIAL_ENV_VARS = (
    "GH_TOKEN",
    "WEBHOOK_SECRET",
    "APP_ID",
    "APP_INSTALLATION_ID",
    "APP_PRIVATE_KEY",
    "APP_PRIVATE_KEY_PATH",
    "OPENAI_API_KEY",
    "ENVIRONMENT",
    "REVIEW_DISPATCH",
)


@pytest.fixture(autouse=True)
def _isolate_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in CREDENTIAL_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the developer's environment and .env files."""
    return Settings(
        _env_file=None,
        github_token="ghs_test_token",  # pragma: allowlist secret
        openai_api_key="sk-test",  # pragma: allowlist secret
        github_webhook_secret=WEBHOOK_SECRET,
        fanout_concurrency=4,
        analysis_max_attempts=2,
        analysis_retry_delay_seconds=0.5,
        report_max_attempts=3,
        report_initial_delay_seconds=1.0,
        dedup_retention_seconds=300.0,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_orchestrator(
    settings: Settings, clock: FakeClock, sleep: RecordingSleep
) -> Callable[..., ReviewOrchestrator]:
    """Build an orchestrator over fakes; retry waits are recorded, not slept."""

    def _make(
        source_control: FakeSourceControl,
        analyzer: FakeAnalyzer | None = None,
        concurrency: int | None = None,
    ) -> ReviewOrchestrator:
        fanout = DiffFanoutPool(
            analyzer or FakeAnalyzer(),
            concurrency=concurrency or settings.fanout_concurrency,
            max_attempts=settings.analysis_max_attempts,
            retry_delay=settings.analysis_retry_delay_seconds,
            sleep=sleep,
        )
        reporter = StatusReporter(source_control, settings, sleep=sleep)
        guard = DedupGuard(retention_seconds=settings.dedup_retention_seconds, clock=clock)
        return ReviewOrchestrator(settings, source_control, fanout, reporter, guard)

    return _make


@pytest.fixture
def webhook_url() -> str:
    """Return the webhook URL for testing."""
    return "/webhook/github"


@pytest.fixture
def webhook_secret() -> str:
    return WEBHOOK_SECRET


@pytest.fixture
def make_client(settings: Settings) -> Callable[..., TestClient]:
    """Return a factory for a TestClient over an app with the given orchestrator."""

    def _make(orchestrator: object, app_settings: Settings | None = None) -> TestClient:
        app = create_app(app_settings or settings, orchestrator=orchestrator)  # type: ignore[arg-type]
        return TestClient(app)

    return _make
