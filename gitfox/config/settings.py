"""Application settings using Pydantic Settings for environment variable management."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from gitfox.errors import AuthConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # OpenAI Configuration
    openai_api_key: str | None = Field(
        default=None, description="OpenAI API key for the analysis backend"
    )
    openai_model: str = Field(default="gpt-4", description="OpenAI model to use")
    analysis_max_tokens: int = Field(
        default=500, description="Maximum tokens per file analysis"
    )
    analysis_temperature: float = Field(
        default=0.5, description="Temperature for analysis responses"
    )

    # GitHub Configuration
    # Note: GitHub Actions doesn't allow env var names starting with GITHUB_
    # so the short aliases are used everywhere
    github_token: str | None = Field(
        default=None,
        validation_alias="GH_TOKEN",
        description="GitHub token used when no GitHub App is configured",
    )
    github_webhook_secret: str | None = Field(
        default=None,
        validation_alias="WEBHOOK_SECRET",
        description="GitHub webhook secret for signature verification",
    )
    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub REST API base URL"
    )

    # GitHub App Configuration
    github_app_id: str | None = Field(
        default=None, validation_alias="APP_ID", description="GitHub App ID"
    )
    github_app_installation_id: str | None = Field(
        default=None,
        validation_alias="APP_INSTALLATION_ID",
        description="GitHub App Installation ID",
    )
    github_app_private_key_path: str | None = Field(
        default=None,
        validation_alias="APP_PRIVATE_KEY_PATH",
        description="Path to GitHub App private key .pem file",
    )
    github_app_private_key: str | None = Field(
        default=None,
        validation_alias="APP_PRIVATE_KEY",
        description="GitHub App private key content (alternative to file path)",
    )

    # Observability
    logfire_token: str | None = Field(
        default=None, description="Pydantic Logfire token for observability"
    )

    # Application Settings
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Application environment"
    )

    # Review Configuration
    bot_name: str = Field(
        default="gitfox", description="Bot name to display in comments"
    )
    status_context: str = Field(
        default="gitfox/ai-review",
        description="Commit status context label identifying this check",
    )
    review_dispatch: Literal["inline", "queue"] = Field(
        default="inline",
        description="Run reviews in the API process or hand them to the worker queue",
    )
    fanout_concurrency: int = Field(
        default=4, ge=1, description="Maximum concurrent file analyses per review"
    )
    analysis_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Timeout for one analysis backend call"
    )
    analysis_max_attempts: int = Field(
        default=2, ge=1, description="Attempts per file analysis (first call + retries)"
    )
    analysis_retry_delay_seconds: float = Field(
        default=2.0, ge=0, description="Fixed delay before retrying a file analysis"
    )
    api_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout for source-control API calls"
    )
    report_max_attempts: int = Field(
        default=3, ge=1, description="Attempts for comment and status posts"
    )
    report_initial_delay_seconds: float = Field(
        default=1.0, ge=0, description="First backoff delay for comment and status posts"
    )
    report_max_delay_seconds: float = Field(
        default=10.0, ge=0, description="Backoff ceiling for comment and status posts"
    )
    dedup_retention_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long a finished review keeps blocking redeliveries",
    )
    dedup_sweep_interval_seconds: float = Field(
        default=60.0, gt=0, description="Interval of the background eviction sweep"
    )

    # Server Configuration
    # Use a localhost default to avoid binding to all interfaces.
    # Override via env (e.g., HOST=0.0.0.0) only when needed (containers/proxies).
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=5000, description="Server port")

    # Redis / worker configuration
    redis_url: str | None = Field(default=None, description="Full Redis URL")
    redis_host: str = Field(default="localhost", description="Redis host")
    redis_port: int = Field(default=6379, description="Redis port")
    redis_password: str | None = Field(default=None, description="Redis password")
    worker_name: str = Field(default="gitfox-worker", description="Worker base name")
    worker_job_timeout: int = Field(
        default=900, description="Maximum seconds one review job may run"
    )
    worker_with_scheduler: bool = Field(
        default=False, description="Run the rq scheduler inside the worker"
    )
    worker_replica_id: str | None = Field(
        default=None,
        description="Stable replica identifier; the worker name becomes <worker_name>-<id>",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def uses_github_app(self) -> bool:
        """True when GitHub App credentials should be used instead of a token."""
        return bool(self.github_app_id and self.github_app_installation_id)

    def require_credentials(self) -> None:
        """Fail fast when the process cannot authenticate to its backends.

        Raises:
            AuthConfigurationError: listing every missing variable
        """
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.github_token and not self.uses_github_app:
            missing.append("GH_TOKEN (or APP_ID + APP_INSTALLATION_ID)")
        if self.uses_github_app and not (
            self.github_app_private_key or self.github_app_private_key_path
        ):
            missing.append("APP_PRIVATE_KEY or APP_PRIVATE_KEY_PATH")
        if self.is_production and not self.github_webhook_secret:
            missing.append("WEBHOOK_SECRET")
        if missing:
            raise AuthConfigurationError(
                "Missing required environment variables: " + ", ".join(missing)
            )


# Global settings instance, only read by process wiring (app, worker, adapters)
settings = Settings()
