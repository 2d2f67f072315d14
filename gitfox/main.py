"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from rq import Worker

from gitfox.api import review, webhooks
from gitfox.api.handlers.pr_review_handler import ReviewOrchestrator
from gitfox.config.settings import Settings
from gitfox.config.settings import settings as default_settings
from gitfox.queue.config import redis_conn, review_queue
from gitfox.utils.logging import setup_observability

# Setup logging and observability
setup_observability()
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the orchestrator on startup, abandon in-flight reviews on shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Starting gitfox review service in {settings.environment} environment")

    if app.state.orchestrator is None:
        # Missing credentials are fatal for the process, not per request
        settings.require_credentials()
        app.state.orchestrator = ReviewOrchestrator.from_settings(settings)
    orchestrator: ReviewOrchestrator = app.state.orchestrator
    orchestrator.start()

    yield

    logger.info("Shutting down gitfox review service")
    await orchestrator.shutdown()


def create_app(
    settings: Settings | None = None,
    orchestrator: ReviewOrchestrator | None = None,
) -> FastAPI:
    """Create the API application.

    Args:
        settings: Configuration; defaults to the environment-loaded settings
        orchestrator: Pre-built orchestrator; built from ``settings`` at
            startup when omitted
    """
    settings = settings or default_settings

    app = FastAPI(
        title="gitfox",
        description="AI code review for GitHub pull requests",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    if settings.logfire_token:
        import logfire

        logfire.instrument_fastapi(app)

    app.include_router(webhooks.router)
    app.include_router(review.router)

    @app.get("/health")
    async def health_check(request: Request) -> dict[str, str | bool | int]:
        """Health check endpoint with configuration status."""
        current: ReviewOrchestrator | None = request.app.state.orchestrator
        redis_connected = False
        queue_size = 0
        active_workers = 0
        if settings.review_dispatch == "queue":
            try:
                redis_connected = bool(redis_conn.ping())
                queue_size = review_queue.count
                active_workers = len(Worker.all(connection=redis_conn))
            except Exception:
                logger.exception("Health check: failed to query Redis/queue state")

        return {
            "status": "healthy" if current is not None else "starting",
            "environment": settings.environment,
            "version": VERSION,
            "review_dispatch": settings.review_dispatch,
            "github_app_configured": settings.uses_github_app,
            "github_token_configured": bool(settings.github_token),
            "openai_configured": bool(settings.openai_api_key),
            "logfire_enabled": bool(settings.logfire_token),
            "webhook_secret_configured": bool(settings.github_webhook_secret),
            "reviews_in_flight": current.in_flight if current else 0,
            "reviews_tracked": len(current.guard) if current else 0,
            "redis_connected": redis_connected,
            "queue_size": queue_size,
            "active_workers": active_workers,
        }

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "gitfox review API",
            "docs": "/docs",
            "health": "/health",
            "review": "/review",
            "webhook": "/webhook/github",
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn (console script ``gitfox-api``)."""
    import uvicorn

    uvicorn.run(
        "gitfox.main:app",
        host=default_settings.host,
        port=default_settings.port,
        log_level=default_settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
