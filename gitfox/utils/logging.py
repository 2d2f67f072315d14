"""Logging and observability setup using Pydantic Logfire."""

import logging
import sys

from gitfox.config.settings import Settings
from gitfox.config.settings import settings as default_settings


def setup_logging(settings: Settings | None = None) -> None:
    """Configure application logging.

    Sets up logging to stdout at the configured level and reduces noise
    from verbose third-party libraries.
    """
    settings = settings or default_settings
    log_level = getattr(logging, settings.log_level)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stdout,
        force=True,  # Reconfigure if already setup
    )

    # Reduce noise from verbose libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("github").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def setup_observability(settings: Settings | None = None) -> None:
    """Setup logging and observability with Logfire instrumentation.

    Configures standard logging and optionally enables Logfire for
    distributed tracing if a token is configured.
    """
    settings = settings or default_settings
    setup_logging(settings)

    logger = logging.getLogger(__name__)

    if settings.logfire_token:
        try:
            import logfire

            logfire.configure(
                token=settings.logfire_token, environment=settings.environment
            )
            logfire.instrument_pydantic_ai()
            logfire.instrument_httpx()

            logger.info(
                f"Logfire observability enabled for {settings.environment} environment"
            )

        except ImportError:
            logger.warning(
                "Logfire package not installed. Install with: pip install 'gitfox[logfire]'"
            )
        except Exception as e:
            logger.error(f"Failed to setup Logfire observability: {e}")
    else:
        logger.info("Logfire token not configured, skipping observability setup")
