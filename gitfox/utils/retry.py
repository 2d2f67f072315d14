"""Retry helpers for calls to external APIs."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Default retry predicate: exceptions that declare themselves transient."""
    return bool(getattr(exc, "transient", False))


async def with_exponential_backoff(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    should_retry: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> T:
    """
    Execute a function with exponential backoff retry logic.

    Args:
        func: The async function to execute
        *args: Positional arguments to pass to func
        max_retries: Maximum number of attempts, including the first call
        initial_delay: Delay in seconds before the first retry
        max_delay: Maximum delay in seconds between retries
        backoff_factor: Multiplier applied to the delay after each retry;
            1.0 gives a fixed delay
        should_retry: Predicate deciding whether an exception is retriable
        sleep: Awaitable used to wait between attempts
        **kwargs: Keyword arguments to pass to func

    Returns:
        The result of the function call

    Raises:
        The first non-retriable exception, or the last exception once all
        attempts are exhausted
    """
    for attempt in range(max_retries):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e):
                logger.debug(f"Non-retriable error from {_name(func)}: {e}")
                raise

            if attempt >= max_retries - 1:
                logger.warning(
                    f"All {max_retries} attempts of {_name(func)} exhausted. Last error: {e}"
                )
                raise

            delay = min(initial_delay * (backoff_factor**attempt), max_delay)
            logger.warning(
                f"Attempt {attempt + 1}/{max_retries} of {_name(func)} failed with "
                f"{type(e).__name__}: {e}. Retrying in {delay:.1f}s..."
            )
            await sleep(delay)

    raise ValueError(f"max_retries must be at least 1, got {max_retries}")


def _name(func: Callable[..., Any]) -> str:
    return getattr(func, "__qualname__", None) or getattr(func, "__name__", repr(func))
