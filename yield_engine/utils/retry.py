"""Retry utility with exponential backoff for external API calls."""

import asyncio
import random
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import httpx

from yield_engine.config import settings
from yield_engine.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

# Transport-level failures worth another attempt
NETWORK_EXCEPTIONS = (
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
)


def retry_with_backoff(
    max_retries: int | None = None,
    backoff_base: float | None = None,
    backoff_max: float | None = None,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    jitter: bool = True,
):
    """
    Decorator for async functions with exponential backoff retry logic.

    Args:
        max_retries: Maximum attempts (defaults to market data config)
        backoff_base: Base delay in seconds (defaults to config)
        backoff_max: Maximum delay in seconds (defaults to config)
        retryable_exceptions: Exception types to retry (defaults to network errors)
        jitter: If True, adds random jitter to prevent thundering herd
    """
    max_retries = max_retries or settings.market_data.max_retries
    backoff_base = backoff_base if backoff_base is not None else settings.market_data.retry_backoff_base
    backoff_max = backoff_max if backoff_max is not None else settings.market_data.retry_backoff_max
    retryable_exceptions = retryable_exceptions or NETWORK_EXCEPTIONS

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt == max_retries - 1:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=max_retries,
                            error=str(e),
                        )
                        raise
                    delay = min(backoff_base * (2 ** attempt), backoff_max)
                    if jitter:
                        delay = delay + random.uniform(0, delay * 0.5)
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=round(delay, 2),
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError(f"Unexpected retry state for {func.__name__}")

        return wrapper
    return decorator
