"""Retry and backoff helpers.

Only two kinds of failure are retried in dot: a rate-limited hosting API call
and a rejected push to the index repository. Everything else fails fast so the
transaction coordinator decides on a definitive result.
"""

import asyncio
import functools
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type, TypeVar, cast

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorRecoveryStrategy:
    """Bounded exponential backoff."""

    def __init__(
        self,
        max_retries: int = 3,
        backoff_factor: float = 1.0,
        max_delay: float = 60.0,
    ):
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.max_delay = max_delay

    def should_retry(self, retry_count: int) -> bool:
        """Determine if another attempt is allowed after ``retry_count`` retries."""
        return retry_count < self.max_retries

    def get_retry_delay(self, retry_count: int, error: Optional[BaseException] = None) -> float:
        """Calculate delay before retry, honouring a server-provided retry_after."""
        delay = self.backoff_factor * (2**retry_count)
        retry_after = getattr(error, "retry_after", None)
        if retry_after:
            delay = max(delay, float(retry_after))
        return min(delay, self.max_delay)


def retry_on(
    *exc_types: Type[BaseException],
    max_retries: int = 3,
    backoff_factor: float = 1.0,
    max_delay: float = 60.0,
):
    """Decorator that retries a function when it raises one of ``exc_types``.

    Works for both coroutine functions and plain functions. Other exceptions
    propagate immediately.
    """
    retryable: Tuple[Type[BaseException], ...] = exc_types or (Exception,)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        strategy = ErrorRecoveryStrategy(max_retries, backoff_factor, max_delay)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            retry_count = 0
            while True:
                try:
                    return cast(T, await func(*args, **kwargs))
                except retryable as e:
                    if not strategy.should_retry(retry_count):
                        logger.error(
                            f"Failed after {retry_count} retries in {func.__name__}: {e}"
                        )
                        raise
                    delay = strategy.get_retry_delay(retry_count, e)
                    retry_count += 1
                    logger.warning(
                        f"Error in {func.__name__}, retry {retry_count}/"
                        f"{max_retries} after {delay}s: {e}"
                    )
                    await asyncio.sleep(delay)

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            retry_count = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except retryable as e:
                    if not strategy.should_retry(retry_count):
                        logger.error(
                            f"Failed after {retry_count} retries in {func.__name__}: {e}"
                        )
                        raise
                    delay = strategy.get_retry_delay(retry_count, e)
                    retry_count += 1
                    logger.warning(
                        f"Error in {func.__name__}, retry {retry_count}/"
                        f"{max_retries} after {delay}s: {e}"
                    )
                    time.sleep(delay)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore
        return sync_wrapper

    return decorator
