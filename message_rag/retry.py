"""
Retry with linear backoff for provider calls.

Wraps tenacity's AsyncRetrying so every call site retries the same way:
a fixed number of attempts, waiting ``delay * attempt`` seconds after each
failure, re-raising the last exception once attempts are exhausted.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[Any]]


def build_retrying(
    max_attempts: int = 3,
    delay: float = 1.0,
    sleep: Optional[SleepFn] = None,
) -> AsyncRetrying:
    """
    Build an AsyncRetrying controller with linear backoff.

    Args:
        max_attempts: Total attempts including the first call
        delay: Base delay in seconds; the n-th retry waits delay * n
        sleep: Awaitable sleep function (injectable for tests)

    Returns:
        Configured AsyncRetrying controller
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_incrementing(start=delay, increment=delay),
        retry=retry_if_exception_type(Exception),
        sleep=sleep or asyncio.sleep,
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    sleep: Optional[SleepFn] = None,
) -> T:
    """
    Await fn() until it succeeds or attempts run out.

    Raises:
        The exception from the final attempt.
    """
    retrying = build_retrying(max_attempts=max_attempts, delay=delay, sleep=sleep)
    return await retrying(fn)
