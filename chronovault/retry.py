"""
Bounded retry for network operations that are safe to repeat.

Retries on any exception unless told otherwise. Callers decide what the final error means.

Usage:
    cid = await with_retry(
        lambda: client.upload(data),
        max_attempts=3,
        on_retry=lambda n, e: logger.warning("Upload retry %d: %s", n, e),
        backoff=exponential_backoff(),
    )
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3


def exponential_backoff(base: float = 0.5, cap: float = 8.0) -> Callable[[int], float]:
    """Delay of ``base * 2**(attempt-1)`` seconds, capped."""

    def delay(attempt: int) -> float:
        return min(cap, base * (2 ** (attempt - 1)))

    return delay


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    on_retry: Callable[[int, Exception], None] | None = None,
    backoff: Callable[[int], float] | None = None,
    retry_if: Callable[[Exception], bool] | None = None,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    ``on_retry(attempt, error)`` is called after each failed attempt that will
    be retried, with the 1-based number of the attempt that failed. The last
    error is re-raised unchanged once attempts are exhausted, or at once if
    ``retry_if`` returns False for it.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= max_attempts or (retry_if is not None and not retry_if(e)):
                logger.debug("Giving up after %d attempts: %s", attempt, e)
                raise
            if on_retry is not None:
                on_retry(attempt, e)
            if backoff is not None:
                await asyncio.sleep(backoff(attempt))
            attempt += 1
