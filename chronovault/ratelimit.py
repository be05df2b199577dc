"""
In-memory fixed-window rate limiter.

Tracks requests per identifier (usually the caller's IP). Windows are fixed,
not sliding: a burst straddling a window boundary can admit up to twice the
limit in a short span. State is lost on restart.

Safe without a lock because all callers run on one asyncio event loop.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW = 60 * 60  # seconds
SWEEP_INTERVAL = 10 * 60  # seconds


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


@dataclass
class RateLimitResult:
    """Outcome of one admission check."""

    allowed: bool
    current: int
    limit: int
    reset_in_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current)

    def headers(self) -> dict[str, str]:
        """X-RateLimit-* response headers."""
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in_seconds),
        }


class RateLimiter:
    """Per-identifier fixed-window counter."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def check(
        self,
        identifier: str,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window: float = DEFAULT_WINDOW,
    ) -> RateLimitResult:
        """Admit or deny one request from ``identifier``."""
        now = self._clock()
        entry = self._entries.get(identifier)

        # Expired windows are replaced, never incremented
        if entry is None or entry.window_reset_at <= now:
            entry = RateLimitEntry(count=0, window_reset_at=now + window)

        allowed = entry.count < max_requests
        if allowed:
            entry.count += 1
            self._entries[identifier] = entry
        else:
            logger.info("Rate limit hit for %s (%d/%d)", identifier, entry.count, max_requests)

        return RateLimitResult(
            allowed=allowed,
            current=entry.count,
            limit=max_requests,
            reset_in_seconds=math.ceil(entry.window_reset_at - now),
        )

    def sweep(self) -> int:
        """Drop entries whose window has elapsed. Returns the number removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.window_reset_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Rate limiter sweep removed %d entries", len(expired))
        return len(expired)

    def reset(self, identifier: str) -> None:
        self._entries.pop(identifier, None)

    def __len__(self) -> int:
        return len(self._entries)
