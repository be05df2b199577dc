"""
Unlock watcher — polls the local clock and fires once a vault becomes readable.

The unlock state machine never owns a timer; whoever presents a locked vault
(CLI countdown, web UI) runs one of these and calls the machine's
``refresh()`` from ``on_ready``.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from chronovault.timelock.client import is_unlockable

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0  # seconds


class UnlockWatcher:
    """Sleeps until ``unlock_time`` by the local clock, then calls ``on_ready``."""

    def __init__(
        self,
        unlock_time: datetime,
        on_ready: Callable[[], Awaitable[None] | None],
        interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        on_tick: Callable[[float], None] | None = None,
    ) -> None:
        self.unlock_time = unlock_time
        self.on_ready = on_ready
        self.interval = interval
        self.clock = clock
        self.on_tick = on_tick
        self._task: asyncio.Task[None] | None = None

    def remaining(self) -> float:
        """Seconds until the unlock time (0 once reached)."""
        return max(0.0, (self.unlock_time - self.clock()).total_seconds())

    async def run(self) -> None:
        while not is_unlockable(self.unlock_time, self.clock()):
            remaining = self.remaining()
            if self.on_tick is not None:
                self.on_tick(remaining)
            await asyncio.sleep(min(self.interval, remaining) or self.interval)

        logger.debug("Unlock time %s reached", self.unlock_time.isoformat())
        result = self.on_ready()
        if inspect.isawaitable(result):
            await result

    def start(self) -> asyncio.Task[None]:
        """Run in the background on the current event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="unlock-watcher")
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
