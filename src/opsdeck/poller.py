"""
Timer-driven snapshot polling.

Each tick starts an independent fetch task, so a slow request never delays
or queues the next one. Results are tagged with the clock reading taken when
the request was sent, which the store uses to ignore snapshots older than
the latest pushed event.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from .concurrency import cancel_task
from .logging import get_logger
from .models import Job

logger = get_logger("poller")

Fetch = Callable[[], Awaitable[Mapping[str, Job]]]
SnapshotHandler = Callable[[Mapping[str, Job], float], Any]
ErrorHandler = Callable[[BaseException], Any]


class PollingScheduler:
    """
    Periodic fetch loop with a cancellable timer.

    ``stop()`` cancels the timer only. Fetches already in flight run to
    completion and their results are discarded.
    """

    def __init__(
        self,
        fetch: Fetch,
        on_snapshot: SnapshotHandler,
        on_error: ErrorHandler | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._clock = clock

        self._interval: float | None = None
        self._timer_task: asyncio.Task | None = None
        # Loop time of the latest timer fetch; interval changes keep the elapsed part
        self._last_tick = 0.0
        self._inflight: set[asyncio.Task] = set()
        # Bumped on stop/start; results from an older generation are dropped
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def interval(self) -> float | None:
        return self._interval

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def start(self, interval: float) -> None:
        """Fetch now, then every ``interval`` seconds."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.stop()
        self._generation += 1
        self._interval = interval
        self._spawn_fetch(self._generation)
        self._last_tick = asyncio.get_running_loop().time()
        self._timer_task = asyncio.create_task(self._tick_loop(self._generation, interval))
        logger.debug("Polling started", interval=interval)

    def stop(self) -> None:
        if self._timer_task is None:
            return
        cancel_task(self._timer_task)
        self._timer_task = None
        self._generation += 1
        logger.debug("Polling stopped")

    def set_interval(self, interval: float) -> None:
        """
        Change the period without an immediate fetch.

        Time already waited since the last fetch counts toward the new period.
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if interval == self._interval and self.is_running:
            return
        self._interval = interval
        if not self.is_running:
            return
        elapsed = asyncio.get_running_loop().time() - self._last_tick
        cancel_task(self._timer_task)
        self._timer_task = asyncio.create_task(
            self._tick_loop(self._generation, interval, first_delay=max(0.0, interval - elapsed))
        )
        logger.debug("Polling interval changed", interval=interval)

    async def fetch_now(self) -> None:
        """Run one fetch outside the timer and wait for it."""
        await self._fetch_once(self._generation)

    async def wait_idle(self) -> None:
        """Wait for in-flight fetches to settle."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _tick_loop(self, generation: int, interval: float, first_delay: float | None = None) -> None:
        delay = interval if first_delay is None else first_delay
        while True:
            await asyncio.sleep(delay)
            if generation != self._generation:
                return
            self._last_tick = asyncio.get_running_loop().time()
            self._spawn_fetch(generation)
            delay = interval

    def _spawn_fetch(self, generation: int) -> None:
        task = asyncio.create_task(self._fetch_once(generation))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _fetch_once(self, generation: int) -> None:
        requested_at = self._clock()
        try:
            jobs = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if generation != self._generation:
                return
            if self._on_error is None:
                logger.warning("Poll failed", error=str(exc))
            else:
                self._on_error(exc)
            return

        if generation != self._generation:
            logger.debug("Discarding snapshot from a stopped poll")
            return
        self._on_snapshot(jobs, requested_at)


__all__ = ["PollingScheduler"]
