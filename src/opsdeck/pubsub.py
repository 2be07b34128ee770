"""
Explicit publish/subscribe channel.

Subscribers are plain callables. A subscriber returning a coroutine is
scheduled on the running loop; the broadcaster keeps the task referenced
until it finishes.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import AsyncIterator, Callable
from typing import Any, Generic, TypeVar

from .logging import get_logger

T = TypeVar("T")

logger = get_logger("pubsub")

Unsubscribe = Callable[[], None]

_CLOSED = object()


class Broadcaster(Generic[T]):
    """Fan a value out to every current subscriber."""

    def __init__(self, name: str = "broadcaster") -> None:
        self.name = name
        self._subscribers: list[Callable[[T], Any]] = []
        self._queues: list[asyncio.Queue] = []
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers) + len(self._queues)

    def subscribe(self, callback: Callable[[T], Any]) -> Unsubscribe:
        """Register a callback; returns a function that removes it."""
        if self._closed:
            raise RuntimeError(f"{self.name} is closed")
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, value: T) -> None:
        if self._closed:
            return
        for callback in list(self._subscribers):
            try:
                result = callback(value)
            except Exception:
                logger.exception("Channel subscriber failed", channel=self.name, callback=repr(callback))
                continue
            if inspect.isawaitable(result):
                self._schedule(result)
        for queue in list(self._queues):
            queue.put_nowait(value)

    def _schedule(self, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Channel async subscriber failed", channel=self.name, error=repr(exc))

    async def stream(self) -> AsyncIterator[T]:
        """Yield every emitted value until :meth:`close` is called."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    async def drain(self) -> None:
        """Wait for scheduled async subscribers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscribers.clear()
        for queue in self._queues:
            queue.put_nowait(_CLOSED)


__all__ = ["Broadcaster", "Unsubscribe"]
