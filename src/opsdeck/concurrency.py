"""
Async concurrency helpers.

Everything in opsdeck runs on one event loop. Filesystem I/O is pushed to a
small thread pool, and background timers are plain tasks that are cancelled
through :func:`cancel_task`.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Any, TypeVar

T = TypeVar("T")


def _default_max_workers() -> int:
    return min(8, (os.cpu_count() or 1) + 2)


_EXECUTOR = ThreadPoolExecutor(max_workers=_default_max_workers(), thread_name_prefix="opsdeck-io")


async def run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """
    Run a synchronous callable in the shared I/O pool.

    The concurrent future is polled rather than awaited through
    ``run_in_executor`` so the await never depends on a cross-thread wakeup.
    """
    future = _EXECUTOR.submit(partial(func, *args, **kwargs))
    try:
        while True:
            if future.done():
                return future.result()
            await asyncio.sleep(0.001)
    except asyncio.CancelledError:
        future.cancel()
        raise


def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel a background task unless it is the one currently running."""
    if task is None or task.done():
        return
    try:
        current = asyncio.current_task()
    except RuntimeError:
        current = None
    if task is not current:
        task.cancel()


__all__ = ["run_sync", "cancel_task"]
