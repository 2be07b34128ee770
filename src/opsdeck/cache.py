"""
Filesystem job cache.

The whole job map is written as one JSON snapshot::

    {"version": 1, "last_sync_time": "<iso>", "jobs": {"<job_id>": {...}}}

Writes go through a temp file and ``os.replace`` so a reader only ever sees a
complete earlier snapshot. The cache is an optimisation for cold start:
``load`` never raises and ``save`` logs failures instead of propagating them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .concurrency import run_sync
from .config import JobCacheConfig
from .files import read_json, write_json_atomic
from .logging import get_logger
from .models import Job, parse_datetime

logger = get_logger("cache")

CACHE_VERSION = 1


class JobCache:
    def __init__(self, config: JobCacheConfig | None = None) -> None:
        self.config = config or JobCacheConfig()
        self._last_sync_time: datetime | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.config.path

    @property
    def last_sync_time(self) -> datetime | None:
        return self._last_sync_time

    async def load(self) -> dict[str, Job]:
        """Return cached jobs; empty when the file is missing, corrupt or from another version."""
        if not self.config.enabled:
            return {}
        try:
            data = await run_sync(read_json, self.path)
        except OSError as exc:
            logger.warning("Job cache unreadable", path=str(self.path), error=str(exc))
            return {}

        if not isinstance(data, dict) or data.get("version") != CACHE_VERSION:
            if data is not None:
                logger.warning("Ignoring job cache with unexpected layout", path=str(self.path))
            return {}

        if data.get("last_sync_time"):
            self._last_sync_time = parse_datetime(data["last_sync_time"])

        records = data.get("jobs")
        if not isinstance(records, dict):
            return {}

        jobs: dict[str, Job] = {}
        for job_id, record in records.items():
            if not isinstance(record, dict):
                continue
            try:
                jobs[str(job_id)] = Job.from_json(str(job_id), record)
            except (TypeError, ValueError) as exc:
                logger.debug("Skipping cached job", job_id=job_id, error=str(exc))
        logger.debug("Loaded jobs from cache", count=len(jobs))
        return jobs

    async def save(self, jobs: Mapping[str, Job]) -> bool:
        """Replace the snapshot with ``jobs``; returns False (and logs) on failure."""
        if not self.config.enabled:
            return False

        cutoff = time.time() - self.config.keep_days * 86400
        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "version": CACHE_VERSION,
            "last_sync_time": now.isoformat(),
            "jobs": {job_id: job.to_dict() for job_id, job in jobs.items() if job.start_time >= cutoff},
        }

        async with self._lock:
            try:
                await run_sync(write_json_atomic, self.path, payload)
            except (OSError, TypeError, ValueError) as exc:
                logger.warning("Failed to save job cache", path=str(self.path), error=str(exc))
                return False
        self._last_sync_time = now
        logger.debug("Saved jobs to cache", count=len(payload["jobs"]))
        return True

    async def clear(self) -> None:
        """Delete the snapshot file."""

        def _unlink() -> None:
            self.path.unlink(missing_ok=True)

        async with self._lock:
            try:
                await run_sync(_unlink)
            except OSError as exc:
                logger.warning("Failed to clear job cache", path=str(self.path), error=str(exc))
        self._last_sync_time = None


__all__ = ["JobCache", "CACHE_VERSION"]
