"""
Canonical in-memory job map.

Three sources feed the store, all on the event loop:
- ``seed`` with cached jobs at startup
- ``apply_event`` with pushed stream events
- ``apply_snapshot`` with polled ``/api/status`` snapshots

Subscribers to :attr:`JobStore.changes` are notified whenever the visible
state changes. Snapshots never evict jobs, and a snapshot requested before a
job's latest event cannot overwrite that event's state.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from .config import StoreConfig
from .errors import NotConfiguredError, is_retryable
from .events import JobEvent, JobEventType
from .logging import get_logger
from .models import Issue, IssueStatus, Job, JobStatus, group_issues
from .pubsub import Broadcaster

logger = get_logger("store")

# Status an event implies when it carries none
_IMPLIED_STATUS = {
    JobEventType.JOB_CREATED: JobStatus.PENDING,
    JobEventType.JOB_COMPLETED: JobStatus.COMPLETED,
    JobEventType.JOB_FAILED: JobStatus.FAILED,
}


class JobStore:
    """
    Single writer for the job map.

    Args:
        settings: Error staleness window.
        clock: Monotonic clock shared with the poller so snapshot request
            times and event receipt times are comparable.
    """

    def __init__(
        self,
        settings: StoreConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or StoreConfig()
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._event_times: dict[str, float] = {}
        self._workflows: dict[str, dict[str, Any]] = {}
        self._last_error: BaseException | None = None
        self._last_error_at: float | None = None
        self._revision = 0
        self.changes: Broadcaster[JobStore] = Broadcaster("store.changes")

    # =========================================================================
    # Mutations
    # =========================================================================

    def seed(self, jobs: Mapping[str, Job]) -> None:
        """Load cached jobs. Ids already in the store keep their current state."""
        added = 0
        for job_id, job in jobs.items():
            if job_id not in self._jobs:
                self._jobs[job_id] = job
                added += 1
        if added:
            logger.debug("Seeded jobs from cache", count=added)
            self._notify()

    def apply_event(self, event: JobEvent) -> None:
        """Upsert the job an event refers to. Notifies on every applied event."""
        if event.type is JobEventType.UNKNOWN:
            logger.debug("Ignoring unknown event type", job_id=event.job.id)
            return
        data = event.job
        if not data.id:
            logger.warning("Ignoring event without a job id", event_type=event.type.value)
            return

        now = datetime.now(timezone.utc)
        status = data.status or _IMPLIED_STATUS.get(event.type)
        existing = self._jobs.get(data.id)

        if existing is None:
            job = Job(
                job_id=data.id,
                repo=data.repo or "unknown",
                issue_num=data.issue_num or 0,
                issue_title=data.issue_title or "",
                command=data.command or "unknown",
                status=status or JobStatus.UNKNOWN,
                start_time=int(event.timestamp.timestamp()),
                cost=data.cost,
                error=data.error,
                created_at=now,
                updated_at=now,
            )
        else:
            changes: dict[str, Any] = {"updated_at": now}
            for name in ("repo", "issue_num", "issue_title", "command", "cost", "error"):
                value = getattr(data, name)
                if value is not None:
                    changes[name] = value
            if status is not None:
                changes["status"] = status
            if data.repo is not None:
                changes["repo_slug"] = data.repo.split("/")[-1]
            job = existing.copy_with(**changes)

        if event.is_terminal and job.completed_time is None:
            job = job.copy_with(completed_time=int(event.timestamp.timestamp()))

        self._jobs[data.id] = job
        self._event_times[data.id] = self._clock()
        self._clear_error()
        self._notify()

    def apply_snapshot(self, jobs: Mapping[str, Job], requested_at: float | None = None) -> bool:
        """
        Merge a polled snapshot.

        Jobs are overwritten or added, never removed. When ``requested_at`` is
        given, jobs whose latest event arrived after it keep their event state.

        Returns:
            True when subscribers were notified.
        """
        size_before = len(self._jobs)
        changed = False
        skipped = 0

        for job_id, job in jobs.items():
            if requested_at is not None and self._event_times.get(job_id, float("-inf")) > requested_at:
                skipped += 1
                continue
            current = self._jobs.get(job_id)
            if current is None or current.status is not job.status or current.error != job.error:
                changed = True
            self._jobs[job_id] = job

        if skipped:
            logger.debug("Kept event state newer than the snapshot", jobs=skipped)

        changed = changed or len(self._jobs) != size_before
        if self._clear_error():
            changed = True
        if changed:
            self._notify()
        return changed

    def apply_workflow(self, repo: str, issue_num: int, workflow: Mapping[str, Any]) -> Issue | None:
        """Attach server workflow state to an issue; returns the enriched issue."""
        key = f"{repo.split('/')[-1]}-{issue_num}"
        self._workflows[key] = dict(workflow)
        self._notify()
        return self.issues.get(key)

    def record_error(self, error: BaseException) -> None:
        self._last_error = error
        self._last_error_at = self._clock()
        self._notify()

    def _clear_error(self) -> bool:
        had_error = self.last_error is not None
        self._last_error = None
        self._last_error_at = None
        return had_error

    def _notify(self) -> None:
        self._revision += 1
        self.changes.emit(self)

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def revision(self) -> int:
        """Incremented on every notification."""
        return self._revision

    @property
    def jobs(self) -> Mapping[str, Job]:
        return MappingProxyType(dict(self._jobs))

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    @property
    def sorted_jobs(self) -> list[Job]:
        """Newest first."""
        return sorted(self._jobs.values(), key=lambda job: job.start_time, reverse=True)

    @property
    def issues(self) -> dict[str, Issue]:
        issues = group_issues(self._jobs.values())
        for key, workflow in self._workflows.items():
            if key in issues:
                issues[key] = issues[key].with_workflow(workflow)
        return issues

    def issues_for_status(self, status: IssueStatus) -> list[Issue]:
        """Issues in one board column, most recently active first."""
        matching = [issue for issue in self.issues.values() if issue.status is status]
        return sorted(matching, key=lambda issue: issue.last_activity_time, reverse=True)

    @property
    def running_jobs(self) -> list[Job]:
        return [job for job in self.sorted_jobs if job.status is JobStatus.RUNNING]

    @property
    def waiting_approval_jobs(self) -> list[Job]:
        return [job for job in self.sorted_jobs if job.needs_approval]

    @property
    def total_cost(self) -> float:
        return sum(job.cost.total_usd for job in self._jobs.values() if job.cost)

    def jobs_for_issue(self, repo: str, issue_num: int) -> list[Job]:
        return [job for job in self.sorted_jobs if job.repo == repo and job.issue_num == issue_num]

    # =========================================================================
    # Error state
    # =========================================================================

    @property
    def last_error(self) -> BaseException | None:
        """The latest fetch error, or None once it is older than ``error_ttl``."""
        if self._last_error is None or self._last_error_at is None:
            return None
        if self._clock() - self._last_error_at > self.settings.error_ttl:
            return None
        return self._last_error

    @property
    def error_is_transient(self) -> bool:
        error = self.last_error
        return error is not None and is_retryable(error)

    @property
    def needs_configuration(self) -> bool:
        return isinstance(self.last_error, NotConfiguredError)

    def close(self) -> None:
        self.changes.close()


def snapshot_of(jobs: Iterable[Job]) -> dict[str, Job]:
    """Key a job list by id."""
    return {job.job_id: job for job in jobs}


__all__ = ["JobStore", "snapshot_of"]
