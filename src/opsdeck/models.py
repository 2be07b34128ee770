"""
Job and Issue models.

Jobs are parsed leniently: a missing or malformed field falls back to a
sentinel so one corrupt record never breaks the rest of the board.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from .logging import get_logger

logger = get_logger("models")


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING_APPROVAL = "waiting_approval"
    APPROVED_RESUME = "approved_resume"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    INTERRUPTED = "interrupted"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> JobStatus:
        """Map a server status string to a member; unrecognized values become UNKNOWN."""
        if isinstance(value, JobStatus):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        key = value.strip().replace("-", "_").replace("_", "").lower()
        return _STATUS_LOOKUP.get(key, cls.UNKNOWN)


# "waiting_approval", "waitingApproval" and "WAITING-APPROVAL" all fold to the same key
_STATUS_LOOKUP = {member.value.replace("_", ""): member for member in JobStatus}

TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.REJECTED, JobStatus.INTERRUPTED}
)


@dataclass(frozen=True)
class JobCost:
    total_usd: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    model: str = "unknown"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobCost:
        return cls(
            total_usd=_as_float(data.get("total_usd", data.get("totalUsd"))),
            input_tokens=_as_int(data.get("input_tokens", data.get("inputTokens"))),
            output_tokens=_as_int(data.get("output_tokens", data.get("outputTokens"))),
            cache_read_tokens=_as_int(data.get("cache_read_tokens", data.get("cacheReadTokens"))),
            cache_creation_tokens=_as_int(
                data.get("cache_creation_tokens", data.get("cacheCreationTokens"))
            ),
            model=str(data.get("model") or "unknown"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_usd": self.total_usd,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
            "model": self.model,
        }

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def formatted(self) -> str:
        return f"${self.total_usd:.4f}"


_DECISION_CATEGORIES = frozenset({"architecture", "library", "pattern", "storage", "api", "testing"})


@dataclass(frozen=True)
class JobDecision:
    """A choice the agent recorded while running a job."""

    id: str = ""
    action: str = ""
    reasoning: str = ""
    alternatives: tuple[str, ...] | None = None
    category: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobDecision:
        alternatives = data.get("alternatives")
        timestamp = data.get("timestamp")
        if isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            # Epoch milliseconds
            timestamp = timestamp / 1000
        return cls(
            id=_as_str(data.get("id")),
            action=_as_str(data.get("action")),
            reasoning=_as_str(data.get("reasoning")),
            alternatives=tuple(str(a) for a in alternatives) if isinstance(alternatives, list) else None,
            category=data.get("category") if isinstance(data.get("category"), str) else None,
            timestamp=parse_datetime(timestamp),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "reasoning": self.reasoning,
            "alternatives": list(self.alternatives) if self.alternatives is not None else None,
            "category": self.category,
            "timestamp": self.timestamp.isoformat(),
        }

    @property
    def category_icon(self) -> str:
        category = (self.category or "").lower()
        return category if category in _DECISION_CATEGORIES else "other"


@dataclass(frozen=True)
class JobConfidence:
    """
    The agent's confidence in a job's result.

    ``score`` is in ``[0, 1]``. Servers may send a 0-100 percentage instead;
    anything above 1 is read that way and the result is clamped.
    """

    score: float = 0.5
    assessment: str = "MEDIUM"
    reasoning: str = ""
    risks: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobConfidence:
        return cls(
            score=_parse_score(data.get("score")),
            assessment=data.get("assessment") if isinstance(data.get("assessment"), str) else "MEDIUM",
            reasoning=_as_str(data.get("reasoning")),
            risks=data.get("risks") if isinstance(data.get("risks"), str) else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "assessment": self.assessment,
            "reasoning": self.reasoning,
            "risks": self.risks,
        }

    @property
    def level(self) -> str:
        if self.score >= 0.8:
            return "high"
        if self.score >= 0.5:
            return "medium"
        return "low"

    @property
    def display_label(self) -> str:
        return f"{self.level.capitalize()} Confidence"

    @property
    def percentage(self) -> str:
        return f"{round(self.score * 100)}%"


@dataclass(frozen=True)
class Job:
    """One execution of an automated task against one repository issue."""

    job_id: str
    repo: str = "unknown"
    issue_num: int = 0
    issue_title: str = ""
    command: str = "unknown"
    status: JobStatus = JobStatus.UNKNOWN
    start_time: int = 0
    completed_time: int | None = None
    cost: JobCost | None = None
    error: str | None = None
    repo_slug: str = ""
    log_path: str = ""
    local_path: str = ""
    full_command: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    decisions: tuple[JobDecision, ...] = ()
    confidence: JobConfidence | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, JobStatus):
            object.__setattr__(self, "status", JobStatus.parse(self.status))
        if not self.repo_slug and self.repo:
            object.__setattr__(self, "repo_slug", self.repo.split("/")[-1])

    @classmethod
    def from_json(cls, job_id: str, data: dict[str, Any]) -> Job:
        """Build a Job from an ``/api/status`` record (snake_case keys)."""
        cost = data.get("cost")
        decisions = data.get("decisions")
        confidence = data.get("confidence")
        return cls(
            job_id=job_id,
            repo=str(data.get("repo") or "unknown"),
            issue_num=_as_int(data.get("issue_num", data.get("issueNum"))),
            issue_title=str(data.get("issue_title", data.get("issueTitle")) or ""),
            command=str(data.get("command") or "unknown"),
            status=JobStatus.parse(data.get("status")),
            start_time=_as_int(data.get("start_time")),
            completed_time=_as_optional_int(data.get("completed_time")),
            cost=JobCost.from_dict(cost) if isinstance(cost, dict) else None,
            error=data.get("error") if isinstance(data.get("error"), str) else None,
            repo_slug=str(data.get("repo_slug") or ""),
            log_path=str(data.get("log_path") or ""),
            local_path=str(data.get("local_path") or ""),
            full_command=str(data.get("full_command") or ""),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            decisions=(
                tuple(JobDecision.from_dict(d) for d in decisions if isinstance(d, dict))
                if isinstance(decisions, list)
                else ()
            ),
            confidence=JobConfidence.from_dict(confidence) if isinstance(confidence, dict) else None,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        """Inverse of :meth:`to_dict`."""
        return cls.from_json(str(data["job_id"]), data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "repo": self.repo,
            "issue_num": self.issue_num,
            "issue_title": self.issue_title,
            "command": self.command,
            "status": self.status.value,
            "start_time": self.start_time,
            "completed_time": self.completed_time,
            "cost": self.cost.to_dict() if self.cost else None,
            "error": self.error,
            "repo_slug": self.repo_slug,
            "log_path": self.log_path,
            "local_path": self.local_path,
            "full_command": self.full_command,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "decisions": [d.to_dict() for d in self.decisions],
            "confidence": self.confidence.to_dict() if self.confidence else None,
        }

    def copy_with(self, **changes: Any) -> Job:
        return replace(self, **changes)

    @property
    def job_status(self) -> JobStatus:
        return self.status

    @property
    def needs_approval(self) -> bool:
        return self.status is JobStatus.WAITING_APPROVAL

    @property
    def needs_attention(self) -> bool:
        return self.status in (JobStatus.BLOCKED, JobStatus.FAILED, JobStatus.WAITING_APPROVAL)

    @property
    def is_active(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING, JobStatus.WAITING_APPROVAL)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def short_command(self) -> str:
        return self.command.replace("-headless", "")

    @property
    def duration(self) -> int | None:
        """Run time in seconds, once the job has completed."""
        if self.completed_time is None:
            return None
        return self.completed_time - self.start_time

    @property
    def issue_key(self) -> str:
        return f"{self.repo_slug}-{self.issue_num}"


def parse_status_response(payload: Any) -> dict[str, Job]:
    """
    Parse ``GET /api/status``.

    The server answers either with a list of records carrying ``issue_id`` or
    with an object keyed by job id. Any other shape yields an empty map.
    """
    records: list[tuple[str, dict[str, Any]]] = []
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, dict):
                records.append((str(item.get("issue_id") or item.get("issueId") or ""), item))
    elif isinstance(payload, dict):
        records = [(str(job_id), item) for job_id, item in payload.items() if isinstance(item, dict)]

    jobs: dict[str, Job] = {}
    for job_id, item in records:
        if not job_id:
            continue
        try:
            jobs[job_id] = Job.from_json(job_id, item)
        except (TypeError, ValueError, OverflowError) as exc:
            logger.warning("Skipping unparseable job record", job_id=job_id, error=str(exc))
    return jobs


# =============================================================================
# Issue aggregation
# =============================================================================


class WorkflowPhase(str, Enum):
    NEW = "new"
    PLANNING = "planning"
    PLAN_COMPLETE = "plan_complete"
    IMPLEMENTING = "implementing"
    REVIEW = "review"
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value: Any) -> WorkflowPhase:
        try:
            return cls(value)
        except ValueError:
            return cls.NEW


class IssueStatus(str, Enum):
    """Kanban column an issue is placed in."""

    NEEDS_ACTION = "needs_action"
    RUNNING = "running"
    FAILED = "failed"
    DONE = "done"


_PHASE_COMMANDS = {
    "plan-headless": "plan",
    "implement-headless": "implement",
    "retrospective-headless": "retrospective",
}

_RUNNING_STATUSES = (JobStatus.RUNNING, JobStatus.PENDING, JobStatus.APPROVED_RESUME)


def completed_phases_for(jobs: Iterable[Job]) -> list[str]:
    phases: list[str] = []
    for job in jobs:
        phase = _PHASE_COMMANDS.get(job.command)
        if job.status is JobStatus.COMPLETED and phase and phase not in phases:
            phases.append(phase)
    return phases


def infer_phase(jobs: Iterable[Job], completed_phases: Iterable[str]) -> WorkflowPhase:
    done = set(completed_phases)
    if "retrospective" in done:
        return WorkflowPhase.COMPLETE
    if "implement" in done:
        return WorkflowPhase.REVIEW
    if "plan" in done:
        return WorkflowPhase.PLAN_COMPLETE
    for job in jobs:
        if job.command == "plan-headless" and job.status in (JobStatus.RUNNING, JobStatus.PENDING):
            return WorkflowPhase.PLANNING
    return WorkflowPhase.NEW


@dataclass(frozen=True)
class Issue:
    """All jobs sharing one (repo, issue number) pair."""

    repo: str
    issue_num: int
    title: str
    jobs: tuple[Job, ...]
    current_phase: WorkflowPhase = WorkflowPhase.NEW
    completed_phases: tuple[str, ...] = ()
    pr_url: str | None = None
    can_revise: bool = False
    can_merge: bool = False
    issue_closed: bool = False
    revision_count: int = 0

    @classmethod
    def from_jobs(
        cls,
        repo: str,
        issue_num: int,
        jobs: Iterable[Job],
        *,
        phase: WorkflowPhase | None = None,
    ) -> Issue:
        job_list = tuple(jobs)
        completed = completed_phases_for(job_list)
        title = job_list[0].issue_title if job_list else f"Issue #{issue_num}"
        return cls(
            repo=repo,
            issue_num=issue_num,
            title=title or f"Issue #{issue_num}",
            jobs=job_list,
            current_phase=phase or infer_phase(job_list, completed),
            completed_phases=tuple(completed),
        )

    def with_workflow(self, workflow: dict[str, Any]) -> Issue:
        """Apply a ``/issues/<repo>/<num>/workflow`` response."""
        phases = workflow.get("completed_phases")
        return replace(
            self,
            current_phase=WorkflowPhase.parse(workflow.get("current_phase", "new")),
            pr_url=workflow.get("pr_url") if isinstance(workflow.get("pr_url"), str) else None,
            can_revise=bool(workflow.get("can_revise", False)),
            can_merge=bool(workflow.get("can_merge", False)),
            issue_closed=bool(workflow.get("issue_closed", False)),
            revision_count=_as_int(workflow.get("revision_count")),
            completed_phases=tuple(str(p) for p in phases) if isinstance(phases, list) else (),
        )

    @property
    def repo_slug(self) -> str:
        return self.repo.split("/")[-1]

    @property
    def key(self) -> str:
        return f"{self.repo_slug}-{self.issue_num}"

    @property
    def status(self) -> IssueStatus:
        statuses = {job.status for job in self.jobs}
        if statuses.intersection(_RUNNING_STATUSES):
            return IssueStatus.RUNNING
        if JobStatus.FAILED in statuses:
            return IssueStatus.FAILED
        if JobStatus.BLOCKED in statuses or JobStatus.WAITING_APPROVAL in statuses:
            return IssueStatus.NEEDS_ACTION
        if statuses == {JobStatus.COMPLETED} or self.current_phase is WorkflowPhase.COMPLETE:
            return IssueStatus.DONE
        return IssueStatus.NEEDS_ACTION

    @property
    def latest_job(self) -> Job | None:
        if not self.jobs:
            return None
        return max(self.jobs, key=lambda j: j.start_time)

    @property
    def running_job(self) -> Job | None:
        return next((j for j in self.jobs if j.status in (JobStatus.RUNNING, JobStatus.PENDING)), None)

    @property
    def failed_job(self) -> Job | None:
        return next((j for j in self.jobs if j.status is JobStatus.FAILED), None)

    @property
    def blocked_job(self) -> Job | None:
        return next((j for j in self.jobs if j.status is JobStatus.BLOCKED), None)

    @property
    def last_activity_time(self) -> int:
        latest = self.latest_job
        return latest.start_time if latest else int(time.time())


def group_issues(jobs: Iterable[Job]) -> dict[str, Issue]:
    """Aggregate jobs into issues keyed by ``{repo_slug}-{issue_num}``."""
    grouped: dict[tuple[str, int], list[Job]] = {}
    for job in jobs:
        grouped.setdefault((job.repo, job.issue_num), []).append(job)
    issues: dict[str, Issue] = {}
    for (repo, issue_num), job_list in grouped.items():
        issue = Issue.from_jobs(repo, issue_num, job_list)
        issues[issue.key] = issue
    return issues


# =============================================================================
# Lenient parsing helpers
# =============================================================================


def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return default
    if isinstance(value, (int, float)):
        # inf and nan have no integer value
        try:
            return int(value)
        except (OverflowError, ValueError):
            return default
    return default


def _as_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return int(value)
        except (OverflowError, ValueError):
            return None
    return None


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _parse_score(value: Any) -> float:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0.5
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        return 0.5
    if value > 1:
        value = value / 100
    return min(max(float(value), 0.0), 1.0)


def _as_float(value: Any, default: float = 0.0) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    return default


def parse_datetime(value: Any) -> datetime:
    """Parse epoch seconds or an ISO-8601 string; fall back to now (UTC)."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return datetime.now(timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return datetime.now(timezone.utc)


__all__ = [
    "JobStatus",
    "JobCost",
    "JobDecision",
    "JobConfidence",
    "Job",
    "TERMINAL_STATUSES",
    "parse_status_response",
    "WorkflowPhase",
    "IssueStatus",
    "Issue",
    "group_issues",
    "completed_phases_for",
    "infer_phase",
    "parse_datetime",
]
