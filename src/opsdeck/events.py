"""
Typed events received over the WebSocket streams.

``JobEvent`` frames arrive on the global ``/ws/events`` stream;
``StreamMessage`` frames arrive on the per-job ``/ws/jobs/<id>`` stream.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from .errors import MalformedEventError
from .models import JobCost, JobStatus, parse_datetime

# Frames that belong to the protocol rather than the job lifecycle.
PROTOCOL_FRAME_TYPES = frozenset({"connected", "pong"})


class JobEventType(str, Enum):
    JOB_CREATED = "jobCreated"
    JOB_STATUS_CHANGED = "jobStatusChanged"
    JOB_COMPLETED = "jobCompleted"
    JOB_FAILED = "jobFailed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> JobEventType:
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class JobEventData:
    """Partial job fields carried by an event. ``None`` means "not sent"."""

    id: str
    repo: str | None = None
    issue_num: int | None = None
    issue_title: str | None = None
    command: str | None = None
    status: JobStatus | None = None
    cost: JobCost | None = None
    error: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> JobEventData:
        cost = data.get("cost")
        issue_num = data.get("issueNum", data.get("issue_num"))
        status = data.get("status")
        return cls(
            id=str(data.get("id") or data.get("issue_id") or ""),
            repo=_opt_str(data.get("repo")),
            issue_num=issue_num if isinstance(issue_num, int) and not isinstance(issue_num, bool) else None,
            issue_title=_opt_str(data.get("issueTitle", data.get("issue_title"))),
            command=_opt_str(data.get("command")),
            status=JobStatus.parse(status) if status is not None else None,
            cost=JobCost.from_dict(cost) if isinstance(cost, dict) else None,
            error=_opt_str(data.get("error")),
        )


@dataclass(frozen=True)
class JobEvent:
    """Immutable job lifecycle notification from ``/ws/events``."""

    type: JobEventType
    timestamp: datetime
    job: JobEventData

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> JobEvent:
        job = data.get("job")
        if not isinstance(job, dict):
            raise MalformedEventError(f"Event frame has no job object: {data.get('type')!r}")
        try:
            return cls(
                type=JobEventType.parse(data.get("type")),
                timestamp=parse_datetime(data.get("timestamp")),
                job=JobEventData.from_json(job),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedEventError(f"Unparseable event frame: {exc}", cause=exc) from exc

    @property
    def is_terminal(self) -> bool:
        return self.type in (JobEventType.JOB_COMPLETED, JobEventType.JOB_FAILED)


# =============================================================================
# Per-job stream messages
# =============================================================================


class StreamDataType(str, Enum):
    TEXT = "text"
    STATUS = "status"
    TOOL = "tool"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class ToolUse:
    tool_name: str
    tool_id: str | None = None
    input: str | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> ToolUse:
        return cls(
            tool_name=str(data.get("toolName") or "unknown"),
            tool_id=_opt_str(data.get("toolId")),
            input=_opt_str(data.get("input")),
        )


@dataclass(frozen=True)
class RunResult:
    session_id: str | None = None
    total_cost_usd: float | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None
    duration: float | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> RunResult:
        cost = data.get("totalCostUsd")
        duration = data.get("duration")
        return cls(
            session_id=_opt_str(data.get("sessionId")),
            total_cost_usd=float(cost) if isinstance(cost, (int, float)) else None,
            input_tokens=data.get("inputTokens") if isinstance(data.get("inputTokens"), int) else None,
            output_tokens=data.get("outputTokens") if isinstance(data.get("outputTokens"), int) else None,
            cache_read_tokens=data.get("cacheReadTokens") if isinstance(data.get("cacheReadTokens"), int) else None,
            cache_creation_tokens=(
                data.get("cacheCreationTokens") if isinstance(data.get("cacheCreationTokens"), int) else None
            ),
            duration=float(duration) if isinstance(duration, (int, float)) else None,
        )


@dataclass(frozen=True)
class StreamData:
    type: StreamDataType
    content: str | ToolUse | RunResult


@dataclass(frozen=True)
class StreamMessage:
    """Log/tool-use frame from ``/ws/jobs/<id>``."""

    type: str
    job_id: str
    timestamp: datetime
    data: StreamData | None = None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> StreamMessage:
        try:
            return cls(
                type=str(data.get("type") or "unknown"),
                job_id=str(data.get("jobId") or ""),
                timestamp=parse_datetime(data.get("timestamp")),
                data=_parse_stream_data(data.get("data")),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedEventError(f"Unparseable stream message: {exc}", cause=exc) from exc


def _parse_stream_data(raw: Any) -> StreamData | None:
    if not isinstance(raw, dict):
        return None
    try:
        data_type = StreamDataType(raw.get("type"))
    except ValueError:
        return None
    content = raw.get("content")
    if data_type is StreamDataType.TOOL:
        return StreamData(data_type, ToolUse.from_json(content)) if isinstance(content, dict) else None
    if data_type is StreamDataType.RESULT:
        return StreamData(data_type, RunResult.from_json(content)) if isinstance(content, dict) else None
    if not isinstance(content, str):
        return None
    return StreamData(data_type, content)


def _opt_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


__all__ = [
    "PROTOCOL_FRAME_TYPES",
    "JobEventType",
    "JobEventData",
    "JobEvent",
    "StreamDataType",
    "ToolUse",
    "RunResult",
    "StreamData",
    "StreamMessage",
]
