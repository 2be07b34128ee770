"""
Structured logging for opsdeck.

This module provides:
- Structured JSON or coloured text logging with consistent fields
- Request/response records for the transport client
- Connection state transition records for the stream
- Timing helpers
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlsplit, urlunsplit

# =============================================================================
# Log Record Types
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    component: str | None = None
    job_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            component=kwargs.get("component", self.component),
            job_id=kwargs.get("job_id", self.job_id),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


@dataclass
class RequestLog:
    """Log record for an HTTP request."""

    method: str
    path: str
    attempt: int = 1
    timeout: float | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class ResponseLog:
    """Log record for an HTTP response or failure."""

    method: str
    path: str
    success: bool = True
    status_code: int | None = None
    error: str | None = None
    attempt: int = 1
    duration_ms: float | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured output and context tracking.

    Example:
        ```python
        logger = get_logger("stream")

        with logger.trace_context(job_id="repo-12-plan-headless"):
            logger.info("Attaching to job stream")
        ```
    """

    def __init__(
        self,
        name: str = "opsdeck",
        level: str | None = None,
        json_output: bool = False,
    ):
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(getattr(logging, level.upper()))

        self._context: LogContext = LogContext(component=name.rsplit(".", 1)[-1])

        # Handlers live on the package root so child loggers propagate to it
        root = logging.getLogger("opsdeck")
        if not root.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
            root.addHandler(handler)
            if root.level == logging.NOTSET:
                root.setLevel(logging.INFO)

    @property
    def context(self) -> LogContext:
        return self._context

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def set_context(self, **kwargs) -> None:
        """Update the current log context."""
        self._context = self._context.with_update(**kwargs)

    @contextmanager
    def trace_context(
        self,
        trace_id: str | None = None,
        **kwargs,
    ) -> Iterator[str]:
        """
        Context manager for trace correlation.

        Yields:
            The trace ID
        """
        trace_id = trace_id or generate_trace_id()
        old_context = self._context

        try:
            self._context = old_context.with_update(trace_id=trace_id, **kwargs)
            yield trace_id
        finally:
            self._context = old_context

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        record_data = {
            "message": message,
            **self._context.to_dict(),
        }
        if event_type:
            record_data["event_type"] = event_type
        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str), exc_info=exc_info)
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip(), exc_info=exc_info)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def exception(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs, exc_info=True)

    # Typed logging methods

    def log_request(self, request: RequestLog) -> None:
        self._log(
            logging.DEBUG,
            f"{request.method} {request.path}",
            event_type="request",
            data=request.to_dict(),
        )

    def log_response(self, response: ResponseLog) -> None:
        level = logging.DEBUG if response.success else logging.WARNING
        message = f"{response.method} {response.path} -> {response.status_code or response.error}"
        if response.duration_ms is not None:
            message += f" ({response.duration_ms:.0f}ms)"
        self._log(level, message, event_type="response", data=response.to_dict())

    def log_state_change(self, old: Any, new: Any, **kwargs) -> None:
        self._log(
            logging.INFO,
            f"State {getattr(old, 'value', old)} -> {getattr(new, 'value', new)}",
            event_type="state_change",
            data={"from": getattr(old, "value", old), "to": getattr(new, "value", new), **kwargs},
        )

    def log_error(
        self,
        error: BaseException,
        message: str | None = None,
        *,
        level: int = logging.ERROR,
        **kwargs,
    ) -> None:
        """Log an error with context."""
        error_data = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            **kwargs,
        }

        kind = getattr(error, "kind", None)
        if kind is not None:
            error_data["error_kind"] = getattr(kind, "value", kind)
        if hasattr(error, "retryable"):
            error_data["retryable"] = error.retryable
        if getattr(error, "context", None) is not None and hasattr(error.context, "to_dict"):
            error_data["error_context"] = error.context.to_dict()

        self._log(
            level,
            message or f"Error: {error}",
            event_type="error",
            data=error_data,
        )


# =============================================================================
# Formatters
# =============================================================================


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }

        try:
            message_data = json.loads(record.getMessage())
            if isinstance(message_data, dict):
                log_data.update(message_data)
            else:
                log_data["message"] = record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_data["message"] = record.getMessage()

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        color = self.LEVEL_COLORS.get(record.levelname, "")
        reset = self.RESET if color else ""

        line = f"{timestamp} {color}{record.levelname:8}{reset} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex[:16]}"


def redact_url(url: str | None) -> str:
    """Drop credentials and query strings from a URL before logging it."""
    if not url:
        return "<not set>"
    parts = urlsplit(url)
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


def truncate_for_log(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"... ({len(text)} chars total)"


# =============================================================================
# Timing Utilities
# =============================================================================


@dataclass
class Timer:
    """Simple timer for measuring durations."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    def stop(self) -> float:
        """Stop the timer and return duration in milliseconds."""
        self.end_time = time.perf_counter()
        return self.elapsed_ms

    @property
    def elapsed_ms(self) -> float:
        end = self.end_time or time.perf_counter()
        return (end - self.start_time) * 1000


@contextmanager
def timed() -> Iterator[Timer]:
    """Context manager for timing operations."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.stop()


# =============================================================================
# Global Logger
# =============================================================================

_loggers: dict[str, StructuredLogger] = {}
_json_output = False


def get_logger(component: str = "opsdeck") -> StructuredLogger:
    """Get or create the structured logger for a component (``transport``, ``stream``...)."""
    name = component if component.startswith("opsdeck") else f"opsdeck.{component}"
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name, json_output=_json_output)
    return _loggers[name]


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: str | None = None,
) -> StructuredLogger:
    """Configure the package root logger; existing component loggers pick up the format."""
    global _json_output
    _json_output = json_output

    root = logging.getLogger("opsdeck")
    root.setLevel(getattr(logging, level.upper()))
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler: logging.Handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    root.addHandler(handler)

    for logger in _loggers.values():
        logger.json_output = json_output
    return get_logger("opsdeck")


__all__ = [
    "LogContext",
    "RequestLog",
    "ResponseLog",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "Timer",
    "timed",
    "generate_trace_id",
    "redact_url",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
