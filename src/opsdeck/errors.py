"""
Error taxonomy for opsdeck.

This module provides:
- A kind enum mirroring how the dashboard reacts to failures
- Retryable vs non-retryable classification
- Structured context for debugging
- HTTP status mapping for the transport client
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ApiErrorKind(str, Enum):
    """Categories of transport failures."""

    NOT_CONFIGURED = "not_configured"
    NETWORK = "network"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    BAD_REQUEST = "bad_request"
    INVALID_JSON = "invalid_json"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Structured context for error debugging."""

    method: str | None = None
    path: str | None = None
    attempt: int = 1
    job_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "path": self.path,
            "attempt": self.attempt,
            "job_id": self.job_id,
            **self.extra,
        }


class OpsDeckError(Exception):
    """
    Base exception for all opsdeck errors.

    Attributes:
        message: Human-readable error message
        retryable: Whether the operation can be retried
        context: Structured debugging context
        cause: Original exception that caused this error
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        self.context = context or ErrorContext()
        self.cause = cause

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# Transport Errors
# =============================================================================


class ApiError(OpsDeckError):
    """Failure talking to the job server."""

    kind: ApiErrorKind = ApiErrorKind.UNKNOWN
    default_message: str = "Request failed"
    # Append the HTTP status to the default message
    include_status: bool = True

    def __init__(
        self,
        message: str | None = None,
        *,
        http_status: int | None = None,
        **kwargs: Any,
    ):
        if message is None:
            message = self.default_message
            if http_status is not None and self.include_status:
                message = f"{message} ({http_status})"
        super().__init__(message, **kwargs)
        self.http_status = http_status

    @property
    def is_retryable(self) -> bool:
        return self.retryable

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["kind"] = self.kind.value
        data["http_status"] = self.http_status
        return data


class NotConfiguredError(ApiError):
    """Server URL not set. Blocks all fetches until settings are updated."""

    kind = ApiErrorKind.NOT_CONFIGURED
    default_message = "Server URL not configured. Go to Settings to configure."


class NetworkError(ApiError):
    """Connection failed before a response arrived."""

    kind = ApiErrorKind.NETWORK
    retryable = True
    default_message = "Unable to connect to server. Check your network connection."


class TimeoutError_(ApiError):
    """Request timed out."""

    kind = ApiErrorKind.TIMEOUT
    retryable = True
    default_message = "Request timed out. The server may be busy."


class ServerError(ApiError):
    """5xx response."""

    kind = ApiErrorKind.SERVER_ERROR
    retryable = True

    def __init__(self, message: str | None = None, *, http_status: int | None = 500, **kwargs: Any):
        if message is None:
            message = f"Server error ({http_status}). Please try again later."
        super().__init__(message, http_status=http_status, **kwargs)


class NotFoundError(ApiError):
    kind = ApiErrorKind.NOT_FOUND
    default_message = "Resource not found"
    include_status = False


class ConflictError(ApiError):
    """409 response, e.g. a job for this issue is already running."""

    kind = ApiErrorKind.CONFLICT
    default_message = "Operation conflict - resource may already exist"
    include_status = False


class UnauthorizedError(ApiError):
    kind = ApiErrorKind.UNAUTHORIZED
    default_message = "Authentication required"
    include_status = False


class BadRequestError(ApiError):
    kind = ApiErrorKind.BAD_REQUEST
    default_message = "Invalid request"
    include_status = False


class InvalidJsonError(ApiError):
    """Response body could not be decoded."""

    kind = ApiErrorKind.INVALID_JSON
    default_message = "Received invalid response from server"
    include_status = False


class UnknownApiError(ApiError):
    kind = ApiErrorKind.UNKNOWN


# =============================================================================
# Stream / Config Errors
# =============================================================================


class MalformedEventError(OpsDeckError):
    """A stream frame could not be turned into an event."""


class ConfigError(OpsDeckError):
    """Base class for configuration errors."""


class InvalidConfigError(ConfigError):
    """Configuration is invalid."""


# =============================================================================
# Error Mapping from HTTP Status Codes
# =============================================================================


_STATUS_MAP: dict[int, type[ApiError]] = {
    400: BadRequestError,
    401: UnauthorizedError,
    403: UnauthorizedError,
    404: NotFoundError,
    409: ConflictError,
}


def error_from_status(
    status: int,
    message: str | None = None,
    *,
    context: ErrorContext | None = None,
) -> ApiError:
    """
    Create the ApiError subclass matching an HTTP status code.

    Args:
        status: HTTP status code
        message: Server-supplied message (``reason``/``error`` field), if any
        context: Additional error context

    Returns:
        Appropriate ApiError subclass
    """
    if status >= 500:
        return ServerError(message, http_status=status, context=context)
    error_class = _STATUS_MAP.get(status, UnknownApiError)
    return error_class(message, http_status=status, context=context)


def is_retryable(error: BaseException) -> bool:
    """
    Check if an error is retryable.

    Args:
        error: Exception to check

    Returns:
        True if the error is retryable
    """
    if isinstance(error, OpsDeckError):
        return error.retryable

    import asyncio

    retryable_types = (
        asyncio.TimeoutError,
        ConnectionError,
        TimeoutError,
    )
    return isinstance(error, retryable_types)


__all__ = [
    "ApiErrorKind",
    "ErrorContext",
    "OpsDeckError",
    # Transport errors
    "ApiError",
    "NotConfiguredError",
    "NetworkError",
    "TimeoutError_",
    "ServerError",
    "NotFoundError",
    "ConflictError",
    "UnauthorizedError",
    "BadRequestError",
    "InvalidJsonError",
    "UnknownApiError",
    # Other
    "MalformedEventError",
    "ConfigError",
    "InvalidConfigError",
    # Utilities
    "error_from_status",
    "is_retryable",
]
