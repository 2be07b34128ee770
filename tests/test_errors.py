"""
Tests for the error taxonomy.
"""
import asyncio

import pytest

from opsdeck.errors import (
    ApiError,
    ApiErrorKind,
    BadRequestError,
    ConflictError,
    ErrorContext,
    InvalidJsonError,
    MalformedEventError,
    NetworkError,
    NotConfiguredError,
    NotFoundError,
    OpsDeckError,
    ServerError,
    TimeoutError_,
    UnauthorizedError,
    UnknownApiError,
    error_from_status,
    is_retryable,
)


class TestErrorKinds:
    """Test error kind enumeration."""

    def test_kinds_are_strings(self):
        assert ApiErrorKind.NOT_CONFIGURED.value == "not_configured"
        assert ApiErrorKind.INVALID_JSON == "invalid_json"

    def test_kinds_unique(self):
        values = [k.value for k in ApiErrorKind]
        assert len(values) == len(set(values))


class TestErrorContext:
    """Test error context."""

    def test_to_dict(self):
        ctx = ErrorContext(method="GET", path="/api/status", attempt=3, extra={"url": "x"})

        d = ctx.to_dict()

        assert d["method"] == "GET"
        assert d["path"] == "/api/status"
        assert d["attempt"] == 3
        assert d["url"] == "x"


class TestApiErrors:
    """Test the transport error classes."""

    def test_only_transient_kinds_are_retryable(self):
        assert NetworkError().is_retryable
        assert TimeoutError_().is_retryable
        assert ServerError(http_status=502).is_retryable

        for cls in (NotConfiguredError, NotFoundError, ConflictError, UnauthorizedError,
                    BadRequestError, InvalidJsonError, UnknownApiError):
            assert not cls().is_retryable

    def test_default_messages(self):
        assert str(NotConfiguredError()) == "Server URL not configured. Go to Settings to configure."
        assert str(TimeoutError_()) == "Request timed out. The server may be busy."
        assert str(ServerError(http_status=503)) == "Server error (503). Please try again later."

    def test_unknown_status_included_in_default_message(self):
        error = UnknownApiError(http_status=418)
        assert str(error) == "Request failed (418)"

    def test_explicit_message_wins(self):
        error = ConflictError("already running", http_status=409)

        assert error.message == "already running"
        assert error.http_status == 409
        assert error.kind is ApiErrorKind.CONFLICT

    def test_to_dict(self):
        error = NetworkError(context=ErrorContext(method="GET", path="/repos"), cause=OSError("refused"))

        d = error.to_dict()

        assert d["kind"] == "network"
        assert d["retryable"] is True
        assert d["context"]["path"] == "/repos"
        assert d["cause"] == "refused"

    def test_hierarchy(self):
        assert issubclass(ApiError, OpsDeckError)
        assert issubclass(MalformedEventError, OpsDeckError)
        assert not issubclass(MalformedEventError, ApiError)


class TestErrorFromStatus:
    """Test HTTP status mapping."""

    @pytest.mark.parametrize(
        "status, cls",
        [
            (400, BadRequestError),
            (401, UnauthorizedError),
            (403, UnauthorizedError),
            (404, NotFoundError),
            (409, ConflictError),
            (500, ServerError),
            (503, ServerError),
            (418, UnknownApiError),
        ],
    )
    def test_mapping(self, status, cls):
        error = error_from_status(status)

        assert type(error) is cls
        assert error.http_status == status

    def test_server_message_used(self):
        error = error_from_status(409, "already running")
        assert str(error) == "already running"


class TestIsRetryable:
    def test_api_errors(self):
        assert is_retryable(ServerError(http_status=500))
        assert not is_retryable(NotFoundError())

    def test_builtin_errors(self):
        assert is_retryable(asyncio.TimeoutError())
        assert is_retryable(ConnectionResetError())
        assert not is_retryable(ValueError("nope"))
