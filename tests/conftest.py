"""
Shared test fixtures and fakes for opsdeck tests.

This module provides:
- A fake aiohttp session returning scripted responses or raising errors
- A fake WebSocket and connector driven from the test
- Job factories and a manual clock
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import aiohttp
import pytest

from opsdeck.config import ServerConfig, StreamConfig
from opsdeck.models import Job, JobStatus

# =============================================================================
# Fake HTTP session
# =============================================================================


class FakeResponse:
    """Async context manager standing in for an aiohttp response."""

    def __init__(self, status: int = 200, body: Any = "", exc: BaseException | None = None):
        self.status = status
        self.body = body if isinstance(body, (str, bytes)) else json.dumps(body)
        self.exc = exc

    async def __aenter__(self) -> FakeResponse:
        if self.exc is not None:
            raise self.exc
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False

    async def text(self, encoding: str | None = None, errors: str = "strict") -> str:
        if isinstance(self.body, bytes):
            return self.body.decode(encoding or "utf-8", errors)
        return self.body


@dataclass
class RecordedRequest:
    method: str
    url: str
    kwargs: dict[str, Any]

    @property
    def json(self) -> Any:
        return self.kwargs.get("json")


class FakeSession:
    """
    Replays scripted outcomes in order; the last one repeats.

    Each outcome is a FakeResponse, a (status, body) tuple, or an exception.
    """

    def __init__(self, *outcomes: Any):
        self.outcomes = list(outcomes) or [FakeResponse(200, [])]
        self.calls: list[RecordedRequest] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(RecordedRequest(method, url, kwargs))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            return FakeResponse(exc=outcome)
        if isinstance(outcome, tuple):
            return FakeResponse(*outcome)
        return outcome

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Fake WebSocket
# =============================================================================


@dataclass
class WSMessage:
    type: aiohttp.WSMsgType
    data: Any = None
    extra: Any = None


_END = object()


class FakeWebSocket:
    """Frames pushed by the test are yielded to the reader in order."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    def push(self, payload: Any) -> None:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        self._queue.put_nowait(WSMessage(aiohttp.WSMsgType.TEXT, data))

    def push_error(self, error: BaseException | None = None) -> None:
        self._queue.put_nowait(WSMessage(aiohttp.WSMsgType.ERROR, error or ConnectionResetError("reset")))

    def push_close(self) -> None:
        self._queue.put_nowait(WSMessage(aiohttp.WSMsgType.CLOSE, 1000))

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> WSMessage:
        message = await self._queue.get()
        if message is _END or message.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
            raise StopAsyncIteration
        return message

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self) -> bool:
        self.closed = True
        self._queue.put_nowait(_END)
        return True


class FakeConnector:
    """``async (url) -> websocket``; fails the first ``fail_times`` attempts."""

    def __init__(self, fail_times: int = 0) -> None:
        self.fail_times = fail_times
        self.urls: list[str] = []
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise aiohttp.ClientConnectionError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


# =============================================================================
# Clock and job factories
# =============================================================================


@dataclass
class ManualClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_job(
    job_id: str = "widgets-12-plan-headless",
    status: JobStatus | str = JobStatus.RUNNING,
    **overrides: Any,
) -> Job:
    fields: dict[str, Any] = {
        "repo": "acme/widgets",
        "issue_num": 12,
        "issue_title": "Add dark mode",
        "command": "plan-headless",
        "start_time": int(time.time()),
    }
    fields.update(overrides)
    return Job(job_id=job_id, status=status, **fields)


def status_record(job: Job) -> dict[str, Any]:
    """The ``/api/status`` list-form record for a job."""
    record = job.to_dict()
    record["issue_id"] = record.pop("job_id")
    return record


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(base_url="http://localhost:8080")


@pytest.fixture
def fast_stream_settings() -> StreamConfig:
    return StreamConfig(reconnect_delay=0.02, heartbeat_interval=0.02)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def job_factory() -> Callable[..., Job]:
    return make_job


@pytest.fixture
def wait_for() -> Callable[..., Any]:
    return wait_until


@pytest.fixture
def record_sleeps(monkeypatch) -> list[float]:
    """Replace ``asyncio.sleep`` in the transport with a recorder."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("opsdeck.transport.asyncio.sleep", fake_sleep)
    return delays
