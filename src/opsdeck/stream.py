"""
Self-healing WebSocket connections.

This module provides:
- ConnectionState, the only status callers observe
- EventStreamConnection for the global ``/ws/events`` job lifecycle stream
- JobLogStream for a single job's ``/ws/jobs/<id>`` log stream

Both share one state machine::

    disconnected -> connecting -> connected -> (error | disconnected)
    error | disconnected -> connecting    (after ``reconnect_delay``)

Socket failures never raise to the caller. They surface as state changes
followed by a reconnect attempt after a fixed delay, until ``disconnect()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import aiohttp

from .concurrency import cancel_task
from .config import ServerConfig, StreamConfig
from .errors import MalformedEventError
from .events import PROTOCOL_FRAME_TYPES, JobEvent, StreamMessage
from .logging import get_logger, redact_url, truncate_for_log
from .pubsub import Broadcaster

logger = get_logger("stream")

PING_FRAME = json.dumps({"type": "ping"}, separators=(",", ":"))

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class _ManagedConnection(ABC):
    """
    Connection lifecycle shared by the global and per-job streams.

    Subclasses resolve their URL and handle decoded JSON objects; everything
    else (heartbeat, reconnect, teardown) lives here.

    Args:
        config: Server address; read on every connect.
        settings: Reconnect delay and heartbeat interval.
        connector: ``async (url) -> websocket``. Defaults to
            ``aiohttp.ClientSession.ws_connect`` on a session this object owns.
    """

    def __init__(
        self,
        config: ServerConfig,
        settings: StreamConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or StreamConfig()
        self._connector = connector
        self._session: aiohttp.ClientSession | None = None

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._should_reconnect = True
        self._disposed = False
        self._connect_lock = asyncio.Lock()

        self._heartbeat_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None

        self.states: Broadcaster[ConnectionState] = Broadcaster(f"{self.name}.states")

    @property
    def name(self) -> str:
        return "stream"

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    @abstractmethod
    def _resolve_url(self) -> str | None:
        """Return the WebSocket URL, or ``None`` when the server is unconfigured."""

    @abstractmethod
    def _handle_payload(self, payload: dict[str, Any]) -> None:
        """Handle one decoded JSON object frame."""

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> bool:
        """
        Open the socket unless already connected or connecting.

        Returns:
            True when the connection is (or already was) up.
        """
        if self._disposed:
            return False
        async with self._connect_lock:
            if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
                return True
            self._should_reconnect = True

            await self.config.load()
            url = self._resolve_url()
            if url is None:
                # Waits for a config update rather than retrying on a timer
                logger.warning("Server URL not configured; stream idle", stream=self.name)
                self._set_state(ConnectionState.ERROR)
                return False

            self._set_state(ConnectionState.CONNECTING)
            try:
                ws = await self._open(url)
            except Exception as exc:
                logger.log_error(exc, "Stream connect failed", level=logging.WARNING, url=redact_url(url))
                if self._state is not ConnectionState.CONNECTING:
                    # disconnect() ran while the handshake was in flight
                    return False
                self._set_state(ConnectionState.ERROR)
                self._schedule_reconnect()
                return False

            if self._state is not ConnectionState.CONNECTING:
                # disconnect() ran while the handshake was in flight
                await _close_quietly(ws)
                return False

            self._ws = ws
            self._set_state(ConnectionState.CONNECTED)
            logger.info("Stream connected", stream=self.name, url=redact_url(url))
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(ws))
            self._reader_task = asyncio.create_task(self._read_loop(ws))
            return True

    async def disconnect(self) -> None:
        """Close the socket and stay down until the next :meth:`connect`."""
        self._should_reconnect = False
        cancel_task(self._reconnect_task)
        self._reconnect_task = None
        cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        cancel_task(self._reader_task)
        self._reader_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            await _close_quietly(ws)
        self._set_state(ConnectionState.DISCONNECTED)

    async def reconnect(self) -> bool:
        """Drop the current socket and open a new one, e.g. after a URL change."""
        await self.disconnect()
        return await self.connect()

    async def dispose(self) -> None:
        await self.disconnect()
        self._disposed = True
        self._close_broadcasters()
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _close_broadcasters(self) -> None:
        self.states.close()

    # =========================================================================
    # Internals
    # =========================================================================

    async def _open(self, url: str) -> Any:
        if self._connector is not None:
            return await self._connector(url)
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url)

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        old, self._state = self._state, state
        logger.log_state_change(old, state, stream=self.name)
        self.states.emit(state)

    async def _heartbeat_loop(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            if ws is not self._ws or self._state is not ConnectionState.CONNECTED:
                return
            try:
                await ws.send_str(PING_FRAME)
            except (aiohttp.ClientError, OSError, RuntimeError) as exc:
                # The reader sees the broken socket and reconnects
                logger.warning("Heartbeat failed", stream=self.name, error=str(exc))
                return

    async def _read_loop(self, ws: Any) -> None:
        next_state = ConnectionState.DISCONNECTED
        try:
            async for message in ws:
                if message.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(message.data)
                elif message.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("Stream error frame", stream=self.name, error=str(message.data))
                    next_state = ConnectionState.ERROR
                    break
                elif message.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.log_error(exc, "Stream reader failed", level=logging.WARNING, stream=self.name)
            next_state = ConnectionState.ERROR
        await self._connection_lost(ws, next_state)

    async def _connection_lost(self, ws: Any, state: ConnectionState) -> None:
        if ws is not self._ws:
            return
        self._ws = None
        self._reader_task = None
        cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        await _close_quietly(ws)
        self._set_state(state)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect or self._disposed:
            return
        cancel_task(self._reconnect_task)
        self._reconnect_task = asyncio.create_task(self._reconnect_after(self.settings.reconnect_delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._should_reconnect and not self._disposed:
            logger.info("Attempting reconnect", stream=self.name)
            await self.connect()

    def _handle_text(self, raw: Any) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Dropping undecodable frame", stream=self.name, frame=truncate_for_log(str(raw)))
            return
        if not isinstance(payload, dict):
            logger.warning("Dropping non-object frame", stream=self.name, frame=truncate_for_log(str(raw)))
            return
        try:
            self._handle_payload(payload)
        except MalformedEventError as exc:
            logger.warning("Dropping malformed frame", stream=self.name, error=str(exc))


async def _close_quietly(ws: Any) -> None:
    try:
        await ws.close()
    except (aiohttp.ClientError, OSError, RuntimeError) as exc:
        logger.debug("Socket close failed", error=str(exc))


class EventStreamConnection(_ManagedConnection):
    """
    Global job lifecycle stream.

    Example:
        ```python
        stream = EventStreamConnection(config)
        stream.events.subscribe(store.apply_event)
        await stream.connect()
        ```
    """

    def __init__(
        self,
        config: ServerConfig,
        settings: StreamConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        super().__init__(config, settings, connector)
        self.events: Broadcaster[JobEvent] = Broadcaster("stream.events")

    @property
    def name(self) -> str:
        return "events"

    def _resolve_url(self) -> str | None:
        return self.config.ws_url(self.settings.events_path)

    def _handle_payload(self, payload: dict[str, Any]) -> None:
        if payload.get("type") in PROTOCOL_FRAME_TYPES:
            return
        self.events.emit(JobEvent.from_json(payload))

    def _close_broadcasters(self) -> None:
        super()._close_broadcasters()
        self.events.close()


class JobLogStream(_ManagedConnection):
    """Live log and tool-use stream for one job."""

    def __init__(
        self,
        config: ServerConfig,
        job_id: str,
        settings: StreamConfig | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.job_id = job_id
        super().__init__(config, settings, connector)
        self.messages: Broadcaster[StreamMessage] = Broadcaster(f"job:{job_id}.messages")

    @property
    def name(self) -> str:
        return f"job:{self.job_id}"

    def _resolve_url(self) -> str | None:
        return self.config.ws_url(f"/ws/jobs/{self.job_id}")

    def _handle_payload(self, payload: dict[str, Any]) -> None:
        if payload.get("type") in PROTOCOL_FRAME_TYPES:
            return
        self.messages.emit(StreamMessage.from_json(payload))

    def _close_broadcasters(self) -> None:
        super()._close_broadcasters()
        self.messages.close()

    async def send(self, message: dict[str, Any]) -> bool:
        """Send user input to the job; dropped unless connected."""
        ws = self._ws
        if ws is None or self._state is not ConnectionState.CONNECTED:
            return False
        try:
            await ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, OSError, RuntimeError) as exc:
            logger.warning("Send failed", stream=self.name, error=str(exc))
            return False
        return True


__all__ = [
    "ConnectionState",
    "EventStreamConnection",
    "JobLogStream",
    "PING_FRAME",
]
