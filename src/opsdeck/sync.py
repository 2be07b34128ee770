"""
Job pipeline coordinator.

``JobSync`` owns the stream, poller, store and cache and ties their timers
to explicit ``start()``/``dispose()`` calls:

- cache -> ``store.seed`` once at startup
- stream events -> ``store.apply_event``
- poll snapshots -> ``store.apply_snapshot``; poll errors -> ``store.record_error``
- store changes -> background cache save
- stream state -> poll interval (fast while down, backstop while connected)
- server URL change -> stream reconnect and an immediate poll
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

import aiohttp

from .api import OpsDeckApi
from .cache import JobCache
from .config import PollingConfig, ServerConfig, Settings, get_settings
from .errors import ApiError, NotConfiguredError
from .logging import get_logger
from .models import Issue, Job
from .poller import PollingScheduler
from .pubsub import Unsubscribe
from .store import JobStore
from .stream import ConnectionState, Connector, EventStreamConnection, JobLogStream
from .transport import TransportClient

logger = get_logger("sync")


class JobSync:
    """
    Keeps a :class:`JobStore` current from the event stream and polling.

    Example:
        ```python
        sync = JobSync.from_settings(Settings.from_env())
        sync.store.changes.subscribe(lambda store: render(store.issues))
        await sync.start()
        ...
        await sync.dispose()
        ```
    """

    def __init__(
        self,
        config: ServerConfig,
        api: OpsDeckApi,
        stream: EventStreamConnection,
        store: JobStore,
        cache: JobCache,
        polling: PollingConfig | None = None,
        *,
        connector: Connector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.api = api
        self.stream = stream
        self.store = store
        self.cache = cache
        self.polling = polling or PollingConfig()
        self._connector = connector
        self._clock = clock
        self.poller = PollingScheduler(
            self._fetch_snapshot,
            self._on_snapshot,
            self._on_poll_error,
            clock=clock,
        )

        self._subscriptions: list[Unsubscribe] = []
        self._save_task: asyncio.Task | None = None
        self._save_pending = False
        self._started = False
        self._disposed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        connector: Connector | None = None,
    ) -> JobSync:
        """Build the whole pipeline from one Settings object."""
        settings = settings or get_settings()
        config = settings.server_config()
        clock = time.monotonic
        return cls(
            config=config,
            api=OpsDeckApi(TransportClient(config, settings.transport, session=session)),
            stream=EventStreamConnection(config, settings.stream, connector=connector),
            store=JobStore(settings.store, clock=clock),
            cache=JobCache(settings.cache),
            polling=settings.polling,
            connector=connector,
            clock=clock,
        )

    async def __aenter__(self) -> JobSync:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._started or self._disposed:
            return
        self._started = True

        self.store.seed(await self.cache.load())

        self._subscriptions = [
            self.stream.events.subscribe(self.store.apply_event),
            self.stream.states.subscribe(self._on_stream_state),
            self.store.changes.subscribe(self._on_store_change),
            self.config.changes.subscribe(self._on_base_url_change),
        ]

        await self.config.load()
        if not self.config.is_configured:
            logger.warning("Server URL not configured; waiting for settings")
            await self.stream.connect()
            self.store.record_error(NotConfiguredError())
            return

        await self.stream.connect()
        self.poller.start(self._current_interval())
        logger.info("Job sync started", connected=self.stream.is_connected)

    async def dispose(self) -> None:
        """Stop timers, close sockets and let in-flight work settle."""
        if self._disposed:
            return
        self._disposed = True

        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()

        self.poller.stop()
        await self.stream.dispose()

        # No new saves are queued once disposed; the running loop writes the latest state
        if self._save_task is not None:
            await asyncio.gather(self._save_task, return_exceptions=True)
            self._save_task = None

        await self.poller.wait_idle()
        await self.api.close()
        self.store.close()
        logger.info("Job sync disposed")

    def _current_interval(self) -> float:
        if self.stream.state is ConnectionState.CONNECTED:
            return self.polling.backstop_interval
        return self.polling.interval

    # =========================================================================
    # Wiring
    # =========================================================================

    async def _fetch_snapshot(self) -> Mapping[str, Job]:
        return await self.api.fetch_status()

    def _on_snapshot(self, jobs: Mapping[str, Job], requested_at: float) -> None:
        self.store.apply_snapshot(jobs, requested_at)

    def _on_poll_error(self, error: BaseException) -> None:
        logger.log_error(error, "Poll failed", level=logging.WARNING)
        self.store.record_error(error)

    def _on_stream_state(self, state: ConnectionState) -> None:
        if self.poller.is_running:
            self.poller.set_interval(self._current_interval())

    def _on_store_change(self, store: JobStore) -> None:
        if self._disposed:
            return
        self._save_pending = True
        if self._save_task is None or self._save_task.done():
            self._save_task = asyncio.create_task(self._save_loop())

    async def _save_loop(self) -> None:
        # Coalesces bursts of changes into one write of the latest state
        while self._save_pending:
            self._save_pending = False
            await self.cache.save(self.store.jobs)

    async def _on_base_url_change(self, url: str | None) -> None:
        if self._disposed:
            return
        if not url:
            self.poller.stop()
            await self.stream.disconnect()
            self.store.record_error(NotConfiguredError())
            return
        logger.info("Server URL changed; reconnecting")
        await self.stream.reconnect()
        self.poller.start(self._current_interval())

    # =========================================================================
    # Actions
    # =========================================================================

    async def refresh(self) -> bool:
        """Fetch and apply one snapshot now. Errors land on the store."""
        requested_at = self._clock()
        try:
            jobs = await self.api.fetch_status()
        except ApiError as exc:
            self.store.record_error(exc)
            return False
        self.store.apply_snapshot(jobs, requested_at)
        return True

    async def approve_job(self, job_id: str) -> bool:
        try:
            await self.api.approve_job(job_id)
        except ApiError as exc:
            self.store.record_error(exc)
            raise
        await self.refresh()
        return True

    async def reject_job(self, job_id: str) -> bool:
        try:
            await self.api.reject_job(job_id)
        except ApiError as exc:
            self.store.record_error(exc)
            raise
        await self.refresh()
        return True

    async def trigger_job(
        self,
        repo: str,
        issue_num: int,
        issue_title: str,
        command: str,
        cmd_label: str | None = None,
    ) -> dict[str, Any]:
        """Start a job. The stream pushes the resulting job, so no refresh follows."""
        try:
            return await self.api.trigger_job(repo, issue_num, issue_title, command, cmd_label)
        except ApiError as exc:
            self.store.record_error(exc)
            raise

    async def fetch_issue_workflow(self, repo: str, issue_num: int) -> Issue | None:
        try:
            workflow = await self.api.fetch_workflow_state(repo, issue_num)
        except ApiError as exc:
            self.store.record_error(exc)
            raise
        return self.store.apply_workflow(repo, issue_num, workflow)

    async def update_base_url(self, url: str | None) -> str | None:
        """Persist a new server address; subscribers rebuild connections."""
        return await self.config.update_base_url(url)

    def open_job_stream(self, job_id: str) -> JobLogStream:
        """A log stream for one job; the caller connects and disposes it."""
        return JobLogStream(self.config, job_id, self.stream.settings, connector=self._connector)


__all__ = ["JobSync"]
