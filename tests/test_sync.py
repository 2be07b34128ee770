"""
End-to-end tests for the job pipeline coordinator.
"""
import asyncio
import time

import pytest

from conftest import FakeSession, make_job, status_record, wait_until
from opsdeck.api import OpsDeckApi
from opsdeck.cache import JobCache
from opsdeck.config import (
    JobCacheConfig,
    PollingConfig,
    PreferenceStore,
    ServerConfig,
    Settings,
    StoreConfig,
    StreamConfig,
    TransportConfig,
)
from opsdeck.errors import ConflictError, InvalidJsonError, NotConfiguredError, TimeoutError_
from opsdeck.models import JobStatus
from opsdeck.store import JobStore
from opsdeck.stream import ConnectionState, EventStreamConnection, JobLogStream
from opsdeck.sync import JobSync
from opsdeck.transport import TransportClient

FAST = 0.05
BACKSTOP = 10.0


def build_sync(tmp_path, session, connector, *, base_url="http://localhost:8080"):
    config = ServerConfig(PreferenceStore(tmp_path / "prefs.json"), base_url=base_url)
    api = OpsDeckApi(TransportClient(config, TransportConfig(max_retries=0), session=session))
    stream = EventStreamConnection(config, StreamConfig(reconnect_delay=0.02, heartbeat_interval=5), connector)
    return JobSync(
        config,
        api,
        stream,
        JobStore(StoreConfig()),
        JobCache(JobCacheConfig(cache_dir=tmp_path / "cache")),
        PollingConfig(interval=FAST, backstop_interval=BACKSTOP),
        connector=connector,
    )


@pytest.fixture
def running_job():
    return make_job("widgets-12-plan-headless", status="running", start_time=int(time.time()) - 60)


class TestLifecycle:
    async def test_cached_job_completed_by_event(self, tmp_path, connector, running_job):
        """Cold start from cache, then a pushed completion."""
        await JobCache(JobCacheConfig(cache_dir=tmp_path / "cache")).save({running_job.job_id: running_job})
        session = FakeSession((200, [status_record(running_job)]))
        sync = build_sync(tmp_path, session, connector)

        await sync.start()
        assert sync.store.get_job(running_job.job_id).status is JobStatus.RUNNING
        assert sync.stream.state is ConnectionState.CONNECTED
        await sync.poller.wait_idle()

        notifications = []
        sync.store.changes.subscribe(lambda store: notifications.append(store.revision))
        connector.latest.push(
            {
                "type": "jobCompleted",
                "timestamp": int(time.time()),
                "job": {"id": running_job.job_id, "status": "completed"},
            }
        )
        await wait_until(lambda: sync.store.get_job(running_job.job_id).status is JobStatus.COMPLETED)

        job = sync.store.get_job(running_job.job_id)
        assert job.completed_time is not None
        assert len(notifications) == 1

        await sync.dispose()
        cached = await JobCache(JobCacheConfig(cache_dir=tmp_path / "cache")).load()
        assert cached[running_job.job_id].status is JobStatus.COMPLETED

    async def test_snapshot_adds_jobs(self, tmp_path, connector, running_job):
        other = make_job("widgets-13-plan-headless", issue_num=13, status="waiting_approval")
        session = FakeSession((200, [status_record(running_job), status_record(other)]))
        sync = build_sync(tmp_path, session, connector)

        async with sync:
            await sync.poller.wait_idle()

            assert set(sync.store.jobs) == {running_job.job_id, other.job_id}
            assert session.calls[0].url == "http://localhost:8080/api/status"

    async def test_unconfigured_start(self, tmp_path, connector):
        session = FakeSession((200, []))
        sync = build_sync(tmp_path, session, connector, base_url=None)

        await sync.start()

        assert sync.store.needs_configuration
        assert isinstance(sync.store.last_error, NotConfiguredError)
        assert sync.stream.state is ConnectionState.ERROR
        assert not sync.poller.is_running
        assert session.calls == []
        assert connector.urls == []
        await sync.dispose()

    async def test_configuring_url_starts_pipeline(self, tmp_path, connector):
        session = FakeSession((200, []))
        sync = build_sync(tmp_path, session, connector, base_url=None)
        await sync.start()

        await sync.update_base_url("http://10.0.0.5:8080/")
        await sync.config.changes.drain()
        await sync.poller.wait_idle()

        assert connector.urls == ["ws://10.0.0.5:8080/ws/events"]
        assert sync.stream.is_connected
        assert sync.poller.is_running
        assert session.calls[0].url == "http://10.0.0.5:8080/api/status"
        assert not sync.store.needs_configuration
        await sync.dispose()

    async def test_clearing_url_stops_pipeline(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((200, [])), connector)
        await sync.start()

        await sync.update_base_url("")
        await sync.config.changes.drain()

        assert not sync.poller.is_running
        assert sync.stream.state is ConnectionState.DISCONNECTED
        assert sync.store.needs_configuration
        await sync.dispose()

    async def test_poll_interval_follows_stream_state(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((200, [])), connector)
        await sync.start()
        assert sync.poller.interval == BACKSTOP

        seen = []
        sync.stream.states.subscribe(lambda state: seen.append((state, sync.poller.interval)))
        connector.latest.push_close()
        await wait_until(lambda: len(connector.sockets) == 2 and sync.stream.is_connected)

        assert (ConnectionState.DISCONNECTED, FAST) in seen
        assert seen[-1] == (ConnectionState.CONNECTED, BACKSTOP)
        await sync.dispose()

    async def test_poll_error_recorded(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession(asyncio.TimeoutError()), connector)

        await sync.start()
        await sync.poller.wait_idle()

        assert isinstance(sync.store.last_error, TimeoutError_)
        assert sync.store.error_is_transient
        await sync.dispose()

    async def test_dispose(self, tmp_path, connector):
        session = FakeSession((200, []))
        sync = build_sync(tmp_path, session, connector)
        await sync.start()
        socket = connector.latest

        await sync.dispose()
        await sync.dispose()

        assert socket.closed
        assert not sync.poller.is_running
        assert sync.stream.state is ConnectionState.DISCONNECTED
        assert sync.store.changes.closed
        assert session.closed is False

    async def test_start_is_idempotent(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((200, [])), connector)

        await sync.start()
        await sync.start()

        assert len(connector.urls) == 1
        await sync.dispose()


class TestActions:
    """Actions work without start(); the store still records failures."""

    async def test_refresh(self, tmp_path, connector, running_job):
        sync = build_sync(tmp_path, FakeSession((200, [status_record(running_job)])), connector)

        assert await sync.refresh() is True
        assert running_job.job_id in sync.store
        await sync.dispose()

    async def test_refresh_failure(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((500, "")), connector)

        assert await sync.refresh() is False
        assert sync.store.error_is_transient
        await sync.dispose()

    async def test_undecodable_snapshot_recorded(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((200, b"[\xff\xfe]")), connector)

        assert await sync.refresh() is False
        assert isinstance(sync.store.last_error, InvalidJsonError)
        await sync.dispose()

    async def test_approve_refreshes(self, tmp_path, connector, running_job):
        approved = running_job.copy_with(status=JobStatus.APPROVED_RESUME)
        session = FakeSession((200, {"status": "ok"}), (200, [status_record(approved)]))
        sync = build_sync(tmp_path, session, connector)

        assert await sync.approve_job(running_job.job_id) is True

        assert [c.method for c in session.calls] == ["POST", "GET"]
        assert sync.store.get_job(running_job.job_id).status is JobStatus.APPROVED_RESUME
        await sync.dispose()

    async def test_reject_conflict(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession((409, {"error": "Job is not waiting for approval"})), connector)

        with pytest.raises(ConflictError):
            await sync.reject_job("a")

        assert isinstance(sync.store.last_error, ConflictError)
        await sync.dispose()

    async def test_trigger_conflict_recorded(self, tmp_path, connector):
        session = FakeSession((409, {"reason": "already running"}))
        sync = build_sync(tmp_path, session, connector)

        with pytest.raises(ConflictError, match="already running"):
            await sync.trigger_job("acme/widgets", 12, "Add dark mode", "plan-headless")

        assert str(sync.store.last_error) == "already running"
        assert len(session.calls) == 1
        await sync.dispose()

    async def test_trigger_does_not_refresh(self, tmp_path, connector):
        session = FakeSession((200, {"job_id": "widgets-12-plan-headless"}))
        sync = build_sync(tmp_path, session, connector)

        result = await sync.trigger_job("acme/widgets", 12, "Add dark mode", "plan-headless")

        assert result["job_id"] == "widgets-12-plan-headless"
        assert len(session.calls) == 1
        await sync.dispose()

    async def test_fetch_issue_workflow(self, tmp_path, connector, running_job):
        session = FakeSession((200, {"current_phase": "implementing", "pr_url": "https://example.com/pr/1"}))
        sync = build_sync(tmp_path, session, connector)
        sync.store.seed({running_job.job_id: running_job})

        issue = await sync.fetch_issue_workflow("acme/widgets", 12)

        assert issue.pr_url == "https://example.com/pr/1"
        assert session.calls[0].url.endswith("/issues/acme/widgets/12/workflow")
        await sync.dispose()

    async def test_open_job_stream(self, tmp_path, connector):
        sync = build_sync(tmp_path, FakeSession(), connector)

        log_stream = sync.open_job_stream("a")
        await log_stream.connect()

        assert isinstance(log_stream, JobLogStream)
        assert connector.urls == ["ws://localhost:8080/ws/jobs/a"]
        await log_stream.dispose()
        await sync.dispose()


def test_from_settings(tmp_path):
    settings = Settings(
        base_url="http://localhost:8080",
        preferences_path=tmp_path / "prefs.json",
        cache=JobCacheConfig(cache_dir=tmp_path / "cache"),
        polling=PollingConfig(interval=7),
    )

    sync = JobSync.from_settings(settings, session=FakeSession())

    assert sync.config.base_url == "http://localhost:8080"
    assert sync.polling.interval == 7
    assert sync.cache.path == tmp_path / "cache" / "jobs.json"
    assert sync.api.transport.config is sync.config
