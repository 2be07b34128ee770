"""
Tests for the reconciliation store.
"""
from datetime import datetime, timezone

import pytest

from conftest import make_job
from opsdeck.config import StoreConfig
from opsdeck.errors import NetworkError, NotConfiguredError, NotFoundError
from opsdeck.events import JobEvent
from opsdeck.models import IssueStatus, JobCost, JobStatus
from opsdeck.store import JobStore, snapshot_of

T0 = 1_700_000_000


def event(type_, job_id, timestamp=T0, **job):
    return JobEvent.from_json({"type": type_, "timestamp": timestamp, "job": {"id": job_id, **job}})


@pytest.fixture
def store(clock):
    s = JobStore(StoreConfig(error_ttl=30), clock=clock)
    yield s
    s.close()


@pytest.fixture
def notifications(store):
    seen = []
    store.changes.subscribe(lambda s: seen.append(s.revision))
    return seen


class TestApplyEvent:
    def test_created_event_adds_pending_job(self, store, notifications):
        store.apply_event(
            event("jobCreated", "widgets-12-plan-headless", repo="acme/widgets", issueNum=12,
                  issueTitle="Add dark mode", command="plan-headless")
        )

        job = store.get_job("widgets-12-plan-headless")
        assert job.status is JobStatus.PENDING
        assert job.start_time == T0
        assert job.repo_slug == "widgets"
        assert job.completed_time is None
        assert notifications == [1]

    def test_completed_event_updates_seeded_job(self, store, notifications):
        store.seed({"a": make_job("a", status="running", start_time=T0 - 60)})
        notifications.clear()

        store.apply_event(event("jobCompleted", "a", timestamp=T0, status="completed"))

        job = store.get_job("a")
        assert job.status is JobStatus.COMPLETED
        assert job.completed_time == T0
        assert job.duration == 60
        assert job.issue_title == "Add dark mode"
        assert len(notifications) == 1

    def test_absent_fields_leave_existing_values(self, store):
        store.seed({"a": make_job("a", cost=JobCost(total_usd=1.0))})

        store.apply_event(event("jobStatusChanged", "a", status="waitingApproval"))

        job = store.get_job("a")
        assert job.status is JobStatus.WAITING_APPROVAL
        assert job.cost.total_usd == 1.0
        assert job.command == "plan-headless"

    def test_failed_event_implies_status(self, store):
        store.seed({"a": make_job("a")})

        store.apply_event(event("jobFailed", "a", error="exit 1"))

        assert store.get_job("a").status is JobStatus.FAILED
        assert store.get_job("a").error == "exit 1"

    def test_unknown_type_and_empty_id_ignored(self, store, notifications):
        store.apply_event(event("jobTeleported", "a"))
        store.apply_event(event("jobCreated", ""))

        assert len(store) == 0
        assert notifications == []

    def test_job_ids_are_union_of_all_events(self, store):
        store.seed({"a": make_job("a")})
        for job_id in ("b", "c", "b"):
            store.apply_event(event("jobStatusChanged", job_id, status="running"))

        assert set(store.jobs) == {"a", "b", "c"}


class TestApplySnapshot:
    def test_adds_and_overwrites(self, store, notifications):
        store.seed({"a": make_job("a", status="running")})
        notifications.clear()

        changed = store.apply_snapshot({"a": make_job("a", status="completed"), "b": make_job("b")})

        assert changed is True
        assert store.get_job("a").status is JobStatus.COMPLETED
        assert "b" in store
        assert len(notifications) == 1

    def test_idempotent(self, store, notifications):
        snapshot = {"a": make_job("a"), "b": make_job("b", status="failed", error="boom")}

        assert store.apply_snapshot(snapshot) is True
        assert store.apply_snapshot(snapshot) is False
        assert len(notifications) == 1

    def test_never_evicts(self, store):
        store.seed({"a": make_job("a"), "b": make_job("b")})

        store.apply_snapshot({"b": make_job("b", status="completed")})

        assert set(store.jobs) == {"a", "b"}

    def test_empty_snapshot_is_noop(self, store, notifications):
        store.seed({"a": make_job("a")})
        notifications.clear()

        assert store.apply_snapshot({}) is False
        assert notifications == []

    def test_stale_snapshot_does_not_regress_event(self, store, clock):
        store.seed({"a": make_job("a", status="running")})
        requested_at = clock()
        clock.advance(1)
        store.apply_event(event("jobCompleted", "a", status="completed"))

        # Response to the request sent before the event arrived
        store.apply_snapshot({"a": make_job("a", status="running"), "b": make_job("b")}, requested_at)

        assert store.get_job("a").status is JobStatus.COMPLETED
        assert "b" in store

    def test_newer_snapshot_wins(self, store, clock):
        store.apply_event(event("jobCompleted", "a", status="completed"))
        clock.advance(1)

        store.apply_snapshot({"a": make_job("a", status="failed")}, clock())

        assert store.get_job("a").status is JobStatus.FAILED

    def test_clears_error(self, store, notifications):
        snapshot = {"a": make_job("a")}
        store.apply_snapshot(snapshot)
        store.record_error(NetworkError())
        notifications.clear()

        assert store.apply_snapshot(snapshot) is True
        assert store.last_error is None
        assert len(notifications) == 1
        assert store.apply_snapshot(snapshot) is False


class TestErrors:
    def test_error_expires(self, store, clock):
        store.record_error(NetworkError())
        assert isinstance(store.last_error, NetworkError)

        clock.advance(30)
        assert store.last_error is not None
        clock.advance(0.5)
        assert store.last_error is None

    def test_classification(self, store):
        store.record_error(NetworkError())
        assert store.error_is_transient
        assert not store.needs_configuration

        store.record_error(NotConfiguredError())
        assert store.needs_configuration
        assert not store.error_is_transient

        store.record_error(NotFoundError())
        assert not store.error_is_transient

    def test_event_clears_error(self, store):
        store.record_error(NetworkError())
        store.apply_event(event("jobCreated", "a"))
        assert store.last_error is None

    def test_record_error_notifies(self, store, notifications):
        store.record_error(NetworkError())
        assert notifications == [1]


class TestViews:
    def test_sorted_newest_first(self, store):
        store.seed(snapshot_of([make_job("old", start_time=1), make_job("new", start_time=3), make_job("mid", start_time=2)]))

        assert [job.job_id for job in store.sorted_jobs] == ["new", "mid", "old"]

    def test_jobs_view_is_read_only(self, store):
        store.seed({"a": make_job("a")})
        with pytest.raises(TypeError):
            store.jobs["b"] = make_job("b")

    def test_issue_views(self, store):
        store.seed(
            snapshot_of(
                [
                    make_job("w1", status="running", issue_num=1, cost=JobCost(total_usd=0.5)),
                    make_job("w2", status="waiting_approval", issue_num=2, cost=JobCost(total_usd=0.25)),
                    make_job("w3", status="completed", issue_num=3),
                ]
            )
        )

        assert set(store.issues) == {"widgets-1", "widgets-2", "widgets-3"}
        assert [i.issue_num for i in store.issues_for_status(IssueStatus.NEEDS_ACTION)] == [2]
        assert [j.job_id for j in store.running_jobs] == ["w1"]
        assert [j.job_id for j in store.waiting_approval_jobs] == ["w2"]
        assert store.total_cost == pytest.approx(0.75)
        assert [j.job_id for j in store.jobs_for_issue("acme/widgets", 3)] == ["w3"]

    def test_apply_workflow(self, store, notifications):
        store.seed({"a": make_job("a", status="completed")})
        notifications.clear()

        issue = store.apply_workflow("acme/widgets", 12, {"current_phase": "review", "can_merge": True})

        assert issue.key == "widgets-12"
        assert issue.can_merge
        assert store.issues["widgets-12"].current_phase.value == "review"
        assert len(notifications) == 1

    def test_revision_counts_notifications(self, store):
        store.seed({"a": make_job("a")})
        store.apply_event(event("jobStatusChanged", "a", status="completed"))
        assert store.revision == 2


def test_event_timestamp_is_utc():
    assert event("jobCreated", "a").timestamp == datetime.fromtimestamp(T0, tz=timezone.utc)
