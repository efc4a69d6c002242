"""
SQLite queue: persistence, claiming, workers.
"""

from datetime import timedelta

import pytest

from retryctl import Job, JobState
from retryctl.adapters import SQLiteAdapter
from retryctl.config import load_config
from retryctl.errors import ConfigurationError
from retryctl.executor import Executor
from retryctl.storage import (
    cancel_job,
    config_get,
    config_set,
    counts_by_state,
    fetch_and_lock_next_job,
    get_job,
    list_jobs,
    list_workers,
    recover_running,
    reset_lineage,
    upsert_job,
)
from retryctl.testing import FrozenClock
from retryctl.worker import work_once, worker_loop

from retry_jobs import HelloJob, Person, RetryJob, buffer


class Stalled(Exception):
    pass


class NegativeWaitJob(Job):
    def perform(self):
        raise Stalled("stalled")


NegativeWaitJob.retry_on(Stalled, wait=lambda attempt: -1)


class UnwritableAdapter(SQLiteAdapter):
    def enqueue(self, descriptor):
        if descriptor.executions:
            raise OSError("disk full")
        super().enqueue(descriptor)

    def update(self, descriptor):
        raise OSError("disk full")


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def executor(retryctl_home, clock):
    return Executor(SQLiteAdapter(), clock=clock)


class TestStorage:
    def test_round_trip(self, executor):
        descriptor = executor.enqueue(RetryJob, Person(5), 2, priority=4)
        stored = get_job(descriptor.id)
        assert stored == descriptor
        assert stored.arguments == [{"_gid": "Person/5"}, 2]

    def test_defaults_seeded_into_config(self, retryctl_home):
        assert config_get("shutdown") == "false"
        assert config_get("default_queue") == "default"

    def test_claims_highest_priority_due_job(self, executor, clock):
        low = executor.enqueue(HelloJob, "low", priority=1)
        high = executor.enqueue(HelloJob, "high", priority=5)
        executor.enqueue(HelloJob, "later", priority=9, wait=60)

        claimed = fetch_and_lock_next_job("w-1", now=clock())
        assert claimed.id == high.id
        assert claimed.state is JobState.RUNNING
        assert claimed.worker_id == "w-1"
        assert fetch_and_lock_next_job("w-1", now=clock()).id == low.id
        assert fetch_and_lock_next_job("w-1", now=clock()) is None

    def test_recover_running(self, executor, clock):
        descriptor = executor.enqueue(HelloJob)
        fetch_and_lock_next_job("w-dead", now=clock())
        assert recover_running() == 1
        recovered = get_job(descriptor.id)
        assert recovered.state is JobState.RETRYING
        assert recovered.worker_id is None

    def test_cancel_only_pending_jobs(self, executor, clock):
        descriptor = executor.enqueue(HelloJob)
        assert cancel_job(descriptor.id) is True
        assert get_job(descriptor.id).state is JobState.CANCELLED
        assert cancel_job(descriptor.id) is False
        assert fetch_and_lock_next_job("w-1", now=clock()) is None

    def test_reset_lineage_clears_counters(self, executor):
        descriptor = executor.enqueue(HelloJob)
        descriptor.state = JobState.ESCALATED
        descriptor.executions = 6
        descriptor.exception_executions = {"k": 6}
        upsert_job(descriptor)

        assert reset_lineage(descriptor.id) is True
        fresh = get_job(descriptor.id)
        assert fresh.state is JobState.PENDING
        assert fresh.executions == 0
        assert fresh.exception_executions == {}

    def test_reset_lineage_ignores_live_jobs(self, executor):
        descriptor = executor.enqueue(HelloJob)
        assert reset_lineage(descriptor.id) is False

    def test_counts_by_state(self, executor):
        executor.enqueue(HelloJob)
        executor.enqueue(HelloJob)
        assert counts_by_state() == [("pending", 2)]


class TestWorker:
    def test_work_once_runs_retries_only_when_due(self, executor, clock):
        descriptor = executor.enqueue(RetryJob, "ShortWaitTenAttemptsError", 3)

        assert work_once("w-1", executor) is True
        assert get_job(descriptor.id).state is JobState.RETRYING
        assert work_once("w-1", executor) is False

        clock.advance(1)
        assert work_once("w-1", executor) is True
        clock.advance(1)
        assert work_once("w-1", executor) is True

        done = get_job(descriptor.id)
        assert done.state is JobState.SUCCEEDED
        assert done.executions == 3
        assert done.worker_id is None
        assert list(done.exception_executions.values()) == [2]
        assert buffer.last_value == "Successfully completed job"

    def test_escalated_failure_is_persisted_not_raised(self, executor):
        descriptor = executor.enqueue(RetryJob, "UnlistedError", 5)
        assert work_once("w-1", executor) is True

        failed = get_job(descriptor.id)
        assert failed.state is JobState.ESCALATED
        assert failed.last_error == "UnlistedError: UnlistedError"
        assert [j.id for j in list_jobs("escalated")] == [descriptor.id]

    def test_failing_wait_policy_is_persisted_as_escalated(self, executor):
        descriptor = executor.enqueue(NegativeWaitJob)
        assert work_once("w-1", executor) is True

        failed = get_job(descriptor.id)
        assert failed.state is JobState.ESCALATED
        assert failed.last_error.startswith("ValueError:")
        assert recover_running() == 0
        assert get_job(descriptor.id).state is JobState.ESCALATED

    def test_unrecordable_lost_retry_does_not_kill_the_worker(self, retryctl_home, clock):
        executor = Executor(UnwritableAdapter(), clock=clock)
        executor.enqueue(RetryJob, "ShortWaitTenAttemptsError", 3)
        assert work_once("w-1", executor) is True

    def test_discard_is_persisted(self, executor):
        descriptor = executor.enqueue(RetryJob, "DiscardableError", 5)
        work_once("w-1", executor)
        assert get_job(descriptor.id).state is JobState.DISCARDED

    def test_worker_loop_honours_shutdown_and_recovers_orphans(self, executor, clock):
        orphan = executor.enqueue(HelloJob)
        fetch_and_lock_next_job("w-dead", now=clock())
        config_set("shutdown", "true")

        worker_loop("w-test", poll_interval=0.01)

        assert get_job(orphan.id).state is JobState.RETRYING
        assert list_workers() == []


class TestConfig:
    def test_load_config_reads_table_and_env(self, retryctl_home, monkeypatch):
        config_set("poll_interval", "0.25")
        monkeypatch.setenv("RETRYCTL_LOG_LEVEL", "debug")
        config = load_config()
        assert config.poll_interval == 0.25
        assert config.log_level == "DEBUG"

    def test_invalid_values_raise_configuration_error(self, retryctl_home):
        config_set("poll_interval", "-1")
        with pytest.raises(ConfigurationError):
            load_config()

    def test_overrides_win(self, retryctl_home):
        assert load_config({"default_queue": "bulk"}).default_queue == "bulk"
