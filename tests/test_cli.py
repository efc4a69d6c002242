"""
Tests for CLI commands.

Uses typer's CliRunner against a temporary SQLite store.
"""

import pytest
from typer.testing import CliRunner

from retryctl import JobState
from retryctl.cli import app
from retryctl.storage import config_get, get_job, list_jobs, upsert_job

from retry_jobs import HelloJob

runner = CliRunner()


@pytest.fixture(autouse=True)
def store(retryctl_home):
    return retryctl_home


def _enqueue(*extra):
    result = runner.invoke(app, ["enqueue", HelloJob.job_name(), *extra])
    assert result.exit_code == 0, result.output
    (job,) = [j for j in list_jobs() if j.id in result.output]
    return job


class TestHelp:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "retryctl" in result.output.lower()

    def test_worker_help(self):
        result = runner.invoke(app, ["worker", "--help"])
        assert result.exit_code == 0


class TestEnqueue:
    def test_enqueue_with_arguments(self):
        job = _enqueue('["Ada"]', "--queue", "mail", "--priority", "3")
        assert job.arguments == ["Ada"]
        assert (job.queue, job.priority) == ("mail", 3)
        assert job.state is JobState.PENDING

    def test_enqueue_with_wait(self):
        job = _enqueue("--wait", "60")
        assert job.scheduled_at > job.created_at

    def test_invalid_json(self):
        result = runner.invoke(app, ["enqueue", HelloJob.job_name(), "{nope"])
        assert result.exit_code != 0
        assert list_jobs() == []

    def test_arguments_must_be_an_array(self):
        result = runner.invoke(app, ["enqueue", HelloJob.job_name(), '{"a": 1}'])
        assert result.exit_code != 0

    def test_unknown_job_class(self):
        result = runner.invoke(app, ["enqueue", "nowhere:Ghost"])
        assert result.exit_code == 1
        assert "Job class not found" in result.output


class TestInspection:
    def test_status_and_list(self):
        _enqueue()
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "pending" in result.output

        result = runner.invoke(app, ["list", "--state", "pending"])
        assert result.exit_code == 0
        assert "Jobs (pending)" in result.output

    def test_show(self):
        job = _enqueue('["Ada"]')
        result = runner.invoke(app, ["show", job.id])
        assert result.exit_code == 0
        assert '"executions": 0' in result.output

    def test_show_missing(self):
        result = runner.invoke(app, ["show", "missing"])
        assert result.exit_code == 1


class TestCancelAndRetry:
    def test_cancel(self):
        job = _enqueue()
        result = runner.invoke(app, ["cancel", job.id])
        assert result.exit_code == 0
        assert get_job(job.id).state is JobState.CANCELLED

        result = runner.invoke(app, ["cancel", job.id])
        assert result.exit_code == 1

    def test_dead_and_retry(self):
        job = _enqueue()
        job.state = JobState.ESCALATED
        job.executions = 3
        job.exception_executions = {"rule": 2}
        upsert_job(job)

        result = runner.invoke(app, ["dead"])
        assert result.exit_code == 0
        assert "Dead jobs" in result.output

        result = runner.invoke(app, ["retry", job.id])
        assert result.exit_code == 0
        fresh = get_job(job.id)
        assert fresh.state is JobState.PENDING
        assert fresh.exception_executions == {}

    def test_retry_live_job_fails(self):
        job = _enqueue()
        result = runner.invoke(app, ["retry", job.id])
        assert result.exit_code == 1


class TestConfigAndWorkers:
    def test_config_set_and_get(self):
        result = runner.invoke(app, ["config", "set", "poll_interval", "0.5"])
        assert result.exit_code == 0
        result = runner.invoke(app, ["config", "get", "poll_interval"])
        assert result.output.strip() == "0.5"

    def test_config_set_rejects_invalid_values(self):
        result = runner.invoke(app, ["config", "set", "poll_interval", "abc"])
        assert result.exit_code == 1
        assert config_get("poll_interval") == "1.0"

    def test_worker_stop_sets_shutdown(self):
        result = runner.invoke(app, ["worker", "stop"])
        assert result.exit_code == 0
        assert config_get("shutdown") == "true"
