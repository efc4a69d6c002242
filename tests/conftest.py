import pytest

from retryctl.storage import ENV_HOME, close_conn
from retryctl.testing import build_harness

from retry_jobs import buffer


@pytest.fixture(autouse=True)
def clear_job_buffer():
    buffer.clear()
    yield
    buffer.clear()


@pytest.fixture
def harness():
    return build_harness(buffer=buffer)


@pytest.fixture
def retryctl_home(tmp_path, monkeypatch):
    """Point the SQLite store at a throwaway directory."""
    monkeypatch.setenv(ENV_HOME, str(tmp_path))
    close_conn()
    yield tmp_path
    close_conn()
