"""Shared pytest fixtures for Sonic Lab tests."""
import os
import tempfile

import pytest

# Keep imports of sonic_lab.main from creating ./data in the checkout.
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="sonic_lab_test_"))

from sonic_lab.core.registry import JobQueue  # noqa: E402
from sonic_lab.services.runner import BatchJobRunner  # noqa: E402
from fakes import SleepRecorder, fake_encode  # noqa: E402


@pytest.fixture
def job_queue() -> JobQueue:
    return JobQueue()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def make_runner(job_queue, sleeper):
    """Build a runner over the test queue with recorded sleeps and no run log."""

    def _make(client, **kwargs) -> BatchJobRunner:
        kwargs.setdefault("sleep", sleeper)
        kwargs.setdefault("run_log", None)
        return BatchJobRunner(job_queue, client, fake_encode, **kwargs)

    return _make
