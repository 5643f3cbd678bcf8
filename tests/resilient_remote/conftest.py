from __future__ import annotations

import pytest

from tests.resilient_remote.support.fakes import FakeClock, FakeLogger, RecordingSleep


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def fake_clock() -> FakeClock:
    """Provide a manually advanced UTC clock per test."""
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    """Provide a non-blocking sleep that records backoff delays."""
    return RecordingSleep()
