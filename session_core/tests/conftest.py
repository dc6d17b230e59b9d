"""
Pytest configuration for session_core. Everything runs against in-memory
storage and a fake clock; no network, no files unless a test asks for tmp_path.
"""
import pytest

from session_core.config import MonitorSettings
from session_core.events import EventBus
from session_core.storage import MemoryStorage
from session_core.tests.helpers import EventRecorder, FakeClock
from session_core.token_store import TokenStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    return MemoryStorage()


@pytest.fixture
def store(backend, clock):
    return TokenStore(backend, clock=clock)


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus)


@pytest.fixture
def settings():
    return MonitorSettings(window_upper=180, window_lower=120, tick_seconds=60)
