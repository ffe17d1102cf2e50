"""Shared fixtures."""

from datetime import datetime, timezone

import pytest

from cronkeeper.clock import FakeClock
from cronkeeper.config import Settings
from cronkeeper.store.memory import InMemoryStore

START = datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, request_timeout_seconds=5.0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(START)


@pytest.fixture
def store(settings: Settings, clock: FakeClock) -> InMemoryStore:
    return InMemoryStore(settings=settings, clock=clock)
