"""Shared fixtures for meeting engine tests.

Provides:
- A settable clock pinned to 2026-03-02T15:00Z
- In-memory meeting and timer repositories
- A recording task dispatcher
- Settings namespace with the values engine components read
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from tests.fakes import (
    FakeClock,
    InMemoryMeetingRepository,
    InMemoryTimerRepository,
    RecordingDispatcher,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repo(clock: FakeClock) -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository(clock=clock)


@pytest.fixture
def timers() -> InMemoryTimerRepository:
    return InMemoryTimerRepository()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def settings() -> SimpleNamespace:
    return SimpleNamespace(
        APP_URL="https://app.example.com/",
        DEFAULT_BOT_NAME="Meeting Assistant",
        DEFAULT_BOT_IMAGE="",
        DEFAULT_ENTRY_MESSAGE="",
        BOT_JOIN_LEAD_SECONDS=60,
        BOT_TIMER_LEASE_SECONDS=300,
    )
