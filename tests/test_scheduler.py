"""Tests for MeetingJobScheduler job registration and job error isolation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.scheduler import MeetingJobScheduler


@pytest.mark.asyncio
async def test_registers_jobs_for_available_components():
    scheduler = MeetingJobScheduler(
        calendar_sync=AsyncMock(),
        poller=AsyncMock(),
        deployer=AsyncMock(),
    )
    scheduler.start()
    try:
        assert scheduler.running
        assert sorted(scheduler.job_ids()) == ["bot_timer_drain", "calendar_sync", "status_poll"]
    finally:
        scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_skips_missing_components():
    scheduler = MeetingJobScheduler(calendar_sync=AsyncMock(), poller=None, deployer=None)
    scheduler.start()
    try:
        assert scheduler.job_ids() == ["calendar_sync"]
    finally:
        scheduler.stop()


@pytest.mark.asyncio
async def test_job_errors_are_contained():
    calendar_sync = AsyncMock()
    calendar_sync.run = AsyncMock(side_effect=RuntimeError("db down"))
    poller = AsyncMock()
    poller.poll_once = AsyncMock(side_effect=RuntimeError("vendor down"))
    deployer = AsyncMock()
    deployer.drain_due_timers = AsyncMock(side_effect=RuntimeError("lease failed"))
    scheduler = MeetingJobScheduler(calendar_sync, poller, deployer)

    await scheduler._run_calendar_sync()
    await scheduler._run_status_poll()
    await scheduler._run_timer_drain()

    calendar_sync.run.assert_awaited_once()
    poller.poll_once.assert_awaited_once()
    deployer.drain_due_timers.assert_awaited_once()


def test_stop_before_start_is_noop():
    MeetingJobScheduler(None, None, None).stop()
