"""Periodic jobs for the meeting engine.

Wraps an APScheduler AsyncIOScheduler with three interval jobs:

- calendar sync fan-out (publishes ``sync.user`` per auto-join user)
- bot status reconciliation poll
- deployment timer drain (fires due bot deployments)

All state lives in the database, so any number of instances may run
these jobs; timer leases keep the drain from double-deploying.

Exports:
    MeetingJobScheduler: Async scheduler for the engine's periodic jobs.
"""

from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

import structlog

from src.meetbot.meetings.bot.deployer import BotDeploymentScheduler
from src.meetbot.meetings.bot.poller import StatusReconciliationPoller
from src.meetbot.meetings.calendar.sync import CalendarSyncScheduler

logger = structlog.get_logger(__name__)


class MeetingJobScheduler:
    """Runs calendar sync, status polling and the timer drain on intervals.

    Any of the collaborators may be None (its subsystem failed to
    initialize); the matching job is then not registered.

    Args:
        calendar_sync: Publishes per-user sync tasks.
        poller: Reconciles in-flight bots against the vendor.
        deployer: Drains due deployment timers.
        sync_interval_minutes: Calendar sync cadence.
        poll_interval_minutes: Status poll cadence.
        timer_poll_seconds: Timer drain cadence.
    """

    def __init__(
        self,
        calendar_sync: CalendarSyncScheduler | None,
        poller: StatusReconciliationPoller | None,
        deployer: BotDeploymentScheduler | None,
        sync_interval_minutes: int = 5,
        poll_interval_minutes: int = 2,
        timer_poll_seconds: int = 15,
    ) -> None:
        self._calendar_sync = calendar_sync
        self._poller = poller
        self._deployer = deployer
        self._sync_interval = sync_interval_minutes
        self._poll_interval = poll_interval_minutes
        self._timer_poll = timer_poll_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def job_ids(self) -> list[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]

    def start(self) -> None:
        """Register the available jobs and start the scheduler."""
        self._scheduler = AsyncIOScheduler()

        if self._calendar_sync is not None:
            self._scheduler.add_job(
                self._run_calendar_sync,
                trigger=IntervalTrigger(minutes=self._sync_interval),
                id="calendar_sync",
                name="Fan out calendar sync to auto-join users",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
        if self._poller is not None:
            self._scheduler.add_job(
                self._run_status_poll,
                trigger=IntervalTrigger(minutes=self._poll_interval),
                id="status_poll",
                name="Reconcile in-flight bot status",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )
        if self._deployer is not None:
            self._scheduler.add_job(
                self._run_timer_drain,
                trigger=IntervalTrigger(seconds=self._timer_poll),
                id="bot_timer_drain",
                name="Deploy bots whose join time has arrived",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=self._timer_poll,
            )

        self._scheduler.start()
        self._started = True
        logger.info(
            "meeting_scheduler.started",
            jobs=self.job_ids(),
            sync_interval_minutes=self._sync_interval,
            poll_interval_minutes=self._poll_interval,
            timer_poll_seconds=self._timer_poll,
        )

    async def _run_calendar_sync(self) -> None:
        try:
            await self._calendar_sync.run()  # type: ignore[union-attr]
        except Exception:
            logger.exception("meeting_scheduler.calendar_sync_failed")

    async def _run_status_poll(self) -> None:
        try:
            await self._poller.poll_once()  # type: ignore[union-attr]
        except Exception:
            logger.exception("meeting_scheduler.status_poll_failed")

    async def _run_timer_drain(self) -> None:
        try:
            fired = await self._deployer.drain_due_timers()  # type: ignore[union-attr]
        except Exception:
            logger.exception("meeting_scheduler.timer_drain_failed")
            return
        if fired:
            logger.info("meeting_scheduler.timers_fired", count=fired)

    def stop(self) -> None:
        """Shut down the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("meeting_scheduler.stopped")


__all__ = ["MeetingJobScheduler"]
