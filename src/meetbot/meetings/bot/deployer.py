"""Bot deployment scheduling through durable, lease-claimed timers.

``schedule()`` arms a persisted timer at ``scheduled_start - lead``;
``drain_due_timers()`` (run every few seconds by the job scheduler)
claims due timers and calls ``fire()``, which re-reads the meeting and
deploys the bot if it is still wanted. Nothing waits in-process, so a
restart loses no pending deployment.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog

from src.meetbot.core.monitoring import bot_deployments_total, status_transitions_total
from src.meetbot.meetings.bot.meetingbaas_client import (
    DeployBotRequest,
    MeetingBaasClient,
    MeetingBaasError,
)
from src.meetbot.meetings.repository import MeetingRepository, TimerRepository
from src.meetbot.meetings.schemas import BotSettings, Meeting, MeetingStatus

logger = structlog.get_logger(__name__)

WEBHOOK_PATH = "/api/v1/webhooks/meetingbaas"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BotDeploymentScheduler:
    """Deploys a recording bot into each scheduled meeting on time.

    Args:
        repository: Meeting persistence.
        timers: Durable deployment timers.
        client: MeetingBaas API client.
        settings: Application settings (bot defaults, APP_URL, timing).
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        timers: TimerRepository,
        client: MeetingBaasClient,
        settings: Any,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._timers = timers
        self._client = client
        self._settings = settings
        self._clock = clock

    @property
    def join_lead(self) -> timedelta:
        return timedelta(seconds=self._settings.BOT_JOIN_LEAD_SECONDS)

    async def schedule(self, meeting_id: uuid.UUID | str) -> datetime | None:
        """Arm the deployment timer for a meeting.

        Fires immediately when the join time has already passed.

        Returns:
            The join time, or None when nothing was scheduled.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            logger.warning("bot_deploy.meeting_missing", meeting_id=str(meeting_id))
            return None
        if meeting.bot_excluded:
            logger.info("bot_deploy.excluded", meeting_id=str(meeting.id))
            return None
        if meeting.status != MeetingStatus.SCHEDULED or meeting.bot_id:
            logger.debug(
                "bot_deploy.already_handled",
                meeting_id=str(meeting.id),
                status=meeting.status.value,
                bot_id=meeting.bot_id,
            )
            return None

        join_time = meeting.scheduled_start - self.join_lead
        await self._timers.upsert_timer(meeting.id, join_time)
        logger.info(
            "bot_deploy.scheduled",
            meeting_id=str(meeting.id),
            join_time=join_time.isoformat(),
        )

        if join_time <= self._clock():
            await self.fire(meeting.id)
        return join_time

    async def drain_due_timers(self, limit: int = 50) -> int:
        """Claim and fire every due timer. Returns the number fired."""
        claimed = await self._timers.claim_due_timers(
            now=self._clock(),
            lease_seconds=self._settings.BOT_TIMER_LEASE_SECONDS,
            limit=limit,
        )
        fired = 0
        for meeting_id in claimed:
            try:
                await self.fire(meeting_id)
                fired += 1
            except Exception:
                # The lease expires and the timer is retried on a later drain.
                logger.exception("bot_deploy.fire_failed", meeting_id=str(meeting_id))
        if claimed:
            logger.info("bot_deploy.drained", claimed=len(claimed), fired=fired)
        return fired

    async def fire(self, meeting_id: uuid.UUID | str) -> Meeting | None:
        """Deploy the bot now if the meeting still wants one.

        Exclusion, status and bot id are re-checked here because the
        meeting may have changed while the timer was pending. The timer
        is deleted whatever the outcome; failed deployments are recorded
        on the meeting and not retried.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None or meeting.bot_excluded or meeting.status != MeetingStatus.SCHEDULED or meeting.bot_id:
            logger.info(
                "bot_deploy.skipped",
                meeting_id=str(meeting_id),
                reason="missing" if meeting is None else "no_longer_eligible",
            )
            bot_deployments_total.labels(outcome="skipped").inc()
            await self._timers.delete_timer(meeting_id)
            return None

        settings = await self._repository.get_bot_settings(meeting.user_id)
        request = self._build_request(meeting, settings)

        try:
            bot_id = await self._client.deploy_bot(request)
        except (MeetingBaasError, httpx.HTTPError) as exc:
            error_message = str(exc) or "Failed to deploy bot"
            logger.warning(
                "bot_deploy.failed",
                meeting_id=str(meeting.id),
                error=error_message,
                exc_info=True,
            )
            updated = await self._repository.transition_status(
                meeting.id,
                expected={MeetingStatus.SCHEDULED},
                new_status=MeetingStatus.FAILED,
                error_message=error_message,
            )
            bot_deployments_total.labels(outcome="failed").inc()
            if updated is not None:
                status_transitions_total.labels(source="deployer", status="failed").inc()
            await self._timers.delete_timer(meeting.id)
            return updated

        updated = await self._repository.transition_status(
            meeting.id,
            expected={MeetingStatus.SCHEDULED},
            new_status=MeetingStatus.JOINING,
            bot_id=bot_id,
            error_message=None,
        )
        bot_deployments_total.labels(outcome="succeeded").inc()
        if updated is not None:
            status_transitions_total.labels(source="deployer", status="joining").inc()
        else:
            # Meeting changed during the deploy call; the bot is orphaned.
            logger.warning(
                "bot_deploy.meeting_changed",
                meeting_id=str(meeting.id),
                bot_id=bot_id,
            )
        logger.info("bot_deploy.succeeded", meeting_id=str(meeting.id), bot_id=bot_id)
        await self._timers.delete_timer(meeting.id)
        return updated

    def _build_request(self, meeting: Meeting, settings: BotSettings | None) -> DeployBotRequest:
        app_url = str(self._settings.APP_URL).rstrip("/")
        if settings is None:
            return DeployBotRequest(
                meeting_url=meeting.meeting_url or "",
                bot_name=self._settings.DEFAULT_BOT_NAME,
                bot_image=self._settings.DEFAULT_BOT_IMAGE or None,
                entry_message=self._settings.DEFAULT_ENTRY_MESSAGE or None,
                webhook_url=f"{app_url}{WEBHOOK_PATH}",
            )
        return DeployBotRequest(
            meeting_url=meeting.meeting_url or "",
            bot_name=settings.bot_name,
            bot_image=settings.bot_image,
            entry_message=settings.entry_message,
            recording_mode=settings.recording_mode.value.lower(),
            webhook_url=f"{app_url}{WEBHOOK_PATH}",
        )
