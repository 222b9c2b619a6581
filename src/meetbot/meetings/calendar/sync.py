"""Calendar sync -- fan-out over auto-join users and per-user meeting discovery.

CalendarSyncScheduler runs on an interval and publishes one ``sync.user``
task per user with auto-join enabled. UserSyncWorker handles that task:
it lists the user's conferenced events in the lookahead window, creates
SCHEDULED meetings for new ones and asks the deployment scheduler to
arm their bots. Creation is an upsert on (user_id, calendar_event_id),
so concurrent or repeated syncs never duplicate a meeting.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.meetbot.meetings.conferencing import detect_platform, extract_meeting_url
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    Meeting,
    MeetingCreate,
    MeetingStatus,
    SyncResult,
)
from src.meetbot.services.gsuite.calendar import GoogleCalendarService

logger = structlog.get_logger(__name__)

MAX_EVENTS_PER_SYNC = 50
UNTITLED_MEETING = "Untitled Meeting"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CalendarSyncScheduler:
    """Publishes a per-user sync task for every auto-join user."""

    def __init__(self, repository: MeetingRepository, dispatcher: Any) -> None:
        self._repository = repository
        self._dispatcher = dispatcher

    async def run(self) -> int:
        """Dispatch ``sync.user`` for each auto-join user.

        A failed publish for one user is logged and the batch continues.

        Returns:
            Number of users dispatched.
        """
        user_ids = await self._repository.list_auto_join_user_ids()
        if not user_ids:
            logger.info("calendar_sync.no_auto_join_users")
            return 0

        dispatched = 0
        for user_id in user_ids:
            try:
                await self._dispatcher.sync_user(user_id)
                dispatched += 1
            except Exception:
                logger.warning("calendar_sync.dispatch_failed", user_id=user_id, exc_info=True)

        logger.info("calendar_sync.dispatched", users=len(user_ids), dispatched=dispatched)
        return dispatched


class UserSyncWorker:
    """Discovers a single user's upcoming conferenced meetings.

    Args:
        repository: Meeting persistence.
        calendar: Google Calendar service.
        dispatcher: Task dispatcher (``schedule_bot``).
        lookahead_hours: Size of the discovery window.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        calendar: GoogleCalendarService,
        dispatcher: Any,
        lookahead_hours: int = 24,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._calendar = calendar
        self._dispatcher = dispatcher
        self._lookahead = timedelta(hours=lookahead_hours)
        self._clock = clock

    async def sync_user(self, user_id: str) -> SyncResult:
        """Create meetings for newly discovered events; never touch existing ones."""
        return await self._sync(user_id, reconcile=False)

    async def reconcile_user(self, user_id: str) -> SyncResult:
        """Manual sync: also apply renames, reschedules, URL changes and
        cancellations to meetings that are still SCHEDULED.
        """
        return await self._sync(user_id, reconcile=True)

    async def _sync(self, user_id: str, reconcile: bool) -> SyncResult:
        result = SyncResult()

        connection = await self._repository.get_calendar_connection(user_id)
        if connection is None:
            logger.info("calendar_sync.no_connection", user_id=user_id)
            return result

        now = self._clock()
        try:
            events = await self._calendar.list_upcoming_events_async(
                connection, now, now + self._lookahead, MAX_EVENTS_PER_SYNC,
            )
        except Exception as exc:
            logger.warning("calendar_sync.fetch_failed", user_id=user_id, exc_info=True)
            result.errors.append(f"calendar fetch failed: {exc}")
            return result

        for event in events:
            event_id = event.get("id")
            try:
                await self._sync_event(user_id, event, reconcile, result)
            except Exception as exc:
                logger.exception(
                    "calendar_sync.event_failed", user_id=user_id, event_id=event_id,
                )
                result.errors.append(f"{event_id}: {exc}")

        logger.info(
            "calendar_sync.user_completed",
            user_id=user_id,
            reconcile=reconcile,
            created=result.created,
            updated=result.updated,
            cancelled=result.cancelled,
            unchanged=result.unchanged,
            skipped=result.skipped,
            errors=len(result.errors),
        )
        return result

    async def _sync_event(
        self,
        user_id: str,
        event: dict,
        reconcile: bool,
        result: SyncResult,
    ) -> None:
        event_id = event.get("id")
        cancelled = event.get("status") == "cancelled"
        meeting_url = extract_meeting_url(event)
        scheduled_start = GoogleCalendarService.parse_event_time(event.get("start"))

        if not event_id:
            result.skipped += 1
            return

        existing = await self._repository.get_meeting_by_event_id(user_id, event_id)
        if existing is not None:
            if not reconcile:
                result.unchanged += 1
                return
            await self._reconcile_existing(existing, event, meeting_url, cancelled, result)
            return

        if cancelled or not meeting_url or scheduled_start is None:
            result.skipped += 1
            return

        meeting = await self._repository.create_meeting(
            MeetingCreate(
                user_id=user_id,
                title=event.get("summary") or UNTITLED_MEETING,
                meeting_url=meeting_url,
                platform=detect_platform(meeting_url),
                scheduled_start=scheduled_start,
                scheduled_end=GoogleCalendarService.parse_event_time(event.get("end")),
                calendar_event_id=event_id,
            )
        )
        if meeting is None:
            # Created concurrently by another sync.
            result.unchanged += 1
            return

        result.created += 1
        logger.info(
            "calendar_sync.meeting_created",
            user_id=user_id,
            meeting_id=str(meeting.id),
            platform=meeting.platform.value,
            scheduled_start=meeting.scheduled_start.isoformat(),
        )
        await self._dispatcher.schedule_bot(meeting.id)

    async def _reconcile_existing(
        self,
        meeting: Meeting,
        event: dict,
        meeting_url: str | None,
        cancelled: bool,
        result: SyncResult,
    ) -> None:
        """Apply calendar changes to a meeting that has not started yet."""
        if meeting.status != MeetingStatus.SCHEDULED:
            result.unchanged += 1
            return

        if cancelled:
            updated = await self._repository.transition_status(
                meeting.id,
                expected={MeetingStatus.SCHEDULED},
                new_status=MeetingStatus.CANCELLED,
            )
            if updated is not None:
                result.cancelled += 1
                logger.info("calendar_sync.meeting_cancelled", meeting_id=str(meeting.id))
            else:
                result.unchanged += 1
            return

        changes: dict[str, Any] = {}
        title = event.get("summary") or UNTITLED_MEETING
        if title != meeting.title:
            changes["title"] = title

        start = GoogleCalendarService.parse_event_time(event.get("start"))
        end = GoogleCalendarService.parse_event_time(event.get("end"))
        rescheduled = start is not None and start != meeting.scheduled_start
        if rescheduled:
            changes["scheduled_start"] = start
        if end is not None and end != meeting.scheduled_end:
            changes["scheduled_end"] = end

        if meeting_url and meeting_url != meeting.meeting_url:
            changes["meeting_url"] = meeting_url
            changes["platform"] = detect_platform(meeting_url)

        if not changes:
            result.unchanged += 1
            return

        updated = await self._repository.transition_status(
            meeting.id,
            expected={MeetingStatus.SCHEDULED},
            new_status=MeetingStatus.SCHEDULED,
            **changes,
        )
        if updated is None:
            result.unchanged += 1
            return

        result.updated += 1
        logger.info(
            "calendar_sync.meeting_updated",
            meeting_id=str(meeting.id),
            fields=sorted(changes),
        )
        if rescheduled and not updated.bot_excluded:
            await self._dispatcher.schedule_bot(updated.id)
