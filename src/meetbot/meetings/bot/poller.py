"""Pull-based bot status reconciliation.

Webhooks are the fast path for bot lifecycle changes but can be lost.
The poller asks the vendor for every in-flight bot on a fixed interval
and applies any status change through a guarded transition, so it
never overwrites a newer state written by a webhook. ``refresh_meeting``
is the same reconciliation for a single meeting on user request, with a
more lenient status map.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.meetbot.core.monitoring import status_transitions_total
from src.meetbot.meetings.bot.meetingbaas_client import MeetingBaasClient
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    TERMINAL_STATUSES,
    BotState,
    Meeting,
    MeetingStatus,
    PollSummary,
    RefreshResult,
)
from src.meetbot.meetings.status import (
    ARTIFACT_READY_STATUSES,
    ENDING_STATUSES,
    STARTING_STATUSES,
    map_poll_status,
    map_refresh_status,
)

logger = structlog.get_logger(__name__)

PROCESSING_STUCK_MINUTES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusReconciliationPoller:
    """Reconciles meeting status against the vendor's view of each bot.

    Args:
        repository: Meeting persistence.
        client: MeetingBaas API client.
        dispatcher: Task dispatcher (``meeting_complete``).
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        client: MeetingBaasClient,
        dispatcher: Any,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._client = client
        self._dispatcher = dispatcher
        self._clock = clock

    async def poll_once(self) -> PollSummary:
        """Check every in-flight meeting once. Errors are per meeting."""
        summary = PollSummary()
        meetings = await self._repository.list_in_flight_meetings()

        for meeting in meetings:
            summary.checked += 1
            try:
                updated, triggered = await self._reconcile(meeting)
            except Exception:
                summary.errors += 1
                logger.exception(
                    "status_poll.meeting_failed",
                    meeting_id=str(meeting.id),
                    bot_id=meeting.bot_id,
                )
                continue
            if updated:
                summary.updated += 1
            if triggered:
                summary.completions_triggered += 1

        logger.info("status_poll.completed", **summary.model_dump())
        return summary

    async def _reconcile(self, meeting: Meeting) -> tuple[bool, bool]:
        state = await self._client.get_bot(meeting.bot_id)
        new_status = map_poll_status(state.status)
        if new_status is None:
            logger.info(
                "status_poll.unknown_status",
                meeting_id=str(meeting.id),
                vendor_status=state.status,
            )
            return False, False
        if new_status == meeting.status:
            return False, False
        if new_status == MeetingStatus.SCHEDULED:
            logger.warning(
                "status_poll.bot_requeued",
                meeting_id=str(meeting.id),
                bot_id=meeting.bot_id,
                previous=meeting.status.value,
            )

        updated = await self._apply(meeting, state, new_status, source="poller")
        if updated is None:
            return False, False

        triggered = False
        if (
            new_status == MeetingStatus.PROCESSING
            and state.status in ARTIFACT_READY_STATUSES
            and state.transcript_url
        ):
            await self._dispatcher.meeting_complete(
                meeting.id, state.artifacts().model_dump(mode="json"),
            )
            triggered = True
        return True, triggered

    async def _apply(
        self,
        meeting: Meeting,
        state: BotState,
        new_status: MeetingStatus,
        source: str,
        expected: set[MeetingStatus] | None = None,
        metadata_updates: dict[str, Any] | None = None,
    ) -> Meeting | None:
        fields: dict[str, Any] = {}
        now = self._clock()
        if state.status in STARTING_STATUSES or new_status == MeetingStatus.IN_PROGRESS:
            fields["actual_start"] = now
        if state.status in ENDING_STATUSES:
            fields["actual_end"] = now
            if state.recording_url:
                fields["recording_url"] = state.recording_url

        updated = await self._repository.transition_status(
            meeting.id,
            expected=expected or {meeting.status},
            new_status=new_status,
            metadata_updates=metadata_updates,
            **fields,
        )
        if updated is not None and updated.status != meeting.status:
            status_transitions_total.labels(source=source, status=new_status.value).inc()
            logger.info(
                "meeting.status_changed",
                meeting_id=str(meeting.id),
                source=source,
                previous=meeting.status.value,
                status=new_status.value,
                vendor_status=state.status,
            )
        return updated

    async def refresh_meeting(self, meeting: Meeting, force: bool = False) -> RefreshResult:
        """Reconcile one meeting now, re-dispatching completion if needed.

        Completion is re-dispatched when the bot has ended, some artifact
        is known, and the meeting is not yet processed, has been stuck in
        PROCESSING for over ``PROCESSING_STUCK_MINUTES``, or ``force``.

        Raises:
            ValueError: If the meeting has no bot.
        """
        if not meeting.bot_id:
            raise ValueError("No bot associated with this meeting")

        state = await self._client.get_bot(meeting.bot_id)
        mapped = map_refresh_status(state.status)
        has_artifacts = bool(state.transcript_url or state.diarization_url or state.audio_url)
        ended = state.status in ENDING_STATUSES

        stuck = (
            meeting.status == MeetingStatus.PROCESSING
            and meeting.updated_at is not None
            and self._clock() - meeting.updated_at > timedelta(minutes=PROCESSING_STUCK_MINUTES)
        )
        should_process = ended and has_artifacts and (
            force
            or stuck
            or meeting.status not in {MeetingStatus.COMPLETED, MeetingStatus.PROCESSING}
        )

        metadata_updates: dict[str, Any] | None = None
        if ended:
            metadata_updates = {
                key: value
                for key, value in {
                    "video_url": state.recording_url,
                    "audio_url": state.audio_url,
                    "transcription_url": state.transcript_url,
                    "diarization_url": state.diarization_url,
                    "participants": state.participants,
                    "speakers": state.speakers,
                }.items()
                if value
            }

        new_status = meeting.status
        if should_process and force and meeting.status in TERMINAL_STATUSES:
            target: MeetingStatus | None = MeetingStatus.PROCESSING
        elif meeting.status in TERMINAL_STATUSES:
            target = None
        else:
            target = mapped or meeting.status

        if target is not None:
            updated = await self._apply(
                meeting,
                state,
                target,
                source="refresh",
                metadata_updates=metadata_updates,
            )
            if updated is not None:
                new_status = updated.status
                if ended and state.duration_seconds:
                    await self._repository.backfill_duration(meeting.id, state.duration_seconds)

        if should_process:
            await self._dispatcher.meeting_complete(
                meeting.id, state.artifacts().model_dump(mode="json"),
            )
            logger.info(
                "status_refresh.completion_dispatched",
                meeting_id=str(meeting.id),
                forced=force,
                stuck=stuck,
            )

        return RefreshResult(
            previous_status=meeting.status,
            new_status=new_status,
            bot_status=state.status,
            has_recording=bool(state.recording_url or state.audio_url),
            has_transcript=bool(state.transcript_url),
            has_diarization=bool(state.diarization_url),
            participant_count=len(state.participants),
            completion_dispatched=should_process,
        )
