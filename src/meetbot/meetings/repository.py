"""Meeting repository -- async persistence for all meeting entities.

Provides MeetingRepository and TimerRepository with the session_factory
callable pattern. Handles conversion between Pydantic schemas and
SQLAlchemy models.

Every automated status write goes through ``transition_status``, a single
``UPDATE ... WHERE status IN (:expected) RETURNING`` statement, so a
stale trigger can never overwrite a newer state. Meeting creation and
transcript writes are PostgreSQL upserts, which makes every task
handler safe to re-run.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable, Iterable
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import cast, delete, func, or_, select, text, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbot.meetings.models import (
    BotDeploymentTimerModel,
    CalendarConnectionModel,
    MeetingBotSettingsModel,
    MeetingInsightModel,
    MeetingModel,
    MeetingParticipantModel,
    MeetingTranscriptModel,
    WebhookEventModel,
)
from src.meetbot.meetings.schemas import (
    POLLED_STATUSES,
    BotSettings,
    CalendarConnection,
    InsightType,
    Meeting,
    MeetingCreate,
    MeetingInsight,
    MeetingParticipant,
    MeetingPlatform,
    MeetingStatus,
    MeetingTranscript,
    RecordingMode,
    TranscriptData,
    TranscriptSegment,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        user_id=model.user_id,
        team_id=model.team_id,
        title=model.title,
        meeting_url=model.meeting_url,
        platform=MeetingPlatform(model.platform),
        status=MeetingStatus(model.status),
        scheduled_start=model.scheduled_start,
        scheduled_end=model.scheduled_end,
        actual_start=model.actual_start,
        actual_end=model.actual_end,
        calendar_event_id=model.calendar_event_id,
        bot_id=model.bot_id,
        bot_excluded=bool(model.bot_excluded),
        error_message=model.error_message,
        duration=model.duration,
        recording_url=model.recording_url,
        metadata=dict(model.meeting_metadata or {}),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_transcript(model: MeetingTranscriptModel) -> MeetingTranscript:
    return MeetingTranscript(
        id=model.id,
        meeting_id=model.meeting_id,
        full_text=model.full_text,
        segments=[TranscriptSegment.model_validate(s) for s in (model.segments_data or [])],
        language=model.language,
        word_count=model.word_count,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_insight(model: MeetingInsightModel) -> MeetingInsight:
    return MeetingInsight(
        id=model.id,
        meeting_id=model.meeting_id,
        type=InsightType(model.type),
        content=model.content,
        confidence=model.confidence,
        created_at=model.created_at,
    )


def _model_to_bot_settings(model: MeetingBotSettingsModel) -> BotSettings:
    return BotSettings(
        user_id=model.user_id,
        auto_join_enabled=bool(model.auto_join_enabled),
        bot_name=model.bot_name,
        bot_image=model.bot_image,
        entry_message=model.entry_message,
        recording_mode=RecordingMode(model.recording_mode.lower()),
    )


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# ── Meeting Repository ──────────────────────────────────────────────────────


class MeetingRepository:
    """Async persistence for meetings and their dependent rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    # ── Meetings ─────────────────────────────────────────────────────────

    async def create_meeting(self, data: MeetingCreate) -> Meeting | None:
        """Insert a SCHEDULED meeting unless (user, event) is already tracked.

        Returns:
            The new Meeting, or None when a row for the same user and
            calendar event already exists (including one created
            concurrently by another worker).
        """
        async for session in self._session_factory():
            stmt = (
                pg_insert(MeetingModel)
                .values(
                    user_id=data.user_id,
                    team_id=data.team_id,
                    title=data.title,
                    meeting_url=data.meeting_url,
                    platform=data.platform.value,
                    status=MeetingStatus.SCHEDULED.value,
                    scheduled_start=data.scheduled_start,
                    scheduled_end=data.scheduled_end,
                    calendar_event_id=data.calendar_event_id,
                )
                .on_conflict_do_nothing(constraint="uq_meeting_user_event")
                .returning(MeetingModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_meeting(self, meeting_id: uuid.UUID | str) -> Meeting | None:
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.id == _as_uuid(meeting_id))
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_user_meeting(
        self, user_id: str, meeting_id: uuid.UUID | str
    ) -> Meeting | None:
        """Get a meeting only if it belongs to ``user_id``."""
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(
                MeetingModel.id == _as_uuid(meeting_id),
                MeetingModel.user_id == user_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_meeting_by_event_id(
        self, user_id: str, calendar_event_id: str
    ) -> Meeting | None:
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(
                MeetingModel.user_id == user_id,
                MeetingModel.calendar_event_id == calendar_event_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def get_meeting_by_bot_id(self, bot_id: str) -> Meeting | None:
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.bot_id == bot_id).limit(1)
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def list_meetings(
        self,
        user_id: str,
        status: MeetingStatus | None = None,
        limit: int = 100,
    ) -> list[Meeting]:
        """List a user's meetings, newest scheduled first."""
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.user_id == user_id)
            if status is not None:
                stmt = stmt.where(MeetingModel.status == status.value)
            stmt = stmt.order_by(MeetingModel.scheduled_start.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def list_in_flight_meetings(self) -> list[Meeting]:
        """Meetings with a deployed bot whose lifecycle is still open, queued bots included."""
        async for session in self._session_factory():
            stmt = (
                select(MeetingModel)
                .where(
                    MeetingModel.bot_id.is_not(None),
                    MeetingModel.status.in_([s.value for s in POLLED_STATUSES]),
                )
                .order_by(MeetingModel.scheduled_start)
            )
            result = await session.execute(stmt)
            return [_model_to_meeting(m) for m in result.scalars().all()]

    async def transition_status(
        self,
        meeting_id: uuid.UUID | str,
        expected: Iterable[MeetingStatus],
        new_status: MeetingStatus,
        *,
        actual_start: datetime | None = None,
        actual_end: datetime | None = None,
        metadata_updates: dict[str, Any] | None = None,
        **values: Any,
    ) -> Meeting | None:
        """Conditionally move a meeting to ``new_status``.

        The write only applies when the current status is in ``expected``.
        ``actual_start``/``actual_end`` are set only if still NULL;
        ``metadata_updates`` is merged into the stored metadata; remaining
        keyword arguments overwrite the named columns.

        Returns:
            The updated Meeting, or None when the guard did not match.
        """
        expected_values = [s.value for s in expected]
        assignments: dict[str, Any] = {
            key: _column_value(value) for key, value in values.items()
        }
        assignments["status"] = new_status.value
        assignments["updated_at"] = func.now()
        if actual_start is not None:
            assignments["actual_start"] = func.coalesce(MeetingModel.actual_start, actual_start)
        if actual_end is not None:
            assignments["actual_end"] = func.coalesce(MeetingModel.actual_end, actual_end)
        if metadata_updates:
            assignments["meeting_metadata"] = func.coalesce(
                MeetingModel.meeting_metadata, text("'{}'::jsonb")
            ).op("||")(cast(metadata_updates, JSONB))

        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(
                    MeetingModel.id == _as_uuid(meeting_id),
                    MeetingModel.status.in_(expected_values),
                )
                .values(**assignments)
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()

            if model is None:
                logger.info(
                    "meeting.transition_skipped",
                    meeting_id=str(meeting_id),
                    expected=expected_values,
                    new_status=new_status.value,
                )
                return None
            return _model_to_meeting(model)

    async def set_bot_excluded(
        self, meeting_id: uuid.UUID | str, excluded: bool
    ) -> Meeting | None:
        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(MeetingModel.id == _as_uuid(meeting_id))
                .values(bot_excluded=excluded, updated_at=func.now())
                .returning(MeetingModel)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            await session.commit()
            if model is None:
                return None
            return _model_to_meeting(model)

    async def backfill_duration(self, meeting_id: uuid.UUID | str, duration: int) -> bool:
        """Set ``duration`` only when it is still NULL. Returns True if written."""
        async for session in self._session_factory():
            stmt = (
                update(MeetingModel)
                .where(
                    MeetingModel.id == _as_uuid(meeting_id),
                    MeetingModel.duration.is_(None),
                )
                .values(duration=duration, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    # ── Transcripts ──────────────────────────────────────────────────────

    async def upsert_transcript(
        self, meeting_id: uuid.UUID | str, data: TranscriptData
    ) -> MeetingTranscript:
        """Insert or replace the meeting's single transcript row."""
        segments = [s.model_dump(mode="json") for s in data.segments]
        word_count = len(data.full_text.split())

        async for session in self._session_factory():
            stmt = pg_insert(MeetingTranscriptModel).values(
                meeting_id=_as_uuid(meeting_id),
                full_text=data.full_text,
                segments_data=segments,
                language=data.language,
                word_count=word_count,
            )
            stmt = stmt.on_conflict_do_update(
                constraint="uq_transcript_meeting",
                set_={
                    "full_text": stmt.excluded.full_text,
                    "segments": stmt.excluded.segments,
                    "language": stmt.excluded.language,
                    "word_count": stmt.excluded.word_count,
                    "updated_at": func.now(),
                },
            ).returning(MeetingTranscriptModel)
            result = await session.execute(stmt)
            model = result.scalar_one()
            await session.commit()
            return _model_to_transcript(model)

    async def get_transcript(self, meeting_id: uuid.UUID | str) -> MeetingTranscript | None:
        async for session in self._session_factory():
            stmt = select(MeetingTranscriptModel).where(
                MeetingTranscriptModel.meeting_id == _as_uuid(meeting_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_transcript(model)

    # ── Participants ─────────────────────────────────────────────────────

    async def replace_participants(
        self, meeting_id: uuid.UUID | str, names: list[str]
    ) -> list[MeetingParticipant]:
        """Replace all participant rows for a meeting in one transaction."""
        mid = _as_uuid(meeting_id)
        async for session in self._session_factory():
            await session.execute(
                delete(MeetingParticipantModel).where(MeetingParticipantModel.meeting_id == mid)
            )
            models = [
                MeetingParticipantModel(meeting_id=mid, name=name, position=i)
                for i, name in enumerate(names)
            ]
            session.add_all(models)
            await session.commit()
            return [MeetingParticipant(id=m.id, meeting_id=mid, name=m.name) for m in models]

    async def list_participants(self, meeting_id: uuid.UUID | str) -> list[MeetingParticipant]:
        async for session in self._session_factory():
            stmt = (
                select(MeetingParticipantModel)
                .where(MeetingParticipantModel.meeting_id == _as_uuid(meeting_id))
                .order_by(MeetingParticipantModel.position)
            )
            result = await session.execute(stmt)
            return [
                MeetingParticipant(id=m.id, meeting_id=m.meeting_id, name=m.name)
                for m in result.scalars().all()
            ]

    # ── Insights ─────────────────────────────────────────────────────────

    async def replace_insights(
        self, meeting_id: uuid.UUID | str, insights: list[MeetingInsight]
    ) -> list[MeetingInsight]:
        """Delete prior insights and insert the new set atomically."""
        mid = _as_uuid(meeting_id)
        async for session in self._session_factory():
            await session.execute(
                delete(MeetingInsightModel).where(MeetingInsightModel.meeting_id == mid)
            )
            models = [
                MeetingInsightModel(
                    id=insight.id,
                    meeting_id=mid,
                    type=insight.type.value,
                    content=insight.content,
                    confidence=insight.confidence,
                )
                for insight in insights
            ]
            session.add_all(models)
            await session.commit()
            return [insight.model_copy(update={"meeting_id": mid}) for insight in insights]

    async def clear_insights(self, meeting_id: uuid.UUID | str) -> int:
        async for session in self._session_factory():
            result = await session.execute(
                delete(MeetingInsightModel).where(
                    MeetingInsightModel.meeting_id == _as_uuid(meeting_id)
                )
            )
            await session.commit()
            return result.rowcount

    async def list_insights(self, meeting_id: uuid.UUID | str) -> list[MeetingInsight]:
        async for session in self._session_factory():
            stmt = (
                select(MeetingInsightModel)
                .where(MeetingInsightModel.meeting_id == _as_uuid(meeting_id))
                .order_by(MeetingInsightModel.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_insight(m) for m in result.scalars().all()]

    # ── User Configuration ───────────────────────────────────────────────

    async def get_bot_settings(self, user_id: str) -> BotSettings | None:
        async for session in self._session_factory():
            stmt = select(MeetingBotSettingsModel).where(
                MeetingBotSettingsModel.user_id == user_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_bot_settings(model)

    async def list_auto_join_user_ids(self) -> list[str]:
        async for session in self._session_factory():
            stmt = select(MeetingBotSettingsModel.user_id).where(
                MeetingBotSettingsModel.auto_join_enabled.is_(True),
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def get_calendar_connection(self, user_id: str) -> CalendarConnection | None:
        """The user's active Google calendar connection, if any."""
        async for session in self._session_factory():
            stmt = select(CalendarConnectionModel).where(
                CalendarConnectionModel.user_id == user_id,
                CalendarConnectionModel.provider == "google",
                CalendarConnectionModel.is_active.is_(True),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return CalendarConnection(
                user_id=model.user_id,
                provider=model.provider,
                access_token=model.access_token,
                refresh_token=model.refresh_token,
                token_expiry=model.token_expiry,
                is_active=model.is_active,
            )

    # ── Webhook Audit ────────────────────────────────────────────────────

    async def record_webhook_event(
        self,
        event_type: str,
        payload: dict[str, Any],
        delivery_id: str | None = None,
        bot_id: str | None = None,
    ) -> uuid.UUID | None:
        """Store a webhook delivery.

        Returns:
            The audit row id to process, or None when ``delivery_id`` was
            already processed (a redelivery).
        """
        async for session in self._session_factory():
            stmt = (
                pg_insert(WebhookEventModel)
                .values(
                    delivery_id=delivery_id,
                    event_type=event_type,
                    bot_id=bot_id,
                    payload=payload,
                )
                .on_conflict_do_nothing(constraint="uq_webhook_delivery")
                .returning(WebhookEventModel.id)
            )
            result = await session.execute(stmt)
            event_id = result.scalar_one_or_none()
            if event_id is not None:
                await session.commit()
                return event_id

            existing = await session.execute(
                select(WebhookEventModel).where(WebhookEventModel.delivery_id == delivery_id)
            )
            model = existing.scalar_one()
            await session.commit()
            if model.processed:
                return None
            return model.id

    async def mark_webhook_processed(self, event_id: uuid.UUID) -> None:
        async for session in self._session_factory():
            await session.execute(
                update(WebhookEventModel)
                .where(WebhookEventModel.id == event_id)
                .values(processed=True)
            )
            await session.commit()


# ── Deployment Timers ───────────────────────────────────────────────────────


class TimerRepository:
    """Durable bot-deployment wake-ups with lease-based claiming.

    A timer survives process restarts. Claiming sets a lease so one
    worker deploys a given meeting; a lease that expires (worker died)
    makes the timer claimable again.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def upsert_timer(self, meeting_id: uuid.UUID | str, wake_at: datetime) -> None:
        """Arm (or re-arm) the timer for a meeting and drop any lease."""
        async for session in self._session_factory():
            stmt = pg_insert(BotDeploymentTimerModel).values(
                meeting_id=_as_uuid(meeting_id),
                wake_at=wake_at,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["meeting_id"],
                set_={"wake_at": stmt.excluded.wake_at, "lease_until": None},
            )
            await session.execute(stmt)
            await session.commit()

    async def claim_due_timers(
        self,
        now: datetime | None = None,
        lease_seconds: int = 300,
        limit: int = 50,
    ) -> list[uuid.UUID]:
        """Lease up to ``limit`` due timers and return their meeting ids.

        Rows locked by a concurrent claimer are skipped.
        """
        now = now or datetime.now(timezone.utc)
        async for session in self._session_factory():
            due = (
                select(BotDeploymentTimerModel.meeting_id)
                .where(
                    BotDeploymentTimerModel.wake_at <= now,
                    or_(
                        BotDeploymentTimerModel.lease_until.is_(None),
                        BotDeploymentTimerModel.lease_until < now,
                    ),
                )
                .order_by(BotDeploymentTimerModel.wake_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            stmt = (
                update(BotDeploymentTimerModel)
                .where(BotDeploymentTimerModel.meeting_id.in_(due))
                .values(lease_until=now + timedelta(seconds=lease_seconds))
                .returning(BotDeploymentTimerModel.meeting_id)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            claimed = list(result.scalars().all())
            await session.commit()
            return claimed

    async def delete_timer(self, meeting_id: uuid.UUID | str) -> None:
        async for session in self._session_factory():
            await session.execute(
                delete(BotDeploymentTimerModel).where(
                    BotDeploymentTimerModel.meeting_id == _as_uuid(meeting_id)
                )
            )
            await session.commit()
