"""Meeting persistence models.

SQLAlchemy models for the meeting engine, all in the configured engine
schema (see ``core.database.metadata``):
- MeetingModel: Meetings discovered on users' calendars
- MeetingTranscriptModel: One transcript per meeting (upserted)
- MeetingParticipantModel: Participant names, replaced per completion run
- MeetingInsightModel: Seven typed insight rows per meeting
- MeetingBotSettingsModel: Per-user bot configuration (read-only here)
- CalendarConnectionModel: Per-user calendar OAuth tokens (read-only here)
- BotDeploymentTimerModel: Durable wake-up timers for bot deployment
- NotificationModel: In-app notifications
- WebhookEventModel: Vendor webhook audit log and redelivery dedup

No foreign key constraints; referential integrity is kept by the
repository.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.meetbot.core.database import Base


class MeetingModel(Base):
    """A conferenced calendar event tracked through its bot lifecycle."""

    __tablename__ = "meetings"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "calendar_event_id",
            name="uq_meeting_user_event",
        ),
        Index("ix_meetings_status_bot", "status", "bot_id"),
        Index("ix_meetings_bot_id", "bot_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    team_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        server_default=text("'Untitled Meeting'"),
    )
    meeting_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    platform: Mapped[str] = mapped_column(
        String(50),
        default="google_meet",
        server_default=text("'google_meet'"),
    )
    status: Mapped[str] = mapped_column(
        String(50),
        default="scheduled",
        server_default=text("'scheduled'"),
    )
    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    scheduled_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    actual_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    calendar_event_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    bot_excluded: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    meeting_metadata: Mapped[dict] = mapped_column(
        "metadata", JSONB, default=dict, server_default=text("'{}'::jsonb")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class MeetingTranscriptModel(Base):
    """Transcript text and speaker segments, unique per meeting."""

    __tablename__ = "meeting_transcripts"
    __table_args__ = (
        UniqueConstraint("meeting_id", name="uq_transcript_meeting"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    full_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    segments_data: Mapped[list] = mapped_column(
        "segments", JSON, default=list, server_default=text("'[]'::json")
    )
    language: Mapped[str] = mapped_column(
        String(20), default="en", server_default=text("'en'")
    )
    word_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class MeetingParticipantModel(Base):
    __tablename__ = "meeting_participants"
    __table_args__ = (
        Index("ix_participants_meeting", "meeting_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))


class MeetingInsightModel(Base):
    """One typed insight. List-valued content is stored JSON-encoded."""

    __tablename__ = "meeting_insights"
    __table_args__ = (
        Index("ix_insights_meeting", "meeting_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class MeetingBotSettingsModel(Base):
    """Per-user bot configuration, owned by the settings UI."""

    __tablename__ = "meeting_bot_settings"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_bot_settings_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    auto_join_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    bot_name: Mapped[str] = mapped_column(
        String(200),
        default="Meeting Assistant",
        server_default=text("'Meeting Assistant'"),
    )
    bot_image: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    entry_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_mode: Mapped[str] = mapped_column(
        String(50),
        default="speaker_view",
        server_default=text("'speaker_view'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class CalendarConnectionModel(Base):
    """A user's calendar OAuth connection, owned by the integrations UI."""

    __tablename__ = "calendar_connections"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_user_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    provider: Mapped[str] = mapped_column(
        String(50), default="google", server_default=text("'google'")
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    token_expiry: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class BotDeploymentTimerModel(Base):
    """Durable wake-up for a pending bot deployment.

    ``lease_until`` is set while a worker is deploying; an expired lease
    makes the timer claimable again.
    """

    __tablename__ = "bot_deployment_timers"
    __table_args__ = (
        Index("ix_timers_wake_at", "wake_at"),
    )

    meeting_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    wake_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    lease_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user", "user_id", "read"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        String(20), default="info", server_default=text("'info'")
    )
    link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    notification_metadata: Mapped[dict] = mapped_column(
        "metadata", JSON, default=dict, server_default=text("'{}'::json")
    )
    read: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class WebhookEventModel(Base):
    """Audit row for every verified vendor webhook delivery."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("delivery_id", name="uq_webhook_delivery"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    source: Mapped[str] = mapped_column(
        String(50), default="meetingbaas", server_default=text("'meetingbaas'")
    )
    delivery_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    bot_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    payload: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    processed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
