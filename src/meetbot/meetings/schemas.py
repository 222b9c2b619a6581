"""Pydantic v2 schemas for the meeting bot engine.

Defines the data contracts for meetings, transcripts, participants,
insights, bot settings, calendar connections, vendor bot state and the
artifacts handed to the completion pipeline. Every engine component
(sync worker, deployment scheduler, poller, completion pipeline, insight
generator) imports from this module.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Lifecycle status of a meeting from discovery through insights."""

    SCHEDULED = "scheduled"
    JOINING = "joining"
    IN_PROGRESS = "in_progress"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES: frozenset[MeetingStatus] = frozenset(
    {MeetingStatus.COMPLETED, MeetingStatus.FAILED, MeetingStatus.CANCELLED}
)
IN_FLIGHT_STATUSES: frozenset[MeetingStatus] = frozenset(
    {MeetingStatus.JOINING, MeetingStatus.IN_PROGRESS, MeetingStatus.PROCESSING}
)
# Polled when a bot_id is set; SCHEDULED then means the vendor queued the bot.
POLLED_STATUSES: frozenset[MeetingStatus] = IN_FLIGHT_STATUSES | {MeetingStatus.SCHEDULED}
NON_TERMINAL_STATUSES: frozenset[MeetingStatus] = frozenset(MeetingStatus) - TERMINAL_STATUSES


class MeetingPlatform(str, Enum):
    """Conferencing platform a meeting URL belongs to."""

    GOOGLE_MEET = "google_meet"
    ZOOM = "zoom"
    MICROSOFT_TEAMS = "microsoft_teams"
    UNKNOWN = "unknown"


class RecordingMode(str, Enum):
    """Bot recording layout. Values are the vendor's wire values."""

    SPEAKER_VIEW = "speaker_view"
    GALLERY_VIEW = "gallery_view"
    AUDIO_ONLY = "audio_only"


class InsightType(str, Enum):
    """The seven insight rows produced per meeting."""

    SUMMARY = "summary"
    KEY_TOPICS = "key_topics"
    ACTION_ITEMS = "action_items"
    DECISIONS = "decisions"
    FOLLOW_UP_QUESTIONS = "follow_up_questions"
    SENTIMENT = "sentiment"
    PARTICIPATION_SUMMARY = "participation_summary"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# ── Meeting ──────────────────────────────────────────────────────────────────


class MeetingCreate(BaseModel):
    """Input data for a meeting discovered on a user's calendar."""

    user_id: str
    team_id: str | None = None
    title: str = "Untitled Meeting"
    meeting_url: str
    platform: MeetingPlatform
    scheduled_start: datetime
    scheduled_end: datetime | None = None
    calendar_event_id: str


class Meeting(BaseModel):
    """A tracked meeting and its bot lifecycle state."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: str
    team_id: str | None = None
    title: str
    meeting_url: str | None = None
    platform: MeetingPlatform = MeetingPlatform.GOOGLE_MEET
    status: MeetingStatus = MeetingStatus.SCHEDULED
    scheduled_start: datetime
    scheduled_end: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    calendar_event_id: str | None = None
    bot_id: str | None = None
    bot_excluded: bool = False
    error_message: str | None = None
    duration: int | None = None
    recording_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Transcript ───────────────────────────────────────────────────────────────


class TranscriptSegment(BaseModel):
    """A speaker-attributed span of transcript text (times in seconds)."""

    speaker: str
    text: str
    start_time: float = 0.0
    end_time: float = 0.0


class TranscriptData(BaseModel):
    """Transcript produced by an acquisition strategy, before persistence."""

    full_text: str
    segments: list[TranscriptSegment] = Field(default_factory=list)
    language: str = "en"
    duration: float | None = None


class MeetingTranscript(BaseModel):
    """Persisted transcript, one per meeting."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    full_text: str
    segments: list[TranscriptSegment] = Field(default_factory=list)
    language: str = "en"
    word_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MeetingParticipant(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    name: str


# ── Insights ─────────────────────────────────────────────────────────────────


class ActionItem(BaseModel):
    """An action item extracted from a meeting transcript."""

    task: str = Field(description="Description of the task")
    owner: str = Field("Unassigned", description="Person responsible, or 'Unassigned'")
    deadline: str | None = Field(None, description="Deadline if one was mentioned")


class MeetingInsight(BaseModel):
    """One typed insight row. List-valued content is JSON-encoded."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    meeting_id: uuid.UUID
    type: InsightType
    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    created_at: datetime | None = None


# ── User Configuration (read-only to the engine) ─────────────────────────────


class BotSettings(BaseModel):
    """Per-user bot configuration."""

    user_id: str
    auto_join_enabled: bool = False
    bot_name: str = "Meeting Assistant"
    bot_image: str | None = None
    entry_message: str | None = None
    recording_mode: RecordingMode = RecordingMode.SPEAKER_VIEW


class CalendarConnection(BaseModel):
    """A user's OAuth connection to their calendar provider."""

    user_id: str
    provider: str = "google"
    access_token: str
    refresh_token: str | None = None
    token_expiry: datetime | None = None
    is_active: bool = True


# ── Vendor State & Artifacts ─────────────────────────────────────────────────


class BotState(BaseModel):
    """Normalized snapshot of a vendor bot."""

    bot_id: str
    status: str
    recording_url: str | None = None
    transcript_url: str | None = None
    audio_url: str | None = None
    diarization_url: str | None = None
    duration_seconds: int | None = None
    participants: list[dict[str, Any]] = Field(default_factory=list)
    speakers: list[dict[str, Any]] = Field(default_factory=list)

    def artifacts(self) -> MeetingArtifacts:
        return MeetingArtifacts(
            transcript_url=self.transcript_url,
            diarization_url=self.diarization_url,
            audio_url=self.audio_url,
            recording_url=self.recording_url or self.audio_url,
            duration=self.duration_seconds,
        )


class MeetingArtifacts(BaseModel):
    """Best-known artifact URLs handed to the completion pipeline."""

    transcript_url: str | None = None
    diarization_url: str | None = None
    audio_url: str | None = None
    recording_url: str | None = None
    duration: int | None = None

    def has_source(self) -> bool:
        """True when at least one transcript source is known."""
        return bool(self.transcript_url or self.diarization_url or self.audio_url)


# ── Results ──────────────────────────────────────────────────────────────────


class SyncResult(BaseModel):
    """Outcome counters for one user calendar sync."""

    created: int = 0
    updated: int = 0
    cancelled: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class RefreshResult(BaseModel):
    """Outcome of a manual status refresh against the vendor."""

    previous_status: MeetingStatus
    new_status: MeetingStatus
    bot_status: str
    has_recording: bool = False
    has_transcript: bool = False
    has_diarization: bool = False
    participant_count: int = 0
    completion_dispatched: bool = False


class PollSummary(BaseModel):
    checked: int = 0
    updated: int = 0
    completions_triggered: int = 0
    errors: int = 0


class CompletionResult(BaseModel):
    meeting_id: uuid.UUID
    source: str
    word_count: int
    participant_count: int
    insights_dispatched: bool


class Notification(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    user_id: str
    title: str
    message: str
    type: NotificationType = NotificationType.INFO
    link: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: datetime | None = None
