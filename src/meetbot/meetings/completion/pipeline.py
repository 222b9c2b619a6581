"""Meeting completion pipeline.

Handles ``meeting.complete``: acquires a transcript from the best
available source, stores it with the participant list, backfills the
duration and hands off to insight generation. Re-running the pipeline
for the same meeting refreshes rather than duplicates, because the
transcript is upserted and participants are replaced.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog

from src.meetbot.core.monitoring import status_transitions_total
from src.meetbot.meetings.completion.transcription import TranscriptionService
from src.meetbot.meetings.exceptions import MeetingNotFoundError, NoTranscriptSourceError
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    CompletionResult,
    Meeting,
    MeetingArtifacts,
    MeetingStatus,
    TranscriptData,
)

logger = structlog.get_logger(__name__)

EXCLUDED_PARTICIPANT_NAMES = frozenset({"Speaker", "Unknown"})
BOT_NAME_MARKER = "Meeting Assistant"


def _resolve_sources(meeting: Meeting, artifacts: MeetingArtifacts) -> MeetingArtifacts:
    """Fill missing artifact URLs from what earlier events stored on the meeting."""
    metadata = meeting.metadata
    return MeetingArtifacts(
        transcript_url=(
            artifacts.transcript_url
            or metadata.get("transcription_url")
            or metadata.get("transcript_url")
        ),
        diarization_url=artifacts.diarization_url or metadata.get("diarization_url"),
        audio_url=artifacts.audio_url or metadata.get("audio_url") or meeting.recording_url,
        recording_url=artifacts.recording_url or meeting.recording_url,
        duration=artifacts.duration,
    )


def _names_from(entries: Any) -> list[str]:
    names: list[str] = []
    for entry in entries or []:
        if isinstance(entry, dict):
            name = entry.get("name")
        else:
            name = entry
        if isinstance(name, str):
            names.append(name)
    return names


def collect_participants(metadata: dict[str, Any], transcript: TranscriptData) -> list[str]:
    """De-duplicated participant names in first-seen order.

    Sources: vendor participant list, vendor speaker list, then transcript
    segment speakers. Generic labels and the bot itself are dropped.
    """
    candidates = (
        _names_from(metadata.get("participants"))
        + _names_from(metadata.get("speakers"))
        + [segment.speaker for segment in transcript.segments]
    )
    seen: dict[str, None] = {}
    for raw in candidates:
        name = raw.strip()
        if not name or name in EXCLUDED_PARTICIPANT_NAMES or BOT_NAME_MARKER in name:
            continue
        seen.setdefault(name, None)
    return list(seen)


class MeetingCompletionPipeline:
    """Turns a finished meeting's artifacts into a stored transcript.

    Args:
        repository: Meeting persistence.
        transcription: Transcript acquisition strategies.
        dispatcher: Task dispatcher (``generate_insights``).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        transcription: TranscriptionService,
        dispatcher: Any,
    ) -> None:
        self._repository = repository
        self._transcription = transcription
        self._dispatcher = dispatcher

    async def process(
        self,
        meeting_id: uuid.UUID | str,
        artifacts: MeetingArtifacts | dict[str, Any] | None = None,
    ) -> CompletionResult | None:
        """Run the pipeline for one meeting.

        Returns:
            The completion result, or None if the meeting was cancelled.

        Raises:
            MeetingNotFoundError: The meeting does not exist.
            NoTranscriptSourceError: No audio, transcript or diarization
                source is known.
        """
        if not isinstance(artifacts, MeetingArtifacts):
            artifacts = MeetingArtifacts.model_validate(artifacts or {})

        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(str(meeting_id))
        if meeting.status == MeetingStatus.CANCELLED:
            logger.info("meeting_complete.skipped_cancelled", meeting_id=str(meeting.id))
            return None

        if meeting.status in {MeetingStatus.JOINING, MeetingStatus.IN_PROGRESS}:
            moved = await self._repository.transition_status(
                meeting.id,
                expected={MeetingStatus.JOINING, MeetingStatus.IN_PROGRESS},
                new_status=MeetingStatus.PROCESSING,
            )
            if moved is not None:
                meeting = moved
                status_transitions_total.labels(source="completion", status="processing").inc()

        sources = _resolve_sources(meeting, artifacts)
        transcript, source = await self._acquire_transcript(meeting, sources)

        stored = await self._repository.upsert_transcript(meeting.id, transcript)
        participants = collect_participants(meeting.metadata, transcript)
        await self._repository.replace_participants(meeting.id, participants)

        duration = sources.duration or (round(transcript.duration) if transcript.duration else None)
        if meeting.duration is None and duration:
            await self._repository.backfill_duration(meeting.id, duration)

        current = await self._repository.get_meeting(meeting.id)
        dispatch = current is not None and current.status != MeetingStatus.COMPLETED
        if dispatch:
            await self._dispatcher.generate_insights(meeting.id, transcript.full_text)

        logger.info(
            "meeting_complete.transcript_stored",
            meeting_id=str(meeting.id),
            source=source,
            word_count=stored.word_count,
            participant_count=len(participants),
            insights_dispatched=dispatch,
        )
        return CompletionResult(
            meeting_id=meeting.id,
            source=source,
            word_count=stored.word_count,
            participant_count=len(participants),
            insights_dispatched=dispatch,
        )

    async def _acquire_transcript(
        self, meeting: Meeting, sources: MeetingArtifacts
    ) -> tuple[TranscriptData, str]:
        if sources.audio_url:
            transcript = await self._transcription.transcribe_with_diarization(
                sources.audio_url, sources.diarization_url,
            )
            return transcript, "audio+diarization" if sources.diarization_url else "audio"
        if sources.transcript_url:
            return await self._transcription.fetch_vendor_transcript(sources.transcript_url), "vendor_transcript"
        if sources.diarization_url:
            return await self._transcription.parse_diarization(sources.diarization_url), "diarization"

        logger.warning("meeting_complete.no_source", meeting_id=str(meeting.id))
        raise NoTranscriptSourceError(f"No transcript source available for meeting {meeting.id}")
