"""REST endpoints for meeting management.

Lists and shows a user's meetings and exposes the manual controls over
the bot lifecycle: calendar sync, bot exclusion, manual join, status refresh,
reprocessing and insight regeneration. All endpoints require a Bearer
JWT and only ever touch meetings owned by the caller.
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.meetbot.api.deps import get_current_user_id
from src.meetbot.meetings.bot.meetingbaas_client import MeetingBaasError
from src.meetbot.meetings.schemas import (
    Meeting,
    MeetingArtifacts,
    MeetingStatus,
    RefreshResult,
    SyncResult,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class MeetingResponse(BaseModel):
    """Meeting data with datetimes serialized to ISO strings."""

    id: str
    title: str
    status: str
    platform: str
    meeting_url: str | None = None
    scheduled_start: str
    scheduled_end: str | None = None
    actual_start: str | None = None
    actual_end: str | None = None
    bot_id: str | None = None
    bot_excluded: bool = False
    error_message: str | None = None
    duration: int | None = None
    recording_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class TranscriptResponse(BaseModel):
    full_text: str
    segments: list[dict] = Field(default_factory=list)
    language: str = "en"
    word_count: int = 0


class InsightResponse(BaseModel):
    type: str
    content: str
    confidence: float


class MeetingDetailResponse(MeetingResponse):
    """Meeting with its transcript, participants and insights."""

    transcript: TranscriptResponse | None = None
    participants: list[str] = Field(default_factory=list)
    insights: list[InsightResponse] = Field(default_factory=list)


class ToggleBotRequest(BaseModel):
    exclude: bool | None = None


class ToggleBotResponse(BaseModel):
    meeting: MeetingResponse
    message: str


class TranscriptionReadyRequest(BaseModel):
    transcriptUrl: str


class ActionResponse(BaseModel):
    status: str
    meeting_id: str
    message: str


# ── Dependency Injection Helpers ─────────────────────────────────────────────


def _get_state(request: Request, name: str, label: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def _get_meeting_repository(request: Request) -> Any:
    return _get_state(request, "meeting_repository", "Meeting repository")


def _get_task_dispatcher(request: Request) -> Any:
    return _get_state(request, "task_dispatcher", "Task dispatcher")


def _get_sync_worker(request: Request) -> Any:
    return _get_state(request, "sync_worker", "Calendar sync (Google OAuth may not be configured)")


def _get_poller(request: Request) -> Any:
    return _get_state(request, "status_poller", "Status poller (MeetingBaas API key may not be configured)")


def _get_meetingbaas_client(request: Request) -> Any:
    return _get_state(request, "meetingbaas_client", "MeetingBaas client")


async def _get_owned_meeting(repo: Any, user_id: str, meeting_id: str) -> Meeting:
    try:
        meeting = await repo.get_user_meeting(user_id, uuid.UUID(meeting_id))
    except ValueError:
        meeting = None
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {meeting_id}",
        )
    return meeting


# ── Conversion Helpers ───────────────────────────────────────────────────────


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def _meeting_to_response(m: Meeting) -> MeetingResponse:
    return MeetingResponse(
        id=str(m.id),
        title=m.title,
        status=m.status.value,
        platform=m.platform.value,
        meeting_url=m.meeting_url,
        scheduled_start=m.scheduled_start.isoformat(),
        scheduled_end=_iso(m.scheduled_end),
        actual_start=_iso(m.actual_start),
        actual_end=_iso(m.actual_end),
        bot_id=m.bot_id,
        bot_excluded=m.bot_excluded,
        error_message=m.error_message,
        duration=m.duration,
        recording_url=m.recording_url,
        created_at=_iso(m.created_at),
        updated_at=_iso(m.updated_at),
    )


def _artifacts_from_metadata(meeting: Meeting) -> MeetingArtifacts:
    metadata = meeting.metadata or {}
    return MeetingArtifacts(
        transcript_url=metadata.get("transcription_url") or metadata.get("transcript_url"),
        diarization_url=metadata.get("diarization_url"),
        audio_url=metadata.get("audio_url"),
        recording_url=meeting.recording_url or metadata.get("video_url") or metadata.get("mp4_url"),
        duration=meeting.duration,
    )


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[MeetingResponse])
async def list_meetings(
    request: Request,
    status_filter: MeetingStatus | None = Query(
        default=None,
        alias="status",
        description="Filter by meeting status",
    ),
    user_id: str = Depends(get_current_user_id),
) -> list[MeetingResponse]:
    """List the caller's meetings, newest first."""
    repo = _get_meeting_repository(request)
    meetings = await repo.list_meetings(user_id, status=status_filter)
    return [_meeting_to_response(m) for m in meetings]


@router.post("/sync", response_model=SyncResult)
async def sync_calendar(
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> SyncResult:
    """Sync the caller's calendar now, applying changes to scheduled meetings."""
    worker = _get_sync_worker(request)
    result = await worker.reconcile_user(user_id)
    logger.info("meetings_api.sync", user_id=user_id, created=result.created, updated=result.updated)
    return result


@router.get("/{meeting_id}", response_model=MeetingDetailResponse)
async def get_meeting(
    meeting_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> MeetingDetailResponse:
    """Meeting detail with transcript, participants and insights."""
    repo = _get_meeting_repository(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    transcript = await repo.get_transcript(meeting.id)
    participants = await repo.list_participants(meeting.id)
    insights = await repo.list_insights(meeting.id)

    return MeetingDetailResponse(
        **_meeting_to_response(meeting).model_dump(),
        transcript=TranscriptResponse(
            full_text=transcript.full_text,
            segments=[s.model_dump(mode="json") for s in transcript.segments],
            language=transcript.language,
            word_count=transcript.word_count,
        ) if transcript else None,
        participants=[p.name for p in participants],
        insights=[
            InsightResponse(type=i.type.value, content=i.content, confidence=i.confidence)
            for i in insights
        ],
    )


@router.post("/{meeting_id}/toggle-bot", response_model=ToggleBotResponse)
async def toggle_bot(
    meeting_id: str,
    request: Request,
    body: ToggleBotRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> ToggleBotResponse:
    """Exclude or re-include the bot for one meeting.

    Excluding a scheduled meeting cancels it (and removes an already
    deployed bot, best-effort). Re-including a cancelled meeting puts it
    back to scheduled and re-arms deployment.
    """
    repo = _get_meeting_repository(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    exclude = body.exclude if body and body.exclude is not None else not meeting.bot_excluded

    if exclude and meeting.bot_id and meeting.status == MeetingStatus.SCHEDULED:
        client = getattr(request.app.state, "meetingbaas_client", None)
        if client is not None:
            try:
                await client.delete_bot(meeting.bot_id)
            except Exception:
                logger.warning(
                    "meetings_api.bot_delete_failed",
                    meeting_id=str(meeting.id),
                    bot_id=meeting.bot_id,
                    exc_info=True,
                )

    updated = await repo.set_bot_excluded(meeting.id, exclude) or meeting

    if exclude and meeting.status == MeetingStatus.SCHEDULED:
        updated = await repo.transition_status(
            meeting.id,
            expected={MeetingStatus.SCHEDULED},
            new_status=MeetingStatus.CANCELLED,
        ) or updated
    elif not exclude and meeting.status == MeetingStatus.CANCELLED:
        rescheduled = await repo.transition_status(
            meeting.id,
            expected={MeetingStatus.CANCELLED},
            new_status=MeetingStatus.SCHEDULED,
        )
        if rescheduled is not None:
            updated = rescheduled
            await _get_task_dispatcher(request).schedule_bot(meeting.id)

    logger.info("meetings_api.bot_toggled", meeting_id=str(meeting.id), excluded=exclude)
    return ToggleBotResponse(
        meeting=_meeting_to_response(updated),
        message="Bot will not join this meeting" if exclude else "Bot will join this meeting",
    )


@router.post("/{meeting_id}/join-bot", response_model=ToggleBotResponse)
async def join_bot(
    meeting_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> ToggleBotResponse:
    """Manually send the bot to a meeting.

    The recovery path for a failed deployment: a FAILED or CANCELLED
    meeting goes back to SCHEDULED with its error cleared, and the
    deployer joins now if the meeting has already started.
    """
    repo = _get_meeting_repository(request)
    dispatcher = _get_task_dispatcher(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    if meeting.status in {MeetingStatus.JOINING, MeetingStatus.IN_PROGRESS} or (
        meeting.status == MeetingStatus.SCHEDULED and meeting.bot_id
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Bot is already active for this meeting",
        )
    if meeting.status in {MeetingStatus.PROCESSING, MeetingStatus.COMPLETED}:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Meeting has already ended",
        )

    updated = await repo.transition_status(
        meeting.id,
        expected={MeetingStatus.SCHEDULED, MeetingStatus.FAILED, MeetingStatus.CANCELLED},
        new_status=MeetingStatus.SCHEDULED,
        bot_id=None,
        bot_excluded=False,
        error_message=None,
    )
    if updated is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Meeting status changed, try again",
        )
    await dispatcher.schedule_bot(meeting.id)

    logger.info(
        "meetings_api.bot_join_requested",
        meeting_id=str(meeting.id),
        previous_status=meeting.status.value,
    )
    return ToggleBotResponse(
        meeting=_meeting_to_response(updated),
        message="Bot is joining the meeting",
    )


@router.post("/{meeting_id}/refresh-status", response_model=RefreshResult)
async def refresh_status(
    meeting_id: str,
    request: Request,
    force: bool = Query(default=False, description="Reprocess even if already completed"),
    user_id: str = Depends(get_current_user_id),
) -> RefreshResult:
    """Reconcile this meeting against the vendor now."""
    repo = _get_meeting_repository(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)
    if not meeting.bot_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No bot associated with this meeting",
        )
    poller = _get_poller(request)
    return await poller.refresh_meeting(meeting, force=force)


@router.post("/{meeting_id}/regenerate-insights", response_model=ActionResponse)
async def regenerate_insights(
    meeting_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> ActionResponse:
    """Discard the current insights and generate them again from the transcript."""
    repo = _get_meeting_repository(request)
    dispatcher = _get_task_dispatcher(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    transcript = await repo.get_transcript(meeting.id)
    if transcript is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No transcript available for this meeting",
        )

    await repo.transition_status(
        meeting.id, expected=set(MeetingStatus), new_status=MeetingStatus.PROCESSING,
    )
    cleared = await repo.clear_insights(meeting.id)
    await dispatcher.generate_insights(meeting.id, transcript.full_text)

    logger.info("meetings_api.insights_regenerating", meeting_id=str(meeting.id), cleared=cleared)
    return ActionResponse(
        status="processing",
        meeting_id=str(meeting.id),
        message="Insight regeneration started",
    )


@router.post("/{meeting_id}/reprocess", response_model=ActionResponse)
async def reprocess_meeting(
    meeting_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> ActionResponse:
    """Run the completion pipeline again from the meeting's artifacts.

    Artifact URLs expire, so fresh ones are requested from the vendor
    first; the stored metadata is the fallback.
    """
    repo = _get_meeting_repository(request)
    dispatcher = _get_task_dispatcher(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    artifacts = MeetingArtifacts()
    client = getattr(request.app.state, "meetingbaas_client", None)
    if meeting.bot_id and client is not None:
        try:
            state = await client.get_bot(meeting.bot_id)
            artifacts = state.artifacts()
        except Exception:
            logger.warning(
                "meetings_api.fresh_artifacts_failed",
                meeting_id=str(meeting.id),
                exc_info=True,
            )
    if not artifacts.has_source():
        artifacts = _artifacts_from_metadata(meeting)
    if not artifacts.has_source():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No audio, diarization, or transcript URL available for this meeting",
        )

    await repo.transition_status(
        meeting.id,
        expected=set(MeetingStatus),
        new_status=MeetingStatus.PROCESSING,
        metadata_updates={
            k: v
            for k, v in {
                "transcription_url": artifacts.transcript_url,
                "diarization_url": artifacts.diarization_url,
                "audio_url": artifacts.audio_url,
            }.items()
            if v
        },
    )
    await repo.clear_insights(meeting.id)
    await dispatcher.meeting_complete(meeting.id, artifacts.model_dump(mode="json"))

    logger.info("meetings_api.reprocess_started", meeting_id=str(meeting.id))
    return ActionResponse(
        status="processing",
        meeting_id=str(meeting.id),
        message="Meeting reprocessing started",
    )


@router.post("/{meeting_id}/transcription-ready", response_model=ActionResponse)
async def transcription_ready(
    meeting_id: str,
    body: TranscriptionReadyRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> ActionResponse:
    """Store a transcript that became available later and regenerate insights."""
    repo = _get_meeting_repository(request)
    dispatcher = _get_task_dispatcher(request)
    client = _get_meetingbaas_client(request)
    meeting = await _get_owned_meeting(repo, user_id, meeting_id)

    try:
        transcript = await client.fetch_transcript(body.transcriptUrl)
    except MeetingBaasError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.message,
        )
    stored = await repo.upsert_transcript(meeting.id, transcript)
    await repo.transition_status(
        meeting.id, expected=set(MeetingStatus), new_status=MeetingStatus.PROCESSING,
    )
    await repo.clear_insights(meeting.id)
    await dispatcher.generate_insights(meeting.id, stored.full_text)

    logger.info(
        "meetings_api.transcription_ready",
        meeting_id=str(meeting.id),
        word_count=stored.word_count,
    )
    return ActionResponse(
        status="processing",
        meeting_id=str(meeting.id),
        message="Transcript stored; insight generation started",
    )
