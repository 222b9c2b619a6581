"""Insight generation from meeting transcripts.

Uses instructor + LiteLLM in JSON mode to extract seven typed insights
from a transcript in a single structured call. Output that does not
validate is an error (InsightParseError), never an empty default. The
meeting is marked COMPLETED only after the insight rows are committed.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import instructor
import litellm
import structlog
from instructor.core import InstructorRetryException
from pydantic import BaseModel, Field, ValidationError

from src.meetbot.core.monitoring import status_transitions_total, track_llm_call
from src.meetbot.meetings.exceptions import (
    InsightParseError,
    MeetingNotFoundError,
    NoTranscriptSourceError,
)
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    ActionItem,
    InsightType,
    Meeting,
    MeetingInsight,
    MeetingStatus,
)
from src.meetbot.services.llm import LLMService

logger = structlog.get_logger(__name__)

INSIGHT_TRANSCRIPT_CHAR_LIMIT = 100_000
INSIGHT_MAX_TOKENS = 4096

INSIGHT_CONFIDENCE: dict[InsightType, float] = {
    InsightType.SUMMARY: 0.9,
    InsightType.KEY_TOPICS: 0.85,
    InsightType.ACTION_ITEMS: 0.85,
    InsightType.DECISIONS: 0.8,
    InsightType.FOLLOW_UP_QUESTIONS: 0.75,
    InsightType.SENTIMENT: 0.7,
    InsightType.PARTICIPATION_SUMMARY: 0.8,
}


class ExtractedInsights(BaseModel):
    """Structured LLM output for one meeting."""

    summary: str = Field(description="A 2-3 paragraph executive summary of the meeting")
    key_topics: list[str] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    decisions: list[str] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)
    sentiment: str = Field(description="positive, neutral or negative")
    participation_summary: str = Field(
        description="Brief note on who contributed most and meeting dynamics"
    )


def build_system_prompt(meeting: Meeting, participant_names: list[str]) -> str:
    duration = str(round(meeting.duration / 60)) if meeting.duration else "Unknown"
    return f"""You are an expert meeting analyst. Analyze the following meeting transcript and provide structured insights.

Meeting: {meeting.title}
Date: {meeting.scheduled_start.isoformat()}
Duration: {duration} minutes
Participants: {", ".join(participant_names)}

IMPORTANT: Respond with ONLY a valid JSON object, no markdown formatting, no code blocks, no additional text. Start your response with {{ and end with }}.

Required JSON structure:
{{
  "summary": "A 2-3 paragraph executive summary of the meeting",
  "key_topics": ["Topic 1", "Topic 2", "Topic 3"],
  "action_items": [
    {{"task": "Description of task", "owner": "Person name or 'Unassigned'", "deadline": "mentioned deadline or null"}}
  ],
  "decisions": ["Decision 1", "Decision 2"],
  "follow_up_questions": ["Question 1", "Question 2"],
  "sentiment": "positive|neutral|negative",
  "participation_summary": "Brief note on who contributed most and meeting dynamics"
}}

If there are no items for a category (e.g., no action items), use an empty array []."""


def to_insight_rows(meeting_id: uuid.UUID, extracted: ExtractedInsights) -> list[MeetingInsight]:
    """Flatten extracted insights into the seven stored rows."""
    contents: dict[InsightType, str] = {
        InsightType.SUMMARY: extracted.summary,
        InsightType.KEY_TOPICS: json.dumps(extracted.key_topics),
        InsightType.ACTION_ITEMS: json.dumps(
            [item.model_dump() for item in extracted.action_items]
        ),
        InsightType.DECISIONS: json.dumps(extracted.decisions),
        InsightType.FOLLOW_UP_QUESTIONS: json.dumps(extracted.follow_up_questions),
        InsightType.SENTIMENT: extracted.sentiment.strip().lower(),
        InsightType.PARTICIPATION_SUMMARY: extracted.participation_summary,
    }
    return [
        MeetingInsight(
            meeting_id=meeting_id,
            type=insight_type,
            content=contents[insight_type],
            confidence=confidence,
        )
        for insight_type, confidence in INSIGHT_CONFIDENCE.items()
    ]


class InsightGenerator:
    """Generates and stores AI insights for a processed meeting.

    Args:
        repository: Meeting persistence.
        llm_service: Resolves the reasoning model.
        notifier: NotificationDispatcher (``notify_insights_ready``).
    """

    def __init__(
        self,
        repository: MeetingRepository,
        llm_service: LLMService,
        notifier: Any = None,
    ) -> None:
        self._repository = repository
        self._llm_service = llm_service
        self._notifier = notifier

    async def generate(
        self,
        meeting_id: uuid.UUID | str,
        transcript_text: str | None = None,
    ) -> list[MeetingInsight]:
        """Extract, store and announce insights for one meeting.

        Raises:
            MeetingNotFoundError: The meeting does not exist.
            NoTranscriptSourceError: No transcript text is available.
            InsightParseError: The model output did not validate.
        """
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(str(meeting_id))

        text = transcript_text
        if not text:
            stored = await self._repository.get_transcript(meeting.id)
            text = stored.full_text if stored else ""
        if not text or not text.strip():
            raise NoTranscriptSourceError(f"No transcript text for meeting {meeting.id}")

        participants = await self._repository.list_participants(meeting.id)
        extracted = await self._extract(meeting, [p.name for p in participants], text)

        rows = await self._repository.replace_insights(
            meeting.id, to_insight_rows(meeting.id, extracted)
        )

        completed = await self._repository.transition_status(
            meeting.id,
            expected={MeetingStatus.PROCESSING},
            new_status=MeetingStatus.COMPLETED,
        )
        if completed is not None:
            status_transitions_total.labels(source="insights", status="completed").inc()

        logger.info(
            "insights.generated",
            meeting_id=str(meeting.id),
            insight_count=len(rows),
            completed=completed is not None,
        )

        await self._notify(meeting, len(rows))
        return rows

    async def _extract(
        self, meeting: Meeting, participant_names: list[str], transcript_text: str
    ) -> ExtractedInsights:
        model = self._llm_service.resolve_model("reasoning")
        messages = [
            {"role": "system", "content": build_system_prompt(meeting, participant_names)},
            {
                "role": "user",
                "content": "Please analyze this meeting transcript:\n\n"
                + transcript_text[:INSIGHT_TRANSCRIPT_CHAR_LIMIT],
            },
        ]

        client = instructor.from_litellm(litellm.acompletion, mode=instructor.Mode.JSON)
        try:
            async with track_llm_call(model, "meeting_insights"):
                return await client.chat.completions.create(
                    model=model,
                    response_model=ExtractedInsights,
                    messages=messages,
                    max_tokens=INSIGHT_MAX_TOKENS,
                    temperature=0.3,
                    max_retries=1,
                )
        except (ValidationError, InstructorRetryException) as exc:
            logger.warning(
                "insights.parse_failed",
                meeting_id=str(meeting.id),
                error=str(exc),
            )
            raise InsightParseError(
                f"Could not parse insights for meeting {meeting.id}: {exc}"
            ) from exc

    async def _notify(self, meeting: Meeting, insight_count: int) -> None:
        if self._notifier is None or not meeting.user_id:
            return
        try:
            await self._notifier.notify_insights_ready(
                user_id=meeting.user_id,
                meeting_title=meeting.title,
                meeting_id=meeting.id,
                insight_count=insight_count,
            )
        except Exception:
            logger.warning("insights.notification_failed", meeting_id=str(meeting.id), exc_info=True)
