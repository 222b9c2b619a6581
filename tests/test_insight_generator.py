"""Tests for InsightGenerator and insight row building."""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from instructor.core import InstructorRetryException
from pydantic import ValidationError

from src.meetbot.meetings.exceptions import (
    InsightParseError,
    MeetingNotFoundError,
    NoTranscriptSourceError,
)
from src.meetbot.meetings.insights.generator import (
    ExtractedInsights,
    InsightGenerator,
    build_system_prompt,
    to_insight_rows,
)
from src.meetbot.meetings.schemas import (
    ActionItem,
    InsightType,
    MeetingStatus,
    TranscriptData,
)
from tests.fakes import make_meeting

FROM_LITELLM = "src.meetbot.meetings.insights.generator.instructor.from_litellm"


def _extracted() -> ExtractedInsights:
    return ExtractedInsights(
        summary="The team agreed to ship the beta on Friday.",
        key_topics=["Beta launch", "QA"],
        action_items=[ActionItem(task="Write release notes", owner="Alice", deadline="Thursday")],
        decisions=["Ship Friday"],
        follow_up_questions=["Who covers support?"],
        sentiment="  Positive ",
        participation_summary="Alice led; Bob reported QA status.",
    )


def _validation_error() -> ValidationError:
    try:
        ExtractedInsights.model_validate({"key_topics": "not a list"})
    except ValidationError as exc:
        return exc
    raise AssertionError("expected a validation error")


def _mock_instructor(result=None, side_effect=None) -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=result, side_effect=side_effect)
    return client


@pytest.fixture
def llm_service() -> SimpleNamespace:
    return SimpleNamespace(resolve_model=lambda name: "anthropic/claude-sonnet-4")


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def generator(repo, llm_service, notifier) -> InsightGenerator:
    return InsightGenerator(repo, llm_service, notifier=notifier)


@pytest.fixture
def processing(repo):
    return repo.add_meeting(make_meeting(status=MeetingStatus.PROCESSING, bot_id="bot-1", duration=1800))


# ── Row Building ─────────────────────────────────────────────────────────────


class TestInsightRows:
    def test_seven_rows_with_fixed_confidence(self, processing):
        rows = to_insight_rows(processing.id, _extracted())

        assert [r.type for r in rows] == list(InsightType)
        confidence = {r.type: r.confidence for r in rows}
        assert confidence[InsightType.SUMMARY] == 0.9
        assert confidence[InsightType.SENTIMENT] == 0.7
        assert confidence[InsightType.FOLLOW_UP_QUESTIONS] == 0.75

    def test_list_content_is_json_and_sentiment_normalized(self, processing):
        rows = {r.type: r.content for r in to_insight_rows(processing.id, _extracted())}

        assert json.loads(rows[InsightType.KEY_TOPICS]) == ["Beta launch", "QA"]
        assert json.loads(rows[InsightType.ACTION_ITEMS]) == [
            {"task": "Write release notes", "owner": "Alice", "deadline": "Thursday"}
        ]
        assert rows[InsightType.SENTIMENT] == "positive"

    def test_prompt_includes_meeting_context(self, processing):
        prompt = build_system_prompt(processing, ["Alice", "Bob"])
        assert "Meeting: Weekly Sync" in prompt
        assert "Duration: 30 minutes" in prompt
        assert "Participants: Alice, Bob" in prompt

    def test_prompt_with_unknown_duration(self):
        assert "Duration: Unknown minutes" in build_system_prompt(make_meeting(), [])


# ── generate() ───────────────────────────────────────────────────────────────


class TestGenerate:
    @pytest.mark.asyncio
    async def test_stores_rows_then_completes(self, generator, repo, notifier, processing):
        client = _mock_instructor(result=_extracted())
        with patch(FROM_LITELLM, return_value=client):
            rows = await generator.generate(processing.id, "Alice: ship it. Bob: agreed.")

        assert len(rows) == 7
        assert len(repo.insights[processing.id]) == 7
        assert repo.meetings[processing.id].status == MeetingStatus.COMPLETED
        notifier.notify_insights_ready.assert_awaited_once_with(
            user_id="user-1",
            meeting_title="Weekly Sync",
            meeting_id=processing.id,
            insight_count=7,
        )

        kwargs = client.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "anthropic/claude-sonnet-4"
        assert kwargs["response_model"] is ExtractedInsights
        assert kwargs["max_tokens"] == 4096
        assert kwargs["messages"][1]["content"].endswith("Alice: ship it. Bob: agreed.")

    @pytest.mark.asyncio
    async def test_long_transcript_is_truncated(self, generator, processing):
        client = _mock_instructor(result=_extracted())
        with patch(FROM_LITELLM, return_value=client):
            await generator.generate(processing.id, "x" * 150_000)

        content = client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
        assert content.count("x") == 100_000

    @pytest.mark.asyncio
    async def test_falls_back_to_stored_transcript(self, generator, repo, processing):
        await repo.upsert_transcript(processing.id, TranscriptData(full_text="stored words"))
        client = _mock_instructor(result=_extracted())
        with patch(FROM_LITELLM, return_value=client):
            await generator.generate(processing.id)

        content = client.chat.completions.create.await_args.kwargs["messages"][1]["content"]
        assert content.endswith("stored words")

    @pytest.mark.asyncio
    async def test_parse_failure_raises_and_stores_nothing(self, generator, repo, processing):
        client = _mock_instructor(side_effect=_validation_error())
        with patch(FROM_LITELLM, return_value=client):
            with pytest.raises(InsightParseError):
                await generator.generate(processing.id, "some transcript")

        assert processing.id not in repo.insights
        assert repo.meetings[processing.id].status == MeetingStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_parse_error(self, generator, repo, processing):
        exhausted = InstructorRetryException("invalid JSON", n_attempts=2, total_usage=0)
        with patch(FROM_LITELLM, return_value=_mock_instructor(side_effect=exhausted)):
            with pytest.raises(InsightParseError) as exc_info:
                await generator.generate(processing.id, "some transcript")

        assert exc_info.value.__cause__ is exhausted
        assert processing.id not in repo.insights
        assert repo.meetings[processing.id].status == MeetingStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_notification_failure_is_not_fatal(self, generator, repo, notifier, processing):
        notifier.notify_insights_ready.side_effect = RuntimeError("db unavailable")
        with patch(FROM_LITELLM, return_value=_mock_instructor(result=_extracted())):
            rows = await generator.generate(processing.id, "transcript")

        assert len(rows) == 7
        assert repo.meetings[processing.id].status == MeetingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_regeneration_replaces_rows(self, generator, repo, processing):
        with patch(FROM_LITELLM, return_value=_mock_instructor(result=_extracted())):
            await generator.generate(processing.id, "first pass")
            await generator.generate(processing.id, "second pass")

        assert len(repo.insights[processing.id]) == 7

    @pytest.mark.asyncio
    async def test_no_transcript_raises(self, generator, processing):
        with pytest.raises(NoTranscriptSourceError):
            await generator.generate(processing.id)

    @pytest.mark.asyncio
    async def test_missing_meeting_raises(self, generator):
        with pytest.raises(MeetingNotFoundError):
            await generator.generate("00000000-0000-0000-0000-000000000000", "text")
