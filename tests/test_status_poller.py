"""Tests for StatusReconciliationPoller: poll cycle and manual refresh."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.meetbot.meetings.bot.poller import StatusReconciliationPoller
from src.meetbot.meetings.schemas import BotState, MeetingStatus
from tests.fakes import make_meeting


def _state(status: str, **artifacts) -> BotState:
    return BotState(bot_id="bot-1", status=status, **artifacts)


@pytest.fixture
def client() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def poller(repo, client, dispatcher, clock) -> StatusReconciliationPoller:
    return StatusReconciliationPoller(repo, client, dispatcher, clock=clock)


@pytest.fixture
def joining(repo):
    return repo.add_meeting(make_meeting(status=MeetingStatus.JOINING, bot_id="bot-1"))


# ── poll_once() ──────────────────────────────────────────────────────────────


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_recording_sets_in_progress_and_actual_start_once(
        self, poller, repo, client, clock, joining
    ):
        client.get_bot.return_value = _state("recording")
        first_seen = clock.now

        summary = await poller.poll_once()
        assert summary.checked == 1
        assert summary.updated == 1
        assert repo.meetings[joining.id].status == MeetingStatus.IN_PROGRESS
        assert repo.meetings[joining.id].actual_start == first_seen

        clock.advance(minutes=2)
        summary = await poller.poll_once()
        assert summary.updated == 0
        assert repo.meetings[joining.id].actual_start == first_seen

    @pytest.mark.asyncio
    async def test_ended_with_transcript_dispatches_completion(
        self, poller, repo, client, dispatcher, clock, joining
    ):
        repo.meetings[joining.id] = joining.model_copy(update={"status": MeetingStatus.IN_PROGRESS})
        client.get_bot.return_value = _state(
            "ended",
            transcript_url="https://cdn.example.com/t.json",
            recording_url="https://cdn.example.com/r.mp4",
            duration_seconds=1500,
        )

        summary = await poller.poll_once()

        meeting = repo.meetings[joining.id]
        assert meeting.status == MeetingStatus.PROCESSING
        assert meeting.actual_end == clock.now
        assert meeting.recording_url == "https://cdn.example.com/r.mp4"
        assert summary.completions_triggered == 1
        payload = dispatcher.payloads("meeting.complete")[0]
        assert payload["meetingId"] == str(joining.id)
        assert payload["artifacts"]["transcript_url"] == "https://cdn.example.com/t.json"
        assert payload["artifacts"]["duration"] == 1500

    @pytest.mark.asyncio
    async def test_ended_without_transcript_does_not_dispatch(
        self, poller, repo, client, dispatcher, joining
    ):
        client.get_bot.return_value = _state("ended", audio_url="https://cdn.example.com/a.mp3")

        await poller.poll_once()

        assert repo.meetings[joining.id].status == MeetingStatus.PROCESSING
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_lost_race_does_not_dispatch(self, poller, repo, client, dispatcher, joining):
        async def webhook_wins(bot_id):
            repo.meetings[joining.id] = repo.meetings[joining.id].model_copy(
                update={"status": MeetingStatus.PROCESSING}
            )
            return _state("ended", transcript_url="https://cdn.example.com/t.json")

        client.get_bot.side_effect = webhook_wins

        summary = await poller.poll_once()

        assert summary.updated == 0
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_unknown_status_is_ignored(self, poller, repo, client, joining):
        client.get_bot.return_value = _state("transcribing")

        summary = await poller.poll_once()

        assert summary.updated == 0
        assert repo.meetings[joining.id].status == MeetingStatus.JOINING

    @pytest.mark.asyncio
    async def test_vendor_error_is_counted_and_batch_continues(self, poller, repo, client):
        first = repo.add_meeting(
            make_meeting(status=MeetingStatus.JOINING, bot_id="bot-a", calendar_event_id="a")
        )
        second = repo.add_meeting(
            make_meeting(
                status=MeetingStatus.JOINING,
                bot_id="bot-b",
                calendar_event_id="b",
                scheduled_start=first.scheduled_start + timedelta(hours=1),
            )
        )
        client.get_bot.side_effect = [RuntimeError("boom"), _state("in_call")]

        summary = await poller.poll_once()

        assert summary.checked == 2
        assert summary.errors == 1
        assert repo.meetings[second.id].status == MeetingStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_undeployed_and_terminal_meetings_are_not_polled(self, poller, repo, client):
        repo.add_meeting(make_meeting(calendar_event_id="x"))
        repo.add_meeting(
            make_meeting(status=MeetingStatus.COMPLETED, bot_id="bot-y", calendar_event_id="y")
        )

        summary = await poller.poll_once()

        assert summary.checked == 0
        client.get_bot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_requeued_bot_stays_polled_until_it_joins(self, poller, repo, client, joining):
        client.get_bot.return_value = _state("queued")
        await poller.poll_once()
        assert repo.meetings[joining.id].status == MeetingStatus.SCHEDULED
        assert repo.meetings[joining.id].bot_id == "bot-1"

        client.get_bot.return_value = _state("in_call")
        summary = await poller.poll_once()

        assert summary.checked == 1
        assert summary.updated == 1
        assert repo.meetings[joining.id].status == MeetingStatus.IN_PROGRESS


# ── refresh_meeting() ────────────────────────────────────────────────────────


class TestRefreshMeeting:
    @pytest.mark.asyncio
    async def test_requires_bot(self, poller):
        with pytest.raises(ValueError):
            await poller.refresh_meeting(make_meeting())

    @pytest.mark.asyncio
    async def test_legacy_status_and_completion(self, poller, repo, client, dispatcher, joining):
        client.get_bot.return_value = _state(
            "call_ended",
            diarization_url="https://cdn.example.com/d.jsonl",
            duration_seconds=900,
            participants=[{"name": "Alice"}],
        )

        result = await poller.refresh_meeting(joining)

        meeting = repo.meetings[joining.id]
        assert result.previous_status == MeetingStatus.JOINING
        assert result.new_status == MeetingStatus.PROCESSING
        assert result.completion_dispatched is True
        assert result.participant_count == 1
        assert meeting.duration == 900
        assert meeting.metadata["diarization_url"] == "https://cdn.example.com/d.jsonl"
        assert len(dispatcher.payloads("meeting.complete")) == 1

    @pytest.mark.asyncio
    async def test_completed_meeting_is_not_regressed(self, poller, repo, client, dispatcher):
        meeting = repo.add_meeting(make_meeting(status=MeetingStatus.COMPLETED, bot_id="bot-1"))
        client.get_bot.return_value = _state("done", transcript_url="https://cdn.example.com/t.json")

        result = await poller.refresh_meeting(meeting)

        assert result.new_status == MeetingStatus.COMPLETED
        assert result.completion_dispatched is False
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_force_reprocesses_completed_meeting(self, poller, repo, client, dispatcher):
        meeting = repo.add_meeting(make_meeting(status=MeetingStatus.COMPLETED, bot_id="bot-1"))
        client.get_bot.return_value = _state("done", transcript_url="https://cdn.example.com/t.json")

        result = await poller.refresh_meeting(meeting, force=True)

        assert result.new_status == MeetingStatus.PROCESSING
        assert result.completion_dispatched is True
        assert len(dispatcher.payloads("meeting.complete")) == 1

    @pytest.mark.asyncio
    async def test_stuck_processing_is_redispatched(self, poller, repo, client, dispatcher, clock):
        meeting = repo.add_meeting(
            make_meeting(
                status=MeetingStatus.PROCESSING,
                bot_id="bot-1",
                updated_at=clock.now - timedelta(minutes=10),
            )
        )
        client.get_bot.return_value = _state("ended", transcript_url="https://cdn.example.com/t.json")

        result = await poller.refresh_meeting(meeting)

        assert result.completion_dispatched is True
        assert len(dispatcher.payloads("meeting.complete")) == 1

    @pytest.mark.asyncio
    async def test_recent_processing_is_left_alone(self, poller, repo, client, dispatcher, clock):
        meeting = repo.add_meeting(
            make_meeting(
                status=MeetingStatus.PROCESSING,
                bot_id="bot-1",
                updated_at=clock.now - timedelta(minutes=1),
            )
        )
        client.get_bot.return_value = _state("ended", transcript_url="https://cdn.example.com/t.json")

        result = await poller.refresh_meeting(meeting)

        assert result.completion_dispatched is False
        assert dispatcher.calls == []
