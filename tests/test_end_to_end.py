"""End-to-end lifecycle: calendar discovery through insights.

Drives every engine component against the in-memory doubles, replaying
dispatched tasks by hand in place of the Redis workers.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.meetbot.meetings.bot.deployer import BotDeploymentScheduler
from src.meetbot.meetings.bot.poller import StatusReconciliationPoller
from src.meetbot.meetings.calendar.sync import UserSyncWorker
from src.meetbot.meetings.completion.pipeline import MeetingCompletionPipeline
from src.meetbot.meetings.insights.generator import ExtractedInsights, InsightGenerator
from src.meetbot.meetings.schemas import (
    BotState,
    CalendarConnection,
    MeetingStatus,
    TranscriptData,
    TranscriptSegment,
)
from src.meetbot.meetings.webhooks import MeetingBaasWebhookHandler


@pytest.mark.asyncio
async def test_meeting_lifecycle(repo, timers, dispatcher, settings, clock):
    # ── Discovery ────────────────────────────────────────────────────────
    repo.connections["user-1"] = CalendarConnection(user_id="user-1", access_token="tok")
    calendar = AsyncMock()
    calendar.list_upcoming_events_async = AsyncMock(
        return_value=[
            {
                "id": "evt-standup",
                "summary": "Standup",
                "start": {"dateTime": "2026-03-02T15:30:00Z"},
                "end": {"dateTime": "2026-03-02T15:45:00Z"},
                "hangoutLink": "https://meet.google.com/std-abcd-efg",
            }
        ]
    )
    worker = UserSyncWorker(repo, calendar, dispatcher, clock=clock)
    await worker.sync_user("user-1")
    await worker.sync_user("user-1")

    assert len(repo.meetings) == 1
    meeting_id = next(iter(repo.meetings))

    # ── Deployment ───────────────────────────────────────────────────────
    vendor = AsyncMock()
    vendor.deploy_bot = AsyncMock(return_value="bot-e2e")
    deployer = BotDeploymentScheduler(repo, timers, vendor, settings, clock=clock)
    for payload in dispatcher.payloads("schedule.bot"):
        await deployer.schedule(payload["meetingId"])

    clock.advance(minutes=28)
    await deployer.drain_due_timers()
    vendor.deploy_bot.assert_not_awaited()

    clock.advance(minutes=1)
    await deployer.drain_due_timers()
    assert repo.meetings[meeting_id].status == MeetingStatus.JOINING
    assert repo.meetings[meeting_id].bot_id == "bot-e2e"

    # ── In call (webhook) ────────────────────────────────────────────────
    webhooks = MeetingBaasWebhookHandler(repo, dispatcher, clock=clock)
    clock.advance(minutes=1)
    joined_at = clock.now
    await webhooks.handle(
        json.dumps({"event": "bot.status_change", "data": {"bot_id": "bot-e2e", "status": "in_call"}}).encode(),
        {"svix-id": "msg-1"},
    )
    assert repo.meetings[meeting_id].status == MeetingStatus.IN_PROGRESS
    assert repo.meetings[meeting_id].actual_start == joined_at

    # ── Ended (poll and webhook both report it) ──────────────────────────
    clock.advance(minutes=15)
    vendor.get_bot = AsyncMock(
        return_value=BotState(
            bot_id="bot-e2e",
            status="ended",
            transcript_url="https://cdn.example.com/t.json",
            duration_seconds=900,
        )
    )
    poller = StatusReconciliationPoller(repo, vendor, dispatcher, clock=clock)
    await poller.poll_once()
    await webhooks.handle(
        json.dumps(
            {
                "event": "bot.completed",
                "data": {
                    "bot_id": "bot-e2e",
                    "transcription": "https://cdn.example.com/t.json",
                    "duration_seconds": 900,
                    "speakers": [{"name": "Alice"}, {"name": "Bob"}],
                },
            }
        ).encode(),
        {"svix-id": "msg-2"},
    )
    assert repo.meetings[meeting_id].status == MeetingStatus.PROCESSING
    assert repo.meetings[meeting_id].actual_start == joined_at
    assert len(dispatcher.payloads("meeting.complete")) == 2

    # ── Completion pipeline (runs once per trigger) ──────────────────────
    transcription = AsyncMock()
    transcription.fetch_vendor_transcript = AsyncMock(
        return_value=TranscriptData(
            full_text="We ship Friday. Agreed.",
            segments=[
                TranscriptSegment(speaker="Alice", text="We ship Friday."),
                TranscriptSegment(speaker="Bob", text="Agreed."),
            ],
        )
    )
    pipeline = MeetingCompletionPipeline(repo, transcription, dispatcher)
    for payload in dispatcher.payloads("meeting.complete"):
        await pipeline.process(payload["meetingId"], payload["artifacts"])

    assert len(repo.transcripts) == 1
    assert {p.name for p in repo.participants[meeting_id]} == {"Alice", "Bob"}
    assert repo.meetings[meeting_id].duration == 900

    # ── Insights ─────────────────────────────────────────────────────────
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=ExtractedInsights(
            summary="Release is on track.",
            key_topics=["Release"],
            sentiment="positive",
            participation_summary="Alice and Bob both spoke.",
        )
    )
    generator = InsightGenerator(repo, SimpleNamespace(resolve_model=lambda name: "test-model"))
    with patch("src.meetbot.meetings.insights.generator.instructor.from_litellm", return_value=client):
        for payload in dispatcher.payloads("generate.insights"):
            await generator.generate(payload["meetingId"], payload.get("transcriptText"))

    meeting = repo.meetings[meeting_id]
    assert meeting.status == MeetingStatus.COMPLETED
    assert len(repo.insights[meeting_id]) == 7
