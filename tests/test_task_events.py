"""Tests for the task backbone: envelopes, dispatcher, consumer retry and handlers."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from src.meetbot.events.bus import TaskEventBus
from src.meetbot.events.consumer import TaskConsumer
from src.meetbot.events.dispatcher import TaskDispatcher
from src.meetbot.events.dlq import DeadLetterQueue
from src.meetbot.events.schemas import TaskEvent, TaskTopic
from src.meetbot.meetings.tasks import build_task_handlers


# ── Envelope ─────────────────────────────────────────────────────────────────


class TestTaskEvent:
    def test_stream_dict_is_flat_strings(self):
        event = TaskEvent(
            topic=TaskTopic.MEETING_COMPLETE,
            data={"meetingId": "m-1", "artifacts": {"audio_url": "https://a"}},
            correlation_id="m-1",
        )

        stream_dict = event.to_stream_dict()
        restored = TaskEvent.from_stream_dict(stream_dict)

        assert all(isinstance(v, str) for v in stream_dict.values())
        assert restored.topic == TaskTopic.MEETING_COMPLETE
        assert restored.data["artifacts"] == {"audio_url": "https://a"}
        assert restored.event_id == event.event_id

    def test_empty_correlation_restored_as_none(self):
        event = TaskEvent(topic=TaskTopic.SYNC_USER, data={"userId": "u"})
        assert TaskEvent.from_stream_dict(event.to_stream_dict()).correlation_id is None


# ── Dispatcher ───────────────────────────────────────────────────────────────


class TestTaskDispatcher:
    @pytest.fixture
    def bus(self) -> AsyncMock:
        bus = AsyncMock()
        bus.publish = AsyncMock(return_value="1-0")
        return bus

    @pytest.mark.asyncio
    async def test_payload_shapes(self, bus):
        dispatcher = TaskDispatcher(bus)

        await dispatcher.sync_user("user-1")
        await dispatcher.schedule_bot("m-1")
        await dispatcher.meeting_complete("m-1", {"transcript_url": "https://t"})
        await dispatcher.generate_insights("m-1", "hello")

        events = [call.args[0] for call in bus.publish.await_args_list]
        assert [e.topic for e in events] == list(TaskTopic)
        assert events[0].data == {"userId": "user-1"}
        assert events[0].correlation_id == "user-1"
        assert events[1].data == {"meetingId": "m-1"}
        assert events[2].data == {"meetingId": "m-1", "artifacts": {"transcript_url": "https://t"}}
        assert events[3].data == {"meetingId": "m-1", "transcriptText": "hello"}

    @pytest.mark.asyncio
    async def test_insights_without_text_omits_key(self, bus):
        await TaskDispatcher(bus).generate_insights("m-1")
        assert bus.publish.await_args.args[0].data == {"meetingId": "m-1"}


# ── Consumer Retry ───────────────────────────────────────────────────────────


class TestTaskConsumer:
    @pytest.fixture
    def bus(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def dlq(self) -> AsyncMock:
        return AsyncMock()

    @pytest.fixture
    def consumer(self, bus, dlq) -> TaskConsumer:
        return TaskConsumer(
            bus=bus,
            stream="schedule.bot",
            group="meetbot-workers",
            consumer_name="worker-1",
            dlq=dlq,
        )

    def _raw(self, retry_count: int | None = None) -> dict[str, str]:
        raw = TaskEvent(topic=TaskTopic.SCHEDULE_BOT, data={"meetingId": "m-1"}).to_stream_dict()
        if retry_count is not None:
            raw["_retry_count"] = str(retry_count)
        return raw

    @pytest.mark.asyncio
    async def test_success_acks(self, consumer, bus):
        handler = AsyncMock()

        await consumer._process_with_retry("1-0", self._raw(), handler)

        handler.assert_awaited_once()
        assert handler.await_args.args[0].data == {"meetingId": "m-1"}
        bus.ack.assert_awaited_once_with("schedule.bot", "meetbot-workers", "1-0")
        bus.publish_raw.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_republishes_with_backoff(self, consumer, bus, dlq):
        handler = AsyncMock(side_effect=RuntimeError("vendor down"))

        with patch("src.meetbot.events.consumer.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await consumer._process_with_retry("1-0", self._raw(retry_count=1), handler)

        mock_sleep.assert_awaited_once_with(4)
        stream, data = bus.publish_raw.await_args.args
        assert stream == "schedule.bot"
        assert data["_retry_count"] == "2"
        bus.ack.assert_awaited_once()
        dlq.send_to_dlq.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_retries_dead_letter(self, consumer, bus, dlq):
        handler = AsyncMock(side_effect=RuntimeError("still failing"))

        await consumer._process_with_retry("9-0", self._raw(retry_count=3), handler)

        dlq.send_to_dlq.assert_awaited_once()
        kwargs = dlq.send_to_dlq.await_args.kwargs
        assert kwargs["original_stream"] == "schedule.bot"
        assert kwargs["error"] == "still failing"
        assert kwargs["retry_count"] == 3
        bus.publish_raw.assert_not_awaited()
        bus.ack.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dead_letter_stream_keeps_failure_metadata(self):
        redis = AsyncMock()
        redis.xadd.return_value = "1-0"
        dlq = DeadLetterQueue(TaskEventBus(redis))

        dlq_id = await dlq.send_to_dlq(
            original_stream="meeting.complete",
            message_id="9-0",
            data={"topic": "meeting.complete", "_retry_count": "3"},
            error="still failing",
            retry_count=3,
        )

        assert dlq_id == "1-0"
        key, stored = redis.xadd.await_args.args
        assert key == "meetbot:tasks:meeting.complete:dlq"
        assert stored["topic"] == "meeting.complete"
        assert stored["_dlq_original_id"] == "9-0"
        assert stored["_dlq_error"] == "still failing"
        assert stored["_dlq_retry_count"] == "3"

    @pytest.mark.asyncio
    async def test_malformed_message_is_retried_not_raised(self, consumer, bus):
        with patch("src.meetbot.events.consumer.asyncio.sleep", new_callable=AsyncMock):
            await consumer._process_with_retry("1-0", {"topic": "schedule.bot"}, AsyncMock())

        assert bus.publish_raw.await_args.args[1]["_retry_count"] == "1"


# ── Topic Handlers ───────────────────────────────────────────────────────────


class TestTaskHandlers:
    @pytest.mark.asyncio
    async def test_handlers_route_payloads(self):
        sync_worker, deployer, pipeline, generator = AsyncMock(), AsyncMock(), AsyncMock(), AsyncMock()
        handlers = build_task_handlers(
            sync_worker=sync_worker,
            deployer=deployer,
            pipeline=pipeline,
            insight_generator=generator,
        )

        await handlers[TaskTopic.SYNC_USER](TaskEvent(topic=TaskTopic.SYNC_USER, data={"userId": "u-1"}))
        await handlers[TaskTopic.SCHEDULE_BOT](TaskEvent(topic=TaskTopic.SCHEDULE_BOT, data={"meetingId": "m-1"}))
        await handlers[TaskTopic.MEETING_COMPLETE](
            TaskEvent(topic=TaskTopic.MEETING_COMPLETE, data={"meetingId": "m-1"})
        )
        await handlers[TaskTopic.GENERATE_INSIGHTS](
            TaskEvent(topic=TaskTopic.GENERATE_INSIGHTS, data={"meetingId": "m-1", "transcriptText": "t"})
        )

        sync_worker.sync_user.assert_awaited_once_with("u-1")
        deployer.schedule.assert_awaited_once_with("m-1")
        pipeline.process.assert_awaited_once_with("m-1", {})
        generator.generate.assert_awaited_once_with("m-1", "t")

    @pytest.mark.asyncio
    async def test_missing_key_raises_for_retry(self):
        handlers = build_task_handlers(deployer=AsyncMock())

        with pytest.raises(ValueError, match="meetingId"):
            await handlers[TaskTopic.SCHEDULE_BOT](TaskEvent(topic=TaskTopic.SCHEDULE_BOT, data={}))

    def test_unavailable_components_have_no_handler(self):
        handlers = build_task_handlers(sync_worker=AsyncMock())
        assert list(handlers) == [TaskTopic.SYNC_USER]
