"""Publishing helpers for the four task topics and the worker pool that
drains them.

Components never talk to Redis directly: they receive a ``TaskDispatcher``
(or any object with the same four coroutine methods) and call it when a
follow-up unit of work is due.
"""

from __future__ import annotations

import asyncio
import socket
import uuid
from typing import Any

import structlog

from src.meetbot.events.bus import TaskEventBus
from src.meetbot.events.consumer import TaskConsumer, TaskHandler
from src.meetbot.events.dlq import DeadLetterQueue
from src.meetbot.events.schemas import TaskEvent, TaskTopic

logger = structlog.get_logger(__name__)

CONSUMER_GROUP = "meetbot-workers"


class TaskDispatcher:
    """Publishes typed task events onto their topic streams."""

    def __init__(self, bus: TaskEventBus) -> None:
        self._bus = bus

    async def _publish(self, topic: TaskTopic, data: dict[str, Any]) -> str:
        event = TaskEvent(
            topic=topic,
            data=data,
            correlation_id=data.get("meetingId") or data.get("userId"),
        )
        message_id = await self._bus.publish(event)
        logger.info(
            "task_event.dispatched",
            topic=topic.value,
            event_id=event.event_id,
            correlation_id=event.correlation_id,
        )
        return message_id

    async def sync_user(self, user_id: str) -> str:
        return await self._publish(TaskTopic.SYNC_USER, {"userId": user_id})

    async def schedule_bot(self, meeting_id: uuid.UUID | str) -> str:
        return await self._publish(TaskTopic.SCHEDULE_BOT, {"meetingId": str(meeting_id)})

    async def meeting_complete(
        self,
        meeting_id: uuid.UUID | str,
        artifacts: dict[str, Any],
    ) -> str:
        return await self._publish(
            TaskTopic.MEETING_COMPLETE,
            {"meetingId": str(meeting_id), "artifacts": artifacts},
        )

    async def generate_insights(
        self,
        meeting_id: uuid.UUID | str,
        transcript_text: str | None = None,
    ) -> str:
        data: dict[str, Any] = {"meetingId": str(meeting_id)}
        if transcript_text:
            data["transcriptText"] = transcript_text
        return await self._publish(TaskTopic.GENERATE_INSIGHTS, data)


class TaskWorkerPool:
    """Runs one ``TaskConsumer`` per registered topic as background tasks.

    Args:
        bus: TaskEventBus shared by all consumers.
        group: Consumer group name shared across app instances.
    """

    def __init__(self, bus: TaskEventBus, group: str = CONSUMER_GROUP) -> None:
        self._bus = bus
        self._group = group
        self._dlq = DeadLetterQueue(bus)
        self._handlers: dict[TaskTopic, TaskHandler] = {}
        self._consumers: list[TaskConsumer] = []
        self._tasks: list[asyncio.Task] = []
        self._consumer_prefix = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"

    @property
    def dlq(self) -> DeadLetterQueue:
        return self._dlq

    def register(self, topic: TaskTopic, handler: TaskHandler) -> None:
        self._handlers[topic] = handler

    def start(self) -> None:
        """Spawn a consumer loop for every registered topic."""
        for topic, handler in self._handlers.items():
            consumer = TaskConsumer(
                bus=self._bus,
                stream=topic.value,
                group=self._group,
                consumer_name=f"{self._consumer_prefix}-{topic.value}",
                dlq=self._dlq,
            )
            self._consumers.append(consumer)
            self._tasks.append(
                asyncio.create_task(
                    consumer.process_loop(handler), name=f"task-consumer:{topic.value}"
                )
            )
        logger.info("task_workers.started", topics=[t.value for t in self._handlers])

    async def stop(self) -> None:
        for consumer in self._consumers:
            consumer.stop()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._consumers.clear()
        self._tasks.clear()
        logger.info("task_workers.stopped")
