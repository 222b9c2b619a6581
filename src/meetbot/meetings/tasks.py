"""Task topic handlers.

Binds each task topic to the engine component that handles it. Handlers
unpack the event payload and let errors propagate so the consumer can
retry and eventually dead-letter the message.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.meetbot.events.schemas import TaskEvent, TaskTopic

logger = structlog.get_logger(__name__)


def _required(event: TaskEvent, key: str) -> str:
    value = event.data.get(key)
    if not value:
        raise ValueError(f"{event.topic.value} event {event.event_id} is missing {key}")
    return str(value)


def build_task_handlers(
    sync_worker: Any = None,
    deployer: Any = None,
    pipeline: Any = None,
    insight_generator: Any = None,
) -> dict[TaskTopic, Any]:
    """Return a handler per topic whose component is available."""
    handlers: dict[TaskTopic, Any] = {}

    if sync_worker is not None:
        async def handle_sync_user(event: TaskEvent) -> None:
            await sync_worker.sync_user(_required(event, "userId"))

        handlers[TaskTopic.SYNC_USER] = handle_sync_user

    if deployer is not None:
        async def handle_schedule_bot(event: TaskEvent) -> None:
            await deployer.schedule(_required(event, "meetingId"))

        handlers[TaskTopic.SCHEDULE_BOT] = handle_schedule_bot

    if pipeline is not None:
        async def handle_meeting_complete(event: TaskEvent) -> None:
            await pipeline.process(
                _required(event, "meetingId"), event.data.get("artifacts") or {},
            )

        handlers[TaskTopic.MEETING_COMPLETE] = handle_meeting_complete

    if insight_generator is not None:
        async def handle_generate_insights(event: TaskEvent) -> None:
            await insight_generator.generate(
                _required(event, "meetingId"), event.data.get("transcriptText"),
            )

        handlers[TaskTopic.GENERATE_INSIGHTS] = handle_generate_insights

    missing = [t.value for t in TaskTopic if t not in handlers]
    if missing:
        logger.warning("task_handlers.unavailable", topics=missing)
    return handlers
