"""Task consumer with retry logic and consumer group management.

Reads task events from a topic stream via a consumer group and invokes
a handler. Failed events are retried with exponential backoff (1s, 4s,
16s) and moved to the dead letter queue after 3 retries.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from src.meetbot.core.monitoring import task_events_total
from src.meetbot.events.bus import TaskEventBus
from src.meetbot.events.dlq import DeadLetterQueue
from src.meetbot.events.schemas import TaskEvent

logger = structlog.get_logger(__name__)

TaskHandler = Callable[[TaskEvent], Awaitable[object]]


class TaskConsumer:
    """Processes one topic stream with retry and dead-lettering.

    Handlers must be idempotent: a message is acknowledged only after the
    handler returns, so a crash mid-handler means redelivery.

    Args:
        bus: TaskEventBus for reading events.
        stream: Topic stream name.
        group: Consumer group name.
        consumer_name: Unique consumer identifier within the group.
        dlq: DeadLetterQueue for permanently failed messages.
    """

    MAX_RETRIES: int = 3
    RETRY_DELAYS: list[int] = [1, 4, 16]

    def __init__(
        self,
        bus: TaskEventBus,
        stream: str,
        group: str,
        consumer_name: str,
        dlq: DeadLetterQueue,
    ) -> None:
        self._bus = bus
        self._stream = stream
        self._group = group
        self._consumer_name = consumer_name
        self._dlq = dlq
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def process_loop(self, handler: TaskHandler) -> None:
        """Read, handle and acknowledge messages until stopped."""
        self._running = True
        logger.info(
            "task_consumer.started",
            stream=self._stream,
            group=self._group,
            consumer=self._consumer_name,
        )

        while self._running:
            messages = await self._bus.subscribe(
                self._stream, self._group, self._consumer_name,
            )
            for _stream_key, stream_messages in messages:
                for message_id, raw_data in stream_messages:
                    await self._process_with_retry(message_id, raw_data, handler)

        logger.info("task_consumer.stopped", stream=self._stream)

    async def _process_with_retry(
        self,
        message_id: str,
        raw_data: dict[str, str],
        handler: TaskHandler,
    ) -> None:
        """Handle one message; on failure re-publish with backoff or dead-letter.

        The re-published copy carries an incremented ``_retry_count`` and
        is picked up as a new delivery. The original is always acked.
        """
        retry_count = int(raw_data.get("_retry_count", "0"))

        try:
            event = TaskEvent.from_stream_dict(raw_data)
            await handler(event)
            await self._bus.ack(self._stream, self._group, message_id)
            task_events_total.labels(topic=self._stream, outcome="success").inc()

            logger.debug(
                "task_event.processed",
                event_id=event.event_id,
                topic=self._stream,
                message_id=message_id,
            )

        except Exception as exc:
            logger.warning(
                "task_event.failed",
                topic=self._stream,
                message_id=message_id,
                retry_count=retry_count,
                error=str(exc),
                exc_info=True,
            )

            if retry_count >= self.MAX_RETRIES:
                await self._dlq.send_to_dlq(
                    original_stream=self._stream,
                    message_id=message_id,
                    data=raw_data,
                    error=str(exc),
                    retry_count=retry_count,
                )
                await self._bus.ack(self._stream, self._group, message_id)
                task_events_total.labels(topic=self._stream, outcome="dead_lettered").inc()
            else:
                delay = self.RETRY_DELAYS[min(retry_count, len(self.RETRY_DELAYS) - 1)]
                await asyncio.sleep(delay)

                retry_data = dict(raw_data)
                retry_data["_retry_count"] = str(retry_count + 1)
                await self._bus.publish_raw(self._stream, retry_data)
                await self._bus.ack(self._stream, self._group, message_id)
                task_events_total.labels(topic=self._stream, outcome="retried").inc()

                logger.info(
                    "task_event.retried",
                    topic=self._stream,
                    message_id=message_id,
                    retry_count=retry_count + 1,
                    delay=delay,
                )

    def stop(self) -> None:
        """Signal the processing loop to stop after the current read."""
        self._running = False
