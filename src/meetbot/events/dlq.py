"""Dead letter queue for task events that exhausted their retries.

DLQ key pattern: meetbot:tasks:{topic}:dlq
"""

from __future__ import annotations

from datetime import datetime, timezone
import structlog

from src.meetbot.events.bus import TaskEventBus

logger = structlog.get_logger(__name__)


class DeadLetterQueue:
    """Dead letter streams beside each topic stream.

    Failed task events are stored with their failure metadata.
    """

    def __init__(self, bus: TaskEventBus) -> None:
        self._bus = bus
        self._redis = bus.redis

    def _dlq_key(self, original_stream: str) -> str:
        return f"{self._bus.stream_key(original_stream)}:dlq"

    async def send_to_dlq(
        self,
        original_stream: str,
        message_id: str,
        data: dict[str, str],
        error: str,
        retry_count: int,
    ) -> str:
        """Move a failed task event to the dead letter stream.

        Args:
            original_stream: Topic the event was consumed from.
            message_id: Original Redis message ID.
            data: Raw event data dict from the stream.
            error: Error message from the last attempt.
            retry_count: Number of retries made.

        Returns:
            DLQ message ID assigned by XADD.
        """
        dlq_key = self._dlq_key(original_stream)
        dlq_data: dict[str, str] = {
            **data,
            "_dlq_original_stream": original_stream,
            "_dlq_original_id": message_id,
            "_dlq_error": error,
            "_dlq_retry_count": str(retry_count),
            "_dlq_timestamp": datetime.now(timezone.utc).isoformat(),
        }
        dlq_message_id = await self._redis.xadd(dlq_key, dlq_data)

        logger.warning(
            "task_event.dead_lettered",
            dlq_key=dlq_key,
            original_id=message_id,
            error=error,
            retry_count=retry_count,
        )
        return dlq_message_id
