"""Task bus using Redis Streams.

One stream per task topic, consumed through a shared consumer group so
several app instances split the work and every message is delivered at
least once until acknowledged.

Stream key pattern: meetbot:tasks:{topic}
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from src.meetbot.events.schemas import TaskEvent

logger = structlog.get_logger(__name__)

STREAM_PREFIX = "meetbot:tasks"
STREAM_MAXLEN = 1000


class TaskEventBus:
    """Publish and consume task events on per-topic Redis Streams.

    Args:
        redis: Async Redis client.
        prefix: Stream key prefix.
    """

    def __init__(self, redis: aioredis.Redis, prefix: str = STREAM_PREFIX) -> None:
        self._redis = redis
        self._prefix = prefix

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis

    def stream_key(self, stream: str) -> str:
        """Build the stream key for a topic, e.g. ``meetbot:tasks:sync.user``."""
        return f"{self._prefix}:{stream}"

    async def publish(self, event: TaskEvent) -> str:
        """Append an event to its topic stream with approximate trimming.

        Returns:
            Redis message ID assigned by XADD.
        """
        return await self.publish_raw(event.topic.value, event.to_stream_dict())

    async def publish_raw(self, stream: str, data: dict[str, str]) -> str:
        stream_key = self.stream_key(stream)
        message_id = await self._redis.xadd(
            stream_key,
            data,
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
        logger.debug(
            "task_event.published",
            stream=stream_key,
            event_id=data.get("event_id"),
            message_id=message_id,
        )
        return message_id

    async def ensure_group(self, stream: str, group: str) -> None:
        """Create the consumer group if it does not already exist."""
        try:
            await self._redis.xgroup_create(
                self.stream_key(stream), group, id="0", mkstream=True,
            )
        except aioredis.ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def subscribe(
        self,
        stream: str,
        group: str,
        consumer: str,
        count: int = 10,
        block: int = 5000,
    ) -> list[tuple[str, list[tuple[str, dict[str, str]]]]]:
        """Read new messages as ``consumer`` within ``group``.

        Returns:
            List of ``(stream_key, [(message_id, data), ...])`` tuples.
        """
        await self.ensure_group(stream, group)
        messages = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={self.stream_key(stream): ">"},
            count=count,
            block=block,
        )
        return messages or []

    async def ack(self, stream: str, group: str, message_id: str) -> None:
        await self._redis.xack(self.stream_key(stream), group, message_id)
