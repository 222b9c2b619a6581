"""Redis Streams task topics for the meeting engine.

Exports:
    TaskEvent: Envelope for one unit of work.
    TaskTopic: The four internal topics.
    TaskEventBus: Publish/consume per-topic Redis Streams.
    TaskConsumer: Consumer with retry and dead-lettering.
    DeadLetterQueue: Dead letter streams for exhausted events.
    TaskDispatcher: Typed publishing helpers.
    TaskWorkerPool: Background consumers for registered handlers.
"""

from __future__ import annotations

from src.meetbot.events.schemas import TaskEvent, TaskTopic

__all__ = [
    "DeadLetterQueue",
    "TaskConsumer",
    "TaskDispatcher",
    "TaskEvent",
    "TaskEventBus",
    "TaskTopic",
    "TaskWorkerPool",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the Redis-backed classes."""
    if name == "TaskEventBus":
        from src.meetbot.events.bus import TaskEventBus

        return TaskEventBus
    if name == "TaskConsumer":
        from src.meetbot.events.consumer import TaskConsumer

        return TaskConsumer
    if name == "DeadLetterQueue":
        from src.meetbot.events.dlq import DeadLetterQueue

        return DeadLetterQueue
    if name in ("TaskDispatcher", "TaskWorkerPool"):
        from src.meetbot.events import dispatcher

        return getattr(dispatcher, name)
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
