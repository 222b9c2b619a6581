"""Task envelope schemas for the meeting engine's internal topics.

Each topic is a Redis Stream carrying one kind of work item. Events
serialize to flat string dicts for XADD and deserialize back losslessly.

Stream key pattern: meetbot:tasks:{topic}
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TaskTopic(str, Enum):
    """Internal work topics and the payload each one carries.

    - sync.user: {"userId"}
    - schedule.bot: {"meetingId"}
    - meeting.complete: {"meetingId", "artifacts"}
    - generate.insights: {"meetingId", "transcriptText"}
    """

    SYNC_USER = "sync.user"
    SCHEDULE_BOT = "schedule.bot"
    MEETING_COMPLETE = "meeting.complete"
    GENERATE_INSIGHTS = "generate.insights"


class TaskEvent(BaseModel):
    """Envelope for one unit of engine work.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        topic: The topic this event is published on.
        timestamp: UTC creation time.
        data: JSON payload for the topic handler.
        correlation_id: Groups events that belong to one meeting run.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    topic: TaskTopic
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: dict[str, Any] = Field(default_factory=dict)
    correlation_id: str | None = None

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings suitable for XADD."""
        return {
            "event_id": self.event_id,
            "topic": self.topic.value,
            "timestamp": self.timestamp.isoformat(),
            "data": json.dumps(self.data, default=str),
            "correlation_id": self.correlation_id or "",
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> TaskEvent:
        """Reverse ``to_stream_dict()`` for a message read via XREADGROUP."""
        return cls(
            event_id=raw["event_id"],
            topic=TaskTopic(raw["topic"]),
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            data=json.loads(raw["data"]) if raw.get("data") else {},
            correlation_id=raw.get("correlation_id") or None,
        )
