"""In-app notifications for meeting lifecycle events.

Notifications are persisted to the ``notifications`` table, which the
UI reads. Callers treat every method here as best-effort: failures are
raised to the caller, which logs and moves on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.meetbot.meetings.models import NotificationModel
from src.meetbot.meetings.schemas import Notification, NotificationType

logger = structlog.get_logger(__name__)


class NotificationDispatcher:
    """Writes notifications for meeting owners.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        link: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        async for session in self._session_factory():
            model = NotificationModel(
                id=uuid.uuid4(),
                user_id=user_id,
                title=title,
                message=message,
                type=type.value,
                link=link,
                notification_metadata=metadata or {},
                created_at=datetime.now(timezone.utc),
            )
            session.add(model)
            await session.commit()
            logger.info("notification.created", user_id=user_id, title=title)
            return Notification(
                id=model.id,
                user_id=user_id,
                title=title,
                message=message,
                type=type,
                link=link,
                metadata=metadata or {},
                created_at=model.created_at,
            )

    async def notify_insights_ready(
        self,
        user_id: str,
        meeting_title: str,
        meeting_id: uuid.UUID | str,
        insight_count: int,
    ) -> Notification:
        return await self.notify(
            user_id=user_id,
            title="Meeting insights ready",
            message=f'{insight_count} AI insights generated for "{meeting_title}"',
            type=NotificationType.SUCCESS,
            link=f"/meetings/{meeting_id}",
            metadata={"meetingId": str(meeting_id), "insightCount": insight_count},
        )

    async def notify_meeting_started(
        self, user_id: str, meeting_title: str, meeting_id: uuid.UUID | str
    ) -> Notification:
        return await self.notify(
            user_id=user_id,
            title="Meeting started",
            message=f'The meeting assistant joined "{meeting_title}" and is recording',
            type=NotificationType.INFO,
            link=f"/meetings/{meeting_id}",
            metadata={"meetingId": str(meeting_id)},
        )

    async def notify_meeting_ended(
        self,
        user_id: str,
        meeting_title: str,
        meeting_id: uuid.UUID | str,
        duration_seconds: int | None = None,
    ) -> Notification:
        minutes = round(duration_seconds / 60) if duration_seconds else None
        suffix = f" after {minutes} minutes" if minutes else ""
        return await self.notify(
            user_id=user_id,
            title="Meeting ended",
            message=f'"{meeting_title}" ended{suffix}. Processing the recording now.',
            type=NotificationType.INFO,
            link=f"/meetings/{meeting_id}",
            metadata={"meetingId": str(meeting_id), "duration": duration_seconds},
        )
