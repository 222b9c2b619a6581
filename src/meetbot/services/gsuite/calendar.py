"""Google Calendar API v3 service for meeting discovery.

Lists a user's upcoming primary-calendar events with their own OAuth
credentials. The discovery client is synchronous, so calls are run in
a worker thread from async code.
"""

from __future__ import annotations

import asyncio
from datetime import date, datetime, time, timezone
from typing import Any

import structlog
from googleapiclient.discovery import build

from src.meetbot.meetings.schemas import CalendarConnection
from src.meetbot.services.gsuite.auth import GoogleOAuthManager

logger = structlog.get_logger(__name__)


class GoogleCalendarService:
    """Calendar API v3 access on behalf of connected users.

    Args:
        auth_manager: GoogleOAuthManager building per-user credentials.
    """

    def __init__(self, auth_manager: GoogleOAuthManager) -> None:
        self._auth_manager = auth_manager

    def get_calendar_service(self, connection: CalendarConnection) -> Any:
        """Build a Calendar API v3 Resource for the connection's user."""
        credentials = self._auth_manager.build_credentials(connection)
        return build("calendar", "v3", credentials=credentials, cache_discovery=False)

    def list_upcoming_events(
        self,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 50,
    ) -> list[dict]:
        """Fetch expanded single events from the primary calendar.

        Args:
            connection: The user's calendar connection.
            time_min: Start of window.
            time_max: End of window.
            max_results: Page size cap.

        Returns:
            Google Calendar event dicts ordered by start time.
        """
        service = self.get_calendar_service(connection)
        events_result = (
            service.events()
            .list(
                calendarId="primary",
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                orderBy="startTime",
                maxResults=max_results,
            )
            .execute()
        )
        events = events_result.get("items", [])
        logger.info(
            "calendar.events_listed",
            user_id=connection.user_id,
            event_count=len(events),
        )
        return events

    async def list_upcoming_events_async(
        self,
        connection: CalendarConnection,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 50,
    ) -> list[dict]:
        return await asyncio.to_thread(
            self.list_upcoming_events, connection, time_min, time_max, max_results,
        )

    @staticmethod
    def parse_event_time(value: dict | None) -> datetime | None:
        """Parse an event ``start``/``end`` object.

        Timed events carry ``dateTime`` (RFC 3339); all-day events carry
        ``date``, which is taken as midnight UTC.
        """
        if not value:
            return None
        raw = value.get("dateTime")
        if raw:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        raw_date = value.get("date")
        if raw_date:
            return datetime.combine(date.fromisoformat(raw_date), time.min, tzinfo=timezone.utc)
        return None
