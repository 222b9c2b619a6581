"""Google user-OAuth credentials built from stored calendar connections.

Users connect their calendar through the integrations UI, which stores
an access/refresh token pair. This module turns that row into
``google.oauth2.credentials.Credentials`` that refresh themselves with
the app's OAuth client when the access token expires.
"""

from __future__ import annotations

from datetime import timezone

import structlog
from google.oauth2.credentials import Credentials

from src.meetbot.meetings.schemas import CalendarConnection

logger = structlog.get_logger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events.readonly",
]


class GoogleOAuthManager:
    """Builds per-user OAuth credentials for Google APIs.

    Args:
        client_id: OAuth client id of this application.
        client_secret: OAuth client secret of this application.
    """

    def __init__(self, client_id: str, client_secret: str) -> None:
        self._client_id = client_id
        self._client_secret = client_secret

    def build_credentials(
        self,
        connection: CalendarConnection,
        scopes: list[str] | None = None,
    ) -> Credentials:
        """Create refreshable credentials for a user's calendar connection."""
        expiry = None
        if connection.token_expiry is not None:
            # google-auth compares against naive UTC datetimes
            expiry = connection.token_expiry.astimezone(timezone.utc).replace(tzinfo=None)

        logger.debug(
            "google_oauth.credentials_built",
            user_id=connection.user_id,
            has_refresh_token=bool(connection.refresh_token),
        )
        return Credentials(
            token=connection.access_token,
            refresh_token=connection.refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self._client_id or None,
            client_secret=self._client_secret or None,
            scopes=scopes or CALENDAR_SCOPES,
            expiry=expiry,
        )
