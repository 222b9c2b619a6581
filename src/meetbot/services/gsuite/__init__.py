"""Google Workspace integration for calendar meeting discovery.

Provides user-OAuth credential building and an async-friendly Calendar
API v3 service.
"""

from src.meetbot.services.gsuite.auth import GoogleOAuthManager
from src.meetbot.services.gsuite.calendar import GoogleCalendarService

__all__ = [
    "GoogleCalendarService",
    "GoogleOAuthManager",
]
