"""Meeting URL extraction and platform detection for calendar events.

Works on raw Google Calendar v3 event dicts.
"""

from __future__ import annotations

import re
from typing import Any

from src.meetbot.meetings.schemas import MeetingPlatform

# Tried in order against the event description.
DESCRIPTION_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"https://meet\.google\.com/[a-z-]+", re.IGNORECASE),
    re.compile(r"https://[\w.-]*zoom\.(?:us|com)/j/\d+", re.IGNORECASE),
    re.compile(r"https://teams\.microsoft\.com/l/meetup-join/[^\s]+", re.IGNORECASE),
    re.compile(r"https://teams\.live\.com/meet/[^\s]+", re.IGNORECASE),
)

_PLATFORM_MARKERS: tuple[tuple[tuple[str, ...], MeetingPlatform], ...] = (
    (("meet.google.com",), MeetingPlatform.GOOGLE_MEET),
    (("zoom.us", "zoom.com"), MeetingPlatform.ZOOM),
    (("teams.microsoft.com", "teams.live.com"), MeetingPlatform.MICROSOFT_TEAMS),
)


def extract_meeting_url(event: dict[str, Any]) -> str | None:
    """Return the join URL of a calendar event, or None.

    Sources in priority order: ``hangoutLink``, the first video entry
    point in ``conferenceData``, then known conferencing links found in
    the description.
    """
    hangout_link = event.get("hangoutLink")
    if hangout_link:
        return hangout_link

    conference_data = event.get("conferenceData") or {}
    for entry_point in conference_data.get("entryPoints") or []:
        if entry_point.get("entryPointType") == "video" and entry_point.get("uri"):
            return entry_point["uri"]

    description = event.get("description") or ""
    for pattern in DESCRIPTION_URL_PATTERNS:
        match = pattern.search(description)
        if match:
            return match.group(0)

    return None


def detect_platform(url: str) -> MeetingPlatform:
    """Classify a join URL by substring; unrecognised hosts are UNKNOWN."""
    lowered = url.lower()
    for markers, platform in _PLATFORM_MARKERS:
        if any(marker in lowered for marker in markers):
            return platform
    return MeetingPlatform.UNKNOWN
