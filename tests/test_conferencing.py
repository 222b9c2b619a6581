"""Tests for meeting URL extraction, platform detection and status mapping."""

from __future__ import annotations

import pytest

from src.meetbot.meetings.conferencing import detect_platform, extract_meeting_url
from src.meetbot.meetings.schemas import MeetingPlatform, MeetingStatus
from src.meetbot.meetings.status import (
    map_poll_status,
    map_refresh_status,
    map_webhook_status,
    normalize_vendor_status,
)


# ── URL Extraction ───────────────────────────────────────────────────────────


class TestExtractMeetingUrl:
    def test_hangout_link_wins(self):
        event = {
            "hangoutLink": "https://meet.google.com/abc-defg-hij",
            "conferenceData": {
                "entryPoints": [{"entryPointType": "video", "uri": "https://zoom.us/j/123"}]
            },
        }
        assert extract_meeting_url(event) == "https://meet.google.com/abc-defg-hij"

    def test_video_entry_point_used_when_no_hangout(self):
        event = {
            "conferenceData": {
                "entryPoints": [
                    {"entryPointType": "phone", "uri": "tel:+1-555-0100"},
                    {"entryPointType": "video", "uri": "https://zoom.us/j/98765"},
                ]
            }
        }
        assert extract_meeting_url(event) == "https://zoom.us/j/98765"

    def test_zoom_link_in_description(self):
        event = {"description": "Join: https://acme.zoom.us/j/123456789 (pwd in invite)"}
        assert extract_meeting_url(event) == "https://acme.zoom.us/j/123456789"

    def test_teams_link_in_description(self):
        url = "https://teams.microsoft.com/l/meetup-join/19%3ameeting_abc%40thread.v2/0"
        event = {"description": f"Click here {url} to join"}
        assert extract_meeting_url(event) == url

    def test_meet_link_in_description(self):
        event = {"description": "Agenda\nhttps://meet.google.com/xyz-abcd-efg"}
        assert extract_meeting_url(event) == "https://meet.google.com/xyz-abcd-efg"

    def test_no_url(self):
        assert extract_meeting_url({"summary": "Lunch", "description": "Cafeteria"}) is None
        assert extract_meeting_url({}) is None


# ── Platform Detection ───────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("url", "platform"),
    [
        ("https://meet.google.com/abc-defg-hij", MeetingPlatform.GOOGLE_MEET),
        ("https://us02web.zoom.us/j/123", MeetingPlatform.ZOOM),
        ("https://zoom.com/j/123", MeetingPlatform.ZOOM),
        ("https://teams.microsoft.com/l/meetup-join/x", MeetingPlatform.MICROSOFT_TEAMS),
        ("https://teams.live.com/meet/123", MeetingPlatform.MICROSOFT_TEAMS),
        ("https://whereby.com/room", MeetingPlatform.UNKNOWN),
    ],
)
def test_detect_platform(url, platform):
    assert detect_platform(url) == platform


# ── Status Mapping ───────────────────────────────────────────────────────────


class TestStatusMapping:
    def test_normalize_handles_case_spaces_and_code_dicts(self):
        assert normalize_vendor_status("In Call") == "in_call"
        assert normalize_vendor_status({"code": "RECORDING"}) == "recording"
        assert normalize_vendor_status(None) == ""

    def test_poll_map(self):
        assert map_poll_status("queued") == MeetingStatus.SCHEDULED
        assert map_poll_status("in_waiting_room") == MeetingStatus.JOINING
        assert map_poll_status("recording") == MeetingStatus.IN_PROGRESS
        assert map_poll_status("completed") == MeetingStatus.PROCESSING
        assert map_poll_status("failed") == MeetingStatus.FAILED

    def test_poll_map_ignores_push_only_statuses(self):
        assert map_poll_status("transcribing") is None
        assert map_poll_status("in_call_recording") is None

    def test_webhook_map_adds_push_statuses(self):
        assert map_webhook_status("in_call_not_recording") == MeetingStatus.IN_PROGRESS
        assert map_webhook_status("transcribing") == MeetingStatus.PROCESSING
        assert map_webhook_status("call_ended") is None

    def test_refresh_map_accepts_legacy_names(self):
        assert map_refresh_status("joining_call") == MeetingStatus.JOINING
        assert map_refresh_status("done") == MeetingStatus.PROCESSING
        assert map_refresh_status("error") == MeetingStatus.FAILED
        assert map_refresh_status("mystery") is None
