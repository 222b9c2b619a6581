"""Vendor bot status to meeting status mapping.

Three tables of increasing leniency: the background poller uses the
strict poll map, webhooks add the vendor's push-only statuses, and the
manual refresh endpoint also accepts legacy names.
"""

from __future__ import annotations

from src.meetbot.meetings.schemas import MeetingStatus

POLL_STATUS_MAP: dict[str, MeetingStatus] = {
    "queued": MeetingStatus.SCHEDULED,
    "joining": MeetingStatus.JOINING,
    "in_waiting_room": MeetingStatus.JOINING,
    "in_call": MeetingStatus.IN_PROGRESS,
    "recording": MeetingStatus.IN_PROGRESS,
    "ended": MeetingStatus.PROCESSING,
    "completed": MeetingStatus.PROCESSING,
    "failed": MeetingStatus.FAILED,
}

WEBHOOK_STATUS_MAP: dict[str, MeetingStatus] = {
    **POLL_STATUS_MAP,
    "in_call_recording": MeetingStatus.IN_PROGRESS,
    "in_call_not_recording": MeetingStatus.IN_PROGRESS,
    "transcribing": MeetingStatus.PROCESSING,
}

REFRESH_STATUS_MAP: dict[str, MeetingStatus] = {
    **WEBHOOK_STATUS_MAP,
    "joining_call": MeetingStatus.JOINING,
    "waiting_room": MeetingStatus.JOINING,
    "call_ended": MeetingStatus.PROCESSING,
    "recording_succeeded": MeetingStatus.PROCESSING,
    "done": MeetingStatus.PROCESSING,
    "error": MeetingStatus.FAILED,
}

# Vendor statuses that stamp actual_start / actual_end (first time only).
STARTING_STATUSES: frozenset[str] = frozenset({"in_call", "recording", "in_call_recording"})
ENDING_STATUSES: frozenset[str] = frozenset(
    {"ended", "completed", "transcribing", "call_ended", "done", "recording_succeeded"}
)

# Vendor statuses after which the artifacts are final.
ARTIFACT_READY_STATUSES: frozenset[str] = frozenset({"ended", "completed"})


def normalize_vendor_status(raw: str | dict | None) -> str:
    """Lowercase a vendor status and turn spaces into underscores.

    Webhooks may send the status as ``{"code": "..."}``.
    """
    if isinstance(raw, dict):
        raw = raw.get("code")
    if not raw:
        return ""
    return str(raw).strip().lower().replace(" ", "_")


def map_poll_status(vendor_status: str) -> MeetingStatus | None:
    return POLL_STATUS_MAP.get(vendor_status)


def map_webhook_status(vendor_status: str) -> MeetingStatus | None:
    return WEBHOOK_STATUS_MAP.get(vendor_status)


def map_refresh_status(vendor_status: str) -> MeetingStatus | None:
    return REFRESH_STATUS_MAP.get(vendor_status)
