"""MeetingBaas webhook processing.

The vendor pushes bot lifecycle events through SVIX. Deliveries are
at-least-once: each one is recorded in ``webhook_events`` keyed by its
``svix-id`` so a redelivery of an already processed event has no side
effects. Every status write goes through the same guarded transition as
the poller, so webhook and poll can race without clobbering each other.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from src.meetbot.core.monitoring import status_transitions_total
from src.meetbot.meetings.repository import MeetingRepository
from src.meetbot.meetings.schemas import (
    NON_TERMINAL_STATUSES,
    Meeting,
    MeetingArtifacts,
    MeetingStatus,
)
from src.meetbot.meetings.status import (
    ENDING_STATUSES,
    STARTING_STATUSES,
    map_webhook_status,
    normalize_vendor_status,
)

logger = structlog.get_logger(__name__)

SVIX_SECRET_PREFIX = "whsec_"

# Meetings a completion event may move to PROCESSING.
COMPLETABLE_STATUSES: frozenset[MeetingStatus] = frozenset(
    {MeetingStatus.JOINING, MeetingStatus.IN_PROGRESS, MeetingStatus.PROCESSING}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def verify_svix_signature(
    body: bytes,
    svix_id: str | None,
    svix_timestamp: str | None,
    svix_signature: str | None,
    secret: str,
) -> bool:
    """Check an SVIX ``v1`` HMAC-SHA256 signature in constant time.

    ``svix_signature`` is a space-separated list of ``v1,<base64>``
    entries; any match is accepted.
    """
    if not (svix_id and svix_timestamp and svix_signature and secret):
        return False

    raw_secret = secret[len(SVIX_SECRET_PREFIX):] if secret.startswith(SVIX_SECRET_PREFIX) else secret
    try:
        key = base64.b64decode(raw_secret)
    except (binascii.Error, ValueError):
        logger.warning("webhook.secret_not_base64")
        return False

    signed_content = f"{svix_id}.{svix_timestamp}.".encode() + body
    expected = base64.b64encode(
        hmac.new(key, signed_content, hashlib.sha256).digest()
    ).decode()

    for entry in svix_signature.split(" "):
        version, _, signature = entry.partition(",")
        if version == "v1" and hmac.compare_digest(signature, expected):
            return True
    return False


class MeetingBaasWebhookHandler:
    """Verifies, deduplicates and applies MeetingBaas webhook deliveries.

    Args:
        repository: Meeting persistence (also stores webhook audit rows).
        dispatcher: Task dispatcher (``meeting_complete``).
        notifier: Optional NotificationDispatcher.
        webhook_secret: SVIX signing secret; verification is skipped when empty.
        clock: Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        dispatcher: Any,
        notifier: Any = None,
        webhook_secret: str = "",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._notifier = notifier
        self._webhook_secret = webhook_secret
        self._clock = clock

    async def handle(self, body: bytes, headers: Mapping[str, str]) -> dict[str, str]:
        """Process one delivery and return the response body.

        The caller always answers 200. Returned statuses: ``ok``,
        ``ignored`` (bad signature, unparseable or untracked),
        ``duplicate`` (redelivery) and ``error`` (processing failed; the
        event stays unprocessed so a redelivery retries it).
        """
        svix_id = headers.get("svix-id")

        if self._webhook_secret and not verify_svix_signature(
            body,
            svix_id,
            headers.get("svix-timestamp"),
            headers.get("svix-signature"),
            self._webhook_secret,
        ):
            logger.warning("webhook.invalid_signature", svix_id=svix_id)
            return {"status": "ignored"}

        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("webhook.invalid_json", svix_id=svix_id)
            return {"status": "ignored"}
        if not isinstance(payload, dict):
            logger.warning("webhook.unexpected_payload", svix_id=svix_id)
            return {"status": "ignored"}

        event_type = payload.get("event") or "generic"
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        bot_id = data.get("bot_id") or payload.get("bot_id") or payload.get("botId")

        event_id = await self._repository.record_webhook_event(
            event_type, payload, delivery_id=svix_id, bot_id=bot_id,
        )
        if event_id is None:
            logger.info("webhook.duplicate", svix_id=svix_id, event_type=event_type)
            return {"status": "duplicate"}

        meeting = await self._resolve_meeting(payload.get("meetingId"), bot_id)
        if meeting is None:
            logger.info("webhook.untracked", event_type=event_type, bot_id=bot_id)
            await self._repository.mark_webhook_processed(event_id)
            return {"status": "ignored"}

        log = logger.bind(meeting_id=str(meeting.id), event_type=event_type, bot_id=bot_id)
        try:
            await self._route(meeting, event_type, payload, data)
        except Exception:
            log.exception("webhook.processing_failed")
            return {"status": "error"}

        await self._repository.mark_webhook_processed(event_id)
        log.info("webhook.processed")
        return {"status": "ok"}

    async def _resolve_meeting(self, meeting_id: Any, bot_id: str | None) -> Meeting | None:
        if meeting_id:
            try:
                meeting = await self._repository.get_meeting(str(meeting_id))
            except ValueError:
                meeting = None
            if meeting is not None:
                return meeting
        if bot_id:
            return await self._repository.get_meeting_by_bot_id(bot_id)
        return None

    async def _route(
        self,
        meeting: Meeting,
        event_type: str,
        payload: dict[str, Any],
        data: dict[str, Any],
    ) -> None:
        if event_type == "bot.completed":
            artifacts = MeetingArtifacts(
                transcript_url=data.get("transcription"),
                diarization_url=data.get("diarization"),
                audio_url=data.get("audio"),
                recording_url=data.get("mp4") or data.get("audio"),
                duration=data.get("duration_seconds"),
            )
            await self._on_completed(
                meeting,
                artifacts,
                metadata={
                    "transcription_url": data.get("transcription"),
                    "mp4_url": data.get("mp4"),
                    "audio_url": data.get("audio"),
                    "diarization_url": data.get("diarization"),
                    "participants": data.get("participants"),
                    "speakers": data.get("speakers"),
                },
                dispatch=artifacts.has_source(),
            )
        elif event_type == "complete":
            artifacts = MeetingArtifacts(
                transcript_url=payload.get("transcript_url"),
                recording_url=payload.get("recording_url"),
                duration=payload.get("duration"),
            )
            await self._on_completed(
                meeting,
                artifacts,
                metadata={
                    "transcript_url": payload.get("transcript_url"),
                    "participants_count": payload.get("participants"),
                },
                dispatch=bool(artifacts.transcript_url),
            )
        elif event_type == "bot.failed":
            await self._on_failed(
                meeting, f"{data.get('error_code')}: {data.get('error_message')}"
            )
        elif event_type == "failed":
            await self._on_failed(
                meeting,
                f"{payload.get('error_code') or 'UNKNOWN'}: "
                f"{payload.get('error_message') or 'Unknown error'}",
            )
        elif event_type == "bot.status_change":
            await self._on_status_change(meeting, normalize_vendor_status(data.get("status")))
        elif event_type == "generic":
            await self._on_generic(meeting, payload)
        else:
            logger.info("webhook.unhandled_event", meeting_id=str(meeting.id), event_type=event_type)

    async def _on_completed(
        self,
        meeting: Meeting,
        artifacts: MeetingArtifacts,
        metadata: dict[str, Any],
        dispatch: bool,
    ) -> None:
        fields: dict[str, Any] = {"actual_end": self._clock()}
        if artifacts.duration:
            fields["duration"] = artifacts.duration
        if artifacts.recording_url:
            fields["recording_url"] = artifacts.recording_url

        updated = await self._repository.transition_status(
            meeting.id,
            expected=set(COMPLETABLE_STATUSES),
            new_status=MeetingStatus.PROCESSING,
            metadata_updates={k: v for k, v in metadata.items() if v is not None},
            **fields,
        )
        if updated is None:
            logger.info(
                "webhook.completion_skipped",
                meeting_id=str(meeting.id),
                status=meeting.status.value,
            )
            return

        status_transitions_total.labels(source="webhook", status=MeetingStatus.PROCESSING.value).inc()
        await self._notify("notify_meeting_ended", meeting, duration_seconds=artifacts.duration)

        if dispatch:
            await self._dispatcher.meeting_complete(meeting.id, artifacts.model_dump(mode="json"))
        else:
            logger.info("webhook.no_transcript_source", meeting_id=str(meeting.id))

    async def _on_failed(self, meeting: Meeting, error_message: str) -> None:
        updated = await self._repository.transition_status(
            meeting.id,
            expected=set(NON_TERMINAL_STATUSES),
            new_status=MeetingStatus.FAILED,
            error_message=error_message,
        )
        if updated is not None:
            status_transitions_total.labels(source="webhook", status=MeetingStatus.FAILED.value).inc()
            logger.warning("webhook.bot_failed", meeting_id=str(meeting.id), error=error_message)

    async def _on_status_change(self, meeting: Meeting, vendor_status: str) -> None:
        new_status = map_webhook_status(vendor_status)
        if new_status is None:
            logger.info(
                "webhook.unknown_status",
                meeting_id=str(meeting.id),
                vendor_status=vendor_status,
            )
            return
        if meeting.status not in NON_TERMINAL_STATUSES:
            return

        now = self._clock()
        starting = vendor_status in STARTING_STATUSES
        fields: dict[str, Any] = {}
        if starting:
            fields["actual_start"] = now
        if vendor_status in ENDING_STATUSES:
            fields["actual_end"] = now

        updated = await self._repository.transition_status(
            meeting.id,
            expected={meeting.status},
            new_status=new_status,
            **fields,
        )
        if updated is None:
            return

        if updated.status != meeting.status:
            status_transitions_total.labels(source="webhook", status=new_status.value).inc()
            logger.info(
                "meeting.status_changed",
                meeting_id=str(meeting.id),
                source="webhook",
                previous=meeting.status.value,
                status=new_status.value,
                vendor_status=vendor_status,
            )
        if starting and meeting.actual_start is None:
            await self._notify("notify_meeting_started", meeting)

    async def _on_generic(self, meeting: Meeting, payload: dict[str, Any]) -> None:
        artifacts = MeetingArtifacts(
            transcript_url=payload.get("transcriptUrl"),
            diarization_url=payload.get("diarizationUrl"),
            audio_url=payload.get("audioUrl"),
            recording_url=payload.get("recordingUrl"),
            duration=payload.get("duration"),
        )
        if not artifacts.has_source():
            logger.info("webhook.no_transcript_source", meeting_id=str(meeting.id))
            return
        await self._dispatcher.meeting_complete(meeting.id, artifacts.model_dump(mode="json"))

    async def _notify(self, method: str, meeting: Meeting, **kwargs: Any) -> None:
        if self._notifier is None or not meeting.user_id:
            return
        try:
            await getattr(self._notifier, method)(
                user_id=meeting.user_id,
                meeting_title=meeting.title,
                meeting_id=meeting.id,
                **kwargs,
            )
        except Exception:
            logger.warning(
                "webhook.notification_failed",
                meeting_id=str(meeting.id),
                notification=method,
                exc_info=True,
            )
