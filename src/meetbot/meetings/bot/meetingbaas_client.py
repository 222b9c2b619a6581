"""Async HTTP client wrapper for the MeetingBaas v2 REST API.

Provides MeetingBaasClient with transport-level retry (tenacity, 3
attempts, exponential backoff 1-10s) on connect errors, timeouts and
5xx/429 responses for reads. Bot deployment is not idempotent: it is
retried only when the connection was never established, and any
non-2xx response raises MeetingBaasError at once.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.meetbot.meetings.schemas import BotState, TranscriptData, TranscriptSegment
from src.meetbot.meetings.status import normalize_vendor_status

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.meetingbaas.com"


class MeetingBaasError(Exception):
    """Error reported by the MeetingBaas API."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        return code >= 500 or code == 429
    return False


_meetingbaas_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_transient),
    reraise=True,
)

# POST /v2/bots may have been accepted once a request is on the wire.
_deploy_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(httpx.ConnectError),
    reraise=True,
)


class DeployBotRequest(BaseModel):
    """Body of ``POST /v2/bots``."""

    meeting_url: str
    bot_name: str
    bot_image: str | None = None
    entry_message: str | None = None
    recording_mode: str = "speaker_view"
    webhook_url: str | None = None
    speech_to_text: dict[str, Any] = {"provider": "Default"}
    automatic_leave: dict[str, Any] = {"waiting_room_timeout": 600}


def _unwrap(payload: Any) -> dict[str, Any]:
    """Accept both ``{success, data}`` envelopes and bare objects."""
    if isinstance(payload, dict) and "data" in payload and isinstance(payload["data"], dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


class MeetingBaasClient:
    """Async client for the MeetingBaas bot API.

    Args:
        api_key: MeetingBaas API key.
        base_url: API root (default: https://api.meetingbaas.com).
    """

    TIMEOUT_MUTATE = 30.0  # deploy/delete
    TIMEOUT_READ = 10.0    # status/transcript

    def __init__(self, api_key: str, base_url: str = DEFAULT_API_URL) -> None:
        if not api_key:
            raise MeetingBaasError("MeetingBaas API key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Content-Type": "application/json",
            "x-meeting-baas-api-key": api_key,
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(headers=self._headers, timeout=timeout)

    @staticmethod
    def _raise_for_vendor_error(response: httpx.Response, transient: bool = True) -> None:
        """Raise for transient statuses (retried) or MeetingBaasError.

        With ``transient=False`` every non-2xx status raises MeetingBaasError.
        """
        if response.is_success:
            return
        if transient and (response.status_code >= 500 or response.status_code == 429):
            response.raise_for_status()

        message = f"MeetingBaas API error: {response.status_code}"
        error_code = None
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message") or message
            error_code = body.get("code")
        elif response.text:
            message = response.text
        raise MeetingBaasError(message, status_code=response.status_code, error_code=error_code)

    @_deploy_retry
    async def deploy_bot(self, request: DeployBotRequest) -> str:
        """Send a bot into a meeting now.

        POST /v2/bots

        Returns:
            The vendor bot id.

        Raises:
            MeetingBaasError: Vendor rejected the request or returned no bot id.
        """
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(
                f"{self._base_url}/v2/bots",
                json=request.model_dump(exclude_none=True),
            )
            self._raise_for_vendor_error(response, transient=False)
            payload = response.json()

        if isinstance(payload, dict) and payload.get("success") is False:
            raise MeetingBaasError(payload.get("error") or "Failed to deploy bot")
        bot_id = _unwrap(payload).get("bot_id")
        if not bot_id:
            raise MeetingBaasError("Failed to deploy bot")

        logger.info("meetingbaas.bot_deployed", bot_id=bot_id)
        return bot_id

    @_meetingbaas_retry
    async def get_bot(self, bot_id: str) -> BotState:
        """Fetch the bot and normalize its status and artifact URLs.

        GET /v2/bots/{bot_id}
        """
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(f"{self._base_url}/v2/bots/{bot_id}")
            self._raise_for_vendor_error(response)
            data = _unwrap(response.json())

        state = BotState(
            bot_id=data.get("bot_id") or bot_id,
            status=normalize_vendor_status(data.get("status")),
            recording_url=data.get("recording_url") or data.get("mp4") or data.get("video"),
            transcript_url=data.get("transcription") or data.get("transcript_url"),
            audio_url=data.get("audio"),
            diarization_url=data.get("diarization"),
            duration_seconds=data.get("duration_seconds"),
            participants=[p for p in data.get("participants") or [] if isinstance(p, dict)],
            speakers=[s for s in data.get("speakers") or [] if isinstance(s, dict)],
        )
        logger.debug("meetingbaas.bot_status", bot_id=bot_id, status=state.status)
        return state

    @_meetingbaas_retry
    async def delete_bot(self, bot_id: str) -> None:
        """Remove a bot from its meeting.

        DELETE /v2/bots/{bot_id}
        """
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.delete(f"{self._base_url}/v2/bots/{bot_id}")
            self._raise_for_vendor_error(response)
        logger.info("meetingbaas.bot_deleted", bot_id=bot_id)

    @_meetingbaas_retry
    async def fetch_transcript(self, transcript_url: str) -> TranscriptData:
        """Download a vendor transcript document.

        Expected shape: ``{segments, full_text, language, duration}``.
        """
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(transcript_url)
            if not response.is_success and response.status_code < 500 and response.status_code != 429:
                raise MeetingBaasError(
                    f"Failed to fetch transcript: {response.status_code}",
                    status_code=response.status_code,
                )
            response.raise_for_status()
            data = _unwrap(response.json())

        segments = [
            TranscriptSegment(
                speaker=seg.get("speaker") or "Unknown",
                text=seg.get("text") or "",
                start_time=float(seg.get("start_time") or 0),
                end_time=float(seg.get("end_time") or 0),
            )
            for seg in data.get("segments") or []
        ]
        full_text = data.get("full_text") or " ".join(s.text for s in segments)
        logger.info(
            "meetingbaas.transcript_fetched",
            segment_count=len(segments),
            characters=len(full_text),
        )
        return TranscriptData(
            full_text=full_text,
            segments=segments,
            language=data.get("language") or "en",
            duration=data.get("duration"),
        )
