"""Transcript acquisition strategies for finished meetings.

Three sources can yield a transcript: the recorded audio (speech-to-text,
no speaker labels), the vendor's diarization JSONL (speaker labels) and
the vendor's own transcript document. ``transcribe_with_diarization``
merges audio and diarization so the result keeps both the fuller text
and the speaker attribution.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.meetbot.meetings.bot.meetingbaas_client import MeetingBaasClient
from src.meetbot.meetings.exceptions import AudioTooLargeError, TranscriptionError
from src.meetbot.meetings.schemas import TranscriptData, TranscriptSegment
from src.meetbot.services.llm import LLMService

logger = structlog.get_logger(__name__)

MAX_AUDIO_BYTES = 25 * 1024 * 1024
DOWNLOAD_TIMEOUT = 120.0

_AUDIO_EXTENSIONS = (".flac", ".wav", ".m4a", ".mp4", ".webm")

_download_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


def _audio_filename(url: str) -> str:
    lowered = url.lower()
    for extension in _AUDIO_EXTENSIONS:
        if extension in lowered:
            return f"audio{extension}"
    return "audio.mp3"


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def _first_present(entry: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = entry.get(key)
        if value is not None:
            return value
    return None


def parse_diarization_text(text: str) -> TranscriptData:
    """Parse vendor diarization JSONL, skipping lines that don't parse.

    Field names vary between vendor versions, so each field accepts
    several aliases.
    """
    segments: list[TranscriptSegment] = []
    max_end = 0.0
    skipped = 0

    for line in text.strip().splitlines():
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(entry, dict):
            skipped += 1
            continue

        entry_text = str(
            entry.get("text") or entry.get("transcript") or entry.get("content") or entry.get("message") or ""
        ).strip()
        if not entry_text:
            continue

        speaker = (
            entry.get("speaker") or entry.get("speaker_name") or entry.get("user") or entry.get("name") or "Unknown"
        )
        start = float(_first_present(entry, "start_time", "start", "timestamp") or 0)
        end_value = _first_present(entry, "end_time", "end")
        end = float(end_value) if end_value is not None else start + 1

        segments.append(
            TranscriptSegment(speaker=str(speaker), text=entry_text, start_time=start, end_time=end)
        )
        max_end = max(max_end, end)

    if skipped:
        logger.warning("transcription.diarization_lines_skipped", skipped=skipped)

    return TranscriptData(
        full_text=" ".join(s.text for s in segments),
        segments=segments,
        language="en",
        duration=max_end,
    )


def merge_transcripts(stt: TranscriptData, diarization: TranscriptData) -> TranscriptData:
    """Combine speech-to-text and diarization results.

    The longer text wins, diarization segments win when present (they
    carry speaker names), language comes from speech-to-text and the
    duration is the larger of the two.
    """
    full_text = stt.full_text if len(stt.full_text) > len(diarization.full_text) else diarization.full_text
    return TranscriptData(
        full_text=full_text,
        segments=diarization.segments or stt.segments,
        language=stt.language or diarization.language,
        duration=max(stt.duration or 0.0, diarization.duration or 0.0),
    )


class TranscriptionService:
    """Turns meeting artifacts into a TranscriptData.

    Args:
        llm_service: Provides speech-to-text.
        vendor_client: Fetches vendor transcript documents.
    """

    def __init__(self, llm_service: LLMService, vendor_client: MeetingBaasClient) -> None:
        self._llm = llm_service
        self._vendor = vendor_client

    @_download_retry
    async def _download_audio(self, url: str) -> bytes:
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                declared = int(response.headers.get("content-length") or 0)
                if declared > MAX_AUDIO_BYTES:
                    raise AudioTooLargeError(declared, MAX_AUDIO_BYTES)

                chunks: list[bytes] = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > MAX_AUDIO_BYTES:
                        raise AudioTooLargeError(size, MAX_AUDIO_BYTES)
                    chunks.append(chunk)
        return b"".join(chunks)

    async def transcribe_audio(self, audio_url: str) -> TranscriptData:
        """Download meeting audio and run speech-to-text.

        Raises:
            AudioTooLargeError: Audio exceeds the 25MB transcription limit.
            TranscriptionError: The STT call failed.
        """
        audio = await self._download_audio(audio_url)
        logger.info("transcription.audio_downloaded", size_bytes=len(audio))

        try:
            response = await self._llm.transcribe(audio, filename=_audio_filename(audio_url))
        except Exception as exc:
            raise TranscriptionError(f"Speech-to-text failed: {exc}") from exc

        segments = [
            TranscriptSegment(
                speaker="Speaker",
                text=str(_field(seg, "text") or "").strip(),
                start_time=float(_field(seg, "start") or 0),
                end_time=float(_field(seg, "end") or 0),
            )
            for seg in response.get("segments") or []
        ]
        return TranscriptData(
            full_text=response.get("text") or "",
            segments=segments,
            language=response.get("language") or "en",
            duration=float(response.get("duration") or 0),
        )

    @_download_retry
    async def parse_diarization(self, diarization_url: str) -> TranscriptData:
        """Fetch and parse a diarization JSONL document."""
        async with httpx.AsyncClient(timeout=MeetingBaasClient.TIMEOUT_READ * 3) as client:
            response = await client.get(diarization_url)
            response.raise_for_status()
        result = parse_diarization_text(response.text)
        logger.info(
            "transcription.diarization_parsed",
            segment_count=len(result.segments),
            characters=len(result.full_text),
        )
        return result

    async def transcribe_with_diarization(
        self, audio_url: str, diarization_url: str | None
    ) -> TranscriptData:
        """Speech-to-text, enriched with diarization when it can be fetched."""
        stt = await self.transcribe_audio(audio_url)
        if not diarization_url:
            return stt
        try:
            diarization = await self.parse_diarization(diarization_url)
        except (httpx.HTTPError, ValueError):
            logger.warning("transcription.diarization_unavailable", exc_info=True)
            return stt
        return merge_transcripts(stt, diarization)

    async def fetch_vendor_transcript(self, transcript_url: str) -> TranscriptData:
        return await self._vendor.fetch_transcript(transcript_url)
