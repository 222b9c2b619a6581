"""Tests for MeetingBaasClient request building and response normalization."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.meetbot.meetings.bot.meetingbaas_client import (
    DeployBotRequest,
    MeetingBaasClient,
    MeetingBaasError,
)


_REAL_ASYNC_CLIENT = httpx.AsyncClient


def _response(status: int, json_data=None, method: str = "GET") -> httpx.Response:
    return httpx.Response(
        status,
        json=json_data,
        request=httpx.Request(method, "https://api.meetingbaas.com"),
    )


def _mock_http(handler):
    """Patch httpx.AsyncClient so every instance uses a MockTransport."""

    def factory(*args, **kwargs):
        return _REAL_ASYNC_CLIENT(*args, transport=httpx.MockTransport(handler), **kwargs)

    return patch("httpx.AsyncClient", side_effect=factory)


@pytest.fixture
def client() -> MeetingBaasClient:
    return MeetingBaasClient(api_key="mb-test-key")


def test_requires_api_key():
    with pytest.raises(MeetingBaasError):
        MeetingBaasClient(api_key="")


# ── deploy_bot ───────────────────────────────────────────────────────────────


class TestDeployBot:
    @pytest.mark.asyncio
    async def test_returns_bot_id_from_envelope(self, client):
        request = DeployBotRequest(
            meeting_url="https://meet.google.com/abc-defg-hij",
            bot_name="Notetaker",
            webhook_url="https://app.example.com/api/v1/webhooks/meetingbaas",
        )
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_response(200, {"success": True, "data": {"bot_id": "bot-123"}}, "POST"),
        ) as mock_post:
            bot_id = await client.deploy_bot(request)

        assert bot_id == "bot-123"
        url = mock_post.call_args.args[0]
        body = mock_post.call_args.kwargs["json"]
        assert url == "https://api.meetingbaas.com/v2/bots"
        assert body["bot_name"] == "Notetaker"
        assert body["recording_mode"] == "speaker_view"
        assert "bot_image" not in body

    @pytest.mark.asyncio
    async def test_accepts_bare_payload(self, client):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_response(200, {"bot_id": "bot-bare"}, "POST"),
        ):
            bot_id = await client.deploy_bot(
                DeployBotRequest(meeting_url="https://zoom.us/j/1", bot_name="Bot")
            )
        assert bot_id == "bot-bare"

    @pytest.mark.asyncio
    async def test_success_false_raises(self, client):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_response(200, {"success": False, "error": "Meeting URL invalid"}, "POST"),
        ):
            with pytest.raises(MeetingBaasError, match="Meeting URL invalid"):
                await client.deploy_bot(
                    DeployBotRequest(meeting_url="https://zoom.us/j/1", bot_name="Bot")
                )

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, client):
        with patch(
            "httpx.AsyncClient.post",
            new_callable=AsyncMock,
            return_value=_response(400, {"error": "bad meeting url", "code": "INVALID_URL"}, "POST"),
        ) as mock_post:
            with pytest.raises(MeetingBaasError) as exc_info:
                await client.deploy_bot(
                    DeployBotRequest(meeting_url="nope", bot_name="Bot")
                )

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "INVALID_URL"
        assert mock_post.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_not_retried(self, client):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, json={"error": "upstream unavailable"})

        with _mock_http(handler):
            with pytest.raises(MeetingBaasError) as exc_info:
                await client.deploy_bot(
                    DeployBotRequest(meeting_url="https://zoom.us/j/1", bot_name="Bot")
                )

        assert len(calls) == 1
        assert calls[0].method == "POST"
        assert exc_info.value.status_code == 503
        assert exc_info.value.message == "upstream unavailable"


# ── get_bot ──────────────────────────────────────────────────────────────────


class TestGetBot:
    @pytest.mark.asyncio
    async def test_normalizes_status_and_artifacts(self, client):
        payload = {
            "success": True,
            "data": {
                "bot_id": "bot-1",
                "status": {"code": "In Call"},
                "mp4": "https://cdn.example.com/rec.mp4",
                "transcription": "https://cdn.example.com/t.json",
                "audio": "https://cdn.example.com/a.mp3",
                "diarization": "https://cdn.example.com/d.jsonl",
                "duration_seconds": 1800,
                "participants": [{"name": "Alice"}, "garbage"],
                "speakers": [{"name": "Bob"}],
            },
        }
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(200, payload),
        ):
            state = await client.get_bot("bot-1")

        assert state.status == "in_call"
        assert state.recording_url == "https://cdn.example.com/rec.mp4"
        assert state.transcript_url == "https://cdn.example.com/t.json"
        assert state.duration_seconds == 1800
        assert state.participants == [{"name": "Alice"}]
        artifacts = state.artifacts()
        assert artifacts.has_source() is True
        assert artifacts.duration == 1800

    @pytest.mark.asyncio
    async def test_not_found_raises(self, client):
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(404, {"message": "Bot not found"}),
        ):
            with pytest.raises(MeetingBaasError, match="Bot not found"):
                await client.get_bot("missing")


# ── fetch_transcript ─────────────────────────────────────────────────────────


class TestFetchTranscript:
    @pytest.mark.asyncio
    async def test_builds_full_text_from_segments(self, client):
        payload = {
            "segments": [
                {"speaker": "Alice", "text": "Hello there.", "start_time": 0, "end_time": 1.5},
                {"speaker": None, "text": "Hi.", "start_time": 1.5, "end_time": 2},
            ],
            "language": "en",
        }
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(200, payload),
        ):
            transcript = await client.fetch_transcript("https://cdn.example.com/t.json")

        assert transcript.full_text == "Hello there. Hi."
        assert transcript.segments[1].speaker == "Unknown"
        assert transcript.segments[0].end_time == 1.5

    @pytest.mark.asyncio
    async def test_expired_url_raises(self, client):
        with patch(
            "httpx.AsyncClient.get",
            new_callable=AsyncMock,
            return_value=_response(403, {"error": "expired"}),
        ):
            with pytest.raises(MeetingBaasError) as exc_info:
                await client.fetch_transcript("https://cdn.example.com/t.json")
        assert exc_info.value.status_code == 403
