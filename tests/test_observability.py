"""Tests for metrics, request logging and health endpoints."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from src.meetbot.api.middleware import LoggingMiddleware
from src.meetbot.api.v1.router import router as v1_router
from src.meetbot.core.monitoring import (
    MetricsMiddleware,
    bot_deployments_total,
    get_metrics_response,
    status_transitions_total,
    track_llm_call,
)


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


@pytest.fixture
def app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.include_router(v1_router, prefix="/api/v1")
    return app


# ── Engine Counters ──────────────────────────────────────────────────────────


class TestEngineCounters:
    def test_deployment_counter_increments(self):
        before = _sample("meetbot_bot_deployments_total", {"outcome": "succeeded"})
        bot_deployments_total.labels(outcome="succeeded").inc()
        assert _sample("meetbot_bot_deployments_total", {"outcome": "succeeded"}) == before + 1

    def test_transition_counter_labels(self):
        labels = {"source": "webhook", "status": "processing"}
        before = _sample("meetbot_status_transitions_total", labels)
        status_transitions_total.labels(**labels).inc()
        assert _sample("meetbot_status_transitions_total", labels) == before + 1

    def test_metrics_exposition(self):
        response = get_metrics_response()
        assert b"meetbot_status_transitions_total" in response.body


# ── LLM Call Tracking ────────────────────────────────────────────────────────


class TestTrackLLMCall:
    @pytest.mark.asyncio
    async def test_success_recorded(self):
        labels = {"model": "test-model", "operation": "meeting_insights", "status": "success"}
        before = _sample("llm_requests_total", labels)

        async with track_llm_call("test-model", "meeting_insights"):
            pass

        assert _sample("llm_requests_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_error_recorded_and_reraised(self):
        labels = {"model": "test-model", "operation": "transcription", "status": "error"}
        before = _sample("llm_requests_total", labels)

        with pytest.raises(RuntimeError):
            async with track_llm_call("test-model", "transcription"):
                raise RuntimeError("provider down")

        assert _sample("llm_requests_total", labels) == before + 1


# ── Middleware & Health ──────────────────────────────────────────────────────


class TestRequestPipeline:
    @pytest.mark.asyncio
    async def test_request_id_echoed_and_http_metrics_recorded(self, app):
        labels = {"method": "GET", "endpoint": "/api/v1/health", "status_code": "200"}
        before = _sample("http_requests_total", labels)

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            resp = await ac.get("/api/v1/health", headers={"X-Request-ID": "req-123"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.headers["X-Request-ID"] == "req-123"
        assert _sample("http_requests_total", labels) == before + 1

    @pytest.mark.asyncio
    async def test_request_id_generated_when_absent(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            resp = await ac.get("/api/v1/health")
        assert len(resp.headers["X-Request-ID"]) == 36

    @pytest.mark.asyncio
    async def test_readiness_degraded_when_dependencies_down(self, app):
        async def failing_checks():
            return {"database": "error", "redis": "ok", "meetingbaas": "no_key", "litellm": "no_keys"}

        with patch("src.meetbot.api.v1.health._check_dependencies", new=failing_checks):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
                resp = await ac.get("/api/v1/health/ready")

        assert resp.status_code == 503
        assert resp.json()["status"] == "degraded"
