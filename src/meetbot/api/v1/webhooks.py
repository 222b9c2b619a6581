"""MeetingBaas webhook receiver.

The endpoint is unauthenticated (the vendor calls it directly); deliveries
are authenticated by their SVIX signature instead. It always answers 200
so the vendor does not retry deliveries we have chosen to ignore.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/meetingbaas")
async def receive_meetingbaas_webhook(request: Request) -> dict:
    """Verify, deduplicate and apply one MeetingBaas delivery."""
    handler = getattr(request.app.state, "webhook_handler", None)
    if handler is None:
        logger.warning("webhook.handler_unavailable")
        return {"status": "ignored"}

    body = await request.body()
    try:
        return await handler.handle(body, request.headers)
    except Exception:
        logger.exception("webhook.unhandled_error")
        return {"status": "error"}


@router.get("/meetingbaas")
async def meetingbaas_webhook_health() -> dict:
    return {
        "status": "ok",
        "service": "meetingbaas-webhook",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
