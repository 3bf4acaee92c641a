"""
sailsetu/api/webhook.py

Purpose: WhatsApp bridge webhook and connection status

- Receives whatsapp-web.js events forwarded by the bridge
- Authenticates the bridge with a shared token
- Exposes connection status / QR as JSON and as a server-sent event stream
"""

import asyncio
import json
from fastapi import APIRouter, Header, Request
from fastapi.responses import StreamingResponse
from typing import Optional

from sailsetu.channels.whatsapp import WhatsAppChannel
from sailsetu.core.config import settings
from sailsetu.core.exceptions import AuthenticationError, SailSetuError
from sailsetu.core.logging import get_logger
from sailsetu.schemas.whatsapp import BridgeEvent
from sailsetu.services.whatsapp_bridge import BRIDGE_TOKEN_HEADER

logger = get_logger(__name__)
router = APIRouter()

STREAM_KEEPALIVE_SECONDS = 15.0


def get_whatsapp(request: Request) -> WhatsAppChannel:
    channel = getattr(request.app.state, "whatsapp", None)
    if channel is None:
        raise SailSetuError("WhatsApp channel is disabled", code="CHANNEL_DISABLED", status_code=503)
    return channel


def verify_bridge_token(token: Optional[str]) -> None:
    expected = settings.WHATSAPP_BRIDGE_TOKEN
    if expected and token != expected:
        logger.warning("🚫 Rejected bridge event with invalid token")
        raise AuthenticationError("Invalid bridge token")


@router.post("/whatsapp/events")
async def whatsapp_event(
    event: BridgeEvent,
    request: Request,
    bridge_token: Optional[str] = Header(None, alias=BRIDGE_TOKEN_HEADER),
):
    """
    Bridge -> gateway event intake.

    The event is fully processed before responding so one chat's messages
    are handled in the order the bridge delivers them.
    """
    verify_bridge_token(bridge_token)
    channel = get_whatsapp(request)

    logger.debug(f"📥 Bridge event: {event.event}")
    await channel.handle_event(event)
    return {"status": "ok"}


@router.get("/whatsapp/status")
async def whatsapp_status(request: Request):
    """Current connection status, QR payload and whether SailPoint is configured."""
    return get_whatsapp(request).get_status()


@router.get("/whatsapp/stream")
async def whatsapp_stream(request: Request):
    """
    Server-sent events: the current status first, then every change.
    """
    channel = get_whatsapp(request)
    queue = channel.subscribe()

    async def event_source():
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    status = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {json.dumps(status)}\n\n"
        finally:
            channel.unsubscribe(queue)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
