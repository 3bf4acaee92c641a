"""
sailsetu/api/bot.py

Purpose: Dashboard control endpoints

- Push SailPoint credentials (and optionally the Telegram token) at runtime
- Log the WhatsApp session out
- Telegram polling status
"""

from fastapi import APIRouter, Request

from sailsetu.api.webhook import get_whatsapp
from sailsetu.core.exceptions import ValidationError
from sailsetu.core.logging import get_logger
from sailsetu.schemas.sailpoint import ConfigUpdateRequest

logger = get_logger(__name__)
router = APIRouter()


@router.post("/bot/config")
async def bot_config(body: ConfigUpdateRequest, request: Request):
    """
    Dashboard actions.

    - update_config: replace the SailPoint config used by both channels;
      a telegramToken starts Telegram polling if it is not running yet
    - logout: log the WhatsApp session out
    """
    state = request.app.state

    if body.action == "update_config":
        state.config_store.update(body.config)
        telegram = getattr(state, "telegram", None)
        if body.telegramToken and telegram is not None:
            telegram.configure(body.telegramToken)
        return {"success": True, "message": "Configuration updated"}

    if body.action == "logout":
        await get_whatsapp(request).logout()
        return {"success": True, "message": "Logging out..."}

    raise ValidationError(f"Invalid action: {body.action}")


@router.get("/telegram/status")
async def telegram_status(request: Request):
    telegram = getattr(request.app.state, "telegram", None)
    if telegram is None:
        return {"running": False, "hasToken": False}
    return telegram.get_status()
