"""
sailsetu/channels/telegram.py

Purpose: Telegram channel adapter (long polling)

- getUpdates loop with a fixed retry delay
- Chat-id based identity resolution with a proactive greeting
- Menu commands and numeric menu selection
- Uploaded documents exposed for the CSV leaver flow
"""

import asyncio
from typing import Any, Dict, Optional

from sailsetu.channels.base import ChannelTransport, InboundMessage
from sailsetu.core.config import settings
from sailsetu.core.logging import LogContext, exception_log_context, get_logger
from sailsetu.flow.dispatcher import DialogEngine
from sailsetu.flow.registry import FeatureRegistry
from sailsetu.flow.states import Idle, UserSession
from sailsetu.schemas.telegram import TelegramMessage, TelegramUpdate
from sailsetu.services.identity_service import IdentityService
from sailsetu.services.sailpoint_service import SailPointService, BackendConfigStore
from sailsetu.services.session_service import SessionStore
from sailsetu.services.telegram_api import TelegramAPI
from utils.constants import (
    CHANNEL_TELEGRAM,
    FEATURE_VERIFY_IDENTITY,
    IDENTITY_RECOGNIZED_TEMPLATE,
    INVALID_NUMERIC_SELECTION_MESSAGE,
    NO_FEATURES_GUIDANCE_MESSAGE,
    TELEGRAM_MENU_COMMANDS,
    TELEGRAM_MENU_LOADING_MESSAGE,
)

logger = get_logger(__name__)


class TelegramTransport(ChannelTransport):

    def __init__(self, api: TelegramAPI):
        self.api = api

    @property
    def channel_name(self) -> str:
        return CHANNEL_TELEGRAM

    async def send_text(self, chat_id: str, text: str) -> None:
        await self.api.send_message(chat_id, text)

    async def download_media(self, msg: InboundMessage) -> Optional[bytes]:
        raw = msg.raw
        if not isinstance(raw, TelegramMessage) or raw.document is None:
            return None
        return await self.api.download_file(raw.document.file_id)


class TelegramChannel:
    """
    Telegram adapter: polling loop, identity refresh, dispatch.
    """

    def __init__(
        self,
        registry: FeatureRegistry,
        gateway: SailPointService,
        config_store: BackendConfigStore,
        api: TelegramAPI,
        identity_service: Optional[IdentityService] = None,
        poll_timeout: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ):
        self.api = api
        self.config_store = config_store
        self.transport = TelegramTransport(api)
        self.sessions = SessionStore(CHANNEL_TELEGRAM, idle_step=Idle)
        self.engine = DialogEngine(
            registry,
            gateway,
            config_store,
            idle_step=Idle,
            allow_names=False,
            invalid_selection_message=INVALID_NUMERIC_SELECTION_MESSAGE,
            empty_menu_message=NO_FEATURES_GUIDANCE_MESSAGE,
        )
        self.identity = identity_service or IdentityService(gateway, default_capabilities=[])
        self.poll_timeout = poll_timeout or settings.TELEGRAM_POLL_TIMEOUT
        self.retry_delay = settings.TELEGRAM_RETRY_DELAY if retry_delay is None else retry_delay

        self.last_update_id = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "hasToken": self.api.is_configured,
            "hasConfig": self.config_store.current is not None,
            "sessions": len(self.sessions),
        }

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def configure(self, token: Optional[str]) -> None:
        """
        Sets the bot token and starts polling if it was not running.
        """
        if token:
            self.api.token = token
            logger.info("🔧 Telegram token updated")
            self.start()

    def start(self) -> None:
        if self._running or not self.api.is_configured:
            return
        self._running = True
        self._task = asyncio.create_task(self.run())
        logger.info("🚀 Telegram long polling started")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("🛑 Telegram polling stopped")

    async def run(self) -> None:
        """
        Long-poll loop. Errors are logged and retried after a fixed delay.
        """
        while self._running:
            try:
                updates = await self.api.get_updates(self.last_update_id + 1, self.poll_timeout)
                for raw in updates:
                    update = TelegramUpdate.model_validate(raw)
                    self.last_update_id = update.update_id
                    if update.message is not None:
                        await self.handle_message(update.message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                with LogContext(**exception_log_context(e)):
                    logger.error(f"❌ Telegram polling error: {e}")
                await asyncio.sleep(self.retry_delay)

    # ------------------------------------------------------------
    # Dialog
    # ------------------------------------------------------------

    async def _refresh_identity(self, session: UserSession, created: bool, chat_id: str) -> None:
        config = self.config_store.current
        if config is None:
            return
        if not created and (session.identified_user or session.in_feature(FEATURE_VERIFY_IDENTITY)):
            return

        if await self.identity.identify_session(session, chat_id, config):
            await self.transport.send_text(
                chat_id,
                IDENTITY_RECOGNIZED_TEMPLATE.format(display_name=session.display_name or session.identified_user),
            )

    async def handle_message(self, message: TelegramMessage) -> None:
        chat_id = message.chat_id
        text = (message.text or message.caption or "").strip()
        logger.info(f"📨 Telegram message from {chat_id}: {text[:50]!r}")

        msg = InboundMessage(
            channel=CHANNEL_TELEGRAM,
            chat_id=chat_id,
            text=text,
            message_id=str(message.message_id),
            sender_phone=chat_id,
            has_media=message.document is not None,
            raw=message,
        )

        with LogContext(channel=CHANNEL_TELEGRAM, user_id=chat_id):
            async with self.sessions.lock_for(chat_id):
                session, created = self.sessions.get_or_create(chat_id)
                await self._refresh_identity(session, created, chat_id)

                ctx = self.engine.build_context(msg, session, self.transport)

                if text in TELEGRAM_MENU_COMMANDS:
                    await ctx.reply(TELEGRAM_MENU_LOADING_MESSAGE)
                    await self.engine.send_main_menu(ctx)
                    return

                await self.engine.dispatch(ctx, text)
