"""
sailsetu/channels/whatsapp.py

Purpose: WhatsApp channel adapter (note-to-self operator bot)

- Consumes whatsapp-web.js events forwarded by the bridge
- Admission: only the bot account's own note-to-self messages are handled
- Sleep / wake / ping / menu commands
- Phone-based identity resolution
- Connection status + QR for the dashboard (with live subscriptions)
"""

import asyncio
from typing import Any, Dict, List, Optional

from sailsetu.channels.base import ChannelTransport, InboundMessage
from sailsetu.core.config import settings
from sailsetu.core.exceptions import TransportError
from sailsetu.core.logging import LogContext, get_logger
from sailsetu.flow.dispatcher import DialogEngine
from sailsetu.flow.registry import BotContext, FeatureRegistry
from sailsetu.flow.states import AwaitingMenuChoice, UserSession
from sailsetu.schemas.whatsapp import BridgeEvent, WhatsAppMessage, WhatsAppVote, phone_from_chat_id
from sailsetu.services.identity_service import IdentityService
from sailsetu.services.sailpoint_service import SailPointService, BackendConfigStore
from sailsetu.services.session_service import SessionStore
from sailsetu.services.whatsapp_bridge import WhatsAppBridgeClient
from utils.constants import (
    BOT_AUTHORED_PREFIXES,
    CAPABILITY_USER,
    CHANNEL_WHATSAPP,
    COMMAND_PREFIX,
    FEATURE_VERIFY_IDENTITY,
    MENU_COMMANDS,
    MENU_LOADING_MESSAGE,
    PING_COMMAND,
    PONG_MESSAGE,
    SESSION_PAUSED_MESSAGE,
    SLEEP_COMMANDS,
    TEXT_MENU_COMMAND,
    WAKE_MESSAGE,
    WAKE_PHRASE_CONTAINED,
    WAKE_PHRASE_EXACT,
    WHATSAPP_WELCOME_MESSAGE,
)

logger = get_logger(__name__)

STATUS_DISCONNECTED = "disconnected"
STATUS_INITIALIZING = "initializing"
STATUS_READY = "ready"


def is_wake_phrase(text: str) -> bool:
    lower = text.lower()
    return WAKE_PHRASE_CONTAINED in lower or lower == WAKE_PHRASE_EXACT


class WhatsAppTransport(ChannelTransport):
    """
    Outbound side of the WhatsApp channel, backed by the bridge.
    """

    def __init__(self, bridge: WhatsAppBridgeClient, reply_delay: float = 0.0, use_polls: bool = True):
        self.bridge = bridge
        self.reply_delay = reply_delay
        self.use_polls = use_polls

    @property
    def channel_name(self) -> str:
        return CHANNEL_WHATSAPP

    async def send_text(self, chat_id: str, text: str) -> None:
        try:
            await self.bridge.send_message(chat_id, text)
        except TransportError as e:
            logger.error(f"❌ WhatsApp send to {chat_id} failed: {e.message}")

    async def reply(self, msg: InboundMessage, text: str) -> None:
        """
        Quotes the inbound message; falls back to a plain send.
        """
        if self.reply_delay:
            # Keeps consecutive replies in order on the WhatsApp side
            await asyncio.sleep(self.reply_delay)

        if msg.message_id:
            try:
                await self.bridge.send_message(msg.chat_id, text, quoted_message_id=msg.message_id)
                return
            except TransportError as e:
                logger.warning(f"⚠️ Reply failed, falling back to send: {e.message}")

        await self.send_text(msg.chat_id, text)

    async def send_poll(self, msg: InboundMessage, question: str, options: List[str], allow_multiple: bool = False) -> bool:
        if not self.use_polls or not options:
            return False
        try:
            await self.bridge.send_poll(msg.chat_id, question, options, allow_multiple)
            return True
        except TransportError as e:
            logger.warning(f"⚠️ Poll failed, using text: {e.message}")
            return False

    async def download_media(self, msg: InboundMessage) -> Optional[bytes]:
        if not msg.has_media or not msg.message_id:
            return None
        return await self.bridge.download_media(msg.message_id)


class WhatsAppChannel:
    """
    WhatsApp adapter: event intake, admission, global commands, dispatch.
    """

    def __init__(
        self,
        registry: FeatureRegistry,
        gateway: SailPointService,
        config_store: BackendConfigStore,
        bridge: WhatsAppBridgeClient,
        identity_service: Optional[IdentityService] = None,
        reply_delay: Optional[float] = None,
        use_polls: Optional[bool] = None,
    ):
        use_polls = settings.WHATSAPP_USE_POLLS if use_polls is None else use_polls
        self.bridge = bridge
        self.config_store = config_store
        self.transport = WhatsAppTransport(
            bridge,
            reply_delay=settings.WHATSAPP_REPLY_DELAY if reply_delay is None else reply_delay,
            use_polls=use_polls,
        )
        self.sessions = SessionStore(CHANNEL_WHATSAPP, idle_step=AwaitingMenuChoice)
        self.engine = DialogEngine(
            registry,
            gateway,
            config_store,
            idle_step=AwaitingMenuChoice,
            allow_names=True,
            use_polls=use_polls,
            menu_loading_message=MENU_LOADING_MESSAGE,
        )
        self.identity = identity_service or IdentityService(gateway, default_capabilities=[CAPABILITY_USER])

        self.status = STATUS_DISCONNECTED
        self.qr_code: Optional[str] = None
        self.owner_id: Optional[str] = None
        self._listeners: List[asyncio.Queue] = []

    # ------------------------------------------------------------
    # Status
    # ------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "qrCode": self.qr_code,
            "hasConfig": self.config_store.current is not None,
        }

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=16)
        self._listeners.append(queue)
        queue.put_nowait(self.get_status())
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._listeners:
            self._listeners.remove(queue)

    def _notify(self) -> None:
        status = self.get_status()
        for queue in list(self._listeners):
            try:
                queue.put_nowait(status)
            except asyncio.QueueFull:
                logger.debug("Status listener queue full - dropping update")

    async def logout(self) -> None:
        await self.bridge.logout()
        self.status = STATUS_DISCONNECTED
        self.qr_code = None
        self._notify()

    # ------------------------------------------------------------
    # Events
    # ------------------------------------------------------------

    async def handle_event(self, event: BridgeEvent) -> None:
        """
        Applies one bridge event.

        Args:
            event: Event envelope from the bridge
        """
        data = event.data

        if event.event == "qr":
            logger.info("📱 WhatsApp QR code received")
            self.qr_code = data.get("qr")
            self.status = STATUS_INITIALIZING
            self._notify()

        elif event.event == "ready":
            logger.info("✅ WhatsApp client is ready")
            self.status = STATUS_READY
            self.qr_code = None
            self.owner_id = data.get("wid") or self.owner_id
            self._notify()
            if self.owner_id:
                await self.transport.send_text(self.owner_id, WHATSAPP_WELCOME_MESSAGE)

        elif event.event == "disconnected":
            logger.warning(f"📴 WhatsApp disconnected: {data.get('reason')}")
            self.status = STATUS_DISCONNECTED
            self._notify()

        elif event.event == "message_create":
            await self.on_message(WhatsAppMessage.model_validate(data))

        elif event.event == "vote_update":
            await self.on_vote(WhatsAppVote.model_validate(data))

    def admit(self, msg: WhatsAppMessage) -> bool:
        """
        Decides whether a message_create event reaches the dialog.

        Only note-to-self messages typed by the operator are handled; echoes
        of the bot's own replies are recognized by their prefixes.
        """
        if msg.is_status:
            return False

        # Single operator: other people's messages are never handled
        if not msg.from_me:
            return False

        if msg.to != msg.sender:
            return False

        if not self.owner_id:
            self.owner_id = msg.sender

        body = msg.text
        if body.startswith(BOT_AUTHORED_PREFIXES):
            return False

        return body.startswith(COMMAND_PREFIX) or self.sessions.has(msg.sender) or is_wake_phrase(body)

    async def on_message(self, msg: WhatsAppMessage) -> None:
        if not self.admit(msg):
            return

        logger.info(f"📨 WhatsApp message: {msg.text[:50]!r}")
        await self.process(InboundMessage(
            channel=CHANNEL_WHATSAPP,
            chat_id=msg.sender,
            text=msg.text,
            message_id=msg.id,
            sender_phone=phone_from_chat_id(msg.sender),
            has_media=msg.has_media,
            selected_row_id=msg.selected_row_id,
            selected_button_id=msg.selected_button_id,
            raw=msg,
        ))

    async def on_vote(self, vote: WhatsAppVote) -> None:
        """
        Turns a poll answer from the operator into a note-to-self message.
        """
        if not vote.selected_options:
            return

        if vote.voter != self.owner_id and vote.voter != vote.parent_message.to:
            logger.debug(f"Ignoring vote from {vote.voter}")
            return

        selected = vote.selected_options[0].name
        logger.info(f"🗳️ Poll vote as command: {selected!r}")
        await self.process(InboundMessage(
            channel=CHANNEL_WHATSAPP,
            chat_id=vote.voter,
            text=selected.strip(),
            sender_phone=phone_from_chat_id(vote.voter),
            raw=vote,
        ))

    # ------------------------------------------------------------
    # Dialog
    # ------------------------------------------------------------

    async def _refresh_identity(self, session: UserSession, created: bool, msg: InboundMessage) -> None:
        config = self.config_store.current
        if config is None:
            return
        if created or (not session.identified_user and not session.in_feature(FEATURE_VERIFY_IDENTITY)):
            await self.identity.identify_session(session, msg.sender_phone, config)

    async def _show_menu(self, ctx: BotContext, text: str) -> None:
        await self.engine.send_main_menu(ctx)

    async def process(self, msg: InboundMessage) -> None:
        """
        Runs one admitted message through global commands and the engine.

        Turns for the same chat never overlap.
        """
        with LogContext(channel=CHANNEL_WHATSAPP, user_id=msg.chat_id):
            async with self.sessions.lock_for(msg.chat_id):
                session, created = self.sessions.get_or_create(msg.chat_id)
                await self._refresh_identity(session, created, msg)

                ctx = self.engine.build_context(msg, session, self.transport)
                lower = msg.text.lower()

                if lower in SLEEP_COMMANDS:
                    session.is_active = False
                    self.sessions.reset(session)
                    logger.info(f"🛌 Session paused for {msg.chat_id}")
                    await self.transport.send_text(msg.chat_id, SESSION_PAUSED_MESSAGE)
                    return

                if is_wake_phrase(msg.text):
                    session.is_active = True
                    self.sessions.reset(session)
                    logger.info(f"👋 Session woken for {msg.chat_id}")
                    await self.transport.send_text(msg.chat_id, WAKE_MESSAGE)
                    await self.engine.send_main_menu(ctx)
                    return

                if not session.is_active:
                    return

                if lower == PING_COMMAND:
                    await self.transport.send_text(msg.chat_id, PONG_MESSAGE)
                    return

                if lower in MENU_COMMANDS:
                    self.sessions.reset(session)
                    await self.engine.send_main_menu(ctx, force_text=lower == TEXT_MENU_COMMAND)
                    return

                await self.engine.dispatch(ctx, msg.text, fallback=self._show_menu)
