"""
sailsetu/flow/dispatcher.py

Purpose: Central message dispatcher shared by every channel

- Builds the BotContext for an inbound message
- Filters the feature menu by the user's capabilities
- Routes menu choices to Feature.on_select and feature turns to Feature.handler
- Guards features that need SailPoint credentials
- Converts feature errors into a chat reply plus session reset
"""

import asyncio
from typing import Awaitable, Callable, List, Optional

from sailsetu.channels.base import ChannelTransport, InboundMessage
from sailsetu.core.config import settings
from sailsetu.core.exceptions import FeatureNotFoundError, SailSetuError
from sailsetu.core.logging import get_logger, LogContext
from sailsetu.flow.registry import BotContext, Feature, FeatureRegistry
from sailsetu.flow.states import AwaitingMenuChoice, InFeature, Step, UserSession
from sailsetu.services.sailpoint_service import SailPointService, BackendConfigStore
from utils.constants import (
    ANY_CAPABILITY,
    CONFIG_FREE_FEATURES,
    CONFIG_MISSING_MESSAGE,
    ERROR_MESSAGE_TEMPLATE,
    FEATURE_NOT_FOUND_MESSAGE,
    INVALID_SELECTION_MESSAGE,
    MENU_ERROR_MESSAGE,
    MENU_POLL_QUESTION,
    MENU_TEXT_TEMPLATE,
    NO_FEATURES_MESSAGE,
    STILL_WORKING_MESSAGE,
)
from utils.message_utils import format_menu_items, parse_index

logger = get_logger(__name__)

Fallback = Callable[[BotContext, str], Awaitable[None]]


def feature_allowed(feature: Feature, capabilities: List[str], master_capability: Optional[str]) -> bool:
    """
    Decides whether a feature appears in a user's menu.

    Args:
        feature: Registered feature
        capabilities: User capability names
        master_capability: Capability that unlocks every feature

    Returns:
        True if visible
    """
    if master_capability and master_capability in capabilities:
        return True
    if not feature.required_capability or feature.required_capability == ANY_CAPABILITY:
        return True
    return feature.required_capability in capabilities


class DialogEngine:
    """
    Drives menu selection and feature dispatch for one channel.

    Channels differ only in presentation; those differences are constructor
    options so both adapters run the same routing code.
    """

    def __init__(
        self,
        registry: FeatureRegistry,
        gateway: SailPointService,
        config_store: BackendConfigStore,
        idle_step: Callable[[], Step],
        allow_names: bool = True,
        use_polls: bool = False,
        invalid_selection_message: str = INVALID_SELECTION_MESSAGE,
        empty_menu_message: str = NO_FEATURES_MESSAGE,
        menu_loading_message: Optional[str] = None,
        master_capability: Optional[str] = None,
        slow_notice_seconds: Optional[float] = None,
    ):
        self.registry = registry
        self.gateway = gateway
        self.config_store = config_store
        self.idle_step = idle_step
        self.allow_names = allow_names
        self.use_polls = use_polls
        self.invalid_selection_message = invalid_selection_message
        self.empty_menu_message = empty_menu_message
        self.menu_loading_message = menu_loading_message
        self.master_capability = master_capability if master_capability is not None else settings.MASTER_CAPABILITY
        self.slow_notice_seconds = (
            slow_notice_seconds if slow_notice_seconds is not None else settings.SLOW_REPLY_NOTICE_SECONDS
        )

    # ------------------------------------------------------------
    # Context & menu
    # ------------------------------------------------------------

    def build_context(self, msg: InboundMessage, session: UserSession, transport: ChannelTransport) -> BotContext:
        return BotContext(
            channel=msg.channel,
            msg=msg,
            session=session,
            config=self.config_store.current,
            transport=transport,
            gateway=self.gateway,
            idle_step=self.idle_step,
        )

    def filter_features(self, session: UserSession) -> List[Feature]:
        capabilities = session.capabilities or []
        return [f for f in self.registry.get_all() if feature_allowed(f, capabilities, self.master_capability)]

    async def send_main_menu(self, ctx: BotContext, force_text: bool = False) -> None:
        """
        Shows the capability-filtered menu and waits for a choice.

        A poll is tried first when the channel supports it; the numbered text
        menu is the fallback.

        Args:
            ctx: Bot context
            force_text: Skip the poll attempt
        """
        features = self.filter_features(ctx.session)
        logger.info(
            f"📋 Menu for {ctx.msg.chat_id}: {len(features)} feature(s) (caps: {ctx.session.capabilities})"
        )

        if not features:
            await ctx.reply(self.empty_menu_message)
            return

        if self.menu_loading_message:
            await ctx.reply(self.menu_loading_message)

        ctx.session.step = AwaitingMenuChoice(tuple(f.id for f in features))
        names = [f.name for f in features]

        if self.use_polls and not force_text:
            try:
                if await ctx.send_poll(MENU_POLL_QUESTION, names):
                    logger.info("📋 Main menu sent (poll)")
                    return
            except Exception as e:
                logger.warning(f"⚠️ Poll menu failed, falling back to text: {e}")

        try:
            await ctx.reply(MENU_TEXT_TEMPLATE.format(items=format_menu_items(names)))
        except Exception as e:
            logger.error(f"❌ Failed to send text menu: {e}")
            await ctx.reply(MENU_ERROR_MESSAGE)

    def _menu_features(self, session: UserSession) -> List[Feature]:
        step = session.step
        if isinstance(step, AwaitingMenuChoice) and step.feature_ids:
            # Snapshot of what the user saw; features unregistered since then are skipped
            features = [self.registry.get(fid) for fid in step.feature_ids]
            return [f for f in features if f is not None]
        return self.filter_features(session)

    async def select_from_menu(self, ctx: BotContext, text: str) -> None:
        """
        Resolves a menu reply and enters the chosen feature.

        Args:
            ctx: Bot context
            text: Reply (feature name/id when names are allowed, else a 1-based number)
        """
        features = self._menu_features(ctx.session)

        feature = None
        if self.allow_names:
            feature = next((f for f in features if f.name == text or f.id == text), None)

        if feature is None:
            index = parse_index(text, len(features))
            if index is not None:
                feature = features[index]

        if feature is None:
            logger.info(f"⚠️ Invalid menu selection: {text!r}")
            await ctx.reply(self.invalid_selection_message)
            return

        if not self._config_allows(ctx, feature):
            await ctx.reply(CONFIG_MISSING_MESSAGE)
            ctx.reset_session()
            return

        logger.info(f"➡️ Selected feature: {feature.name} ({feature.id})")
        ctx.session.step = InFeature(feature.id)
        await feature.on_select(ctx)

    def _config_allows(self, ctx: BotContext, feature: Feature) -> bool:
        if ctx.config is None and feature.id not in CONFIG_FREE_FEATURES:
            logger.warning(f"🚫 Blocking {feature.id}: no SailPoint configuration")
            return False
        return True

    # ------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------

    async def route(self, ctx: BotContext, text: str, fallback: Optional[Fallback] = None) -> None:
        """
        Routes one message according to the session step. Errors propagate.
        """
        step = ctx.session.step

        if isinstance(step, AwaitingMenuChoice):
            await self.select_from_menu(ctx, text)
            return

        if isinstance(step, InFeature):
            try:
                feature = self.registry.require(step.feature_id)
            except FeatureNotFoundError as e:
                logger.error(f"❌ Active feature lost: {e.message}")
                await ctx.reply(FEATURE_NOT_FOUND_MESSAGE)
                ctx.reset_session()
                return

            if not self._config_allows(ctx, feature):
                await ctx.reply(CONFIG_MISSING_MESSAGE)
                ctx.reset_session()
                return

            await feature.handler(ctx, text)
            return

        if fallback is not None:
            await fallback(ctx, text)
        else:
            logger.debug(f"No handler for text at step {step}")

    async def dispatch(self, ctx: BotContext, text: str, fallback: Optional[Fallback] = None) -> None:
        """
        Routes a message and reports any failure to the user.

        Errors are logged, answered with "BOT: ❌ Error: ..." and the session
        is reset to the channel's idle step. When a turn runs longer than the
        slow-reply threshold a single "still working" notice is sent.

        Args:
            ctx: Bot context
            text: Message text
            fallback: Called for steps that are neither a menu nor a feature
        """
        with LogContext(channel=ctx.channel, user_id=ctx.msg.chat_id, step=str(ctx.session.step)):
            try:
                await self._run_with_notice(ctx, self.route(ctx, text, fallback))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                message = e.message if isinstance(e, SailSetuError) else str(e)
                logger.error(f"❌ Dispatch error at step {ctx.session.step}: {message}", exc_info=True)
                try:
                    await ctx.reply(ERROR_MESSAGE_TEMPLATE.format(error=message))
                except Exception as reply_error:
                    logger.error(f"❌ Could not report error to {ctx.msg.chat_id}: {reply_error}")
                ctx.reset_session()

    async def _run_with_notice(self, ctx: BotContext, turn: Awaitable[None]) -> None:
        task = asyncio.ensure_future(turn)

        if not self.slow_notice_seconds or self.slow_notice_seconds <= 0:
            await task
            return

        try:
            done, _ = await asyncio.wait({task}, timeout=self.slow_notice_seconds)
            if not done:
                logger.info(f"⏳ Turn for {ctx.msg.chat_id} still running after {self.slow_notice_seconds}s")
                try:
                    await ctx.reply(STILL_WORKING_MESSAGE)
                except Exception as e:
                    logger.warning(f"Could not send still-working notice: {e}")
            await task
        except asyncio.CancelledError:
            task.cancel()
            raise
