"""
sailsetu/flow/features/verify_identity.py

Handles: Link Chat Account

- Asks for the SailPoint username and checks it exists
- Asks for the password and registers the chat phone/id on the identity
- Clears the cached identity on success so roles are re-resolved
"""

from enum import Enum

from sailsetu.core.logging import get_logger
from sailsetu.flow.registry import BotContext, Feature
from sailsetu.schemas.sailpoint import is_true
from utils.constants import FEATURE_VERIFY_IDENTITY

logger = get_logger(__name__)

CANCEL_WORDS = ("cancel", "exit")
VERIFICATION_PREFIX = "VERIFICATION_CHECK_"


class VerifyStep(str, Enum):
    ASK_USERNAME = "ASK_USERNAME"
    ASK_PASSWORD = "ASK_PASSWORD"


class VerifyIdentityFeature(Feature):
    id = FEATURE_VERIFY_IDENTITY
    name = "Link Chat Account"
    description = "Connect your chat account to your SailPoint identity."
    required_capability = None

    async def on_select(self, ctx: BotContext) -> None:
        ctx.session.data = {"internal_step": VerifyStep.ASK_USERNAME}
        await ctx.reply(
            "BOT: 🔐 *Identity Verification*\n\n"
            "To link this chat to SailPoint, please enter your *SailPoint username*.\n\n"
            "Type *'cancel'* to abort."
        )

    async def handler(self, ctx: BotContext, text: str) -> None:
        step = ctx.data.get("internal_step")

        if text.strip().lower() in CANCEL_WORDS:
            await ctx.reply("BOT: ❌ Verification cancelled.")
            ctx.reset_session()
            return

        if step == VerifyStep.ASK_USERNAME:
            await self._ask_username(ctx, text)
        elif step == VerifyStep.ASK_PASSWORD:
            await self._register(ctx, text)
        else:
            await ctx.reply("BOT: ⚠️ Unknown state. Resetting.")
            ctx.reset_session()

    async def _ask_username(self, ctx: BotContext, text: str) -> None:
        username = text.strip()
        if len(username) < 2:
            await ctx.reply("BOT: ⚠️ Please enter a valid SailPoint username.")
            return

        ctx.data["pending_username"] = username
        await ctx.reply(f"BOT: ⏳ Verifying username *{username}*...")

        try:
            await ctx.launch_workflow("LookupIdentityByPhone", {"phoneNumber": VERIFICATION_PREFIX + username})
        except Exception as e:
            logger.warning(f"Username check failed for {username}: {e}")
            await ctx.reply(f"BOT: ❌ Verification failed: {getattr(e, 'message', str(e))}")
            return

        ctx.data["internal_step"] = VerifyStep.ASK_PASSWORD
        await ctx.reply(
            f"BOT: ✅ Username *{username}* found.\n\n"
            "🔒 Please enter your *SailPoint Password* to verify your identity.\n\n"
            "_(Your password is processed securely and not stored)_"
        )

    async def _register(self, ctx: BotContext, text: str) -> None:
        password = text.strip()
        username = ctx.data.get("pending_username")
        phone_number = ctx.msg.sender_phone or ctx.msg.chat_id

        await ctx.reply("BOT: ⏳ Verifying and linking account...")

        # Errors propagate: the engine reports them and resets
        result = await ctx.launch_workflow(
            "RegisterPhoneMapping",
            {"phoneNumber": phone_number, "identityName": username, "password": password},
        )

        if is_true(result.attribute("success")):
            ctx.session.forget_identity()
            logger.info(f"🔗 Linked {phone_number} to {username}")
            await ctx.reply(
                "BOT: ✅ *Success!*\n\n"
                f"This chat is now linked to *{username}*.\n"
                "Phone attribute updated in IdentityIQ.\n\n"
                "Please type *!menu* to see your available tools (refreshing roles...)."
            )
            ctx.reset_session()
            return

        message = result.attribute("message") or "Unknown result"
        logger.info(f"⚠️ Linking failed for {username}: {message}")
        await ctx.reply(f"BOT: ❌ Linking Failed: {message}")
        await ctx.reply("BOT: Please re-enter your password or type 'cancel'.")
