"""
sailsetu/flow/features/system_status.py

Handles: System Status

- Single shot: reports the configured SailPoint URL or "Disconnected"
- Works without SailPoint credentials
"""

from sailsetu.flow.registry import BotContext, Feature
from utils.constants import FEATURE_SYSTEM_STATUS


class SystemStatusFeature(Feature):
    id = FEATURE_SYSTEM_STATUS
    name = "System Status"
    description = "Check connectivity status"
    required_capability = "sailsetu-master"

    async def on_select(self, ctx: BotContext) -> None:
        ctx.session.data = {}
        if ctx.config and ctx.config.url:
            await ctx.reply(f"BOT: ✅ *SailSetu Online*\nConnected to: {ctx.config.url}")
        else:
            await ctx.reply("BOT: ⚠️ *Disconnected*\nNo SailPoint configuration found.")
        ctx.reset_session()

    async def handler(self, ctx: BotContext, text: str) -> None:
        # Only reachable if a reset was skipped; show the status again
        await self.on_select(ctx)
