"""
sailsetu/flow/features/access_review.py

Handles: Access Reviews

- Lists pending certifications for the identified reviewer (GetPendingReviews)
- Lists the items of the chosen certification (GetReviewItems)
- Approve / revoke single items or sign off the whole certification (MakeReviewDecision)
- Polls are used for short lists, numbered text otherwise
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from sailsetu.core.logging import get_logger
from sailsetu.flow.registry import BotContext, Feature
from sailsetu.flow.states import AwaitingMenuChoice
from utils.constants import CAPABILITY_REVIEWER, FEATURE_ACCESS_REVIEW, POLL_LABEL_LENGTH, POLL_MAX_OPTIONS
from utils.message_utils import parse_index

logger = get_logger(__name__)

SIGN_OFF_OPTION = "✍️ Sign Off Certification"
SIGN_OFF_INPUTS = ("SIGNOFF", "Sign Off Certification", SIGN_OFF_OPTION)
DECISION_OPTIONS = ["Approve", "Revoke", "Cancel"]


class ReviewStep(str, Enum):
    SELECT_REVIEW = "SELECT_REVIEW"
    SELECT_ITEM = "SELECT_ITEM"
    DECIDE_ACTION = "DECIDE_ACTION"


def decision_icon(item: Dict[str, Any]) -> str:
    decision = item.get("decision")
    if decision == "Approved":
        return "✅"
    if decision == "Remediated":
        return "❌"
    return "⏳"


def review_label(review: Dict[str, Any]) -> str:
    return str(review.get("target") or review.get("name") or "")


class AccessReviewFeature(Feature):
    id = FEATURE_ACCESS_REVIEW
    name = "Access Reviews"
    description = "View and act on pending access certifications."
    required_capability = CAPABILITY_REVIEWER

    async def on_select(self, ctx: BotContext) -> None:
        ctx.session.data = {}
        await self._list_pending_reviews(ctx)

    async def handler(self, ctx: BotContext, text: str) -> None:
        step = ctx.data.get("internal_step")
        text = text.strip()

        if step == ReviewStep.SELECT_REVIEW:
            await self._select_review(ctx, text)
        elif step == ReviewStep.SELECT_ITEM:
            if text.lower() == "done":
                await ctx.reply("BOT: ✅ Exiting review mode.")
                ctx.reset_session()
                return
            await self._select_item(ctx, text)
        elif step == ReviewStep.DECIDE_ACTION:
            await self._decide(ctx, text)
        else:
            await ctx.reply("BOT: ⚠️ Unknown state. Resetting.")
            ctx.reset_session()

    # ------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------

    async def _list_pending_reviews(self, ctx: BotContext) -> None:
        reviewer = ctx.session.identified_user
        if not reviewer:
            await ctx.reply("BOT: ⚠️ Error: User identity not found. Please re-verify.")
            ctx.reset_session()
            return

        await ctx.reply(f"BOT: ⏳ Fetching reviews for *{reviewer}*...")

        result = await ctx.launch_workflow("GetPendingReviews", {"reviewerName": reviewer})
        reviews = result.json_attribute("reviews", [])
        if not isinstance(reviews, list) or not reviews:
            await ctx.reply("BOT: No pending reviews found.")
            ctx.reset_session()
            return

        ctx.data["reviews"] = reviews
        ctx.data["internal_step"] = ReviewStep.SELECT_REVIEW

        if len(reviews) <= POLL_MAX_OPTIONS:
            # Index prefix lets the handler parse the poll answer like a typed number
            options = [f"{i}. {review_label(r)[:POLL_LABEL_LENGTH]}" for i, r in enumerate(reviews, 1)]
            if await ctx.send_poll("📋 *Pending Reviews*\nSelect a review to process:", options):
                return

        lines = ["BOT: 📋 *Pending Reviews*\nReply with # to select:\n"]
        for i, review in enumerate(reviews, 1):
            lines.append(f"{i}. *{review_label(review)}* ({review.get('created', '')})")
        await ctx.reply("\n".join(lines))

    async def _select_review(self, ctx: BotContext, text: str) -> None:
        reviews: List[Dict[str, Any]] = ctx.data.get("reviews") or []
        selection = ctx.msg.selected_row_id or text

        review = next((r for r in reviews if r.get("id") == selection), None)
        if review is None and text:
            review = next((r for r in reviews if review_label(r).startswith(text)), None)
        if review is None:
            index = parse_index(text, len(reviews))
            if index is not None:
                review = reviews[index]

        if review is None:
            await ctx.reply("BOT: ⚠️ Invalid selection.")
            return

        ctx.data["selected_review_id"] = review.get("id")
        ctx.data["selected_review_name"] = review_label(review)
        await self._list_review_items(ctx)

    # ------------------------------------------------------------
    # Items
    # ------------------------------------------------------------

    async def _list_review_items(self, ctx: BotContext) -> None:
        await ctx.reply("BOT: ⏳ Loading items...")

        result = await ctx.launch_workflow("GetReviewItems", {"workItemId": ctx.data.get("selected_review_id")})
        items = result.json_attribute("items", [])
        if not isinstance(items, list):
            items = []

        ctx.data["items"] = items
        ctx.data["internal_step"] = ReviewStep.SELECT_ITEM
        review_name = ctx.data.get("selected_review_name")

        if len(items) <= POLL_MAX_OPTIONS:
            options = []
            for i, item in enumerate(items, 1):
                label = f"{decision_icon(item)} {item.get('attribute')}: {item.get('value')}"
                options.append(f"{i}. {label[:POLL_LABEL_LENGTH]}")
            options.append(SIGN_OFF_OPTION)
            question = f"📝 *Review: {review_name}*\nSelect an item to decide, or Sign Off:"
            if await ctx.send_poll(question, options):
                return

        open_items = [i for i in items if i.get("decision") not in ("Approved", "Remediated")]
        lines = [
            f"BOT: 📝 *Review: {review_name}*",
            f"Total Items: {len(items)} (Open: {len(open_items)})",
            "",
        ]
        for i, item in enumerate(items, 1):
            lines.append(
                f"{i}. {decision_icon(item)} *{item.get('attribute')}*: {item.get('value')} ({item.get('identity')})"
            )
        lines.append("")
        lines.append("Reply with *Item #* to decide.\nReply *'S'* to Sign Off.\nReply *'done'* to exit.")
        await ctx.reply("\n".join(lines))

    async def _select_item(self, ctx: BotContext, text: str) -> None:
        selection = ctx.msg.selected_row_id or text

        if selection in SIGN_OFF_INPUTS or selection.upper() == "S":
            await self._sign_off(ctx)
            return

        items = ctx.data.get("items") or []
        index = parse_index(selection, len(items))
        if index is None:
            await ctx.reply("BOT: ⚠️ Invalid item number.")
            return

        item = items[index]
        ctx.data["selected_item"] = item
        ctx.data["internal_step"] = ReviewStep.DECIDE_ACTION

        question = f"🤔 Decision for: *{item.get('attribute')}: {item.get('value')}*\nIdentity: {item.get('identity')}"
        if await ctx.send_poll(question, DECISION_OPTIONS):
            return

        await ctx.reply(
            f"BOT: 🤔 Decide for *{item.get('attribute')}: {item.get('value')}*\n"
            f"Identity: {item.get('identity')}\n\n"
            "Reply:\n"
            "*A* - Approve\n"
            "*R* - Revoke\n"
            "*C* - Cancel"
        )

    async def _sign_off(self, ctx: BotContext) -> None:
        await ctx.reply("BOT: ✍️ Signing Off Certification...")
        try:
            await ctx.launch_workflow(
                "MakeReviewDecision",
                {"workItemId": ctx.data.get("selected_review_id"), "signOff": "true"},
            )
        except Exception as e:
            logger.error(f"❌ Sign off failed: {e}")
            await ctx.reply(f"BOT: ❌ Error during Sign Off: {getattr(e, 'message', str(e))}")
            return

        logger.info(f"✍️ Signed off certification {ctx.data.get('selected_review_id')}")
        await ctx.reply("BOT: ✅ Certification Signed Off Successfully!")
        ctx.session.reset(AwaitingMenuChoice())

    # ------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------

    @staticmethod
    def _parse_decision(selection: str) -> Optional[str]:
        value = selection.strip().upper()
        if value in ("A", "APPROVE"):
            return "Approved"
        if value in ("R", "REVOKE"):
            return "Revoked"
        if value in ("C", "CANCEL"):
            return "Cancel"
        return None

    async def _decide(self, ctx: BotContext, text: str) -> None:
        decision = self._parse_decision(ctx.msg.selected_button_id or text)

        if decision == "Cancel":
            await ctx.reply("BOT: Cancelled.")
            await self._list_review_items(ctx)
            return

        if decision is None:
            await ctx.reply("BOT: ⚠️ Please reply A or R.")
            return

        item = ctx.data.get("selected_item") or {}
        payload = [{"itemId": item.get("id"), "decision": decision}]

        await ctx.reply("BOT: 💾 Saving decision...")
        try:
            await ctx.launch_workflow(
                "MakeReviewDecision",
                {"workItemId": ctx.data.get("selected_review_id"), "items": json.dumps(payload)},
            )
            await ctx.reply(f"BOT: ✅ Item {decision}!")
        except Exception as e:
            logger.error(f"❌ Review decision failed: {e}")
            await ctx.reply(f"BOT: ❌ Error: {getattr(e, 'message', str(e))}")

        await self._list_review_items(ctx)
