"""
sailsetu/flow/features/manage_access.py

Handles: Manage User Access

- Looks up an identity and its current access (GetIdentityAccess)
- Add flow: role or entitlement, entitlement attribute auto-detected via SearchEntitlement
- Remove flow: pick one of the current access items
- Nothing is provisioned until the user answers yes/y to the confirmation
"""

from enum import Enum
from typing import Any, Dict, List

from sailsetu.core.logging import get_logger
from sailsetu.flow.registry import BotContext, Feature
from sailsetu.schemas.sailpoint import AccessItem, access_items_json, is_true, parse_json_value
from utils.constants import AFFIRMATIVE_REPLIES, ANY_CAPABILITY, FEATURE_MANAGE_ACCESS
from utils.message_utils import extract_request_id, parse_index

logger = get_logger(__name__)

ROLE_TYPES = ("Assigned Role", "Role", "Bundle")


class ManageStep(str, Enum):
    SEARCH_USER = "SEARCH_USER"
    SELECT_ACTION = "SELECT_ACTION"
    ENTER_ADD_NAME = "ENTER_ADD_NAME"
    SELECT_ADD_TYPE = "SELECT_ADD_TYPE"
    ENTER_APP_NAME = "ENTER_APP_NAME"
    ENTER_ATTR_NAME = "ENTER_ATTR_NAME"
    CONFIRM_ADD = "CONFIRM_ADD"
    SELECT_REMOVE_ITEM = "SELECT_REMOVE_ITEM"
    CONFIRM_REMOVE = "CONFIRM_REMOVE"


def removal_item(item: Dict[str, Any]) -> AccessItem:
    """
    Maps a GetIdentityAccess entry to a ProvisionAccess removal.

    Roles are removed through the assignedRoles attribute with the role
    name as value; entitlements keep their own name/value.
    """
    if item.get("type") in ROLE_TYPES:
        return AccessItem(
            type="role",
            application=item.get("application") or "IIQ",
            name="assignedRoles",
            value=item.get("name"),
            op="Remove",
        )
    return AccessItem(
        type="entitlement",
        application=item.get("application") or "",
        name=item.get("name") or "",
        value=item.get("value"),
        op="Remove",
    )


class ManageAccessFeature(Feature):
    id = FEATURE_MANAGE_ACCESS
    name = "Manage User Access"
    description = "Request or Revoke access for an identity."
    required_capability = ANY_CAPABILITY

    async def on_select(self, ctx: BotContext) -> None:
        ctx.session.data = {"internal_step": ManageStep.SEARCH_USER}
        await ctx.reply(
            "BOT: 👤 *Manage Access*\n\n"
            "Please type the *exact username* of the identity (e.g. `spadmin` or `james.smith`)."
        )

    async def handler(self, ctx: BotContext, text: str) -> None:
        step = ctx.data.get("internal_step")
        text = text.strip()

        if step == ManageStep.SEARCH_USER:
            await self._search_user(ctx, text)
        elif step == ManageStep.SELECT_ACTION:
            await self._select_action(ctx, text)
        elif step == ManageStep.SELECT_REMOVE_ITEM:
            await self._select_remove_item(ctx, text)
        elif step == ManageStep.ENTER_ADD_NAME:
            ctx.data["add_name"] = text
            ctx.data["internal_step"] = ManageStep.SELECT_ADD_TYPE
            await ctx.reply("BOT: Is this a *Role* or *Entitlement*?\n1️⃣ Role\n2️⃣ Entitlement")
        elif step == ManageStep.SELECT_ADD_TYPE:
            await self._select_add_type(ctx, text)
        elif step == ManageStep.ENTER_APP_NAME:
            await self._detect_attribute(ctx, text)
        elif step == ManageStep.ENTER_ATTR_NAME:
            ctx.data["add_attr"] = text
            ctx.data["internal_step"] = ManageStep.CONFIRM_ADD
            await ctx.reply("BOT: ❓ Confirm Request:\n\n" + self._entitlement_summary(ctx) + "\n\nReply 'yes' to proceed.")
        elif step in (ManageStep.CONFIRM_ADD, ManageStep.CONFIRM_REMOVE):
            if text.lower() in AFFIRMATIVE_REPLIES:
                await self._provision(ctx)
            else:
                await ctx.reply("BOT: 🚫 Cancelled.")
                ctx.reset_session()
        else:
            await ctx.reply("BOT: ⚠️ Unknown state. Resetting.")
            ctx.reset_session()

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------

    async def _search_user(self, ctx: BotContext, username: str) -> None:
        await ctx.reply(f"BOT: 🔍 Searching for *{username}*...")

        try:
            result = await ctx.launch_workflow("GetIdentityAccess", {"identityName": username})
        except Exception as e:
            logger.warning(f"Identity search failed for {username}: {e}")
            await ctx.reply(f"BOT: ❌ Search failed: {getattr(e, 'message', str(e))}")
            return

        access_list = parse_json_value(result.attribute("accessList"), [])
        if not isinstance(access_list, list):
            access_list = []

        ctx.data["target_user"] = username
        ctx.data["access_list"] = access_list
        ctx.data["internal_step"] = ManageStep.SELECT_ACTION

        await ctx.reply(
            f"BOT: ✅ Found *{username}*\nCurrent Access Items: {len(access_list)}\n\n"
            "👇 *Select Action:*\n"
            "1️⃣ Add Access (Request Role/Entitlement)\n"
            "2️⃣ Remove Access (Revoke Existing)"
        )

    async def _select_action(self, ctx: BotContext, text: str) -> None:
        if text == "1":
            ctx.data["internal_step"] = ManageStep.ENTER_ADD_NAME
            await ctx.reply(
                "BOT: ➕ *Request Access*\n\n"
                "Please type the *exact name* of the Role or Entitlement you want to add."
            )
            return

        if text == "2":
            access_list: List[Dict[str, Any]] = ctx.data.get("access_list") or []
            if not access_list:
                await ctx.reply("BOT: ⚠️ User has no access items to remove.")
                return

            ctx.data["internal_step"] = ManageStep.SELECT_REMOVE_ITEM
            lines = ["BOT: ➖ *Revoke Access*\nReply with the *number* to remove:\n"]
            for i, item in enumerate(access_list, 1):
                lines.append(f"{i}. {item.get('type')}: *{item.get('name')}* ({item.get('value') or ''})")
            await ctx.reply("\n".join(lines))
            return

        await ctx.reply("BOT: ⚠️ Invalid selection. Reply 1 or 2.")

    async def _select_add_type(self, ctx: BotContext, text: str) -> None:
        if text == "1":
            ctx.data["add_type"] = "Role"
            ctx.data["add_app"] = "IIQ"
            ctx.data["add_attr"] = "assignedRoles"
            ctx.data["internal_step"] = ManageStep.CONFIRM_ADD
            await ctx.reply(
                "BOT: ❓ Confirm Request:\n\n"
                f"User: *{ctx.data['target_user']}*\n"
                "Action: *Add Role*\n"
                f"Name: *{ctx.data['add_name']}*\n\n"
                "Reply 'yes' to proceed."
            )
        elif text == "2":
            ctx.data["add_type"] = "Entitlement"
            ctx.data["internal_step"] = ManageStep.ENTER_APP_NAME
            await ctx.reply("BOT: 🏢 Enter the *Application Name* (e.g. Active Directory, TRAKK):")
        else:
            await ctx.reply("BOT: ⚠️ Invalid selection. Reply 1 or 2.")

    async def _detect_attribute(self, ctx: BotContext, app: str) -> None:
        ctx.data["add_app"] = app
        value = ctx.data.get("add_name")

        await ctx.reply(f"BOT: 🔍 Verifying *{value}* in *{app}*...")

        try:
            result = await ctx.launch_workflow("SearchEntitlement", {"applicationName": app, "value": value})
        except Exception as e:
            ctx.data["internal_step"] = ManageStep.ENTER_ATTR_NAME
            await ctx.reply(
                f"BOT: ⚠️ Lookup Error ({getattr(e, 'message', str(e))}).\n\n"
                "🏷️ Please enter the *Attribute Name* manually."
            )
            return

        attribute = result.attribute("attribute") if is_true(result.attribute("found")) else None
        if not attribute:
            ctx.data["internal_step"] = ManageStep.ENTER_ATTR_NAME
            await ctx.reply(
                "BOT: ⚠️ Could not auto-detect the attribute name.\n\n"
                "🏷️ Please enter the *Attribute Name* manually (e.g. `memberOf`, `group`)."
            )
            return

        display = result.attribute("displayName") or value
        ctx.data["add_attr"] = attribute
        ctx.data["internal_step"] = ManageStep.CONFIRM_ADD
        await ctx.reply(
            "BOT: ✅ *Verified!*\n"
            f"Entitlement: *{display}*\n"
            f"Attribute: *{attribute}*\n\n"
            "❓ *Confirm Request:*\n" + self._entitlement_summary(ctx) + "\n\nReply 'yes' to proceed."
        )

    def _entitlement_summary(self, ctx: BotContext) -> str:
        return (
            f"User: *{ctx.data.get('target_user')}*\n"
            "Action: *Add Entitlement*\n"
            f"App: *{ctx.data.get('add_app')}*\n"
            f"Attr: *{ctx.data.get('add_attr')}*\n"
            f"Value: *{ctx.data.get('add_name')}*"
        )

    async def _select_remove_item(self, ctx: BotContext, text: str) -> None:
        access_list = ctx.data.get("access_list") or []
        index = parse_index(text, len(access_list))
        if index is None:
            await ctx.reply("BOT: ⚠️ Invalid number.")
            return

        item = access_list[index]
        ctx.data["target_item"] = item
        ctx.data["internal_step"] = ManageStep.CONFIRM_REMOVE
        await ctx.reply(
            "BOT: ❓ Confirm Revocation:\n\n"
            f"User: *{ctx.data['target_user']}*\n"
            f"Item: *{item.get('name')}*\n"
            f"Type: {item.get('type')}\n\n"
            "Reply 'yes' to proceed."
        )

    async def _provision(self, ctx: BotContext) -> None:
        user = ctx.data.get("target_user")

        if ctx.data.get("internal_step") == ManageStep.CONFIRM_REMOVE:
            access_item = removal_item(ctx.data["target_item"])
        else:
            access_item = AccessItem(
                type="role" if ctx.data.get("add_type") == "Role" else "entitlement",
                application=ctx.data.get("add_app") or "",
                name=ctx.data.get("add_attr") or "",
                value=ctx.data.get("add_name"),
                op="Add",
            )

        inputs = [
            {"key": "identityName", "value": user},
            {"key": "accessItems", "value": access_items_json([access_item])},
            # Route through manager approval so a work item is created
            {"key": "approvalScheme", "value": "manager"},
        ]

        await ctx.reply("BOT: 🚀 Submitting request...")

        try:
            result = await ctx.launch_workflow("ProvisionAccess", inputs)
            request_id = extract_request_id(result.launch_result)
            logger.info(f"✅ ProvisionAccess for {user}: {access_item.op} {access_item.value} -> {request_id}")
            await ctx.reply(f"BOT: ✅ Success! Request submitted.\nRequest ID: {request_id}")
        except Exception as e:
            logger.error(f"❌ ProvisionAccess failed for {user}: {e}")
            await ctx.reply(f"BOT: ❌ Error: {getattr(e, 'message', str(e))}")

        ctx.reset_session()
