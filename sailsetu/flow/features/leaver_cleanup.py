"""
sailsetu/flow/features/leaver_cleanup.py

Handles: Leaver Cleanup

- Auto scan: authoritative source + inactivity attribute (AnalyzeLeaver mode=scan)
- CSV upload: simple identity list, or a detailed instruction file verified
  against live access (AnalyzeLeaver mode=csv)
- Revoke for one identity or for all of them (ProvisionAccess)
- Direct revocation (approvalScheme=none) or work item creation
"""

import csv
import io
from enum import Enum
from typing import Any, Dict, List, Tuple

from sailsetu.core.logging import get_logger
from sailsetu.flow.registry import BotContext, Feature
from sailsetu.schemas.sailpoint import AccessItem, access_items_json
from utils.constants import (
    BATCH_DETAILS_MAX_CHARS,
    BATCH_DETAILS_MAX_ROWS,
    BATCH_PROGRESS_EVERY,
    CAPABILITY_ADMIN,
    FEATURE_LEAVER_CLEANUP,
    IDENTITY_ITEMS_PREVIEW,
    LEAVER_LIST_PREVIEW,
)
from utils.message_utils import extract_request_id, parse_index

logger = get_logger(__name__)


class LeaverStep(str, Enum):
    SELECT_MODE = "SELECT_MODE"
    UPLOAD_CSV = "UPLOAD_CSV"
    SELECT_SOURCE = "SELECT_SOURCE"
    SELECT_ATTRIBUTE = "SELECT_ATTRIBUTE"
    SELECT_USER = "SELECT_USER"
    SELECT_ACTION = "SELECT_ACTION"
    SELECT_ACTION_ALL = "SELECT_ACTION_ALL"


# ============================================================
# Helpers
# ============================================================

def map_access_items(items: List[Dict[str, Any]]) -> List[AccessItem]:
    """
    Converts leaver report items into ProvisionAccess removals.

    Entitlements keep application/attribute/value; roles and bundles go
    through assignedRoles. Other item types are skipped.
    """
    mapped = []
    for item in items or []:
        item_type = item.get("type")
        if item_type == "Entitlement":
            mapped.append(AccessItem(
                type="entitlement",
                application=item.get("application") or "",
                name=item.get("attribute") or "unknown",
                value=item.get("value"),
                op="Remove",
            ))
        elif item_type in ("Role", "Bundle"):
            mapped.append(AccessItem(
                type="role",
                name="assignedRoles",
                value=item.get("value"),
                op="Remove",
            ))
    return mapped


def read_csv_rows(content: str) -> Tuple[List[str], List[List[str]]]:
    """
    Parses CSV text into a lowercased header and the data rows.

    Blank lines are dropped; cells are trimmed.
    """
    rows = [
        [cell.strip() for cell in row]
        for row in csv.reader(io.StringIO(content))
        if any(cell.strip() for cell in row)
    ]
    if not rows:
        return [], []
    header = [cell.lower() for cell in rows[0]]
    return header, rows[1:]


def is_detailed_header(header: List[str]) -> bool:
    return "application" in header and "attributename" in header and "identityname" in header


def parse_detailed_rows(header: List[str], rows: List[List[str]]) -> Dict[str, List[Dict[str, Any]]]:
    """
    Groups instruction rows by identity, preserving file order.

    Returns:
        identity name -> proposed entitlement removals
    """
    id_col = header.index("identityname")
    app_col = header.index("application")
    attr_col = header.index("attributename")
    val_col = header.index("attributevalue") if "attributevalue" in header else None

    def cell(row: List[str], col) -> str:
        return row[col] if col is not None and col < len(row) else ""

    proposed: Dict[str, List[Dict[str, Any]]] = {}
    for row in rows:
        identity = cell(row, id_col)
        if not identity:
            continue
        proposed.setdefault(identity, []).append({
            "type": "Entitlement",
            "application": cell(row, app_col),
            "attribute": cell(row, attr_col),
            "value": cell(row, val_col),
            "op": "Remove",
        })
    return proposed


def parse_identity_list(header: List[str], rows: List[List[str]]) -> List[str]:
    """
    Reads unique identity names from a simple list, identityname column or the first column.

    The first line is always treated as a header.
    """
    id_col = header.index("identityname") if "identityname" in header else 0
    names: List[str] = []
    for row in rows:
        if id_col >= len(row):
            continue
        name = row[id_col]
        if name and name.lower() != "identityname" and name not in names:
            names.append(name)
    return names


def verify_against_live_access(
    proposed: Dict[str, List[Dict[str, Any]]],
    actual: Dict[str, List[Dict[str, Any]]]
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Keeps only the proposed removals the identity still holds.

    An item matches when the application is the same and either the
    attribute name or the value matches.

    Returns:
        (leavers with remaining items, number of items dropped)
    """
    leavers = []
    dropped = 0
    for identity, items in proposed.items():
        live = actual.get(identity, [])
        valid = []
        for item in items:
            exists = any(
                act.get("application") == item["application"]
                and (act.get("name") == item["attribute"] or act.get("value") == item["value"])
                for act in live
            )
            if exists:
                valid.append(item)
            else:
                dropped += 1
        if valid:
            leavers.append({"identityName": identity, "accessItems": valid})
    return leavers, dropped


def format_leaver_list(leavers: List[Dict[str, Any]]) -> str:
    lines = []
    for i, leaver in enumerate(leavers[:LEAVER_LIST_PREVIEW], 1):
        items = leaver.get("accessItems") or []
        apps = {item.get("application") for item in items}
        lines.append(f"{i}. *{leaver.get('identityName')}* (Apps: {len(apps)}, Items: {len(items)})")
    return "\n".join(lines)


def batch_summary(processed: int, success: int, failed: int, results: List[str]) -> str:
    summary = (
        f"BOT: ✅ *Batch Complete*\nProcessed: {processed}\nSuccess: {success}\nFailed: {failed}\n\n*Details:*\n"
    )
    details = "\n".join(results)
    if len(details) <= BATCH_DETAILS_MAX_CHARS:
        return summary + details

    shown: List[str] = []
    used = 0
    for row in results:
        if len(shown) >= BATCH_DETAILS_MAX_ROWS or used + len(row) + 1 > BATCH_DETAILS_MAX_CHARS:
            break
        shown.append(row)
        used += len(row) + 1

    return summary + "\n".join(shown) + f"\n...and {len(results) - len(shown)} more."


SELECT_USER_HINT = "👉 Reply with *number* to View Details\n👉 Reply *'all'* to revoke ALL immediately\n\n"


# ============================================================
# Feature
# ============================================================

class LeaverCleanupFeature(Feature):
    id = FEATURE_LEAVER_CLEANUP
    name = "Leaver Cleanup"
    description = "Auto Scan & Revoke access for leavers"
    required_capability = CAPABILITY_ADMIN

    async def on_select(self, ctx: BotContext) -> None:
        ctx.session.data = {"internal_step": LeaverStep.SELECT_MODE}
        await ctx.reply(
            "BOT: 🛠️ *Leaver Cleanup Mode*\n"
            "Reply with number:\n\n"
            "1️⃣ Auto Scan (Source + Attribute)\n"
            "2️⃣ CSV Upload (Manual List)"
        )

    async def handler(self, ctx: BotContext, text: str) -> None:
        step = ctx.data.get("internal_step")
        text = text.strip()

        handlers = {
            LeaverStep.SELECT_MODE: self._select_mode,
            LeaverStep.UPLOAD_CSV: self._upload_csv,
            LeaverStep.SELECT_SOURCE: self._select_source,
            LeaverStep.SELECT_ATTRIBUTE: self._select_attribute,
            LeaverStep.SELECT_USER: self._select_user,
            LeaverStep.SELECT_ACTION: self._select_action,
            LeaverStep.SELECT_ACTION_ALL: self._select_action_all,
        }
        handler = handlers.get(step)
        if handler is None:
            await ctx.reply("BOT: ⚠️ Unknown state. Resetting.")
            ctx.reset_session()
            return
        await handler(ctx, text)

    # ------------------------------------------------------------
    # Mode & sources
    # ------------------------------------------------------------

    async def _select_mode(self, ctx: BotContext, text: str) -> None:
        if text == "1":
            ctx.data["mode"] = "auto"
            ctx.data["internal_step"] = LeaverStep.SELECT_SOURCE
            await ctx.reply("BOT: ⏳ Fetching Authoritative Sources...")

            try:
                result = await ctx.launch_workflow("GetAuthoritativeApps", {})
            except Exception as e:
                await ctx.reply(f"BOT: ❌ Error: {getattr(e, 'message', str(e))}")
                ctx.reset_session()
                return

            apps = result.json_attribute("apps", [])
            auth_apps = [
                a.get("name") for a in (apps if isinstance(apps, list) else [])
                if isinstance(a, dict) and a.get("authoritative") is True
            ]
            if not auth_apps:
                await ctx.reply("BOT: ⚠️ No Authoritative Applications found.")
                ctx.reset_session()
                return

            ctx.data["auth_apps"] = auth_apps
            lines = ["BOT: 🏢 *Select Source Application*\nReply with the number:\n"]
            lines.extend(f"{i}. {app}" for i, app in enumerate(auth_apps, 1))
            await ctx.reply("\n".join(lines))

        elif text == "2":
            ctx.data["mode"] = "csv"
            ctx.data["internal_step"] = LeaverStep.UPLOAD_CSV
            await ctx.reply("BOT: 📂 *Upload CSV*\nPlease upload a CSV file containing identity names (1st column).")

        else:
            await ctx.reply("BOT: ⚠️ Invalid selection.")

    async def _select_source(self, ctx: BotContext, text: str) -> None:
        auth_apps = ctx.data.get("auth_apps") or []
        index = parse_index(text, len(auth_apps))
        if index is None:
            await ctx.reply("BOT: ⚠️ Invalid number. Please try again.")
            return

        source = auth_apps[index]
        ctx.data["selected_source"] = source
        ctx.data["internal_step"] = LeaverStep.SELECT_ATTRIBUTE
        await ctx.reply(
            f"BOT: 🏢 *Source Selected: {source}*\n\n"
            "Now, please enter the *Identity Attribute* to check for inactivity "
            "(e.g., 'inactive', 'status', 'cloudLifecycleState').\n"
            "Reply with the attribute name:"
        )

    async def _select_attribute(self, ctx: BotContext, text: str) -> None:
        if not text:
            await ctx.reply("BOT: ⚠️ Attribute cannot be empty.")
            return

        source = ctx.data.get("selected_source")
        ctx.data["inactive_attr"] = text
        await ctx.reply(f"BOT: 🔍 Scanning *{source}* for users where *{text}* is inactive...")

        try:
            result = await ctx.launch_workflow(
                "AnalyzeLeaver",
                {"mode": "scan", "source": source, "inactiveAttr": text},
            )
            leavers = result.json_attribute("report")
            if leavers is None:
                raise ValueError("No report returned.")
        except Exception as e:
            await ctx.reply(f"BOT: ❌ Scan failed: {getattr(e, 'message', str(e))}")
            ctx.reset_session()
            return

        if not leavers:
            await ctx.reply(f"BOT: ✅ No pending leavers found in {source}.")
            ctx.reset_session()
            return

        ctx.data["leavers"] = leavers
        ctx.data["internal_step"] = LeaverStep.SELECT_USER
        await ctx.reply(
            f"BOT: ⚠️ *Found {len(leavers)} Potential Leavers*\n\n" + SELECT_USER_HINT + format_leaver_list(leavers)
        )

    # ------------------------------------------------------------
    # CSV upload
    # ------------------------------------------------------------

    async def _upload_csv(self, ctx: BotContext, text: str) -> None:
        if not ctx.msg.has_media:
            await ctx.reply("BOT: ⚠️ No file detected. Please upload a CSV file.")
            return

        try:
            media = await ctx.download_media()
            if not media:
                raise ValueError("Failed to download media.")

            header, rows = read_csv_rows(media.decode("utf-8-sig", errors="replace"))
            if not header:
                await ctx.reply("BOT: ⚠️ Empty CSV file.")
                return

            if is_detailed_header(header):
                await self._load_detailed_csv(ctx, header, rows)
            else:
                await self._load_identity_list(ctx, header, rows)
        except Exception as e:
            logger.error(f"❌ CSV processing failed: {e}")
            await ctx.reply(f"BOT: ❌ CSV Process Error: {getattr(e, 'message', str(e))}")

    async def _load_detailed_csv(self, ctx: BotContext, header: List[str], rows: List[List[str]]) -> None:
        await ctx.reply("BOT: 📂 Detected Detailed Instruction File. Verifying against live access...")

        proposed = parse_detailed_rows(header, rows)
        if not proposed:
            await ctx.reply("BOT: ⚠️ No identities found in CSV.")
            return

        try:
            result = await ctx.launch_workflow(
                "AnalyzeLeaver",
                {"mode": "csv", "identityList": ",".join(proposed.keys())},
            )
            actual = {
                entry.get("identityName"): entry.get("accessItems") or []
                for entry in result.json_attribute("report", []) or []
            }
            leavers, dropped = verify_against_live_access(proposed, actual)
        except Exception as e:
            logger.warning(f"Validation scan failed: {e}")
            await ctx.reply("BOT: ⚠️ Validation scan failed. Proceeding with raw CSV data (Risk of errors).")
            leavers = [{"identityName": name, "accessItems": items} for name, items in proposed.items()]
            dropped = 0

        ctx.data["leavers"] = leavers
        ctx.data["internal_step"] = LeaverStep.SELECT_USER

        message = "BOT: ✅ *Verification Complete*\n"
        if dropped:
            message += f"🗑️ Filtered out {dropped} items that were already revoked.\n"
        message += f"⚠️ *Loaded {len(leavers)} Identities with Active Access*\n\n"
        await ctx.reply(message + SELECT_USER_HINT + format_leaver_list(leavers))

    async def _load_identity_list(self, ctx: BotContext, header: List[str], rows: List[List[str]]) -> None:
        identities = parse_identity_list(header, rows)
        if not identities:
            await ctx.reply("BOT: ⚠️ No valid identities found in CSV.")
            return

        await ctx.reply(f"BOT: 🔍 Analyzing {len(identities)} identities from CSV (Scan Mode)...")

        result = await ctx.launch_workflow("AnalyzeLeaver", {"mode": "csv", "identityList": ",".join(identities)})
        leavers = result.json_attribute("report")
        if leavers is None:
            raise ValueError("No report returned.")

        if not leavers:
            await ctx.reply("BOT: ✅ No access items found for these users.")
            ctx.reset_session()
            return

        ctx.data["leavers"] = leavers
        ctx.data["internal_step"] = LeaverStep.SELECT_USER
        await ctx.reply(
            f"BOT: ⚠️ *Found {len(leavers)} Identities with Access*\n\n" + SELECT_USER_HINT + format_leaver_list(leavers)
        )

    # ------------------------------------------------------------
    # Revocation
    # ------------------------------------------------------------

    async def _select_user(self, ctx: BotContext, text: str) -> None:
        leavers = ctx.data.get("leavers") or []

        if text.lower() == "all":
            ctx.data["internal_step"] = LeaverStep.SELECT_ACTION_ALL
            await ctx.reply(
                "BOT: 🚨 *Bulk Revocation Mode*\n"
                f"You are about to process *{len(leavers)} identities*.\n\n"
                "👇 *Select Action for ALL:*\n"
                "1️⃣ Revoke All Now (Direct)\n"
                "2️⃣ Revoke All Now (Create Workitems)"
            )
            return

        index = parse_index(text, len(leavers))
        if index is None:
            await ctx.reply("BOT: ⚠️ Invalid selection. Reply a number or 'all'.")
            return

        target = leavers[index]
        ctx.data["target_leaver"] = target
        ctx.data["internal_step"] = LeaverStep.SELECT_ACTION

        items = target.get("accessItems") or []
        item_lines = "".join(
            f"- {item.get('name') or item.get('value')} ({item.get('application')})\n"
            for item in items[:IDENTITY_ITEMS_PREVIEW]
        )
        if len(items) > IDENTITY_ITEMS_PREVIEW:
            item_lines += f"...and {len(items) - IDENTITY_ITEMS_PREVIEW} more.\n"

        await ctx.reply(
            "BOT: 👤 *Identity Details*\n"
            f"User: {target.get('identityName')}\n"
            "Inactive: true\n\n"
            f"*Access to Revoke:*\n{item_lines}\n"
            "👇 *Select Action:*\n"
            "1️⃣ Revoke Now (Direct)\n"
            "2️⃣ Revoke Now (Create Workitem)"
        )

    @staticmethod
    def _provision_inputs(identity: str, items: List[AccessItem], direct: bool) -> List[Dict[str, Any]]:
        inputs = [
            {"key": "identityName", "value": identity},
            {"key": "accessItems", "value": access_items_json(items)},
        ]
        if direct:
            inputs.append({"key": "approvalScheme", "value": "none"})
        return inputs

    async def _select_action(self, ctx: BotContext, text: str) -> None:
        if text not in ("1", "2"):
            await ctx.reply("BOT: 🚫 Cancelled / Invalid Selection.")
            ctx.reset_session()
            return

        target = ctx.data.get("target_leaver") or {}
        items = map_access_items(target.get("accessItems") or [])
        if not items:
            await ctx.reply("BOT: ⚠️ No revocable items (Entitlements/Roles) found.")
            return

        direct = text == "1"
        action = "Direct Revocation" if direct else "Create Workitem"
        identity = target.get("identityName")
        await ctx.reply(f"BOT: 🚀 Executing *{action}* for {len(items)} items...")

        try:
            result = await ctx.launch_workflow("ProvisionAccess", self._provision_inputs(identity, items, direct))
            request_id = extract_request_id(result.launch_result)
            logger.info(f"✅ Revoked {len(items)} item(s) for {identity} -> {request_id}")
            await ctx.reply(f"BOT: ✅ *Success!*\nRequest ID: {request_id}\nItems: {len(items)}")
        except Exception as e:
            logger.error(f"❌ Revocation failed for {identity}: {e}")
            await ctx.reply(f"BOT: ❌ Failed: {getattr(e, 'message', str(e))}")

        ctx.reset_session()

    async def _select_action_all(self, ctx: BotContext, text: str) -> None:
        if text not in ("1", "2"):
            await ctx.reply("BOT: 🚫 Cancelled.")
            ctx.reset_session()
            return

        leavers = ctx.data.get("leavers") or []
        direct = text == "1"
        action = "Direct Revocation" if direct else "Create Workitems"
        await ctx.reply(f"BOT: 🚀 Starting Batch {action} for {len(leavers)} identities...")

        processed = success = failed = 0
        results: List[str] = []

        for leaver in leavers:
            identity = leaver.get("identityName")
            items = map_access_items(leaver.get("accessItems") or [])
            if not items:
                processed += 1
                continue

            try:
                result = await ctx.launch_workflow("ProvisionAccess", self._provision_inputs(identity, items, direct))
                success += 1
                results.append(f"✅ {identity}: {extract_request_id(result.launch_result)}")
            except Exception as e:
                failed += 1
                logger.error(f"❌ Batch revocation failed for {identity}: {e}")
                results.append(f"❌ {identity}: err")
            processed += 1

            if processed % BATCH_PROGRESS_EVERY == 0:
                await ctx.reply(f"BOT: ⏳ Progress: {processed}/{len(leavers)}...")

        logger.info(f"📊 Batch {action}: processed={processed} success={success} failed={failed}")
        await ctx.reply(batch_summary(processed, success, failed, results))
        ctx.reset_session()
