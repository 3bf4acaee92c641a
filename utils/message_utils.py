"""
utils/message_utils.py

Purpose: Chat message helpers

- Numbered menu rendering
- Markdown stripping for plain-text fallbacks
- Index parsing for "reply with a number" prompts
- Request id extraction from provisioning results
"""

import re
from typing import Any, Dict, Optional, Sequence

from sailsetu.schemas.sailpoint import get_attribute

MARKDOWN_CHARS = re.compile(r"[*_`\[]")
LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
REQUEST_ID_IN_PLAN = re.compile(r'key="identityRequestId"\s+value="([^"]+)"')


def strip_markdown(text: str) -> str:
    """
    Removes lightweight markup characters so a message can be sent as plain text.

    Args:
        text: Message with Markdown (*bold*, _italic_, `code`, [links])

    Returns:
        Text without markup characters
    """
    return MARKDOWN_CHARS.sub("", text)


def format_menu_items(names: Sequence[str]) -> str:
    """
    Renders feature names as a numbered, bold list.

    Example:
        ["Access Reviews"] -> "1️⃣ *Access Reviews*\\n"
    """
    return "".join(f"{i}️⃣ *{name}*\n" for i, name in enumerate(names, 1))


def parse_leading_int(text: str) -> Optional[int]:
    """
    Reads the integer a reply starts with.

    Poll answers are prefixed with their position ("2. Alice"), and number
    emojis start with the digit, so the leading integer is what counts.

    Args:
        text: User reply

    Returns:
        Integer or None if the reply does not start with digits
    """
    if not text:
        return None
    match = LEADING_INT.match(text)
    if not match:
        return None
    return int(match.group(1))


def parse_index(text: str, count: int) -> Optional[int]:
    """
    Converts a 1-based reply into a 0-based index.

    Args:
        text: User reply
        count: Number of options shown

    Returns:
        0-based index, or None if out of range or not a number
    """
    number = parse_leading_int(text)
    if number is None:
        return None
    index = number - 1
    if 0 <= index < count:
        return index
    return None


def extract_request_id(launch_result: Optional[Dict[str, Any]]) -> str:
    """
    Finds the identity request id in a ProvisionAccess result.

    Order: identityRequestId attribute, the id embedded in the plan/project
    XML attribute, then the task result id.

    Args:
        launch_result: Raw TaskResult

    Returns:
        Request id or "N/A"
    """
    if not launch_result:
        return "N/A"

    request_id = get_attribute(launch_result, "identityRequestId")
    if request_id:
        return str(request_id)

    for key in ("plan", "project"):
        plan = get_attribute(launch_result, key)
        if isinstance(plan, str) and plan:
            match = REQUEST_ID_IN_PLAN.search(plan)
            if match:
                return match.group(1)

    if launch_result.get("id"):
        return str(launch_result["id"])

    return "N/A"
