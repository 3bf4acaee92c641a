"""
sailsetu/channels/base.py

Purpose: Chat transport abstraction and normalized inbound message

- Each transport (WhatsApp bridge, Telegram Bot API) implements ChannelTransport
- Inbound events are normalized to InboundMessage before reaching the dialog engine
- Native polls are optional; callers fall back to text when send_poll returns False
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass
class InboundMessage:
    """Normalized inbound message from any channel."""

    channel: str                    # "whatsapp" | "telegram"
    chat_id: str                    # session key: WhatsApp chat id or Telegram chat id
    text: str                       # trimmed message text (poll answers carry the option text)
    message_id: str = ""
    sender_phone: str = ""          # phone / chat id used for backend identity lookup
    has_media: bool = False
    selected_row_id: Optional[str] = None
    selected_button_id: Optional[str] = None
    raw: Any = None                 # original transport payload
    timestamp: float = field(default_factory=time.time)


class ChannelTransport(ABC):
    """
    Outbound primitives a chat channel offers to the dialog engine.
    """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        ...

    @abstractmethod
    async def send_text(self, chat_id: str, text: str) -> None:
        """Send a plain message to a chat."""
        ...

    async def reply(self, msg: InboundMessage, text: str) -> None:
        """Answer an inbound message. Transports with quoting override this."""
        await self.send_text(msg.chat_id, text)

    async def send_poll(
        self,
        msg: InboundMessage,
        question: str,
        options: List[str],
        allow_multiple: bool = False
    ) -> bool:
        """
        Ask the user to pick one option with a native poll.

        Returns:
            True if a poll was delivered, False if the caller should send text instead
        """
        return False

    async def download_media(self, msg: InboundMessage) -> Optional[bytes]:
        """Fetch the attachment of an inbound message, if the transport supports it."""
        return None
