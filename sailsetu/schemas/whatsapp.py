"""
sailsetu/schemas/whatsapp.py

Purpose: WhatsApp bridge event schemas

- Validates events POSTed by the whatsapp-web.js bridge
- Mirrors the client library's event names and message fields
- Normalizes messages and poll votes for the channel adapter
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Literal, List, Dict, Any


WhatsAppEventName = Literal["qr", "ready", "disconnected", "message_create", "vote_update"]


class WhatsAppMessage(BaseModel):
    """
    A message as reported by whatsapp-web.js (message_create).
    Field names follow the library (camelCase) via aliases.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(default="", description="Serialized message id")
    sender: str = Field(..., alias="from", description="Chat id the message came from")
    to: str = Field(default="", description="Chat id the message was sent to")
    body: str = Field(default="", description="Message text")
    from_me: bool = Field(default=False, alias="fromMe")
    is_status: bool = Field(default=False, alias="isStatus")
    has_media: bool = Field(default=False, alias="hasMedia")
    selected_row_id: Optional[str] = Field(default=None, alias="selectedRowId")
    selected_button_id: Optional[str] = Field(default=None, alias="selectedButtonId")

    @property
    def text(self) -> str:
        return self.body.strip()


class PollOption(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    local_id: Optional[int] = Field(default=None, alias="localId")


class PollParentMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    sender: str = Field(default="", alias="from")
    to: str = ""


class WhatsAppVote(BaseModel):
    """
    A poll answer (vote_update).
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    voter: str
    selected_options: List[PollOption] = Field(default_factory=list, alias="selectedOptions")
    parent_message: PollParentMessage = Field(default_factory=PollParentMessage, alias="parentMessage")


class BridgeEvent(BaseModel):
    """
    Envelope POSTed by the bridge for every client event.

    Example:
        {"event": "message_create", "data": {"from": "9190...@c.us", "to": "9190...@c.us",
                                              "body": "!menu", "fromMe": true}}
    """
    event: WhatsAppEventName
    data: Dict[str, Any] = Field(default_factory=dict)


def phone_from_chat_id(chat_id: str) -> str:
    """
    Extracts the phone number from a WhatsApp chat id.

    Example:
        "919063248559@c.us" -> "919063248559"
    """
    return chat_id.replace("@c.us", "").replace("@s.whatsapp.net", "")
