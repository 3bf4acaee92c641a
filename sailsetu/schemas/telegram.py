"""
sailsetu/schemas/telegram.py

Purpose: Telegram Bot API update schemas

- Minimal subset of Update/Message needed by the long-poll loop
- Unknown fields are ignored
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional


class TelegramChat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = "private"


class TelegramUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    first_name: str = ""
    username: Optional[str] = None


class TelegramDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file_id: str
    file_name: Optional[str] = None
    mime_type: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    message_id: int
    chat: TelegramChat
    sender: Optional[TelegramUser] = Field(default=None, alias="from")
    text: Optional[str] = None
    caption: Optional[str] = None
    document: Optional[TelegramDocument] = None

    @property
    def chat_id(self) -> str:
        return str(self.chat.id)


class TelegramUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[TelegramMessage] = None
