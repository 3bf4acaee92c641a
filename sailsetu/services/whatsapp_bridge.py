"""
sailsetu/services/whatsapp_bridge.py

Purpose: HTTP client for the whatsapp-web.js bridge

- Sends text messages (optionally quoting the inbound message)
- Sends native polls
- Downloads message media
- Logs the WhatsApp session out (the bridge then emits a fresh QR)
"""

import base64
import httpx
from typing import Any, Dict, List, Optional

from sailsetu.core.config import settings
from sailsetu.core.exceptions import TransportError
from sailsetu.core.logging import get_logger

logger = get_logger(__name__)

BRIDGE_TOKEN_HEADER = "X-Bridge-Token"


class WhatsAppBridgeClient:
    """Sends commands to the Node.js bridge that owns the WhatsApp Web session"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or settings.WHATSAPP_BRIDGE_URL).rstrip("/")
        self.token = token if token is not None else settings.WHATSAPP_BRIDGE_TOKEN
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {BRIDGE_TOKEN_HEADER: self.token} if self.token else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = await self._get_client().request(method, path, json=json)
        except httpx.TimeoutException:
            raise TransportError(f"WhatsApp bridge timeout on {path}")
        except httpx.RequestError as e:
            raise TransportError(f"WhatsApp bridge unreachable: {e}")

        if response.status_code >= 400:
            logger.error(f"❌ Bridge error {response.status_code} on {path}: {response.text[:200]}")
            raise TransportError(
                f"WhatsApp bridge error {response.status_code}",
                details={"status_code": response.status_code, "path": path}
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def send_message(self, chat_id: str, text: str, quoted_message_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Sends a text message.

        Args:
            chat_id: Target chat id (e.g. 9190...@c.us)
            text: Message body
            quoted_message_id: Message to reply to

        Returns:
            Bridge response ({"id": ...})
        """
        payload: Dict[str, Any] = {"chatId": chat_id, "text": text}
        if quoted_message_id:
            payload["quotedMessageId"] = quoted_message_id

        logger.debug(f"📤 Bridge send to {chat_id}: {text[:60]!r}")
        return await self._request("POST", "/messages", json=payload)

    async def send_poll(
        self,
        chat_id: str,
        question: str,
        options: List[str],
        allow_multiple: bool = False
    ) -> Dict[str, Any]:
        logger.debug(f"📊 Bridge poll to {chat_id}: {len(options)} option(s)")
        return await self._request("POST", "/polls", json={
            "chatId": chat_id,
            "question": question,
            "options": options,
            "allowMultipleAnswers": allow_multiple,
        })

    async def download_media(self, message_id: str) -> Optional[bytes]:
        """
        Fetches a message attachment.

        The bridge answers with the whatsapp-web.js MessageMedia shape:
        {"mimetype": ..., "data": <base64>, "filename": ...}

        Returns:
            Raw file bytes or None if the message has no media
        """
        data = await self._request("GET", f"/messages/{message_id}/media")
        encoded = data.get("data")
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded)
        except ValueError:
            raise TransportError(f"Invalid media payload for message {message_id}")

    async def logout(self) -> None:
        logger.info("👋 Logging out WhatsApp session")
        await self._request("POST", "/logout")

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
