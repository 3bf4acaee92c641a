"""
sailsetu/services/telegram_api.py

Purpose: Telegram Bot API client (raw HTTP)

- getUpdates long polling
- sendMessage with Markdown, retried once as plain text
- getFile + file download for uploaded documents
"""

import httpx
from typing import Any, Dict, List, Optional

from sailsetu.core.config import settings
from sailsetu.core.exceptions import TransportError
from sailsetu.core.logging import get_logger
from utils.message_utils import strip_markdown

logger = get_logger(__name__)


class TelegramAPI:
    """Thin async wrapper over the Bot API"""

    def __init__(
        self,
        token: Optional[str] = None,
        api_base: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.token = token
        self.api_base = (api_base or settings.TELEGRAM_API_BASE).rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            # Read timeout must outlast the long-poll window
            timeout = httpx.Timeout(10.0, read=settings.TELEGRAM_POLL_TIMEOUT + 10.0)
            self._client = httpx.AsyncClient(timeout=timeout, transport=self._transport)
        return self._client

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    async def get_updates(self, offset: int, timeout: int) -> List[Dict[str, Any]]:
        """
        Long-polls for new updates.

        Args:
            offset: First update id to return
            timeout: Long-poll window in seconds

        Returns:
            Raw update dicts

        Raises:
            TransportError: On network errors or a non-ok response
        """
        try:
            response = await self._get_client().get(
                self._method_url("getUpdates"),
                params={"offset": offset, "timeout": timeout},
            )
            data = response.json()
        except httpx.HTTPError as e:
            raise TransportError(f"Telegram getUpdates failed: {e}")
        except ValueError:
            raise TransportError("Telegram getUpdates returned invalid JSON")

        if not data.get("ok"):
            raise TransportError(f"Telegram getUpdates error: {data.get('description')}")
        return data.get("result") or []

    async def _post(self, method: str, payload: Dict[str, Any]) -> httpx.Response:
        return await self._get_client().post(self._method_url(method), json=payload)

    async def send_message(self, chat_id: str, text: str) -> bool:
        """
        Sends a Markdown message; on rejection retries once as plain text.

        Delivery failures are logged, never raised.

        Returns:
            True if one of the attempts was accepted
        """
        if not self.token:
            logger.warning("Telegram token not configured - dropping message")
            return False

        try:
            response = await self._post("sendMessage", {"chat_id": chat_id, "text": text, "parse_mode": "Markdown"})
            if response.status_code == 200:
                return True
            logger.warning(f"⚠️ Telegram send error (Markdown?): {response.status_code} {response.text[:200]}")
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ Telegram send failed: {e}")

        try:
            logger.info("🔁 Retrying Telegram message as plain text")
            response = await self._post("sendMessage", {"chat_id": chat_id, "text": strip_markdown(text)})
            if response.status_code == 200:
                return True
            logger.error(f"❌ Telegram plain-text send failed: {response.status_code} {response.text[:200]}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Telegram plain-text send failed: {e}")
        return False

    async def download_file(self, file_id: str) -> Optional[bytes]:
        """
        Resolves a file id with getFile and downloads the content.
        """
        try:
            response = await self._post("getFile", {"file_id": file_id})
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"Telegram getFile failed: {e}")

        file_path = (data.get("result") or {}).get("file_path")
        if not data.get("ok") or not file_path:
            raise TransportError(f"Telegram getFile error: {data.get('description')}")

        try:
            response = await self._get_client().get(f"{self.api_base}/file/bot{self.token}/{file_path}")
        except httpx.HTTPError as e:
            raise TransportError(f"Telegram file download failed: {e}")
        if response.status_code != 200:
            raise TransportError(f"Telegram file download error {response.status_code}")
        return response.content

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
