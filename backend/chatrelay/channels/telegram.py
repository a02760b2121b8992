"""
Telegram Bot API Integration.
Sends messages and chat actions, receives updates by long polling or webhook.
"""

import hmac
import logging
from typing import Any, Dict, List, Optional

import httpx

from .base import ChatTransport, TelegramAPIError

logger = logging.getLogger(__name__)

# Telegram rejects longer messages
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split text into chunks Telegram accepts, preferring line breaks."""
    if not text:
        return [text]
    chunks = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut])
        text = text[cut:].lstrip("\n")
    if text:
        chunks.append(text)
    return chunks


class TelegramBot(ChatTransport):
    """
    Telegram Bot API client.
    Implements the outbound transport plus update retrieval and parsing.
    """

    def __init__(self, token: str,
                 api_base: str = "https://api.telegram.org",
                 webhook_secret: Optional[str] = None,
                 timeout: float = 30.0):
        """
        Initialize Telegram bot.

        Args:
            token: Bot token from @BotFather
            api_base: Bot API server URL
            webhook_secret: Secret expected in the X-Telegram-Bot-Api-Secret-Token header
            timeout: Timeout for regular API calls in seconds
        """
        self.token = token
        self.api_base = api_base.rstrip("/")
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _method_url(self, method: str) -> str:
        return f"{self.api_base}/bot{self.token}/{method}"

    async def _call(self, method: str, payload: Optional[Dict[str, Any]] = None,
                    timeout: Optional[float] = None) -> Any:
        """
        Call a Bot API method.

        Returns:
            The "result" field of the response

        Raises:
            TelegramAPIError: On transport errors or an ok=false response
        """
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                resp = await client.post(self._method_url(method), json=payload or {})
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TelegramAPIError(f"{method} failed: {e}") from e

        if not data.get("ok"):
            raise TelegramAPIError(
                f"{method} failed: {data.get('error_code')} {data.get('description', '')}".strip()
            )
        return data.get("result")

    async def send_text(self, chat_id: int, text: str) -> None:
        """
        Send a text message, split into several if it is too long.

        Args:
            chat_id: Target chat ID
            text: Message text
        """
        for chunk in split_message(text):
            await self._call("sendMessage", {"chat_id": chat_id, "text": chunk})

    async def send_typing(self, chat_id: int) -> None:
        """Show the typing indicator (Telegram clears it after ~5 seconds)."""
        await self._call("sendChatAction", {"chat_id": chat_id, "action": "typing"})

    async def get_updates(self, offset: Optional[int] = None,
                          timeout: int = 30) -> List[Dict[str, Any]]:
        """
        Long-poll for new updates.

        Args:
            offset: First update_id to return; earlier updates are confirmed
            timeout: Long polling timeout in seconds

        Returns:
            Raw update objects
        """
        payload: Dict[str, Any] = {
            "timeout": timeout,
            "allowed_updates": ["message", "my_chat_member"],
        }
        if offset is not None:
            payload["offset"] = offset
        # Leave headroom over the server-side wait
        return await self._call("getUpdates", payload, timeout=timeout + 10)

    async def set_webhook(self, url: str) -> None:
        payload: Dict[str, Any] = {
            "url": url,
            "allowed_updates": ["message", "my_chat_member"],
        }
        if self.webhook_secret:
            payload["secret_token"] = self.webhook_secret
        await self._call("setWebhook", payload)
        logger.info("Telegram webhook registered")

    async def delete_webhook(self) -> None:
        await self._call("deleteWebhook")

    def verify_secret_token(self, header_value: Optional[str]) -> bool:
        """
        Verify the webhook secret header.

        Args:
            header_value: Value of X-Telegram-Bot-Api-Secret-Token

        Returns:
            True if no secret is configured or the header matches
        """
        if not self.webhook_secret:
            return True
        if header_value is None:
            return False
        return hmac.compare_digest(header_value.encode("utf-8"), self.webhook_secret.encode("utf-8"))

    @staticmethod
    def parse_update(update: Dict[str, Any]) -> Dict[str, Any]:
        """
        Parse a Telegram update into a standardized event.

        Args:
            update: Raw update object

        Returns:
            Event dict with type "message", "chat_removed" or "unknown"
        """
        update_id = update.get("update_id")

        message = update.get("message")
        if message:
            return {
                "type": "message",
                "update_id": update_id,
                "chat_id": message.get("chat", {}).get("id"),
                "message_id": message.get("message_id"),
                # None for stickers, photos, voice, ...
                "text": message.get("text"),
            }

        member = update.get("my_chat_member")
        if member:
            status = member.get("new_chat_member", {}).get("status")
            if status in ("kicked", "left"):
                return {
                    "type": "chat_removed",
                    "update_id": update_id,
                    "chat_id": member.get("chat", {}).get("id"),
                }

        return {"type": "unknown", "update_id": update_id, "raw": update}
