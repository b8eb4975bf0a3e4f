"""Telegram Bot API integration."""

import logging
import httpx
from typing import Optional
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from staffline.exceptions import ExternalServiceError
from staffline.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


class TelegramClient:
    """Client for one business's Telegram bot."""

    def __init__(self, bot_token: Optional[str]):
        self.bot_token = bot_token

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        reraise=True,
    )
    async def _request(self, method: str, data: dict) -> dict:
        """Call a Bot API method, retrying network errors."""
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{settings.TELEGRAM_API_BASE}/bot{self.bot_token}/{method}",
                json=data,
                timeout=15.0,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.status_code != 200 or not payload.get("ok"):
            description = payload.get("description") or response.text[:200]
            raise ExternalServiceError(
                f"Telegram {method} failed ({response.status_code}): {description}",
                transient=response.status_code == 429 or response.status_code >= 500,
            )
        return payload.get("result", {})

    async def send_message(self, chat_id: str, text: str) -> dict:
        """
        Send a text message.
        Returns dict with 'message_id'.
        """
        if not self.bot_token:
            # Dev mode - just log
            logger.info("[DEV] Telegram to %s: %s", chat_id, text)
            return {"message_id": "dev_mode"}

        try:
            result = await self._request("sendMessage", {"chat_id": chat_id, "text": text})
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Telegram network error: {e}")
        return {"message_id": result.get("message_id")}
