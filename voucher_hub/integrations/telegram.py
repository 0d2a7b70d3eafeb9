"""Telegram Bot API transport for settlement notifications."""
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class TelegramTransport:
    """Sends MarkdownV2 messages through ``sendMessage``."""

    def __init__(
        self,
        base_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def send(self, bot_token: str, chat_id: str, text: str) -> bool:
        """
        Send one message to one chat.

        Returns:
            bool: True if Telegram accepted the message
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post(
                    f"/bot{bot_token}/sendMessage",
                    json={"chat_id": chat_id, "text": text, "parse_mode": "MarkdownV2"},
                )
        except httpx.HTTPError as e:
            logger.warning("telegram_send_failed", chat_id=chat_id, error=str(e))
            return False

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.is_success and body.get("ok", False):
            return True

        logger.warning(
            "telegram_send_rejected",
            chat_id=chat_id,
            status_code=response.status_code,
            description=body.get("description"),
        )
        return False
