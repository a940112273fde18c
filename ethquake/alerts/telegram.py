"""Telegram alerts — per-strategy chat routing over the Bot API."""

import logging
import os
from typing import Optional

import httpx

logger = logging.getLogger("ethquake.alerts")

TELEGRAM_API_URL = "https://api.telegram.org/bot"


def parse_chat_ids(value: Optional[str]) -> list[int]:
    """Parse ``"123, 456"`` into ``[123, 456]``, skipping junk entries."""
    if not value:
        return []
    ids: list[int] = []
    for part in value.split(","):
        part = part.strip()
        if part.lstrip("-").isdigit():
            ids.append(int(part))
    return ids


def chat_ids_for_strategy(strategy_key: str) -> list[int]:
    """Chat ids from ``TELEGRAM_CHAT_IDS_<KEY>``, else the default list."""
    ids = parse_chat_ids(os.environ.get(f"TELEGRAM_CHAT_IDS_{strategy_key.upper()}"))
    if ids:
        return ids
    return parse_chat_ids(os.environ.get("TELEGRAM_CHAT_IDS_DEFAULT"))


class TelegramNotifier:
    """Sends alert messages; delivery problems are logged, never raised.

    Args:
        bot_token: Telegram bot API key.  Without it every send is a no-op.
    """

    def __init__(self, bot_token: Optional[str], timeout: float = 10.0) -> None:
        self._bot_token = bot_token
        self._timeout = timeout

    async def send(self, message: str, strategy_key: str) -> int:
        """Send *message* to every chat routed for *strategy_key*.

        Returns the number of chats that accepted the message.
        """
        if not self._bot_token:
            logger.error("TELEGRAM_BOT_API_KEY not configured; alert dropped")
            return 0

        chat_ids = chat_ids_for_strategy(strategy_key)
        if not chat_ids:
            logger.warning("No Telegram chat ids configured for %s", strategy_key)
            return 0

        url = f"{TELEGRAM_API_URL}{self._bot_token}/sendMessage"
        delivered = 0
        async with httpx.AsyncClient() as client:
            for chat_id in chat_ids:
                try:
                    resp = await client.post(
                        url,
                        json={"chat_id": chat_id, "text": message},
                        timeout=self._timeout,
                    )
                    resp.raise_for_status()
                    delivered += 1
                except httpx.HTTPError as exc:
                    logger.error("Telegram alert to %s failed: %s", chat_id, exc)
        return delivered
