"""Telegram transport adapter — implements TransportPort.

Wraps a telegram.Bot instance. Text goes out as a message, images as a
photo and any other media as a document. Telegram failures surface as
TransportError so core code never sees library exceptions.
"""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from src.ports.transport_port import Payload, TransportError

logger = logging.getLogger(__name__)


class TelegramTransport:
    """Telegram implementation of TransportPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(self, recipient_id: str, payload: Payload) -> None:
        try:
            if payload.media is None:
                await self._bot.send_message(chat_id=recipient_id, text=payload.text)
            elif (payload.mime_type or "").startswith("image/"):
                await self._bot.send_photo(
                    chat_id=recipient_id, photo=payload.media, caption=payload.text,
                )
            else:
                await self._bot.send_document(
                    chat_id=recipient_id, document=payload.media, caption=payload.text,
                )
        except TelegramError as exc:
            logger.warning("Telegram send to %s failed: %s", recipient_id, exc)
            raise TransportError(str(exc)) from exc
