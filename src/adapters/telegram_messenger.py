"""Telegram messaging adapter: implements MessagingPort.

Wraps a telegram.Bot instance. Telegram has no reply tokens, so the chat id
doubles as one; buttons become an inline keyboard, one button per row.
"""

from __future__ import annotations

import logging

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup

from src.data.models import OutboundMessage

logger = logging.getLogger(__name__)


def build_keyboard(message: OutboundMessage) -> InlineKeyboardMarkup | None:
    if not message.buttons:
        return None
    return InlineKeyboardMarkup(
        [[InlineKeyboardButton(b.label, callback_data=b.data)] for b in message.buttons]
    )


class TelegramMessenger:
    """Telegram implementation of MessagingPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def _send(self, chat_id: str, message: OutboundMessage) -> None:
        await self._bot.send_message(
            chat_id=int(chat_id),
            text=message.text,
            reply_markup=build_keyboard(message),
        )

    async def send_direct(self, user_id: str, content: OutboundMessage) -> None:
        await self._send(user_id, content)
        logger.debug("Pushed message to %s", user_id)

    async def send_reply(self, reply_token: str, content: OutboundMessage) -> None:
        await self._send(reply_token, content)
