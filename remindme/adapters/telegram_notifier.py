"""Telegram delivery adapter — NotificationPort over a telegram.Bot."""

from __future__ import annotations

import logging

from telegram import Bot
from telegram.error import TelegramError

from remindme.ports.notification_port import DeliveryError

logger = logging.getLogger(__name__)

REMINDER_PREFIX = "⏰ "


class TelegramNotifier:
    """Posts due reminders into the owner's private chat."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def deliver(self, owner_id: int, text: str) -> None:
        # owner_id is the private chat id the reminder was created in
        try:
            await self._bot.send_message(chat_id=owner_id, text=REMINDER_PREFIX + text)
        except TelegramError as exc:
            logger.warning("Telegram refused reminder for %d: %s", owner_id, exc)
            raise DeliveryError(str(exc)) from exc
