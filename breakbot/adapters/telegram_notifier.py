"""Telegram notification adapter — implements NotificationPort.

Wraps a telegram.Bot instance to satisfy the NotificationPort protocol,
and delivers engine notifications to the chats configured for each pool.
Delivery is best-effort: a failed chat is logged and skipped.
"""

from __future__ import annotations

import html
import logging
from typing import TYPE_CHECKING

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError

if TYPE_CHECKING:
    from breakbot.config import CommunityConfig
    from breakbot.data.models import Notification
    from breakbot.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)


def mention_html(user_id: int, name: str | None = None) -> str:
    """Inline mention that notifies the user in groups."""
    label = html.escape(name) if name else str(user_id)
    return f'<a href="tg://user?id={user_id}">{label}</a>'


def render_notification(notification: Notification) -> str:
    text = html.escape(notification.message)
    if notification.user_id is not None:
        return f"{mention_html(notification.user_id)}: {text}"
    return text


class TelegramNotifier:
    """Telegram implementation of NotificationPort."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(self, chat_id: int, text: str) -> None:
        await self._bot.send_message(chat_id=chat_id, text=text, parse_mode=ParseMode.HTML)


async def deliver_notifications(
    notifier: NotificationPort,
    community: CommunityConfig,
    notifications: list[Notification],
) -> int:
    """Post each notification to its pool's chats. Returns messages sent."""
    sent = 0
    for notification in notifications:
        chat_ids = community.chat_ids_for(
            notification.target_pool_key, notification.target_type.value,
        )
        if not chat_ids:
            logger.warning(
                "No %s chat configured for pool %s, dropping notification",
                notification.target_type.value, notification.target_pool_key,
            )
            continue
        text = render_notification(notification)
        for chat_id in chat_ids:
            try:
                await notifier.send_message(chat_id, text)
                sent += 1
            except TelegramError as exc:
                logger.warning("Delivery to chat %d failed: %s", chat_id, exc)
    return sent
