"""Notification port — abstract interface for posting messages to chats.

Core modules depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import Protocol


class NotificationPort(Protocol):
    """Abstract notification interface used by the delivery outbox."""

    async def send_message(self, chat_id: int, text: str) -> None: ...
