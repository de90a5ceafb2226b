"""
Shift Break Bot — Waitlist Matcher.

Holds reservation requests refused for capacity and tells the user,
once, when the slot opens up. Promotion is a notification only: the
user re-issues /reserve to actually take the slot.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from breakbot.core.capacity import can_reserve_slot
from breakbot.core.shift_calendar import format_hm
from breakbot.core.slot_finder import user_has_rez_start_conflict
from breakbot.data.models import Notification, TargetType, WaitlistEntry, new_id

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from breakbot.data.models import Community

logger = logging.getLogger(__name__)


def add_entry(
    community: Community,
    user_id: int,
    pool_key: str,
    duration: int,
    start_ms: int,
    end_ms: int,
    now_ms: int,
) -> bool:
    """Queue a request unless an identical one is already waiting."""
    for w in community.waitlist:
        if (
            w.user_id == user_id
            and w.pool_key == pool_key
            and w.duration == duration
            and w.start_at_ms == start_ms
        ):
            return False
    community.waitlist.append(
        WaitlistEntry(
            id=new_id(),
            user_id=user_id,
            pool_key=pool_key,
            duration=duration,
            start_at_ms=start_ms,
            end_at_ms=end_ms,
            created_at_ms=now_ms,
        )
    )
    logger.info("Waitlisted: user=%d %dmin @ %d [%s]", user_id, duration, start_ms, pool_key)
    return True


def remove_user(community: Community, user_id: int) -> None:
    community.waitlist = [w for w in community.waitlist if w.user_id != user_id]


def process_waitlist(community: Community, now_ms: int, tz: ZoneInfo) -> list[Notification]:
    """Drop stale entries and promote the ones that now fit, in queue order."""
    notifications: list[Notification] = []
    remaining: list[WaitlistEntry] = []

    for w in community.waitlist:
        if now_ms > w.start_at_ms:
            continue  # start time passed unfulfilled
        user = community.users.get(w.user_id)
        if user is None:
            continue
        if user.free_rights.get(w.duration, 0) <= 0:
            remaining.append(w)
            continue
        if user_has_rez_start_conflict(user, w.start_at_ms):
            remaining.append(w)
            continue
        if not can_reserve_slot(community, w.pool_key, w.duration, w.start_at_ms, w.end_at_ms).ok:
            remaining.append(w)
            continue

        hm = format_hm(w.start_at_ms, tz)
        notifications.append(
            Notification(
                target_pool_key=w.pool_key,
                target_type=TargetType.RESERVATION_CHANNEL,
                message=(
                    f"A slot opened up: {w.duration} min at {hm}. "
                    f"Reserve it with /reserve {w.duration} {hm}"
                ),
                user_id=w.user_id,
            )
        )
        logger.info("Waitlist promotion: user=%d %dmin @ %s [%s]", w.user_id, w.duration, hm, w.pool_key)

    community.waitlist = remaining
    return notifications
