"""
Shift Break Bot — Maintenance Sweep.

Time-driven transitions over one community: reservation expiry, history
pruning, break auto-close, break-log retention, waitlist promotion and
the daily extra-rights reset. Runs at the start of every command and on
a timer; every step is idempotent, so two sweeps in a row change nothing
the first one did not.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from breakbot.core.break_engine import BreakEngine
from breakbot.core.policy import (
    BREAK_LOG_RETENTION_MS,
    REZ_START_WINDOW_MS,
    TERMINAL_RETENTION_MS,
)
from breakbot.core.shift_calendar import format_date, format_hm
from breakbot.core.waitlist import process_waitlist
from breakbot.data.models import ClosedBy, Notification, ReservationStatus, TargetType

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from breakbot.data.models import Community

logger = logging.getLogger(__name__)


def expire_reservations(community: Community, now_ms: int, tz: ZoneInfo) -> list[Notification]:
    notifications = []
    for user_id, user in community.users.items():
        for r in user.rez:
            if r.status is not ReservationStatus.PENDING:
                continue
            window_end = r.start_at_ms + REZ_START_WINDOW_MS
            if now_ms <= window_end:
                continue
            r.status = ReservationStatus.EXPIRED
            r.expired_at_ms = window_end
            text = (
                f"Your {r.duration} min reservation at {format_hm(r.start_at_ms, tz)} "
                "expired (not started within 5 minutes)."
            )
            if not r.admin_created:
                user.refund(r.duration)
                text += " Your right was refunded."
            notifications.append(
                Notification(r.pool_key, TargetType.RESERVATION_CHANNEL, text, user_id=user_id)
            )
            logger.info("Reservation expired: user=%d %dmin [%s]", user_id, r.duration, r.pool_key)
    return notifications


def prune_reservations(community: Community, now_ms: int) -> None:
    for user in community.users.values():
        live_rez_id = user.active_break.rez_id if user.active_break else None
        kept = []
        for r in user.rez:
            if r.status.is_terminal and now_ms - r.terminal_at_ms > TERMINAL_RETENTION_MS:
                continue
            if (
                r.status is ReservationStatus.STARTED
                and r.id != live_rez_id
                and now_ms - r.end_at_ms > TERMINAL_RETENTION_MS
            ):
                continue
            kept.append(r)
        user.rez = kept


def auto_close_breaks(
    community: Community, now_ms: int, engine: BreakEngine,
) -> list[Notification]:
    notifications = []
    for user_id, user in community.users.items():
        b = user.active_break
        if b is None or now_ms < b.auto_close_at_ms:
            continue
        # The cooldown marker sits at the due close, not at the sweep instant.
        record = engine.close_break(
            user, now_ms, ClosedBy.AUTO, cooldown_mark_ms=b.auto_close_at_ms,
        )
        notifications.append(
            Notification(
                b.pool_key,
                TargetType.BREAK_CHANNEL,
                f"Your {b.kind_label} break was closed automatically.\n"
                f"Late by: {record.late_min} min",
                user_id=user_id,
            )
        )
        logger.info(
            "Break auto-closed: user=%d %dmin late=%dmin [%s]",
            user_id, record.duration, record.late_min, b.pool_key,
        )
    return notifications


def trim_break_logs(community: Community, now_ms: int) -> None:
    cutoff = now_ms - BREAK_LOG_RETENTION_MS
    for user in community.users.values():
        user.break_log = [rec for rec in user.break_log if rec.end_at_ms >= cutoff]


def reset_extra_rights_daily(community: Community, now_ms: int, tz: ZoneInfo) -> bool:
    """Clear every user's extra rights once per local calendar day.

    The first sweep ever only records today's date.
    """
    today = format_date(now_ms, tz)
    if community.last_extra_rights_reset_date == today:
        return False
    first_run = community.last_extra_rights_reset_date is None
    community.last_extra_rights_reset_date = today
    if first_run:
        return False
    for user in community.users.values():
        user.extra_rights = {}
    logger.info("Daily extra-rights reset for %s", today)
    return True


def run_maintenance(community: Community, now_ms: int, tz: ZoneInfo) -> list[Notification]:
    """One full sweep. Returns the notifications it produced, in step order."""
    engine = BreakEngine(tz)
    notifications: list[Notification] = []
    notifications += expire_reservations(community, now_ms, tz)
    prune_reservations(community, now_ms)
    notifications += auto_close_breaks(community, now_ms, engine)
    trim_break_logs(community, now_ms)
    notifications += process_waitlist(community, now_ms, tz)
    reset_extra_rights_daily(community, now_ms, tz)
    return notifications
