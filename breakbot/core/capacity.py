"""
Shift Break Bot — Capacity Planner.

Decides whether a break interval fits a pool's concurrency limit.
Reservations are speculative future occupancy, so admission counts
active breaks and pending reservations alike, minute by minute. Starting
a break right now only counts breaks that are live at this instant.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from breakbot.core.policy import CAPACITY_LIMIT, FIRST_LAST_BLOCK_MIN, MINUTE_MS
from breakbot.data.models import ReservationStatus

if TYPE_CHECKING:
    from breakbot.core.shift_calendar import ShiftBounds
    from breakbot.data.models import Community


@dataclass
class CapacityCheck:
    """Outcome of an admission check."""

    ok: bool
    reason: str = ""


def active_break_intervals(
    community: Community, pool_key: str, duration: int,
) -> list[tuple[int, int]]:
    """[start, scheduled end) of every active break in the pool/duration.

    Extra breaks are unconstrained and never occupy pool capacity.
    """
    intervals = []
    for user in community.users.values():
        b = user.active_break
        if b is None or b.is_extra or b.pool_key != pool_key or b.type_mins != duration:
            continue
        intervals.append((b.start_at_ms, b.scheduled_end_at_ms))
    return intervals


def pending_reservation_intervals(
    community: Community, pool_key: str, duration: int,
) -> list[tuple[int, int]]:
    """[start, end) of every pending reservation in the pool/duration."""
    intervals = []
    for user in community.users.values():
        for r in user.rez:
            if r.status is not ReservationStatus.PENDING:
                continue
            if r.pool_key != pool_key or r.duration != duration:
                continue
            intervals.append((r.start_at_ms, r.end_at_ms))
    return intervals


def can_admit_interval(
    pool_key: str,
    duration: int,
    start_ms: int,
    end_ms: int,
    active_breaks: list[tuple[int, int]],
    pending_reservations: list[tuple[int, int]],
) -> CapacityCheck:
    """Admit iff at every whole minute of [start, end) the candidate plus
    overlapping breaks and reservations stays within the pool limit."""
    limit = CAPACITY_LIMIT[duration]
    occupied = active_breaks + pending_reservations
    t = start_ms
    while t < end_ms:
        count = 1 + sum(1 for s, e in occupied if s <= t < e)
        if count > limit:
            return CapacityCheck(
                ok=False, reason=f"{duration} min capacity is full ({limit}/{limit}).",
            )
        t += MINUTE_MS
    return CapacityCheck(ok=True)


def can_reserve_slot(
    community: Community, pool_key: str, duration: int, start_ms: int, end_ms: int,
) -> CapacityCheck:
    """can_admit_interval against the community's current occupancy."""
    return can_admit_interval(
        pool_key,
        duration,
        start_ms,
        end_ms,
        active_break_intervals(community, pool_key, duration),
        pending_reservation_intervals(community, pool_key, duration),
    )


def can_start_now(
    community: Community,
    pool_key: str,
    duration: int,
    now_ms: int,
    excluding_user_id: int | None = None,
) -> CapacityCheck:
    """Count only breaks live right now, including their auto-close grace."""
    limit = CAPACITY_LIMIT[duration]
    active = 0
    for user_id, user in community.users.items():
        if user_id == excluding_user_id:
            continue
        b = user.active_break
        if b is None or b.is_extra or b.pool_key != pool_key or b.type_mins != duration:
            continue
        if b.start_at_ms <= now_ms < b.auto_close_at_ms:
            active += 1
    if active >= limit:
        return CapacityCheck(
            ok=False,
            reason=f"The {duration} min pool is full right now ({active}/{limit} active).",
        )
    return CapacityCheck(ok=True)


def check_shift_edges(start_ms: int, duration: int, bounds: ShiftBounds) -> CapacityCheck:
    """Breaks may not start in the first 30 min nor run into the last 30 min."""
    block_ms = FIRST_LAST_BLOCK_MIN * MINUTE_MS
    if start_ms < bounds.start_ms + block_ms:
        return CapacityCheck(
            ok=False, reason="No breaks in the first 30 minutes of the shift.",
        )
    if start_ms + duration * MINUTE_MS > bounds.end_ms - block_ms:
        return CapacityCheck(
            ok=False, reason="This break runs into the blocked last 30 minutes of the shift.",
        )
    return CapacityCheck(ok=True)
