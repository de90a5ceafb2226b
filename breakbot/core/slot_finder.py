"""
Shift Break Bot — Slot Finder.

Per-user spacing rules plus the forward scans that suggest alternative
start times when a reservation is refused. Suggestions only enrich the
failure message; nothing here commits a reservation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from breakbot.core.capacity import can_reserve_slot, check_shift_edges
from breakbot.core.policy import (
    BREAK_COOLDOWN_MS,
    FIRST_LAST_BLOCK_MIN,
    MAX_REZ_AHEAD_MS,
    MAX_SUGGESTIONS,
    MINUTE_MS,
    PAIRED_TEN_GAP_MIN,
    REZ_SPACING_MS,
    SUGGEST_STEP_MIN,
)
from breakbot.core.shift_calendar import ceil_to_step_ms
from breakbot.data.models import ReservationStatus

if TYPE_CHECKING:
    from breakbot.core.shift_calendar import ShiftBounds
    from breakbot.data.models import Community, UserRecord


@dataclass
class CooldownCheck:
    ok: bool
    earliest_ms: int | None = None
    left_min: int = 0


def user_has_rez_start_conflict(
    user: UserRecord, candidate_start_ms: int, include_started: bool = False,
) -> bool:
    """True if another of the user's reservations starts within an hour."""
    statuses = {ReservationStatus.PENDING}
    if include_started:
        statuses.add(ReservationStatus.STARTED)
    return any(
        r.status in statuses and abs(r.start_at_ms - candidate_start_ms) < REZ_SPACING_MS
        for r in user.rez
    )


def break_cooldown_conflict(user: UserRecord, candidate_start_ms: int) -> CooldownCheck:
    """Breaks must start at least an hour after the last ordinary break closed."""
    if not user.last_normal_break_closed_at_ms:
        return CooldownCheck(ok=True)
    earliest = user.last_normal_break_closed_at_ms + BREAK_COOLDOWN_MS
    if candidate_start_ms < earliest:
        left = -(-(earliest - candidate_start_ms) // MINUTE_MS)
        return CooldownCheck(ok=False, earliest_ms=earliest, left_min=left)
    return CooldownCheck(ok=True)


def _slot_fits(
    community: Community,
    user: UserRecord,
    pool_key: str,
    duration: int,
    start_ms: int,
    bounds: ShiftBounds,
) -> bool:
    if not check_shift_edges(start_ms, duration, bounds).ok:
        return False
    if user_has_rez_start_conflict(user, start_ms):
        return False
    if not break_cooldown_conflict(user, start_ms).ok:
        return False
    end_ms = start_ms + duration * MINUTE_MS
    return can_reserve_slot(community, pool_key, duration, start_ms, end_ms).ok


def find_alternative_times(
    community: Community,
    user: UserRecord,
    pool_key: str,
    duration: int,
    now_ms: int,
    bounds: ShiftBounds,
    max_slots: int = MAX_SUGGESTIONS,
) -> list[int]:
    """Scan forward in 5-min steps and collect up to max_slots admissible starts.

    Window: from max(now, shift start + 30 min) to
    min(shift end - 30 min - duration, now + 2 h).
    """
    block_ms = FIRST_LAST_BLOCK_MIN * MINUTE_MS
    earliest = max(now_ms, bounds.start_ms + block_ms)
    latest = min(bounds.end_ms - block_ms - duration * MINUTE_MS, now_ms + MAX_REZ_AHEAD_MS)
    if latest < earliest:
        return []

    slots: list[int] = []
    t = ceil_to_step_ms(earliest, SUGGEST_STEP_MIN)
    while t <= latest and len(slots) < max_slots:
        if _slot_fits(community, user, pool_key, duration, t, bounds):
            slots.append(t)
        t += SUGGEST_STEP_MIN * MINUTE_MS
    return slots


def find_paired_ten_plan(
    community: Community,
    user: UserRecord,
    pool_key: str,
    now_ms: int,
    bounds: ShiftBounds,
    anchor_start_ms: int | None = None,
) -> tuple[int, int] | None:
    """Two 10-min slots exactly 70 min apart that both admit.

    Offered when a 20-min request is capacity-blocked and the user still
    holds both 10-min rights.
    """
    if user.free_rights.get(10, 0) < 2:
        return None

    block_ms = FIRST_LAST_BLOCK_MIN * MINUTE_MS
    horizon = now_ms + MAX_REZ_AHEAD_MS
    earliest = max(now_ms, anchor_start_ms or now_ms, bounds.start_ms + block_ms)
    latest = min(bounds.end_ms - block_ms - 10 * MINUTE_MS, horizon)
    if latest < earliest:
        return None

    gap_ms = PAIRED_TEN_GAP_MIN * MINUTE_MS
    t = ceil_to_step_ms(earliest, SUGGEST_STEP_MIN)
    while t <= latest:
        second = t + gap_ms
        if second <= horizon and all(
            _slot_fits(community, user, pool_key, 10, start, bounds) for start in (t, second)
        ):
            return t, second
        t += SUGGEST_STEP_MIN * MINUTE_MS
    return None
