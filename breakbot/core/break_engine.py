"""
Shift Break Bot — Reservation & Break State Machine.

Every operation works on an in-memory Community snapshot and an explicit
"now" in epoch milliseconds. Rules are checked before anything is
mutated; a refused request raises a BreakError subclass and leaves the
snapshot untouched (the one exception is the waitlist entry a user asks
for when capacity is full).

Reservation lifecycle:
    pending -> started -> completed
    pending -> expired      (admission window elapsed, see maintenance)
    pending -> cancelled
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from breakbot.core import waitlist
from breakbot.core.capacity import can_reserve_slot, can_start_now, check_shift_edges
from breakbot.core.errors import NotFoundError, RuleViolation, ValidationError
from breakbot.core.policy import (
    AUTO_CLOSE_GRACE_MS,
    EXTRA_DURATIONS,
    LATE_WARNING_MIN,
    MAX_REZ_AHEAD_MS,
    MIN_SHORT_BREAK_MS,
    MINUTE_MS,
    PAST_TOLERANCE_MS,
    RECENT_EXPIRY_MS,
    RESERVATION_DURATIONS,
    REZ_CREATION_COOLDOWN_MS,
    REZ_SPACING_MS,
    REZ_START_WINDOW_MS,
)
from breakbot.core.shift_calendar import (
    floor_to_minute_ms,
    format_date,
    format_hm,
    format_hm_with_day_hint,
    map_time_to_shift,
    parse_hhmm,
)
from breakbot.core.slot_finder import (
    break_cooldown_conflict,
    find_alternative_times,
    find_paired_ten_plan,
)
from breakbot.data.models import (
    FREE_RIGHTS_CAP,
    ActiveBreak,
    BreakRecord,
    ClosedBy,
    Notification,
    Reservation,
    ReservationStatus,
    new_id,
)

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from breakbot.core.shift_calendar import ShiftBounds
    from breakbot.data.models import Community, UserRecord

logger = logging.getLogger(__name__)


class CancelMatch(Enum):
    ALL = "all"
    TIME = "time"
    EARLIEST = "earliest"


@dataclass
class Outcome:
    """A successful transition: reply text plus pool notifications."""

    message: str
    notifications: list[Notification] = field(default_factory=list)
    public: bool = False


def validate_duration(duration: int, allowed: tuple[int, ...] = RESERVATION_DURATIONS) -> None:
    if duration not in allowed:
        choices = " or ".join(str(d) for d in allowed)
        raise ValidationError(f"Invalid duration. Choose {choices} minutes.")


def parse_time_arg(time_str: str):
    parsed = parse_hhmm(time_str)
    if parsed is None:
        raise ValidationError("Invalid time format. Example: 13:40 or 13.40")
    return parsed


def _minutes_ceil(ms: int) -> int:
    return -(-ms // MINUTE_MS)


class BreakEngine:
    """Applies user-initiated transitions to a Community snapshot."""

    def __init__(self, tz: ZoneInfo) -> None:
        self.tz = tz

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def close_break(
        self,
        user: UserRecord,
        now_ms: int,
        closed_by: ClosedBy,
        cooldown_mark_ms: int | None = None,
    ) -> BreakRecord:
        """Turn the active break into a BreakRecord and clear it.

        Ordinary breaks set the cooldown marker to cooldown_mark_ms
        (defaults to now). The originating reservation is completed.
        """
        b = user.active_break
        if b is None:
            raise NotFoundError("There is no active break.")

        record = BreakRecord(
            id=new_id(),
            pool_key=b.pool_key,
            duration=b.type_mins,
            is_acil=b.is_acil,
            is_extra=b.is_extra,
            is_admin_break=b.is_admin_break,
            start_at_ms=b.start_at_ms,
            end_at_ms=now_ms,
            scheduled_end_at_ms=b.scheduled_end_at_ms,
            late_min=max(0, (now_ms - b.scheduled_end_at_ms) // MINUTE_MS),
            closed_by=closed_by,
            shift_date=format_date(b.start_at_ms, self.tz),
        )
        user.break_log.append(record)

        if b.rez_id:
            for r in user.rez:
                if r.id == b.rez_id:
                    r.status = ReservationStatus.COMPLETED
                    r.completed_at_ms = now_ms
                    break

        user.active_break = None
        if b.is_normal:
            user.last_normal_break_closed_at_ms = (
                now_ms if cooldown_mark_ms is None else cooldown_mark_ms
            )
        return record

    def apply_shift_rollover(
        self, community: Community, user_id: int, shift_start_ms: int, now_ms: int,
    ) -> bool:
        """Reset the user when their detected shift start changed.

        Free rights go back to the cap, an active break is auto-closed,
        only future admin-created pending reservations survive, the
        cooldown marker is cleared and the user leaves the waitlist.
        """
        user = community.ensure_user(user_id)
        if user.last_reset_shift_start_ms == shift_start_ms:
            return False

        if user.active_break is not None:
            self.close_break(user, now_ms, ClosedBy.AUTO)
        user.free_rights = dict(FREE_RIGHTS_CAP)
        user.rez = [
            r for r in user.rez
            if r.admin_created
            and r.status is ReservationStatus.PENDING
            and r.start_at_ms > now_ms
        ]
        user.last_normal_break_closed_at_ms = None
        waitlist.remove_user(community, user_id)
        user.last_reset_shift_start_ms = shift_start_ms
        logger.info("Shift rollover: user=%d shift_start=%d", user_id, shift_start_ms)
        return True

    def _alternatives_text(self, alts: list[int]) -> str:
        if not alts:
            return ""
        return "\nAvailable times: " + " · ".join(format_hm(t, self.tz) for t in alts)

    def _refuse_with_alternatives(
        self,
        message: str,
        community: Community,
        user: UserRecord,
        pool_key: str,
        duration: int,
        now_ms: int,
        bounds: ShiftBounds,
    ) -> RuleViolation:
        alts = find_alternative_times(community, user, pool_key, duration, now_ms, bounds)
        return RuleViolation(
            message + self._alternatives_text(alts),
            suggestions=[format_hm(t, self.tz) for t in alts],
        )

    @staticmethod
    def _require_shift(bounds: ShiftBounds | None, schedule_label: str = "") -> ShiftBounds:
        if bounds is None:
            suffix = f"\nYour shift: {schedule_label}" if schedule_label else ""
            raise RuleViolation("You are outside your shift hours." + suffix)
        return bounds

    @staticmethod
    def _require_no_active_break(user: UserRecord) -> None:
        if user.active_break is not None:
            raise RuleViolation("You already have an active break. End it first with /back.")

    # ------------------------------------------------------------------
    # CreateReservation
    # ------------------------------------------------------------------

    def create_reservation(
        self,
        community: Community,
        user_id: int,
        pool_key: str,
        bounds: ShiftBounds | None,
        duration: int,
        time_str: str,
        allow_waitlist: bool,
        now_ms: int,
        schedule_label: str = "",
    ) -> Outcome:
        bounds = self._require_shift(bounds, schedule_label)
        validate_duration(duration)
        hhmm = parse_time_arg(time_str)
        user = community.ensure_user(user_id)

        start_ms = map_time_to_shift(hhmm, bounds)
        if start_ms is None:
            raise RuleViolation("That time is outside your shift.")
        if start_ms < now_ms - PAST_TOLERANCE_MS:
            raise RuleViolation("You cannot reserve a time in the past.")
        if start_ms > now_ms + MAX_REZ_AHEAD_MS:
            raise RuleViolation("Reservations can be at most 2 hours ahead.")

        edges = check_shift_edges(start_ms, duration, bounds)
        if not edges.ok:
            raise self._refuse_with_alternatives(
                edges.reason, community, user, pool_key, duration, now_ms, bounds,
            )

        if user.free_rights.get(duration, 0) <= 0:
            raise RuleViolation(f"You have no {duration} min break rights left.")

        own = [
            r for r in user.rez
            if not r.admin_created
            and r.status in (ReservationStatus.PENDING, ReservationStatus.STARTED)
        ]
        if own:
            last_created = max(own, key=lambda r: r.created_at_ms)
            elapsed = now_ms - last_created.created_at_ms
            if elapsed < REZ_CREATION_COOLDOWN_MS:
                wait_min = _minutes_ceil(REZ_CREATION_COOLDOWN_MS - elapsed)
                raise RuleViolation(
                    "You must wait 30 minutes after making a reservation.\n"
                    f"Time left: {wait_min} min"
                )

        for r in user.rez:
            if r.status not in (ReservationStatus.PENDING, ReservationStatus.STARTED):
                continue
            diff = abs(r.start_at_ms - start_ms)
            if diff < REZ_SPACING_MS:
                needed = 60 - diff // MINUTE_MS
                raise self._refuse_with_alternatives(
                    "Reservation refused: starts must be at least 1 hour apart.\n"
                    f"Time left: ~{needed} min",
                    community, user, pool_key, duration, now_ms, bounds,
                )

        cooldown = break_cooldown_conflict(user, start_ms)
        if not cooldown.ok:
            raise self._refuse_with_alternatives(
                "Reservation refused: 1 hour must pass after your last break.\n"
                f"Time left: ~{cooldown.left_min} min",
                community, user, pool_key, duration, now_ms, bounds,
            )

        end_ms = start_ms + duration * MINUTE_MS
        cap = can_reserve_slot(community, pool_key, duration, start_ms, end_ms)
        if not cap.ok:
            alts = find_alternative_times(community, user, pool_key, duration, now_ms, bounds)
            message = cap.reason + self._alternatives_text(alts)
            if duration == 20:
                plan = find_paired_ten_plan(
                    community, user, pool_key, now_ms, bounds, anchor_start_ms=start_ms,
                )
                if plan:
                    first, second = plan
                    message += (
                        f"\nAlternative: split it into 10 min at {format_hm(first, self.tz)}"
                        f" + 10 min at {format_hm(second, self.tz)}."
                    )
            if allow_waitlist:
                waitlist.add_entry(community, user_id, pool_key, duration, start_ms, end_ms, now_ms)
                message += "\nYou are on the waitlist. You will be notified when the slot frees up."
            raise RuleViolation(message, suggestions=[format_hm(t, self.tz) for t in alts])

        user.free_rights[duration] -= 1
        user.clamp_rights()
        user.rez.append(
            Reservation(
                id=new_id(),
                pool_key=pool_key,
                duration=duration,
                start_at_ms=start_ms,
                end_at_ms=end_ms,
                created_at_ms=now_ms,
            )
        )

        start_text = format_hm_with_day_hint(start_ms, now_ms, self.tz)
        logger.info("Reservation created: user=%d %dmin @ %s [%s]", user_id, duration, start_text, pool_key)
        return Outcome(
            message=(
                f"Reservation confirmed: {duration} min at {start_text}\n"
                f"Start it with /break {duration}"
            ),
            public=True,
        )

    # ------------------------------------------------------------------
    # StartBreak
    # ------------------------------------------------------------------

    def start_break(
        self,
        community: Community,
        user_id: int,
        pool_key: str,
        bounds: ShiftBounds | None,
        duration: int,
        now_ms: int,
        schedule_label: str = "",
    ) -> Outcome:
        self._require_shift(bounds, schedule_label)
        validate_duration(duration)
        user = community.ensure_user(user_id)
        self._require_no_active_break(user)

        cooldown = break_cooldown_conflict(user, now_ms)
        if not cooldown.ok:
            raise RuleViolation(
                "The cooldown between breaks has not passed yet.\n"
                f"Time left: {cooldown.left_min} min\n"
                "For an emergency use /emergency"
            )

        def in_window(r: Reservation) -> bool:
            return (
                r.status is ReservationStatus.PENDING
                and r.pool_key == pool_key
                and r.start_at_ms <= now_ms <= r.start_at_ms + REZ_START_WINDOW_MS
            )

        candidates = sorted(
            (r for r in user.rez if in_window(r) and r.duration == duration),
            key=lambda r: r.start_at_ms,
        )
        if not candidates:
            other = next((r for r in user.rez if in_window(r)), None)
            if other is not None:
                raise RuleViolation(
                    f"Your reservation for this time is {other.duration} min.\n"
                    f"Use /break {other.duration}"
                )
            recently_expired = any(
                r.status is ReservationStatus.EXPIRED
                and r.pool_key == pool_key
                and r.duration == duration
                and now_ms - (r.expired_at_ms or r.start_at_ms + REZ_START_WINDOW_MS)
                < RECENT_EXPIRY_MS
                for r in user.rez
            )
            if recently_expired:
                raise RuleViolation(
                    f"The start window of your {duration} min reservation has passed "
                    "(not started within 5 minutes).\n"
                    "Your right was refunded, you can reserve again."
                )
            raise NotFoundError(
                "You have no active reservation.\n"
                "Reserve first with /reserve in the reservation channel."
            )

        rez = candidates[0]
        start_at_ms = floor_to_minute_ms(now_ms)
        if rez.end_at_ms - start_at_ms < MIN_SHORT_BREAK_MS:
            raise RuleViolation(
                "Your reservation is about to run out. A break needs at least 5 minutes."
            )

        cap = can_start_now(community, pool_key, duration, now_ms, excluding_user_id=user_id)
        if not cap.ok:
            raise RuleViolation(
                "Pool is full. " + cap.reason
                + "\nYour reservation is still valid, start it when capacity frees up."
            )

        rez.status = ReservationStatus.STARTED
        rez.started_at_ms = start_at_ms
        # A late start shortens the break: it still ends at the reserved slot's end.
        scheduled_end = rez.end_at_ms
        user.active_break = ActiveBreak(
            id=new_id(),
            pool_key=pool_key,
            type_mins=duration,
            start_at_ms=start_at_ms,
            scheduled_end_at_ms=scheduled_end,
            auto_close_at_ms=scheduled_end + AUTO_CLOSE_GRACE_MS,
            rez_id=rez.id,
        )

        effective_min = (scheduled_end - start_at_ms) // MINUTE_MS
        end_text = format_hm(scheduled_end, self.tz)
        message = f"Break started: {duration} min | Ends: {end_text}\nWhen done: /back"
        if effective_min < duration:
            message += f"\nBecause of the late start your break is {effective_min} min."
        logger.info("Break started: user=%d %dmin end=%s [%s]", user_id, duration, end_text, pool_key)
        return Outcome(message=message, public=True)

    # ------------------------------------------------------------------
    # StartEmergencyBreak
    # ------------------------------------------------------------------

    def start_emergency_break(
        self,
        community: Community,
        user_id: int,
        pool_key: str,
        bounds: ShiftBounds | None,
        duration: int,
        now_ms: int,
        schedule_label: str = "",
    ) -> Outcome:
        bounds = self._require_shift(bounds, schedule_label)
        validate_duration(duration)
        user = community.ensure_user(user_id)
        self._require_no_active_break(user)

        edges = check_shift_edges(now_ms, duration, bounds)
        if not edges.ok:
            raise RuleViolation(edges.reason)

        if user.free_rights.get(duration, 0) <= 0:
            raise RuleViolation(f"You have no {duration} min break rights left.")

        cap = can_start_now(community, pool_key, duration, now_ms, excluding_user_id=user_id)
        if not cap.ok:
            raise RuleViolation("Pool is full. " + cap.reason)

        user.free_rights[duration] -= 1
        user.clamp_rights()
        start_at_ms = floor_to_minute_ms(now_ms)
        scheduled_end = start_at_ms + duration * MINUTE_MS
        user.active_break = ActiveBreak(
            id=new_id(),
            pool_key=pool_key,
            type_mins=duration,
            start_at_ms=start_at_ms,
            scheduled_end_at_ms=scheduled_end,
            auto_close_at_ms=scheduled_end + AUTO_CLOSE_GRACE_MS,
            is_acil=True,
        )

        end_text = format_hm(scheduled_end, self.tz)
        logger.info("Emergency break started: user=%d %dmin end=%s [%s]", user_id, duration, end_text, pool_key)
        return Outcome(
            message=f"Emergency break started: {duration} min | Ends: {end_text}\nWhen done: /back",
            public=True,
        )

    # ------------------------------------------------------------------
    # StartExtraBreak
    # ------------------------------------------------------------------

    def start_extra_break(
        self,
        community: Community,
        user_id: int,
        pool_key: str,
        in_shift: bool,
        duration: int,
        now_ms: int,
        schedule_label: str = "",
    ) -> Outcome:
        if in_shift:
            suffix = f"\nYour shift: {schedule_label}" if schedule_label else ""
            raise RuleViolation("Extra breaks can only be used outside your shift." + suffix)
        validate_duration(duration, EXTRA_DURATIONS)
        user = community.ensure_user(user_id)
        self._require_no_active_break(user)

        if user.extra_rights.get(duration, 0) <= 0:
            raise RuleViolation(
                f"You have no {duration} min extra break rights.\n"
                "Extra rights can only be granted by an admin."
            )

        user.extra_rights[duration] = max(0, user.extra_rights[duration] - 1)
        start_at_ms = floor_to_minute_ms(now_ms)
        scheduled_end = start_at_ms + duration * MINUTE_MS
        user.active_break = ActiveBreak(
            id=new_id(),
            pool_key=pool_key,
            type_mins=duration,
            start_at_ms=start_at_ms,
            scheduled_end_at_ms=scheduled_end,
            auto_close_at_ms=scheduled_end + AUTO_CLOSE_GRACE_MS,
            is_acil=True,
            is_extra=True,
        )

        end_text = format_hm(scheduled_end, self.tz)
        logger.info("Extra break started: user=%d %dmin end=%s [%s]", user_id, duration, end_text, pool_key)
        return Outcome(
            message=f"Extra break started: {duration} min | Ends: {end_text}\nWhen done: /back",
            public=True,
        )

    # ------------------------------------------------------------------
    # EndBreak
    # ------------------------------------------------------------------

    def end_break(
        self,
        community: Community,
        user_id: int,
        now_ms: int,
        closed_by: ClosedBy = ClosedBy.USER,
    ) -> Outcome:
        user = community.ensure_user(user_id)
        if user.active_break is None:
            raise NotFoundError("You have no active break.")

        pool_key = user.active_break.pool_key
        record = self.close_break(
            user, now_ms, closed_by, cooldown_mark_ms=floor_to_minute_ms(now_ms),
        )
        logger.info(
            "Break ended: user=%d %dmin late=%dmin by=%s [%s]",
            user_id, record.duration, record.late_min, closed_by.value, pool_key,
        )
        if record.late_min > LATE_WARNING_MIN:
            message = f"Break ended.\nLate by: {record.late_min} min"
        else:
            message = "Break ended. Back to work!"
        return Outcome(message=message, public=True)

    # ------------------------------------------------------------------
    # CancelReservation
    # ------------------------------------------------------------------

    def select_pending(
        self,
        pending: list[Reservation],
        match: CancelMatch,
        time_str: str | None,
    ) -> list[Reservation]:
        """Pick cancellation targets among already-sorted pending reservations."""
        if match is CancelMatch.ALL:
            return list(pending)
        if match is CancelMatch.TIME:
            hhmm = parse_time_arg(time_str or "")
            wanted = hhmm.strftime("%H:%M")
            targets = [r for r in pending if format_hm(r.start_at_ms, self.tz) == wanted]
            if not targets:
                raise NotFoundError(f"No pending reservation found at {wanted}.")
            return targets
        return pending[:1]

    def cancel_targets(self, user: UserRecord, targets: list[Reservation], now_ms: int) -> bool:
        """Cancel the reservations; returns True if any right was refunded."""
        refunded = False
        for r in targets:
            r.status = ReservationStatus.CANCELLED
            r.cancelled_at_ms = now_ms
            if not r.admin_created:
                user.refund(r.duration)
                refunded = True
        return refunded

    def describe_targets(
        self, targets: list[Reservation], match: CancelMatch, now_ms: int,
    ) -> str:
        if match is CancelMatch.ALL:
            return f"{len(targets)} reservation(s)"
        r = targets[0]
        return f"the {r.duration} min reservation at {format_hm_with_day_hint(r.start_at_ms, now_ms, self.tz)}"

    def cancel_reservation(
        self,
        community: Community,
        user_id: int,
        pool_key: str,
        match: CancelMatch,
        now_ms: int,
        time_str: str | None = None,
    ) -> Outcome:
        user = community.ensure_user(user_id)
        pending = user.pending_reservations(pool_key)
        if not pending:
            raise NotFoundError("You have no pending reservation to cancel.")

        targets = self.select_pending(pending, match, time_str)
        label = self.describe_targets(targets, match, now_ms)
        refunded = self.cancel_targets(user, targets, now_ms)
        logger.info("Reservation cancelled: user=%d count=%d [%s]", user_id, len(targets), pool_key)
        return Outcome(
            message=f"Cancelled {label}." + (" Rights refunded." if refunded else ""),
            public=True,
        )
