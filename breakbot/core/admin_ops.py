"""
Shift Break Bot — Admin Operations.

Privileged transitions: entitlement grants and revocations, forced break
closes, reservations created or cancelled on someone else's behalf, and
the admin's own rule-free break. The caller has already verified admin
rights; these functions only apply the rules of each operation.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import TYPE_CHECKING

from breakbot.core.break_engine import (
    BreakEngine,
    CancelMatch,
    Outcome,
    parse_time_arg,
    validate_duration,
)
from breakbot.core.capacity import can_reserve_slot, check_shift_edges
from breakbot.core.errors import NotFoundError, RuleViolation
from breakbot.core.policy import (
    ADMIN_BREAK_DURATIONS,
    AUTO_CLOSE_GRACE_MS,
    EXTRA_DURATIONS,
    LATE_WARNING_MIN,
    MINUTE_MS,
    PAST_TOLERANCE_MS,
)
from breakbot.core.shift_calendar import (
    floor_to_minute_ms,
    format_hm,
    format_hm_with_day_hint,
    map_time_to_shift,
    pool_label,
)
from breakbot.data.models import (
    ActiveBreak,
    ClosedBy,
    Notification,
    Reservation,
    TargetType,
    new_id,
)

if TYPE_CHECKING:
    from breakbot.core.shift_calendar import ShiftBounds
    from breakbot.data.models import Community

logger = logging.getLogger(__name__)

ADMIN_POOL = "admin"


class RightKind(Enum):
    NORMAL = "normal"
    EXTRA = "extra"


class AdminOps:
    def __init__(self, engine: BreakEngine) -> None:
        self.engine = engine
        self.tz = engine.tz

    def grant_extra_right(
        self, community: Community, admin_id: int, target_id: int, duration: int,
    ) -> Outcome:
        validate_duration(duration, EXTRA_DURATIONS)
        target = community.ensure_user(target_id)
        target.extra_rights[duration] = target.extra_rights.get(duration, 0) + 1
        logger.info("Admin %d granted extra right: user=%d +1x%dmin", admin_id, target_id, duration)
        return Outcome(
            message=(
                f"Granted +1 × {duration} min extra break right.\n"
                f"Total {duration} min extra rights: {target.extra_rights[duration]}\n"
                "Usable outside the shift with /extra."
            )
        )

    def revoke_right(
        self,
        community: Community,
        admin_id: int,
        target_id: int,
        duration: int,
        kind: RightKind,
    ) -> Outcome:
        if kind is RightKind.NORMAL:
            validate_duration(duration)
        else:
            validate_duration(duration, EXTRA_DURATIONS)
        target = community.ensure_user(target_id)
        rights = target.free_rights if kind is RightKind.NORMAL else target.extra_rights

        current = rights.get(duration, 0)
        if current <= 0:
            raise RuleViolation(f"The user's {duration} min {kind.value} rights are already 0.")
        rights[duration] = current - 1
        if kind is RightKind.NORMAL:
            target.clamp_rights()
        logger.info(
            "Admin %d revoked %s right: user=%d -1x%dmin", admin_id, kind.value, target_id, duration,
        )
        return Outcome(
            message=(
                f"Revoked 1 × {duration} min {kind.value} break right.\n"
                f"Remaining {duration} min {kind.value} rights: {rights[duration]}"
            )
        )

    def end_break_for(
        self, community: Community, admin_id: int, target_id: int, now_ms: int,
    ) -> Outcome:
        target = community.ensure_user(target_id)
        b = target.active_break
        if b is None:
            raise NotFoundError("The user has no active break.")

        self.engine.close_break(target, now_ms, ClosedBy.ADMIN)
        logger.info("Admin %d ended break: user=%d %dmin [%s]", admin_id, target_id, b.type_mins, b.pool_key)
        return Outcome(
            message=f"Ended the user's {b.type_mins} min break.",
            notifications=[
                Notification(
                    b.pool_key,
                    TargetType.BREAK_CHANNEL,
                    f"Break ended by an admin ({b.type_mins} min {b.kind_label}).",
                    user_id=target_id,
                )
            ],
        )

    def create_reservation_for(
        self,
        community: Community,
        admin_id: int,
        target_id: int,
        pool_key: str,
        bounds: ShiftBounds | None,
        duration: int,
        time_str: str,
        now_ms: int,
    ) -> Outcome:
        """Reserve on the target's behalf. No right is debited."""
        validate_duration(duration)
        hhmm = parse_time_arg(time_str)
        if bounds is None:
            raise RuleViolation(f"There is no active shift in the {pool_label(pool_key)} pool right now.")

        start_ms = map_time_to_shift(hhmm, bounds)
        if start_ms is None:
            raise RuleViolation("That time is outside the shift.")
        if start_ms < now_ms - PAST_TOLERANCE_MS:
            raise RuleViolation("You cannot reserve a time in the past.")
        edges = check_shift_edges(start_ms, duration, bounds)
        if not edges.ok:
            raise RuleViolation(edges.reason)

        end_ms = start_ms + duration * MINUTE_MS
        cap = can_reserve_slot(community, pool_key, duration, start_ms, end_ms)
        if not cap.ok:
            raise RuleViolation("Capacity is full. " + cap.reason)

        target = community.ensure_user(target_id)
        target.rez.append(
            Reservation(
                id=new_id(),
                pool_key=pool_key,
                duration=duration,
                start_at_ms=start_ms,
                end_at_ms=end_ms,
                created_at_ms=now_ms,
                admin_created=True,
            )
        )

        start_text = format_hm_with_day_hint(start_ms, now_ms, self.tz)
        logger.info(
            "Admin %d created reservation: user=%d %dmin @ %s [%s]",
            admin_id, target_id, duration, start_text, pool_key,
        )
        return Outcome(
            message=f"Created a {duration} min reservation at {start_text}. No right was debited.",
            notifications=[
                Notification(
                    pool_key,
                    TargetType.RESERVATION_CHANNEL,
                    f"An admin reserved {duration} min at {start_text} for you.\n"
                    f"Start it with /break {duration}",
                    user_id=target_id,
                )
            ],
        )

    def cancel_reservations_for(
        self,
        community: Community,
        admin_id: int,
        target_id: int,
        match: CancelMatch,
        now_ms: int,
        time_str: str | None = None,
    ) -> Outcome:
        """Cancel across all pools, one notice per affected pool."""
        target = community.ensure_user(target_id)
        pending = target.pending_reservations()
        if not pending:
            raise NotFoundError("The user has no pending reservation to cancel.")

        targets = self.engine.select_pending(pending, match, time_str)
        label = self.engine.describe_targets(targets, match, now_ms)
        refunded = self.engine.cancel_targets(target, targets, now_ms)

        by_pool: dict[str, list[Reservation]] = defaultdict(list)
        for r in targets:
            by_pool[r.pool_key].append(r)
        notifications = [
            Notification(
                pool_key,
                TargetType.RESERVATION_CHANNEL,
                ", ".join(f"{r.duration} min @ {format_hm(r.start_at_ms, self.tz)}" for r in rez)
                + (" reservations were" if len(rez) > 1 else " reservation was")
                + " cancelled by an admin.",
                user_id=target_id,
            )
            for pool_key, rez in by_pool.items()
        ]

        logger.info("Admin %d cancelled reservations: user=%d count=%d", admin_id, target_id, len(targets))
        return Outcome(
            message=f"Cancelled {label}." + (" Rights refunded." if refunded else ""),
            notifications=notifications,
        )

    def start_admin_break(
        self, community: Community, admin_id: int, duration: int, now_ms: int,
    ) -> Outcome:
        validate_duration(duration, ADMIN_BREAK_DURATIONS)
        admin = community.ensure_user(admin_id)
        if admin.active_break is not None:
            end_cmd = "/admin back" if admin.active_break.is_admin_break else "/back"
            raise RuleViolation(f"You already have an active break. End it first with {end_cmd}.")

        start_at_ms = floor_to_minute_ms(now_ms)
        scheduled_end = start_at_ms + duration * MINUTE_MS
        admin.active_break = ActiveBreak(
            id=new_id(),
            pool_key=ADMIN_POOL,
            type_mins=duration,
            start_at_ms=start_at_ms,
            scheduled_end_at_ms=scheduled_end,
            auto_close_at_ms=scheduled_end + AUTO_CLOSE_GRACE_MS,
            is_admin_break=True,
        )

        end_text = format_hm(scheduled_end, self.tz)
        logger.info("Admin break started: admin=%d %dmin end=%s", admin_id, duration, end_text)
        return Outcome(
            message=f"Break started: {duration} min | Ends: {end_text}",
            notifications=[
                Notification(
                    ADMIN_POOL,
                    TargetType.BREAK_CHANNEL,
                    f"Admin break started: {duration} min | Ends: {end_text}\n"
                    "End it with /admin back",
                    user_id=admin_id,
                )
            ],
        )

    def end_admin_break(self, community: Community, admin_id: int, now_ms: int) -> Outcome:
        admin = community.ensure_user(admin_id)
        if admin.active_break is None or not admin.active_break.is_admin_break:
            raise NotFoundError("You have no active admin break.")

        record = self.engine.close_break(admin, now_ms, ClosedBy.USER)
        logger.info("Admin break ended: admin=%d %dmin late=%dmin", admin_id, record.duration, record.late_min)
        late = record.late_min > LATE_WARNING_MIN
        notice = "Admin break ended."
        if late:
            notice += f"\nLate by: {record.late_min} min"
        return Outcome(
            message="Break ended." + (f" Late by: {record.late_min} min" if late else ""),
            notifications=[
                Notification(ADMIN_POOL, TargetType.BREAK_CHANNEL, notice, user_id=admin_id)
            ],
        )
