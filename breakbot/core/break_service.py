"""
Shift Break Bot — UI-Agnostic Break Service.

The single entry point the transport talks to. Every call:
resolve the actor's shift from their display name -> enter the snapshot
queue -> run the maintenance sweep -> roll the user over to a new shift
if needed -> run the requested engine operation -> persist.

Returns structured ServiceResponse objects and never sends anything
itself; notifications produced along the way are handed back to the
caller for delivery.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

from breakbot.core import reporting
from breakbot.core.admin_ops import AdminOps, RightKind
from breakbot.core.break_engine import BreakEngine, CancelMatch, Outcome
from breakbot.core.errors import BreakError, NotFoundError, RuleViolation, ValidationError
from breakbot.core.maintenance import run_maintenance
from breakbot.core.shift_calendar import (
    detect_shift_from_name,
    find_active_shift_for_pool,
    pool_label,
    shift_bounds_containing_now,
    shift_examples_text,
)

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from breakbot.core.shift_calendar import ShiftBounds, ShiftSchedule
    from breakbot.data.models import Community, Notification
    from breakbot.data.snapshot_queue import SnapshotQueue

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------


class ResultKind(Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    RULE_VIOLATION = "rule_violation"
    NOT_FOUND = "not_found"


_ERROR_KINDS = {
    ValidationError: ResultKind.VALIDATION_ERROR,
    RuleViolation: ResultKind.RULE_VIOLATION,
    NotFoundError: ResultKind.NOT_FOUND,
}


@dataclass
class ServiceResponse:
    success: bool
    kind: ResultKind
    message: str
    notifications: list[Notification] = field(default_factory=list)
    public: bool = False                 # reply visible to the whole channel
    persisted: bool = True
    suggestions: list[str] = field(default_factory=list)


@dataclass
class Actor:
    user_id: int
    display_name: str | None = None


@dataclass
class ShiftContext:
    """Where the acting user stands right now."""

    user_id: int
    pool_key: str
    schedule: ShiftSchedule
    bounds: ShiftBounds | None
    now_ms: int


def _failure(error: BreakError, notifications: list[Notification] | None = None) -> ServiceResponse:
    return ServiceResponse(
        success=False,
        kind=_ERROR_KINDS.get(type(error), ResultKind.RULE_VIOLATION),
        message=error.message,
        notifications=notifications or [],
        suggestions=getattr(error, "suggestions", []),
    )


def _system_clock() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# BreakService
# ---------------------------------------------------------------------------


class BreakService:
    """Orchestrates sweep, rollover and engine operations per community."""

    def __init__(
        self,
        queue: SnapshotQueue,
        tz: ZoneInfo,
        clock: Callable[[], int] = _system_clock,
    ) -> None:
        self._queue = queue
        self._tz = tz
        self._clock = clock
        self._engine = BreakEngine(tz)
        self._admin = AdminOps(self._engine)

    def now_ms(self) -> int:
        return self._clock()

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _resolve_shift(self, actor: Actor, channel_pool: str | None, now_ms: int) -> ShiftContext:
        detected = detect_shift_from_name(actor.display_name)
        if detected is None:
            raise ValidationError(
                "Could not detect your shift from your display name.\n"
                "Add your shift hours to your name, for example \"Alex | 16.00 - 00.00\".\n"
                + shift_examples_text()
            )
        pool_key, schedule = detected
        if channel_pool is not None and pool_key != channel_pool:
            raise RuleViolation(
                f"This channel belongs to the {pool_label(channel_pool)} pool, "
                f"but your shift is {pool_label(pool_key)} ({schedule.label})."
            )
        return ShiftContext(
            user_id=actor.user_id,
            pool_key=pool_key,
            schedule=schedule,
            bounds=shift_bounds_containing_now(now_ms, schedule, self._tz),
            now_ms=now_ms,
        )

    async def _execute(
        self,
        community_id: int,
        operation: Callable[[Community, int], Outcome],
        user_id: int | None = None,
        rollover: ShiftContext | None = None,
    ) -> ServiceResponse:
        """Sweep, optionally roll over, then run ``operation`` in the queue."""
        now_ms = rollover.now_ms if rollover else self._clock()

        def unit(community: Community) -> ServiceResponse:
            if user_id is not None:
                community.ensure_user(user_id)
            swept = run_maintenance(community, now_ms, self._tz)
            if rollover is not None and rollover.bounds is not None:
                self._engine.apply_shift_rollover(
                    community, rollover.user_id, rollover.bounds.start_ms, now_ms,
                )
            try:
                outcome = operation(community, now_ms)
            except BreakError as e:
                return _failure(e, swept)
            return ServiceResponse(
                success=True,
                kind=ResultKind.SUCCESS,
                message=outcome.message,
                notifications=swept + outcome.notifications,
                public=outcome.public,
            )

        response, persisted = await self._queue.run(community_id, unit)
        response.persisted = persisted
        if not persisted:
            logger.warning("Community %d: result returned but not persisted", community_id)
        return response

    async def _user_op(
        self,
        community_id: int,
        actor: Actor,
        channel_pool: str | None,
        operation: Callable[[Community, ShiftContext], Outcome],
    ) -> ServiceResponse:
        try:
            ctx = self._resolve_shift(actor, channel_pool, self._clock())
        except BreakError as e:
            return _failure(e)
        return await self._execute(
            community_id,
            lambda community, _now: operation(community, ctx),
            user_id=actor.user_id,
            rollover=ctx,
        )

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    async def reserve(
        self,
        community_id: int,
        channel_pool: str,
        actor: Actor,
        duration: int,
        time_str: str,
        allow_waitlist: bool = False,
    ) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.create_reservation(
                c, ctx.user_id, ctx.pool_key, ctx.bounds, duration, time_str,
                allow_waitlist, ctx.now_ms, ctx.schedule.label,
            ),
        )

    async def start_break(
        self, community_id: int, channel_pool: str, actor: Actor, duration: int,
    ) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.start_break(
                c, ctx.user_id, ctx.pool_key, ctx.bounds, duration, ctx.now_ms, ctx.schedule.label,
            ),
        )

    async def start_emergency_break(
        self, community_id: int, channel_pool: str, actor: Actor, duration: int,
    ) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.start_emergency_break(
                c, ctx.user_id, ctx.pool_key, ctx.bounds, duration, ctx.now_ms, ctx.schedule.label,
            ),
        )

    async def start_extra_break(
        self, community_id: int, channel_pool: str, actor: Actor, duration: int,
    ) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.start_extra_break(
                c, ctx.user_id, ctx.pool_key, ctx.bounds is not None, duration,
                ctx.now_ms, ctx.schedule.label,
            ),
        )

    async def end_break(self, community_id: int, channel_pool: str, actor: Actor) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.end_break(c, ctx.user_id, ctx.now_ms),
        )

    async def cancel_reservation(
        self,
        community_id: int,
        channel_pool: str,
        actor: Actor,
        match: CancelMatch = CancelMatch.EARLIEST,
        time_str: str | None = None,
    ) -> ServiceResponse:
        return await self._user_op(
            community_id, actor, channel_pool,
            lambda c, ctx: self._engine.cancel_reservation(
                c, ctx.user_id, ctx.pool_key, match, ctx.now_ms, time_str,
            ),
        )

    async def rights(self, community_id: int, channel_pool: str, actor: Actor) -> ServiceResponse:
        def view(community: Community, ctx: ShiftContext) -> Outcome:
            status = reporting.rights_status(
                community.ensure_user(ctx.user_id),
                ctx.pool_key,
                ctx.now_ms,
                outside_shift_label=ctx.schedule.label if ctx.bounds is None else None,
            )
            return Outcome(reporting.render_rights_status(status, ctx.now_ms, self._tz))

        return await self._user_op(community_id, actor, channel_pool, view)

    async def reservations(
        self,
        community_id: int,
        channel_pool: str,
        actor: Actor,
        mention: reporting.Mention = reporting.plain_mention,
    ) -> ServiceResponse:
        def view(community: Community, ctx: ShiftContext) -> Outcome:
            listing = reporting.reservation_list(community, ctx.user_id, ctx.pool_key)
            return Outcome(
                reporting.render_reservation_list(listing, ctx.now_ms, self._tz, mention)
            )

        return await self._user_op(community_id, actor, channel_pool, view)

    # ------------------------------------------------------------------
    # Admin operations (caller has verified admin rights)
    # ------------------------------------------------------------------

    async def grant_extra_right(
        self, community_id: int, admin_id: int, target_id: int, duration: int,
    ) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, _now: self._admin.grant_extra_right(c, admin_id, target_id, duration),
        )

    async def revoke_right(
        self, community_id: int, admin_id: int, target_id: int, duration: int, kind: RightKind,
    ) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, _now: self._admin.revoke_right(c, admin_id, target_id, duration, kind),
        )

    async def admin_end_break(self, community_id: int, admin_id: int, target_id: int) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, now_ms: self._admin.end_break_for(c, admin_id, target_id, now_ms),
        )

    async def admin_create_reservation(
        self,
        community_id: int,
        admin_id: int,
        target_id: int,
        pool_key: str,
        duration: int,
        time_str: str,
    ) -> ServiceResponse:
        def create(community: Community, now_ms: int) -> Outcome:
            active = find_active_shift_for_pool(pool_key, now_ms, self._tz)
            bounds = active[1] if active else None
            return self._admin.create_reservation_for(
                community, admin_id, target_id, pool_key, bounds, duration, time_str, now_ms,
            )

        return await self._execute(community_id, create)

    async def admin_cancel_reservation(
        self,
        community_id: int,
        admin_id: int,
        target_id: int,
        match: CancelMatch = CancelMatch.EARLIEST,
        time_str: str | None = None,
    ) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, now_ms: self._admin.cancel_reservations_for(
                c, admin_id, target_id, match, now_ms, time_str,
            ),
        )

    async def start_admin_break(self, community_id: int, admin_id: int, duration: int) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, now_ms: self._admin.start_admin_break(c, admin_id, duration, now_ms),
            user_id=admin_id,
        )

    async def end_admin_break(self, community_id: int, admin_id: int) -> ServiceResponse:
        return await self._execute(
            community_id,
            lambda c, now_ms: self._admin.end_admin_break(c, admin_id, now_ms),
            user_id=admin_id,
        )

    # ------------------------------------------------------------------
    # Reports (read-only, still serialized)
    # ------------------------------------------------------------------

    async def general_report(self, community_id: int, rng: reporting.ReportRange) -> ServiceResponse:
        def report(community: Community, _now: int) -> Outcome:
            summaries = reporting.general_summary(community, rng)
            return Outcome(reporting.render_general_summary(summaries, rng))

        return await self._execute(community_id, report)

    async def pool_report(
        self,
        community_id: int,
        pool_key: str,
        rng: reporting.ReportRange,
        mention: reporting.Mention = reporting.plain_mention,
    ) -> ServiceResponse:
        def report(community: Community, _now: int) -> Outcome:
            data = reporting.pool_report(community, pool_key, rng, self._tz)
            return Outcome(reporting.render_pool_report(data, mention))

        return await self._execute(community_id, report)

    async def user_report(
        self,
        community_id: int,
        target_id: int,
        rng: reporting.ReportRange,
        shift_label: str | None = None,
        mention: reporting.Mention = reporting.plain_mention,
    ) -> ServiceResponse:
        def report(community: Community, now_ms: int) -> Outcome:
            data = reporting.user_report(community, target_id, rng, self._tz, shift_label)
            if data is None:
                raise NotFoundError("No records found for this user.")
            return Outcome(reporting.render_user_report(data, now_ms, self._tz, mention))

        return await self._execute(community_id, report)

    # ------------------------------------------------------------------
    # Timer and shutdown
    # ------------------------------------------------------------------

    async def run_maintenance_all(self, community_ids: list[int]) -> dict[int, list[Notification]]:
        """Sweep every community; returns the notifications per community."""
        results: dict[int, list[Notification]] = {}
        for community_id in community_ids:
            now_ms = self._clock()
            notifications, _persisted = await self._queue.run(
                community_id, lambda c, now_ms=now_ms: run_maintenance(c, now_ms, self._tz),
            )
            results[community_id] = notifications
        return results

    async def flush_and_close(self) -> bool:
        return await self._queue.flush_and_close()
