"""Tests for breakbot.core.admin_ops."""

import pytest

from breakbot.core.admin_ops import ADMIN_POOL, AdminOps, RightKind
from breakbot.core.break_engine import CancelMatch
from breakbot.core.errors import NotFoundError, RuleViolation, ValidationError
from breakbot.data.models import (
    ActiveBreak,
    ClosedBy,
    Reservation,
    ReservationStatus,
    TargetType,
)

MIN = 60_000
ADMIN = 999


@pytest.fixture
def ops(engine):
    return AdminOps(engine)


def _rez(pool, duration, start):
    return Reservation(
        id=f"r-{pool}-{start}",
        pool_key=pool,
        duration=duration,
        start_at_ms=start,
        end_at_ms=start + duration * MIN,
        created_at_ms=start - 60 * MIN,
    )


def _break(duration, start, pool="morning", **flags):
    end = start + duration * MIN
    return ActiveBreak(
        id="b1",
        pool_key=pool,
        type_mins=duration,
        start_at_ms=start,
        scheduled_end_at_ms=end,
        auto_close_at_ms=end + 2 * MIN,
        **flags,
    )


class TestGrantAndRevoke:
    def test_grant_accumulates(self, ops, community):
        ops.grant_extra_right(community, ADMIN, 1, 10)
        out = ops.grant_extra_right(community, ADMIN, 1, 10)
        assert community.users[1].extra_rights == {10: 2}
        assert "Total 10 min extra rights: 2" in out.message

    def test_grant_invalid_duration(self, ops, community):
        with pytest.raises(ValidationError):
            ops.grant_extra_right(community, ADMIN, 1, 15)

    def test_revoke_normal(self, ops, community):
        out = ops.revoke_right(community, ADMIN, 1, 10, RightKind.NORMAL)
        assert community.users[1].free_rights[10] == 1
        assert out.message.endswith("Remaining 10 min normal rights: 1")

    def test_revoke_extra(self, ops, community):
        community.ensure_user(1).extra_rights = {5: 1}
        ops.revoke_right(community, ADMIN, 1, 5, RightKind.EXTRA)
        assert community.users[1].extra_rights == {5: 0}

    def test_revoke_at_zero(self, ops, community):
        community.ensure_user(1).free_rights[20] = 0
        with pytest.raises(RuleViolation, match="already 0"):
            ops.revoke_right(community, ADMIN, 1, 20, RightKind.NORMAL)

    def test_revoke_normal_rejects_extra_durations(self, ops, community):
        with pytest.raises(ValidationError):
            ops.revoke_right(community, ADMIN, 1, 5, RightKind.NORMAL)


class TestEndBreakFor:
    def test_no_break(self, ops, community, at):
        with pytest.raises(NotFoundError):
            ops.end_break_for(community, ADMIN, 1, at(10, 10))

    def test_closes_and_notifies(self, ops, community, at):
        user = community.ensure_user(1)
        user.active_break = _break(20, at(10, 10))

        out = ops.end_break_for(community, ADMIN, 1, at(10, 10, 5, 30))

        assert user.active_break is None
        assert user.break_log[-1].closed_by is ClosedBy.ADMIN
        assert user.last_normal_break_closed_at_ms == at(10, 10, 5, 30)
        assert out.message == "Ended the user's 20 min break."
        note = out.notifications[0]
        assert (note.target_pool_key, note.target_type, note.user_id) == (
            "morning", TargetType.BREAK_CHANNEL, 1,
        )
        assert note.message == "Break ended by an admin (20 min normal)."


class TestCreateReservationFor:
    def test_no_right_debited(self, ops, community, at, morning_bounds):
        community.ensure_user(1).free_rights[20] = 0

        out = ops.create_reservation_for(
            community, ADMIN, 1, "morning", morning_bounds, 20, "10:30", at(10, 10),
        )

        user = community.users[1]
        assert user.free_rights[20] == 0
        assert user.rez[0].admin_created
        assert out.message == "Created a 20 min reservation at 10:30. No right was debited."
        assert out.notifications[0].target_type is TargetType.RESERVATION_CHANNEL
        assert out.notifications[0].message == (
            "An admin reserved 20 min at 10:30 for you.\nStart it with /break 20"
        )

    def test_not_limited_to_two_hours(self, ops, community, at, morning_bounds):
        ops.create_reservation_for(community, ADMIN, 1, "morning", morning_bounds, 10, "14:00", at(10, 10))
        assert community.users[1].rez[0].start_at_ms == at(10, 14)

    def test_no_active_shift(self, ops, community, at):
        with pytest.raises(RuleViolation, match="no active shift in the Morning pool"):
            ops.create_reservation_for(community, ADMIN, 1, "morning", None, 10, "10:30", at(10, 20))

    def test_capacity_still_applies(self, ops, community, at, morning_bounds):
        community.ensure_user(2).rez.append(_rez("morning", 20, at(10, 10, 30)))
        with pytest.raises(RuleViolation, match="Capacity is full"):
            ops.create_reservation_for(
                community, ADMIN, 1, "morning", morning_bounds, 20, "10:40", at(10, 10),
            )

    def test_shift_edges_still_apply(self, ops, community, at, morning_bounds):
        with pytest.raises(RuleViolation, match="last 30 minutes"):
            ops.create_reservation_for(
                community, ADMIN, 1, "morning", morning_bounds, 20, "15:20", at(10, 10),
            )


class TestCancelReservationsFor:
    def test_nothing_pending(self, ops, community, at):
        with pytest.raises(NotFoundError):
            ops.cancel_reservations_for(community, ADMIN, 1, CancelMatch.ALL, at(10, 10))

    def test_one_notice_per_pool(self, ops, community, at):
        user = community.ensure_user(1)
        user.free_rights = {10: 0, 20: 1}
        user.rez += [
            _rez("morning", 10, at(10, 10, 30)),
            _rez("morning", 10, at(10, 11, 40)),
            _rez("evening", 20, at(10, 18, 30)),
        ]

        out = ops.cancel_reservations_for(community, ADMIN, 1, CancelMatch.ALL, at(10, 10))

        assert all(r.status is ReservationStatus.CANCELLED for r in user.rez)
        assert out.message == "Cancelled 3 reservation(s). Rights refunded."
        by_pool = {n.target_pool_key: n.message for n in out.notifications}
        assert by_pool == {
            "morning": "10 min @ 10:30, 10 min @ 11:40 reservations were cancelled by an admin.",
            "evening": "20 min @ 18:30 reservation was cancelled by an admin.",
        }


class TestAdminBreak:
    def test_start(self, ops, community, at):
        out = ops.start_admin_break(community, ADMIN, 15, at(10, 10, 0, 45))

        b = community.users[ADMIN].active_break
        assert b.pool_key == ADMIN_POOL
        assert b.is_admin_break
        assert b.scheduled_end_at_ms == at(10, 10, 15)
        assert out.message == "Break started: 15 min | Ends: 10:15"
        assert out.notifications[0].target_pool_key == ADMIN_POOL

    def test_start_rejects_other_durations(self, ops, community, at):
        with pytest.raises(ValidationError):
            ops.start_admin_break(community, ADMIN, 7, at(10, 10))

    def test_start_twice(self, ops, community, at):
        ops.start_admin_break(community, ADMIN, 15, at(10, 10))
        with pytest.raises(RuleViolation, match="/admin back"):
            ops.start_admin_break(community, ADMIN, 15, at(10, 10, 1))

    def test_end_with_lateness(self, ops, community, at):
        ops.start_admin_break(community, ADMIN, 15, at(10, 10))
        out = ops.end_admin_break(community, ADMIN, at(10, 10, 20))

        admin = community.users[ADMIN]
        assert admin.active_break is None
        assert admin.last_normal_break_closed_at_ms is None
        assert out.message == "Break ended. Late by: 5 min"
        assert out.notifications[0].message == "Admin break ended.\nLate by: 5 min"

    def test_end_without_admin_break(self, ops, community, at):
        community.ensure_user(ADMIN).active_break = _break(10, at(10, 10))
        with pytest.raises(NotFoundError):
            ops.end_admin_break(community, ADMIN, at(10, 10, 5))
