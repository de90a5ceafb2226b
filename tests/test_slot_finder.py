"""Tests for breakbot.core.slot_finder."""

from breakbot.core.slot_finder import (
    break_cooldown_conflict,
    find_alternative_times,
    find_paired_ten_plan,
    user_has_rez_start_conflict,
)
from breakbot.data.models import Reservation, ReservationStatus

MIN = 60_000


def _rez(duration, start, status=ReservationStatus.PENDING, pool="morning"):
    return Reservation(
        id=f"r-{start}",
        pool_key=pool,
        duration=duration,
        start_at_ms=start,
        end_at_ms=start + duration * MIN,
        created_at_ms=start - 60 * MIN,
        status=status,
    )


class TestRezStartConflict:
    def test_within_an_hour(self, community, at):
        user = community.ensure_user(1)
        user.rez.append(_rez(10, at(10, 12)))
        assert user_has_rez_start_conflict(user, at(10, 12, 59))
        assert user_has_rez_start_conflict(user, at(10, 11, 1))

    def test_exactly_an_hour_apart(self, community, at):
        user = community.ensure_user(1)
        user.rez.append(_rez(10, at(10, 12)))
        assert not user_has_rez_start_conflict(user, at(10, 13))

    def test_started_only_when_asked(self, community, at):
        user = community.ensure_user(1)
        user.rez.append(_rez(10, at(10, 12), ReservationStatus.STARTED))
        assert not user_has_rez_start_conflict(user, at(10, 12, 30))
        assert user_has_rez_start_conflict(user, at(10, 12, 30), include_started=True)


class TestBreakCooldownConflict:
    def test_no_previous_break(self, community, at):
        assert break_cooldown_conflict(community.ensure_user(1), at(10, 12)).ok

    def test_within_cooldown(self, community, at):
        user = community.ensure_user(1)
        user.last_normal_break_closed_at_ms = at(10, 12)
        check = break_cooldown_conflict(user, at(10, 12, 30))
        assert not check.ok
        assert check.earliest_ms == at(10, 13)
        assert check.left_min == 30

    def test_left_minutes_round_up(self, community, at):
        user = community.ensure_user(1)
        user.last_normal_break_closed_at_ms = at(10, 12)
        assert break_cooldown_conflict(user, at(10, 12, 30, 30)).left_min == 30

    def test_after_cooldown(self, community, at):
        user = community.ensure_user(1)
        user.last_normal_break_closed_at_ms = at(10, 12)
        assert break_cooldown_conflict(user, at(10, 13)).ok


class TestFindAlternativeTimes:
    def test_empty_pool_steps_from_now(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        slots = find_alternative_times(community, user, "morning", 10, at(10, 10, 1), morning_bounds)
        assert slots == [at(10, 10, 5), at(10, 10, 10), at(10, 10, 15)]

    def test_skips_occupied_slots(self, community, at, morning_bounds):
        community.ensure_user(2).rez.append(_rez(20, at(10, 10, 5)))
        user = community.ensure_user(1)
        slots = find_alternative_times(community, user, "morning", 20, at(10, 10, 1), morning_bounds)
        assert slots == [at(10, 10, 25), at(10, 10, 30), at(10, 10, 35)]

    def test_stops_before_blocked_shift_end(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        slots = find_alternative_times(community, user, "morning", 10, at(10, 15, 15), morning_bounds)
        assert slots == [at(10, 15, 15), at(10, 15, 20)]

    def test_nothing_left_in_shift(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        assert find_alternative_times(community, user, "morning", 10, at(10, 15, 25), morning_bounds) == []

    def test_starts_after_blocked_shift_start(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        slots = find_alternative_times(
            community, user, "morning", 10, at(10, 8, 2), morning_bounds, max_slots=1,
        )
        assert slots == [at(10, 8, 30)]

    def test_respects_own_spacing(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        user.rez.append(_rez(10, at(10, 10, 30)))
        slots = find_alternative_times(community, user, "morning", 10, at(10, 10), morning_bounds)
        assert slots == [at(10, 11, 30), at(10, 11, 35), at(10, 11, 40)]


class TestFindPairedTenPlan:
    def test_plan_seventy_minutes_apart(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        plan = find_paired_ten_plan(community, user, "morning", at(10, 10), morning_bounds)
        assert plan == (at(10, 10), at(10, 11, 10))

    def test_needs_both_ten_minute_rights(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        user.free_rights[10] = 1
        assert find_paired_ten_plan(community, user, "morning", at(10, 10), morning_bounds) is None

    def test_skips_full_first_slot(self, community, at, morning_bounds):
        community.ensure_user(2).rez.append(_rez(10, at(10, 10)))
        community.ensure_user(3).rez.append(_rez(10, at(10, 10)))
        user = community.ensure_user(1)
        plan = find_paired_ten_plan(community, user, "morning", at(10, 10), morning_bounds)
        assert plan == (at(10, 10, 10), at(10, 11, 20))

    def test_anchor_moves_the_scan(self, community, at, morning_bounds):
        user = community.ensure_user(1)
        plan = find_paired_ten_plan(
            community, user, "morning", at(10, 10), morning_bounds, anchor_start_ms=at(10, 10, 30),
        )
        assert plan == (at(10, 10, 30), at(10, 11, 40))
