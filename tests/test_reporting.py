"""Tests for breakbot.core.reporting — views and their text rendering."""

from datetime import date

from breakbot.core.reporting import (
    AUTO_CLOSE_LIST_LIMIT,
    MAX_REPORT_CHARS,
    Period,
    general_summary,
    period_range,
    pool_report,
    render_general_summary,
    render_pool_report,
    render_reservation_list,
    render_rights_status,
    render_user_report,
    reservation_list,
    rights_status,
    user_range,
    user_report,
)
from breakbot.data.models import (
    ActiveBreak,
    BreakRecord,
    ClosedBy,
    Reservation,
    ReservationStatus,
    WaitlistEntry,
)

MIN = 60_000


def _log(user, pool, start, duration=10, late=0, closed_by=ClosedBy.USER, shift_date="10.03.2026", **flags):
    rec = BreakRecord(
        id=f"log-{start}",
        pool_key=pool,
        duration=duration,
        is_acil=flags.get("is_acil", False),
        is_extra=flags.get("is_extra", False),
        is_admin_break=False,
        start_at_ms=start,
        end_at_ms=start + (duration + late) * MIN,
        scheduled_end_at_ms=start + duration * MIN,
        late_min=late,
        closed_by=closed_by,
        shift_date=shift_date,
    )
    user.break_log.append(rec)
    return rec


def _rez(start, duration=10, pool="morning", **extra):
    return Reservation(
        id=f"r-{start}",
        pool_key=pool,
        duration=duration,
        start_at_ms=start,
        end_at_ms=start + duration * MIN,
        created_at_ms=start - 60 * MIN,
        **extra,
    )


def _active(start, duration=10, pool="morning", **flags):
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


class TestRanges:
    def test_day(self):
        rng = period_range(date(2026, 3, 10), Period.DAY)
        assert (rng.start, rng.end) == (date(2026, 3, 10), date(2026, 3, 10))
        assert rng.label == "10.03.2026"

    def test_week(self):
        rng = period_range(date(2026, 3, 11), Period.WEEK)
        assert (rng.start, rng.end) == (date(2026, 3, 9), date(2026, 3, 15))
        assert rng.label == "09.03.2026 – 15.03.2026"

    def test_month(self):
        rng = period_range(date(2026, 3, 11), Period.MONTH)
        assert (rng.start, rng.end) == (date(2026, 3, 1), date(2026, 3, 31))

    def test_user_range_accepts_either_order(self):
        rng = user_range(date(2026, 3, 12), date(2026, 3, 9))
        assert (rng.start, rng.end) == (date(2026, 3, 9), date(2026, 3, 12))
        assert rng.contains("10.03.2026")
        assert not rng.contains("13.03.2026")


class TestRightsStatus:
    def test_counts(self, community, at):
        user = community.ensure_user(1)
        user.free_rights = {10: 0, 20: 1}
        user.rez.append(_rez(at(10, 11)))
        user.rez.append(_rez(at(10, 18), pool="evening"))
        user.extra_rights = {5: 1, 10: 0}

        status = rights_status(user, "morning", at(10, 10))

        assert status.free == {10: 0, 20: 1}
        assert status.reserved == {10: 1, 20: 0}
        assert status.used == {10: 1, 20: 0}
        assert status.extra == {5: 1}

    def test_render_with_cooldown_and_active_break(self, community, at, tz):
        user = community.ensure_user(1)
        user.last_normal_break_closed_at_ms = at(10, 9, 40)
        user.active_break = _active(at(10, 10), is_acil=True)

        text = render_rights_status(rights_status(user, "morning", at(10, 10, 5)), at(10, 10, 5), tz)

        assert "Free: 10 min × 2 · 20 min × 1" in text
        assert "Active break: 10 min | Ends: 10:10 (emergency)" in text
        assert "Next break: earliest 10:40" in text

    def test_render_outside_shift(self, community, at, tz):
        user = community.ensure_user(1)
        status = rights_status(user, "morning", at(10, 20), outside_shift_label="08:00-16:00")
        text = render_rights_status(status, at(10, 20), tz)
        assert "Active break: none" in text
        assert "Next break: no cooldown" in text
        assert text.endswith("You are outside your shift. (08:00-16:00)")


class TestReservationList:
    def test_view(self, community, at):
        community.ensure_user(1).rez.append(_rez(at(10, 11)))
        community.ensure_user(2).rez.append(_rez(at(10, 10, 30)))
        community.ensure_user(3).rez.append(_rez(at(10, 12), duration=20))
        community.ensure_user(4).active_break = _active(at(10, 10))
        community.ensure_user(5).rez.append(_rez(at(10, 11), pool="evening"))
        community.waitlist.append(
            WaitlistEntry("w1", 6, "morning", 20, at(10, 12), at(10, 12, 20), at(10, 10))
        )

        view = reservation_list(community, 1, "morning")

        assert [r.start_at_ms for r in view.mine] == [at(10, 11)]
        assert [uid for uid, _ in view.upcoming[10]] == [2, 1]
        assert [uid for uid, _ in view.upcoming[20]] == [3]
        assert [uid for uid, _ in view.active[10]] == [4]
        assert view.waitlist_size == 1

    def test_render(self, community, at, tz):
        community.ensure_user(2).rez.append(_rez(at(10, 10, 30)))
        community.ensure_user(4).active_break = _active(at(10, 10))

        text = render_reservation_list(reservation_list(community, 1, "morning"), at(10, 10, 5), tz)

        assert "• (none)" in text
        assert "• 10 min: user 4 (10 min → 10:10)  [max 2]" in text
        assert "• 20 min: (free)  [max 1]" in text
        assert "• 10 min: user 2 (10 min @ 10:30)" in text
        assert "Waitlist" not in text

    def test_render_uses_mention(self, community, at, tz):
        community.ensure_user(2).rez.append(_rez(at(10, 10, 30)))
        text = render_reservation_list(
            reservation_list(community, 1, "morning"), at(10, 10), tz, mention=lambda uid: f"@{uid}",
        )
        assert "@2 (10 min @ 10:30)" in text


class TestGeneralSummary:
    def test_counts_per_pool(self, community, at):
        u1 = community.ensure_user(1)
        u2 = community.ensure_user(2)
        _log(u1, "morning", at(10, 10), duration=10)
        _log(u1, "morning", at(10, 12), duration=20, late=3)
        _log(u2, "evening", at(10, 18), duration=10)
        _log(u2, "evening", at(9, 18), duration=10, shift_date="09.03.2026")

        summaries = general_summary(community, period_range(date(2026, 3, 10), Period.DAY))

        by_pool = {s.pool_key: s for s in summaries}
        assert [s.pool_key for s in summaries] == ["morning", "evening", "night"]
        assert (by_pool["morning"].breaks, by_pool["morning"].total_minutes) == (2, 30)
        assert by_pool["morning"].average_minutes == 15
        assert by_pool["morning"].late_users == 1
        assert by_pool["evening"].breaks == 1
        assert by_pool["night"].breaks == 0

    def test_render_empty(self, community):
        rng = period_range(date(2026, 3, 10), Period.WEEK)
        text = render_general_summary(general_summary(community, rng), rng)
        assert text.startswith("General summary (week) | 09.03.2026 – 15.03.2026")
        assert text.endswith("No records for this period.")


class TestPoolReport:
    def test_aggregates(self, community, at, tz):
        u1 = community.ensure_user(1)
        u2 = community.ensure_user(2)
        _log(u1, "morning", at(10, 10), duration=10)
        _log(u1, "morning", at(10, 11, 30), duration=20, late=4, closed_by=ClosedBy.AUTO)
        _log(u2, "morning", at(10, 10, 15), duration=10, is_acil=True)
        _log(u2, "morning", at(10, 17), duration=5, is_acil=True, is_extra=True)

        report = pool_report(community, "morning", period_range(date(2026, 3, 10), Period.DAY), tz)

        assert report.total_breaks == 4
        assert report.distinct_users == 2
        assert (report.normal_count, report.emergency_count, report.extra_count) == (2, 1, 1)
        assert report.total_minutes == 45
        assert report.average_minutes == 11
        assert report.late_users == 1
        assert report.average_late_per_user == 4
        assert report.per_user == [(1, 2, 30, 4), (2, 2, 15, 0)]
        assert report.auto_closed_total == 1
        assert report.emergency_users == [2]
        assert report.hourly == {10: 2, 11: 1, 17: 1}
        assert report.days_with_data == []

    def test_auto_close_list_is_capped(self, community, at, tz):
        user = community.ensure_user(1)
        for i in range(AUTO_CLOSE_LIST_LIMIT + 2):
            _log(user, "morning", at(10, 9) + i * 20 * MIN, closed_by=ClosedBy.AUTO)

        report = pool_report(community, "morning", period_range(date(2026, 3, 10), Period.DAY), tz)

        assert report.auto_closed_total == AUTO_CLOSE_LIST_LIMIT + 2
        assert len(report.auto_closed) == AUTO_CLOSE_LIST_LIMIT

    def test_days_with_data_for_longer_periods(self, community, at, tz):
        user = community.ensure_user(1)
        _log(user, "morning", at(11, 10), shift_date="11.03.2026")
        _log(user, "morning", at(9, 10), shift_date="09.03.2026")

        report = pool_report(community, "morning", period_range(date(2026, 3, 10), Period.WEEK), tz)

        assert report.days_with_data == ["09.03.2026", "11.03.2026"]

    def test_render(self, community, at, tz):
        u1 = community.ensure_user(1)
        _log(u1, "morning", at(10, 10), duration=20, late=4, closed_by=ClosedBy.AUTO)
        report = pool_report(community, "morning", period_range(date(2026, 3, 10), Period.DAY), tz)

        text = render_pool_report(report)

        assert text.startswith("Shift report: Morning (day) | 10.03.2026")
        assert "Total breaks: 1 (Normal: 1 | Emergency: 0)" in text
        assert "1. user 1: 1 breaks (20 min · 4 min late)" in text
        assert "Auto-closed: 1" in text
        assert "10:00  ██████████ 1" in text

    def test_render_empty(self, community, at, tz):
        report = pool_report(community, "night", period_range(date(2026, 3, 10), Period.DAY), tz)
        assert render_pool_report(report).endswith("No records for this period and pool.")

    def test_render_truncates(self, community, at, tz):
        for uid in range(1, 200):
            _log(community.ensure_user(uid), "morning", at(10, 10))
        report = pool_report(community, "morning", period_range(date(2026, 3, 10), Period.DAY), tz)

        text = render_pool_report(report, mention=lambda uid: f"a-rather-long-display-name-{uid}")

        assert len(text) <= MAX_REPORT_CHARS
        assert text.endswith("(Report too long, truncated.)")


class TestUserReport:
    def test_unknown_user(self, community, tz):
        assert user_report(community, 42, user_range(date(2026, 3, 10)), tz) is None

    def test_contents(self, community, at, tz):
        user = community.ensure_user(1)
        user.free_rights = {10: 1, 20: 0}
        user.extra_rights = {5: 1}
        _log(user, "morning", at(10, 10), late=3)
        _log(user, "morning", at(9, 10), shift_date="09.03.2026")
        user.rez.append(_rez(at(10, 10), status=ReservationStatus.COMPLETED))
        user.rez.append(_rez(at(10, 11), duration=20, status=ReservationStatus.EXPIRED, admin_created=True))
        user.rez.append(_rez(at(10, 13)))
        user.active_break = _active(at(10, 12, 30), duration=20)

        report = user_report(community, 1, user_range(date(2026, 3, 10)), tz, shift_label="08:00-16:00")
        text = render_user_report(report, at(10, 12, 35), tz)

        assert len(report.breaks) == 1
        assert [r.status for r in report.reservations] == [
            ReservationStatus.COMPLETED,
            ReservationStatus.EXPIRED,
        ]
        assert text.startswith("user 1 | 10.03.2026")
        assert "Shift: 08:00-16:00" in text
        assert "Active break: 20 min (normal) 12:30→12:50 (15 min left)" in text
        assert "Pending reservations: 10 min @ 13:00" in text
        assert "Rights left: 10 min × 1 · 20 min × 0  |  Extra: 5 min × 1" in text
        assert "Summary: 1 breaks · 10 min · Late: 3 min" in text
        assert "• 20 min @ 11:00: expired (admin)" in text

    def test_overdue_break(self, community, at, tz):
        user = community.ensure_user(1)
        user.active_break = _active(at(10, 12), duration=10)
        report = user_report(community, 1, user_range(date(2026, 3, 10)), tz)
        text = render_user_report(report, at(10, 12, 11), tz)
        assert "(1 min over)" in text
        assert "No break records in this range." in text
