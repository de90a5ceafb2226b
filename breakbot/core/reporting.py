"""
Shift Break Bot — Reporting Projection.

Read-only views over a Community snapshot: a user's rights status, the
reservation list of a pool, and the admin reports (general summary,
per-pool report, per-user report). Each view is computed into a plain
dataclass first and rendered to text separately; the renderer receives
a ``mention`` callable so the transport decides how users are shown.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Callable

from breakbot.config import POOL_KEYS
from breakbot.core.policy import BREAK_COOLDOWN_MS, CAPACITY_LIMIT
from breakbot.core.shift_calendar import (
    format_hm,
    format_hm_with_day_hint,
    from_ms,
    is_date_in_range,
    local_hour,
    month_range,
    parse_shift_date,
    pool_label,
    week_range,
)
from breakbot.data.models import FREE_RIGHTS_CAP, ClosedBy, ReservationStatus

if TYPE_CHECKING:
    from zoneinfo import ZoneInfo

    from breakbot.data.models import ActiveBreak, BreakRecord, Community, Reservation, UserRecord

Mention = Callable[[int], str]

MAX_REPORT_CHARS = 4000
AUTO_CLOSE_LIST_LIMIT = 10
UPCOMING_LIST_LIMIT = 10
HISTOGRAM_WIDTH = 10


def plain_mention(user_id: int) -> str:
    return f"user {user_id}"


def _truncate(text: str) -> str:
    if len(text) > MAX_REPORT_CHARS:
        return text[: MAX_REPORT_CHARS - 50] + "\n\n(Report too long, truncated.)"
    return text


# ---------------------------------------------------------------------------
# Periods
# ---------------------------------------------------------------------------


class Period(Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class ReportRange:
    start: date
    end: date
    period: Period = Period.DAY

    @property
    def label(self) -> str:
        if self.start == self.end:
            return self.start.strftime("%d.%m.%Y")
        return f"{self.start.strftime('%d.%m.%Y')} – {self.end.strftime('%d.%m.%Y')}"

    def contains(self, shift_date: str) -> bool:
        return is_date_in_range(shift_date, self.start, self.end)


def period_range(day: date, period: Period) -> ReportRange:
    if period is Period.WEEK:
        start, end = week_range(day)
    elif period is Period.MONTH:
        start, end = month_range(day)
    else:
        start, end = day, day
    return ReportRange(start, end, period)


def user_range(first: date, second: date | None = None) -> ReportRange:
    """Inclusive range from one or two dates given in either order."""
    if second is None:
        return ReportRange(first, first)
    return ReportRange(min(first, second), max(first, second))


# ---------------------------------------------------------------------------
# Rights status
# ---------------------------------------------------------------------------


@dataclass
class RightsStatus:
    free: dict[int, int]
    reserved: dict[int, int]
    used: dict[int, int]
    extra: dict[int, int]
    active_break: ActiveBreak | None
    next_break_earliest_ms: int | None
    outside_shift_label: str | None = None


def rights_status(
    user: UserRecord, pool_key: str, now_ms: int, outside_shift_label: str | None = None,
) -> RightsStatus:
    free = {d: user.free_rights.get(d, 0) for d in FREE_RIGHTS_CAP}
    reserved = {
        d: sum(1 for r in user.pending_reservations(pool_key) if r.duration == d)
        for d in FREE_RIGHTS_CAP
    }
    used = {d: max(0, cap - free[d] - reserved[d]) for d, cap in FREE_RIGHTS_CAP.items()}
    earliest = None
    if user.last_normal_break_closed_at_ms:
        candidate = user.last_normal_break_closed_at_ms + BREAK_COOLDOWN_MS
        if now_ms < candidate:
            earliest = candidate
    return RightsStatus(
        free=free,
        reserved=reserved,
        used=used,
        extra={d: n for d, n in sorted(user.extra_rights.items()) if n > 0},
        active_break=user.active_break,
        next_break_earliest_ms=earliest,
        outside_shift_label=outside_shift_label,
    )


def _pair(counts: dict[int, int]) -> str:
    return f"10 min × {counts.get(10, 0)} · 20 min × {counts.get(20, 0)}"


def render_rights_status(status: RightsStatus, now_ms: int, tz: ZoneInfo) -> str:
    lines = [
        "Break rights",
        f"Free: {_pair(status.free)}",
        f"Reserved: {_pair(status.reserved)}",
        f"Used: {_pair(status.used)}",
    ]
    if status.extra:
        lines.append("")
        lines.append("Extra rights (outside the shift, /extra):")
        lines.extend(f"  • {d} min × {n}" for d, n in status.extra.items())

    lines.append("")
    b = status.active_break
    if b is not None:
        suffix = f" ({b.kind_label})" if b.is_acil else ""
        lines.append(f"Active break: {b.type_mins} min | Ends: {format_hm(b.scheduled_end_at_ms, tz)}{suffix}")
    else:
        lines.append("Active break: none")

    if status.next_break_earliest_ms is not None:
        lines.append(
            "Next break: earliest "
            + format_hm_with_day_hint(status.next_break_earliest_ms, now_ms, tz)
        )
    else:
        lines.append("Next break: no cooldown")

    if status.outside_shift_label:
        lines.append(f"You are outside your shift. ({status.outside_shift_label})")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Reservation list
# ---------------------------------------------------------------------------


@dataclass
class ReservationList:
    mine: list[Reservation]
    active: dict[int, list[tuple[int, ActiveBreak]]]
    upcoming: dict[int, list[tuple[int, Reservation]]]
    waitlist_size: int


def reservation_list(community: Community, user_id: int, pool_key: str) -> ReservationList:
    user = community.ensure_user(user_id)
    active: dict[int, list] = {d: [] for d in CAPACITY_LIMIT}
    upcoming: dict[int, list] = {d: [] for d in CAPACITY_LIMIT}
    for uid, u in community.users.items():
        b = u.active_break
        if b is not None and b.pool_key == pool_key and b.type_mins in active:
            active[b.type_mins].append((uid, b))
        for r in u.pending_reservations(pool_key):
            if r.duration in upcoming:
                upcoming[r.duration].append((uid, r))
    for entries in upcoming.values():
        entries.sort(key=lambda e: e[1].start_at_ms)
    return ReservationList(
        mine=user.pending_reservations(pool_key),
        active=active,
        upcoming=upcoming,
        waitlist_size=sum(1 for w in community.waitlist if w.pool_key == pool_key),
    )


def render_reservation_list(
    view: ReservationList, now_ms: int, tz: ZoneInfo, mention: Mention = plain_mention,
) -> str:
    lines = ["Your reservations"]
    if not view.mine:
        lines.append("• (none)")
    for r in view.mine:
        lines.append(f"• {r.duration} min at {format_hm_with_day_hint(r.start_at_ms, now_ms, tz)}")

    lines.append("")
    lines.append("Pool now")
    for d, limit in CAPACITY_LIMIT.items():
        entries = [
            f"{mention(uid)} ({b.type_mins} min{' ' + b.kind_label if b.is_acil else ''} → "
            f"{format_hm(b.scheduled_end_at_ms, tz)})"
            for uid, b in view.active[d]
        ]
        lines.append(f"• {d} min: {', '.join(entries) if entries else '(free)'}  [max {limit}]")

    lines.append("")
    lines.append("Upcoming reservations")
    for d in CAPACITY_LIMIT:
        entries = [
            f"{mention(uid)} ({r.duration} min @ {format_hm(r.start_at_ms, tz)})"
            for uid, r in view.upcoming[d][:UPCOMING_LIST_LIMIT]
        ]
        lines.append(f"• {d} min: {', '.join(entries) if entries else '(none)'}")

    if view.waitlist_size:
        lines.append(f"\nWaitlist: {view.waitlist_size} request(s)")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Admin reports
# ---------------------------------------------------------------------------


def collect_pool_logs(
    community: Community, pool_key: str, rng: ReportRange,
) -> list[tuple[int, BreakRecord]]:
    return [
        (uid, rec)
        for uid, user in community.users.items()
        for rec in user.break_log
        if rec.pool_key == pool_key and rng.contains(rec.shift_date)
    ]


def _average(total: int, count: int) -> int:
    return round(total / count) if count else 0


@dataclass
class PoolSummary:
    pool_key: str
    breaks: int
    total_minutes: int
    distinct_users: int
    average_minutes: int
    late_users: int


def general_summary(community: Community, rng: ReportRange) -> list[PoolSummary]:
    out = []
    for pool_key in POOL_KEYS:
        logs = collect_pool_logs(community, pool_key, rng)
        total = sum(rec.duration for _, rec in logs)
        out.append(
            PoolSummary(
                pool_key=pool_key,
                breaks=len(logs),
                total_minutes=total,
                distinct_users=len({uid for uid, _ in logs}),
                average_minutes=_average(total, len(logs)),
                late_users=len({uid for uid, rec in logs if rec.late_min > 0}),
            )
        )
    return out


def render_general_summary(summaries: list[PoolSummary], rng: ReportRange) -> str:
    lines = [f"General summary ({rng.period.value}) | {rng.label}"]
    for s in summaries:
        lines.append(
            f"{pool_label(s.pool_key)}: {s.breaks} breaks · {s.total_minutes} min · "
            f"{s.distinct_users} users · avg {s.average_minutes} min · {s.late_users} late"
        )
    if not any(s.breaks for s in summaries):
        lines.append("")
        lines.append("No records for this period.")
    return "\n".join(lines)


@dataclass
class PoolReport:
    pool_key: str
    range: ReportRange
    distinct_users: int = 0
    total_breaks: int = 0
    normal_count: int = 0
    emergency_count: int = 0
    extra_count: int = 0
    total_minutes: int = 0
    average_minutes: int = 0
    late_users: int = 0
    average_late_per_user: int = 0
    # (user_id, break count, total minutes, total lateness), most breaks first
    per_user: list[tuple[int, int, int, int]] = field(default_factory=list)
    auto_closed: list[tuple[int, BreakRecord]] = field(default_factory=list)
    auto_closed_total: int = 0
    emergency_users: list[int] = field(default_factory=list)
    hourly: dict[int, int] = field(default_factory=dict)
    days_with_data: list[str] = field(default_factory=list)


def pool_report(community: Community, pool_key: str, rng: ReportRange, tz: ZoneInfo) -> PoolReport:
    logs = collect_pool_logs(community, pool_key, rng)
    report = PoolReport(pool_key=pool_key, range=rng)
    if not logs:
        return report

    counts: Counter[int] = Counter()
    minutes: Counter[int] = Counter()
    lateness: Counter[int] = Counter()
    emergency_users: list[int] = []
    hourly: Counter[int] = Counter()

    for uid, rec in logs:
        counts[uid] += 1
        minutes[uid] += rec.duration
        if rec.is_extra:
            report.extra_count += 1
        elif rec.is_acil:
            report.emergency_count += 1
            if uid not in emergency_users:
                emergency_users.append(uid)
        else:
            report.normal_count += 1
        if rec.late_min > 0:
            lateness[uid] += rec.late_min
        if rec.closed_by is ClosedBy.AUTO:
            report.auto_closed.append((uid, rec))
        hourly[local_hour(rec.start_at_ms, tz)] += 1

    report.total_breaks = len(logs)
    report.distinct_users = len(counts)
    report.total_minutes = sum(minutes.values())
    report.average_minutes = _average(report.total_minutes, len(logs))
    report.late_users = len(lateness)
    report.average_late_per_user = _average(sum(lateness.values()), len(lateness))
    report.per_user = sorted(
        ((uid, n, minutes[uid], lateness.get(uid, 0)) for uid, n in counts.items()),
        key=lambda row: row[1],
        reverse=True,
    )
    report.auto_closed_total = len(report.auto_closed)
    report.auto_closed = report.auto_closed[:AUTO_CLOSE_LIST_LIMIT]
    report.emergency_users = emergency_users
    report.hourly = dict(sorted(hourly.items()))
    if rng.period is not Period.DAY:
        days = {rec.shift_date for _, rec in logs}
        report.days_with_data = sorted(days, key=lambda s: parse_shift_date(s) or date.min)
    return report


def render_pool_report(report: PoolReport, mention: Mention = plain_mention) -> str:
    rng = report.range
    lines = [f"Shift report: {pool_label(report.pool_key)} ({rng.period.value}) | {rng.label}"]
    if not report.total_breaks:
        lines.append("")
        lines.append("No records for this period and pool.")
        return "\n".join(lines)

    if report.days_with_data:
        lines.append("Days with records: " + ", ".join(report.days_with_data))
        lines.append("")

    kinds = f"Normal: {report.normal_count} | Emergency: {report.emergency_count}"
    if report.extra_count:
        kinds += f" | Extra: {report.extra_count}"
    lines.append(f"Users on break: {report.distinct_users}")
    lines.append(f"Total breaks: {report.total_breaks} ({kinds})")
    lines.append(f"Total break time: {report.total_minutes} min · Average: {report.average_minutes} min")
    if report.late_users:
        lines.append(
            f"Late: {report.late_users} users · Average lateness per user: "
            f"{report.average_late_per_user} min"
        )

    lines.append("")
    lines.append("Breaks per user:")
    for i, (uid, count, total, late) in enumerate(report.per_user, start=1):
        late_text = f" · {late} min late" if late else ""
        lines.append(f"{i}. {mention(uid)}: {count} breaks ({total} min{late_text})")

    if report.auto_closed_total:
        lines.append("")
        lines.append(f"Auto-closed: {report.auto_closed_total}")
        for uid, rec in report.auto_closed:
            lines.append(f"• {mention(uid)}: {rec.duration} min, {rec.late_min} min late")

    if report.emergency_users:
        lines.append("")
        lines.append("Emergency breaks: " + ", ".join(mention(uid) for uid in report.emergency_users))

    if report.hourly:
        peak = max(report.hourly.values())
        lines.append("")
        lines.append("Hourly load:")
        for hour, count in report.hourly.items():
            bar = "█" * max(1, round(count / peak * HISTOGRAM_WIDTH))
            lines.append(f"{hour:02d}:00  {bar.ljust(HISTOGRAM_WIDTH + 1)}{count}")
    return _truncate("\n".join(lines))


_STATUS_LABELS = {
    ReservationStatus.COMPLETED: "used",
    ReservationStatus.EXPIRED: "expired",
    ReservationStatus.CANCELLED: "cancelled",
    ReservationStatus.STARTED: "started",
}


@dataclass
class UserReport:
    user_id: int
    range: ReportRange
    shift_label: str | None
    active_break: ActiveBreak | None
    pending: list[Reservation]
    free: dict[int, int]
    extra: dict[int, int]
    breaks: list[BreakRecord]
    reservations: list[Reservation]


def user_report(
    community: Community,
    user_id: int,
    rng: ReportRange,
    tz: ZoneInfo,
    shift_label: str | None = None,
) -> UserReport | None:
    """None when the user has never been seen in this community."""
    user = community.users.get(user_id)
    if user is None:
        return None
    breaks = sorted(
        (rec for rec in user.break_log if rng.contains(rec.shift_date)),
        key=lambda rec: rec.start_at_ms,
    )
    history = sorted(
        (
            r for r in user.rez
            if r.status is not ReservationStatus.PENDING
            and rng.start <= _local_date(r.start_at_ms, tz) <= rng.end
        ),
        key=lambda r: r.start_at_ms,
    )
    return UserReport(
        user_id=user_id,
        range=rng,
        shift_label=shift_label,
        active_break=user.active_break,
        pending=user.pending_reservations(),
        free={d: user.free_rights.get(d, 0) for d in FREE_RIGHTS_CAP},
        extra={d: n for d, n in sorted(user.extra_rights.items()) if n > 0},
        breaks=breaks,
        reservations=history,
    )


def _local_date(ms: int, tz: ZoneInfo) -> date:
    return from_ms(ms, tz).date()


def _break_kind(rec: BreakRecord) -> str:
    if rec.is_admin_break:
        return "Admin"
    if rec.is_extra:
        return "Extra"
    if rec.is_acil:
        return "Emerg."
    return "Normal"


def _closed_label(rec: BreakRecord) -> str:
    if rec.closed_by is ClosedBy.AUTO:
        return "auto-close"
    if rec.closed_by is ClosedBy.ADMIN:
        return "admin"
    return "/back"


def render_user_report(
    report: UserReport, now_ms: int, tz: ZoneInfo, mention: Mention = plain_mention,
) -> str:
    lines = [f"{mention(report.user_id)} | {report.range.label}", "", "Current state"]
    lines.append(f"Shift: {report.shift_label or '—'}")

    b = report.active_break
    if b is not None:
        remain_ms = b.scheduled_end_at_ms - now_ms
        remain_min = -(-abs(remain_ms) // 60_000)
        remain = f"{remain_min} min left" if remain_ms > 0 else f"{remain_min} min over"
        lines.append(
            f"Active break: {b.type_mins} min ({b.kind_label}) "
            f"{format_hm(b.start_at_ms, tz)}→{format_hm(b.scheduled_end_at_ms, tz)} ({remain})"
        )
    else:
        lines.append("Active break: —")

    if report.pending:
        lines.append(
            "Pending reservations: "
            + ", ".join(f"{r.duration} min @ {format_hm(r.start_at_ms, tz)}" for r in report.pending)
        )
    else:
        lines.append("Pending reservations: —")

    rights = f"Rights left: 10 min × {report.free.get(10, 0)} · 20 min × {report.free.get(20, 0)}"
    if report.extra:
        rights += "  |  Extra: " + " · ".join(f"{d} min × {n}" for d, n in report.extra.items())
    lines.append(rights)
    lines.append("")

    if not report.breaks:
        lines.append("No break records in this range.")
    else:
        total = sum(rec.duration for rec in report.breaks)
        late_total = sum(rec.late_min for rec in report.breaks)
        auto = sum(1 for rec in report.breaks if rec.closed_by is ClosedBy.AUTO)
        emergency = sum(1 for rec in report.breaks if rec.is_acil and not rec.is_extra)
        late_count = sum(1 for rec in report.breaks if rec.late_min > 0)
        lines.append(f"Break history ({report.range.label})")
        lines.append(
            f"Summary: {len(report.breaks)} breaks · {total} min · Late: {late_total} min · "
            f"Auto-close: {auto} · Emergency: {emergency} · Late breaks: {late_count}"
        )
        lines.append("Kind    Date   Start  End    Dur    Late    Closed")
        for rec in report.breaks:
            late = f"{rec.late_min:>3} min" if rec.late_min > 0 else "   —   "
            lines.append(
                f"{_break_kind(rec):<7} {rec.shift_date[:5]:<6} "
                f"{format_hm(rec.start_at_ms, tz)}  {format_hm(rec.end_at_ms, tz)}  "
                f"{rec.duration:>2} min {late} {_closed_label(rec)}"
            )

    if report.reservations:
        lines.append("")
        lines.append(f"Reservation history ({report.range.label})")
        for r in report.reservations:
            tag = " (admin)" if r.admin_created else ""
            lines.append(
                f"• {r.duration} min @ {format_hm(r.start_at_ms, tz)}: "
                f"{_STATUS_LABELS.get(r.status, r.status.value)}{tag}"
            )
    return _truncate("\n".join(lines))
