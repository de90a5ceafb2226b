"""
Shift Break Bot — Shift Calendar.

Maps wall-clock instants onto the recurring daily shift schedule and
owns every bit of calendar/timezone arithmetic in the project. Other
modules work purely with epoch milliseconds.

No I/O: this module only transforms data.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

MINUTE_MS = 60_000


@dataclass(frozen=True)
class ShiftSchedule:
    """One recurring daily shift, e.g. 16:00-00:00 (end may cross midnight)."""

    start: time
    end: time
    label: str


@dataclass(frozen=True)
class ShiftBounds:
    """A concrete occurrence of a schedule: [start, end)."""

    start: datetime
    end: datetime

    @property
    def start_ms(self) -> int:
        return to_ms(self.start)

    @property
    def end_ms(self) -> int:
        return to_ms(self.end)


def _schedule(start: str, end: str) -> ShiftSchedule:
    sh, sm = map(int, start.split(":"))
    eh, em = map(int, end.split(":"))
    return ShiftSchedule(start=time(sh, sm), end=time(eh, em), label=f"{start}-{end}")


SHIFT_OPTIONS: dict[str, list[ShiftSchedule]] = {
    "morning": [_schedule("08:00", "16:00"), _schedule("10:00", "18:00")],
    "evening": [
        _schedule("16:00", "00:00"),
        _schedule("18:00", "02:00"),
        _schedule("20:00", "04:00"),
    ],
    "night": [_schedule("00:00", "08:00")],
}

POOL_LABELS = {"morning": "Morning", "evening": "Evening", "night": "Night", "admin": "Admin"}


def pool_label(pool_key: str) -> str:
    return POOL_LABELS.get(pool_key, pool_key)


# ---------------------------------------------------------------------------
# Instants
# ---------------------------------------------------------------------------


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


def from_ms(ms: int, tz: ZoneInfo) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=tz)


def floor_to_minute_ms(ms: int) -> int:
    return (ms // MINUTE_MS) * MINUTE_MS


def ceil_to_step_ms(ms: int, step_min: int) -> int:
    """Drop seconds, then round up to the next step boundary."""
    aligned = floor_to_minute_ms(ms)
    step_ms = step_min * MINUTE_MS
    rem = aligned % step_ms
    if rem == 0:
        return aligned
    return aligned + step_ms - rem


# ---------------------------------------------------------------------------
# Time-of-day parsing
# ---------------------------------------------------------------------------

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3])[:.]([0-5]\d)$")


def parse_hhmm(text: str | None) -> time | None:
    """Parse "13:40", "13.40" or "9:05" into a time, or None."""
    m = _HHMM_RE.match(str(text or "").strip())
    if not m:
        return None
    return time(int(m.group(1)), int(m.group(2)))


def format_hm(ms: int, tz: ZoneInfo) -> str:
    return from_ms(ms, tz).strftime("%H:%M")


def format_hm_with_day_hint(ms: int, now_ms: int, tz: ZoneInfo) -> str:
    """HH:MM, with (tomorrow)/(yesterday)/(DD.MM) when the day differs from now."""
    dt = from_ms(ms, tz)
    diff_days = (dt.date() - from_ms(now_ms, tz).date()).days
    hm = dt.strftime("%H:%M")
    if diff_days == 0:
        return hm
    if diff_days == 1:
        return f"{hm} (tomorrow)"
    if diff_days == -1:
        return f"{hm} (yesterday)"
    return f"{hm} ({dt.strftime('%d.%m')})"


def format_date(ms: int, tz: ZoneInfo) -> str:
    """DD.MM.YYYY of the instant in the process timezone."""
    return from_ms(ms, tz).strftime("%d.%m.%Y")


# ---------------------------------------------------------------------------
# Shift bounds
# ---------------------------------------------------------------------------


def _shift_for_day(day: date, schedule: ShiftSchedule, tz: ZoneInfo) -> ShiftBounds:
    start = datetime.combine(day, schedule.start, tzinfo=tz)
    end = datetime.combine(day, schedule.end, tzinfo=tz)
    if end <= start:
        end = datetime.combine(day + timedelta(days=1), schedule.end, tzinfo=tz)
    return ShiftBounds(start=start, end=end)


def shift_bounds_containing_now(
    now_ms: int, schedule: ShiftSchedule, tz: ZoneInfo,
) -> ShiftBounds | None:
    """Bounds of the occurrence containing now: started today or started
    yesterday and still running (overnight shifts). None otherwise."""
    today = from_ms(now_ms, tz).date()
    for day in (today, today - timedelta(days=1)):
        bounds = _shift_for_day(day, schedule, tz)
        if bounds.start_ms <= now_ms < bounds.end_ms:
            return bounds
    return None


def map_time_to_shift(hhmm: time, bounds: ShiftBounds) -> int | None:
    """Anchor HH:MM to the shift's start day, rolling one day forward if
    it lands before the start. Returns epoch ms, or None if outside."""
    tz = bounds.start.tzinfo
    candidate = datetime.combine(bounds.start.date(), hhmm, tzinfo=tz)
    if candidate < bounds.start:
        candidate = datetime.combine(bounds.start.date() + timedelta(days=1), hhmm, tzinfo=tz)
    if candidate < bounds.start or candidate >= bounds.end:
        return None
    return to_ms(candidate)


def find_active_shift_for_pool(
    pool_key: str, now_ms: int, tz: ZoneInfo,
) -> tuple[ShiftSchedule, ShiftBounds] | None:
    """First schedule of the pool with an occurrence containing now."""
    for schedule in SHIFT_OPTIONS.get(pool_key, []):
        bounds = shift_bounds_containing_now(now_ms, schedule, tz)
        if bounds is not None:
            return schedule, bounds
    return None


# ---------------------------------------------------------------------------
# Shift detection from display names ("Ayse | 16.00 - 00.00")
# ---------------------------------------------------------------------------

_RANGE_RE = re.compile(r"(\d{1,2}[.:]\d{2})\s*-\s*(\d{1,2}[.:]\d{2})")


def detect_shift_from_name(display_name: str | None) -> tuple[str, ShiftSchedule] | None:
    """Find a time range in the name and match it to a known schedule."""
    normalized = re.sub(r"\s+", " ", re.sub("[–—]", "-", str(display_name or ""))).strip()
    m = _RANGE_RE.search(normalized)
    if not m:
        return None
    start = parse_hhmm(m.group(1))
    end = parse_hhmm(m.group(2))
    if start is None or end is None:
        return None
    for pool_key, options in SHIFT_OPTIONS.items():
        for schedule in options:
            if schedule.start == start and schedule.end == end:
                return pool_key, schedule
    return None


def shift_examples_text() -> str:
    return "\n".join(
        f"{pool_label(key)}: " + " | ".join(s.label for s in options)
        for key, options in SHIFT_OPTIONS.items()
    )


# ---------------------------------------------------------------------------
# Date ranges for reporting
# ---------------------------------------------------------------------------

_DATE_RE = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")


def parse_date_input(text: str | None, now_ms: int, tz: ZoneInfo) -> date | None:
    """Parse "17.02.2026", "today"/"bugun" or "yesterday"/"dun"; empty means today."""
    s = str(text or "").strip().lower()
    today = from_ms(now_ms, tz).date()
    if s in ("", "today", "bugun", "bugün"):
        return today
    if s in ("yesterday", "dun", "dün"):
        return today - timedelta(days=1)
    m = _DATE_RE.match(s)
    if not m:
        return None
    try:
        return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    except ValueError:
        return None


def week_range(day: date) -> tuple[date, date]:
    """Monday..Sunday of the week containing day (inclusive)."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def month_range(day: date) -> tuple[date, date]:
    """First..last day of the month containing day (inclusive)."""
    first = day.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return first, next_month - timedelta(days=1)


def parse_shift_date(shift_date: str) -> date | None:
    m = re.match(r"^(\d{2})\.(\d{2})\.(\d{4})$", shift_date or "")
    if not m:
        return None
    try:
        return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    except ValueError:
        return None


def is_date_in_range(shift_date: str, range_start: date, range_end: date) -> bool:
    """Whether a DD.MM.YYYY string falls in [range_start, range_end]."""
    d = parse_shift_date(shift_date)
    if d is None:
        return False
    return range_start <= d <= range_end


def local_hour(ms: int, tz: ZoneInfo) -> int:
    return from_ms(ms, tz).hour
