"""
Shift Break Bot — Data Models.

One Community snapshot owns every record: users with their rights,
reservations, active break and break log, plus the pool waitlist.
The snapshot is the unit of persistence. All instants are epoch
milliseconds; calendar math lives in core.shift_calendar.

Loading goes through Community.from_dict, which backfills absent or
malformed fields once so the rest of the code can trust the shapes.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

SNAPSHOT_VERSION = 1

FREE_RIGHTS_CAP = {10: 2, 20: 1}


class ReservationStatus(str, Enum):
    PENDING = "pending"
    STARTED = "started"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ReservationStatus.COMPLETED,
            ReservationStatus.EXPIRED,
            ReservationStatus.CANCELLED,
        )


class ClosedBy(str, Enum):
    USER = "user"
    AUTO = "auto"
    ADMIN = "admin"


class TargetType(str, Enum):
    BREAK_CHANNEL = "break"
    RESERVATION_CHANNEL = "rez"


def new_id() -> str:
    return str(uuid.uuid4())


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _int_or(value: Any, default: int) -> int:
    parsed = _int_or_none(value)
    return default if parsed is None else parsed


def _rights_map(raw: Any) -> dict[int, int]:
    """Normalize a {"10": 2} style mapping to {10: 2}, dropping junk."""
    if not isinstance(raw, dict):
        return {}
    out: dict[int, int] = {}
    for key, value in raw.items():
        try:
            duration = int(key)
        except (TypeError, ValueError):
            continue
        count = _int_or_none(value)
        if count is not None:
            out[duration] = max(0, count)
    return out


@dataclass
class Reservation:
    """An advance hold on a future slot in one pool."""

    id: str
    pool_key: str
    duration: int                          # 10 | 20
    start_at_ms: int
    end_at_ms: int
    created_at_ms: int
    status: ReservationStatus = ReservationStatus.PENDING
    admin_created: bool = False
    started_at_ms: int | None = None
    expired_at_ms: int | None = None
    cancelled_at_ms: int | None = None
    completed_at_ms: int | None = None

    @property
    def terminal_at_ms(self) -> int:
        """Instant the reservation reached its terminal state (start as fallback)."""
        return (
            self.expired_at_ms
            or self.cancelled_at_ms
            or self.completed_at_ms
            or self.start_at_ms
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, raw: dict) -> Reservation | None:
        start = _int_or_none(raw.get("start_at_ms"))
        duration = _int_or_none(raw.get("duration"))
        if start is None or duration is None:
            return None
        try:
            status = ReservationStatus(raw.get("status"))
        except ValueError:
            status = ReservationStatus.CANCELLED
        return cls(
            id=str(raw.get("id") or new_id()),
            pool_key=str(raw.get("pool_key", "")),
            duration=duration,
            start_at_ms=start,
            end_at_ms=_int_or(raw.get("end_at_ms"), start + duration * 60_000),
            created_at_ms=_int_or(raw.get("created_at_ms"), start),
            status=status,
            admin_created=bool(raw.get("admin_created", False)),
            started_at_ms=_int_or_none(raw.get("started_at_ms")),
            expired_at_ms=_int_or_none(raw.get("expired_at_ms")),
            cancelled_at_ms=_int_or_none(raw.get("cancelled_at_ms")),
            completed_at_ms=_int_or_none(raw.get("completed_at_ms")),
        )


@dataclass
class ActiveBreak:
    """A break in progress. At most one per user."""

    id: str
    pool_key: str                 # "morning" | "evening" | "night" | "admin"
    type_mins: int
    start_at_ms: int
    scheduled_end_at_ms: int
    auto_close_at_ms: int
    is_acil: bool = False         # emergency (and extra) breaks
    is_extra: bool = False
    is_admin_break: bool = False
    rez_id: str | None = None

    @property
    def is_normal(self) -> bool:
        """Ordinary breaks drive the inter-break cooldown."""
        return not self.is_acil and not self.is_admin_break

    @property
    def kind_label(self) -> str:
        if self.is_admin_break:
            return "admin"
        if self.is_extra:
            return "extra"
        if self.is_acil:
            return "emergency"
        return "normal"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Any) -> ActiveBreak | None:
        if not isinstance(raw, dict):
            return None
        start = _int_or_none(raw.get("start_at_ms"))
        type_mins = _int_or_none(raw.get("type_mins"))
        if start is None or type_mins is None:
            return None
        scheduled_end = _int_or(raw.get("scheduled_end_at_ms"), start + type_mins * 60_000)
        return cls(
            id=str(raw.get("id") or new_id()),
            pool_key=str(raw.get("pool_key", "")),
            type_mins=type_mins,
            start_at_ms=start,
            scheduled_end_at_ms=scheduled_end,
            auto_close_at_ms=_int_or(raw.get("auto_close_at_ms"), scheduled_end + 2 * 60_000),
            is_acil=bool(raw.get("is_acil", False)),
            is_extra=bool(raw.get("is_extra", False)),
            is_admin_break=bool(raw.get("is_admin_break", False)),
            rez_id=raw.get("rez_id"),
        )


@dataclass(frozen=True)
class BreakRecord:
    """Immutable historical fact about one completed break."""

    id: str
    pool_key: str
    duration: int
    is_acil: bool
    is_extra: bool
    is_admin_break: bool
    start_at_ms: int
    end_at_ms: int
    scheduled_end_at_ms: int
    late_min: int
    closed_by: ClosedBy
    shift_date: str               # DD.MM.YYYY of the break's start

    def to_dict(self) -> dict:
        d = asdict(self)
        d["closed_by"] = self.closed_by.value
        return d

    @classmethod
    def from_dict(cls, raw: dict) -> BreakRecord | None:
        start = _int_or_none(raw.get("start_at_ms"))
        end = _int_or_none(raw.get("end_at_ms"))
        duration = _int_or_none(raw.get("duration"))
        if start is None or end is None or duration is None:
            return None
        try:
            closed_by = ClosedBy(raw.get("closed_by"))
        except ValueError:
            closed_by = ClosedBy.USER
        return cls(
            id=str(raw.get("id") or new_id()),
            pool_key=str(raw.get("pool_key", "")),
            duration=duration,
            is_acil=bool(raw.get("is_acil", False)),
            is_extra=bool(raw.get("is_extra", False)),
            is_admin_break=bool(raw.get("is_admin_break", False)),
            start_at_ms=start,
            end_at_ms=end,
            scheduled_end_at_ms=_int_or(raw.get("scheduled_end_at_ms"), end),
            late_min=max(0, _int_or(raw.get("late_min"), 0)),
            closed_by=closed_by,
            shift_date=str(raw.get("shift_date", "")),
        )


@dataclass
class WaitlistEntry:
    """A deferred reservation request, notified once when capacity frees up."""

    id: str
    user_id: int
    pool_key: str
    duration: int
    start_at_ms: int
    end_at_ms: int
    created_at_ms: int

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict) -> WaitlistEntry | None:
        user_id = _int_or_none(raw.get("user_id"))
        start = _int_or_none(raw.get("start_at_ms"))
        duration = _int_or_none(raw.get("duration"))
        if user_id is None or start is None or duration is None:
            return None
        return cls(
            id=str(raw.get("id") or new_id()),
            user_id=user_id,
            pool_key=str(raw.get("pool_key", "")),
            duration=duration,
            start_at_ms=start,
            end_at_ms=_int_or(raw.get("end_at_ms"), start + duration * 60_000),
            created_at_ms=_int_or(raw.get("created_at_ms"), start),
        )


def _default_free_rights() -> dict[int, int]:
    return dict(FREE_RIGHTS_CAP)


@dataclass
class UserRecord:
    """Per-user entitlement, reservation and break state."""

    free_rights: dict[int, int] = field(default_factory=_default_free_rights)
    extra_rights: dict[int, int] = field(default_factory=dict)
    last_reset_shift_start_ms: int | None = None
    last_normal_break_closed_at_ms: int | None = None
    active_break: ActiveBreak | None = None
    rez: list[Reservation] = field(default_factory=list)
    break_log: list[BreakRecord] = field(default_factory=list)

    def clamp_rights(self) -> None:
        """Keep free rights inside 0..cap for every duration class."""
        for duration, cap in FREE_RIGHTS_CAP.items():
            self.free_rights[duration] = max(0, min(self.free_rights.get(duration, 0), cap))

    def refund(self, duration: int) -> None:
        self.free_rights[duration] = self.free_rights.get(duration, 0) + 1
        self.clamp_rights()

    def pending_reservations(self, pool_key: str | None = None) -> list[Reservation]:
        return sorted(
            (
                r for r in self.rez
                if r.status is ReservationStatus.PENDING
                and (pool_key is None or r.pool_key == pool_key)
            ),
            key=lambda r: r.start_at_ms,
        )

    def to_dict(self) -> dict:
        return {
            "free_rights": {str(k): v for k, v in self.free_rights.items()},
            "extra_rights": {str(k): v for k, v in self.extra_rights.items()},
            "last_reset_shift_start_ms": self.last_reset_shift_start_ms,
            "last_normal_break_closed_at_ms": self.last_normal_break_closed_at_ms,
            "active_break": self.active_break.to_dict() if self.active_break else None,
            "rez": [r.to_dict() for r in self.rez],
            "break_log": [b.to_dict() for b in self.break_log],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> UserRecord:
        if not isinstance(raw, dict):
            return cls()
        free = raw.get("free_rights")
        user = cls(
            free_rights=_rights_map(free) if isinstance(free, dict) else {10: 0, 20: 0},
            extra_rights=_rights_map(raw.get("extra_rights")),
            last_reset_shift_start_ms=_int_or_none(raw.get("last_reset_shift_start_ms")),
            last_normal_break_closed_at_ms=_int_or_none(raw.get("last_normal_break_closed_at_ms")),
            active_break=ActiveBreak.from_dict(raw.get("active_break")),
            rez=_records(raw.get("rez"), Reservation.from_dict),
            break_log=_records(raw.get("break_log"), BreakRecord.from_dict),
        )
        user.clamp_rights()
        return user


def _records(raw: Any, factory) -> list:
    if not isinstance(raw, list):
        return []
    out = []
    for item in raw:
        if isinstance(item, dict):
            record = factory(item)
            if record is not None:
                out.append(record)
    return out


@dataclass
class Community:
    """Everything the bot knows about one served group."""

    users: dict[int, UserRecord] = field(default_factory=dict)
    waitlist: list[WaitlistEntry] = field(default_factory=list)
    last_extra_rights_reset_date: str | None = None
    version: int = SNAPSHOT_VERSION

    def ensure_user(self, user_id: int) -> UserRecord:
        """Return the user's record, creating a fresh one on first reference."""
        user = self.users.get(user_id)
        if user is None:
            user = UserRecord()
            self.users[user_id] = user
        return user

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "users": {str(uid): u.to_dict() for uid, u in self.users.items()},
            "waitlist": [w.to_dict() for w in self.waitlist],
            "last_extra_rights_reset_date": self.last_extra_rights_reset_date,
        }

    @classmethod
    def from_dict(cls, raw: Any) -> Community:
        if not isinstance(raw, dict):
            return cls()
        users: dict[int, UserRecord] = {}
        raw_users = raw.get("users")
        if isinstance(raw_users, dict):
            for uid, u in raw_users.items():
                try:
                    users[int(uid)] = UserRecord.from_dict(u)
                except (TypeError, ValueError):
                    continue
        reset_date = raw.get("last_extra_rights_reset_date")
        return cls(
            users=users,
            waitlist=_records(raw.get("waitlist"), WaitlistEntry.from_dict),
            last_extra_rights_reset_date=reset_date if isinstance(reset_date, str) else None,
            version=SNAPSHOT_VERSION,
        )


@dataclass
class Notification:
    """An outbound message for a pool channel, delivered by the transport.

    user_id names the user the message is about; the transport renders
    the mention in front of the text.
    """

    target_pool_key: str
    target_type: TargetType
    message: str
    user_id: int | None = None
