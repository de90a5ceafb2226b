"""Shared test fixtures and configuration.

Sets up fake environment variables so breakbot.config doesn't sys.exit(),
and provides common fixtures: the process timezone, an instant builder,
empty communities and a temp snapshot store.
"""

import os

# Patch env vars BEFORE any breakbot imports
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "fake-token-for-tests")
os.environ.setdefault("COMMUNITY_ID", "-100500")
os.environ.setdefault("ADMIN_USER_IDS", "999")
os.environ.setdefault("MORNING_BREAK_CHAT_IDS", "-1001")
os.environ.setdefault("MORNING_REZ_CHAT_IDS", "-1002")
os.environ.setdefault("EVENING_BREAK_CHAT_IDS", "-1003")
os.environ.setdefault("EVENING_REZ_CHAT_IDS", "-1004")
os.environ.setdefault("NIGHT_BREAK_CHAT_IDS", "-1005")
os.environ.setdefault("NIGHT_REZ_CHAT_IDS", "-1006")
os.environ.setdefault("ADMIN_BREAK_CHAT_IDS", "-1007")
os.environ.setdefault("TIMEZONE", "Europe/Istanbul")
os.environ.setdefault("DATABASE_PATH", ":memory:")

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

TZ = ZoneInfo("Europe/Istanbul")


def _at(day: int, hour: int, minute: int = 0, second: int = 0, month: int = 3, year: int = 2026) -> int:
    return int(datetime(year, month, day, hour, minute, second, tzinfo=TZ).timestamp() * 1000)


@pytest.fixture
def tz():
    """The single process-wide timezone used in tests."""
    return TZ


@pytest.fixture
def at():
    """Build an epoch-ms instant in the test timezone: at(10, 14, 30) -> 10 March 2026 14:30."""
    return _at


@pytest.fixture
def community():
    from breakbot.data.models import Community
    return Community()


@pytest.fixture
def engine():
    from breakbot.core.break_engine import BreakEngine
    return BreakEngine(TZ)


@pytest.fixture
def morning_bounds():
    """Morning 08:00-16:00 occurrence on 10 March 2026."""
    from breakbot.core.shift_calendar import SHIFT_OPTIONS, shift_bounds_containing_now
    return shift_bounds_containing_now(_at(10, 12), SHIFT_OPTIONS["morning"][0], TZ)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_breaks.db")


@pytest.fixture
def snapshot_store(tmp_db_path):
    """Return a SqliteSnapshotStore backed by a temp file."""
    from breakbot.data.db import SqliteSnapshotStore
    return SqliteSnapshotStore(db_path=tmp_db_path)
