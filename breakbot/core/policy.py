"""Fixed break policy: limits, windows and cooldowns."""

from __future__ import annotations

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS

# Concurrent breaks allowed per pool, by duration class
CAPACITY_LIMIT = {10: 2, 20: 1}

RESERVATION_DURATIONS = (10, 20)
EXTRA_DURATIONS = (5, 10, 20)
ADMIN_BREAK_DURATIONS = (5, 10, 15, 20, 30, 45, 60)

FIRST_LAST_BLOCK_MIN = 30          # no breaks in the first/last 30 min of a shift
MAX_REZ_AHEAD_MS = 2 * HOUR_MS
PAST_TOLERANCE_MS = 30_000
REZ_START_WINDOW_MS = 5 * MINUTE_MS    # admission window after a reservation's start
AUTO_CLOSE_GRACE_MS = 2 * MINUTE_MS
MIN_SHORT_BREAK_MS = 5 * MINUTE_MS
REZ_CREATION_COOLDOWN_MS = 30 * MINUTE_MS
BREAK_COOLDOWN_MS = HOUR_MS
REZ_SPACING_MS = HOUR_MS
RECENT_EXPIRY_MS = 30 * MINUTE_MS

TERMINAL_RETENTION_MS = DAY_MS
BREAK_LOG_RETENTION_MS = 90 * DAY_MS

SUGGEST_STEP_MIN = 5
MAX_SUGGESTIONS = 3
PAIRED_TEN_GAP_MIN = 70            # 10 min break + 60 min cooldown

# Lateness above this is called out when a break is closed
LATE_WARNING_MIN = 2
