"""
Shift Break Bot — Snapshot Database.

Each community's whole state (users, reservations, break logs, waitlist)
is one JSON document in SQLite, surviving bot restarts. The document is
the unit of persistence: it is always read and written whole.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from breakbot.core.errors import PersistenceError

logger = logging.getLogger(__name__)


class SqliteSnapshotStore:
    """SQLite-backed storage for community snapshots."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from breakbot.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the snapshots table if it doesn't exist, and migrate schema."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    community_id  TEXT PRIMARY KEY,
                    snapshot_json TEXT NOT NULL
                )
            """)
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(snapshots)").fetchall()
            }
            if "updated_at" not in existing_cols:
                conn.execute("ALTER TABLE snapshots ADD COLUMN updated_at TEXT")
        logger.debug("Snapshots table initialized at %s", self._db_path)

    def get(self, community_id: int) -> dict | None:
        """Load a community's snapshot, or None if it was never saved."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT snapshot_json FROM snapshots WHERE community_id = ?",
                    (str(community_id),),
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not load snapshot for {community_id}: {e}") from e
        if row is None:
            return None
        try:
            data = json.loads(row["snapshot_json"])
        except json.JSONDecodeError:
            logger.error("Corrupt snapshot for community %s, starting empty", community_id)
            return None
        return data if isinstance(data, dict) else None

    def put(self, community_id: int, snapshot: dict) -> None:
        """Insert or replace a community's snapshot."""
        payload = json.dumps(snapshot, ensure_ascii=False)
        updated_at = datetime.now(timezone.utc).isoformat()
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO snapshots (community_id, snapshot_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(community_id) DO UPDATE SET
                        snapshot_json = excluded.snapshot_json,
                        updated_at    = excluded.updated_at
                    """,
                    (str(community_id), payload, updated_at),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not save snapshot for {community_id}: {e}") from e
        logger.debug("Snapshot saved for community %s (%d bytes)", community_id, len(payload))

