"""Snapshot port — abstract interface for community snapshot storage.

The snapshot queue depends on this protocol, never on a specific database.
"""

from __future__ import annotations

from typing import Protocol


class SnapshotStore(Protocol):
    """Loads and saves one JSON-compatible document per community."""

    def get(self, community_id: int) -> dict | None: ...

    def put(self, community_id: int, snapshot: dict) -> None: ...
