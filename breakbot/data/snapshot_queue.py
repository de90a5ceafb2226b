"""
Shift Break Bot — Serialized Snapshot Access.

Every operation that reads or mutates a community runs as one
load -> mutate -> persist unit under a single asyncio.Lock, so two
commands never interleave on the same snapshot. Loaded communities stay
cached and are shared by reference between operations.

A failed save never discards the in-memory state: the community is
marked dirty, retried on the next operation and on flush, and the caller
learns about it through the ``persisted`` flag.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, TypeVar

from breakbot.core.errors import PersistenceError
from breakbot.data.models import Community

if TYPE_CHECKING:
    from breakbot.ports.snapshot_port import SnapshotStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SnapshotQueue:
    def __init__(self, store: SnapshotStore) -> None:
        self._store = store
        self._lock = asyncio.Lock()
        self._cache: dict[int, Community] = {}
        self._dirty: set[int] = set()
        self._closed = False

    @property
    def dirty(self) -> set[int]:
        return set(self._dirty)

    def _load(self, community_id: int) -> Community:
        community = self._cache.get(community_id)
        if community is None:
            community = Community.from_dict(self._store.get(community_id))
            self._cache[community_id] = community
            logger.info(
                "Loaded community %d (%d users)", community_id, len(community.users),
            )
        return community

    def _save(self, community_id: int) -> bool:
        try:
            self._store.put(community_id, self._cache[community_id].to_dict())
        except PersistenceError:
            logger.exception("Saving community %d failed, keeping in-memory state", community_id)
            self._dirty.add(community_id)
            return False
        self._dirty.discard(community_id)
        return True

    def _retry_dirty(self, skip: int | None = None) -> None:
        for community_id in sorted(self._dirty):
            if community_id != skip:
                self._save(community_id)

    async def run(self, community_id: int, operation: Callable[[Community], T]) -> tuple[T, bool]:
        """Apply ``operation`` to the community and persist it.

        Returns the operation's result and whether the save succeeded.
        """
        async with self._lock:
            if self._closed:
                raise RuntimeError("Snapshot queue is closed")
            self._retry_dirty(skip=community_id)
            community = self._load(community_id)
            try:
                result = operation(community)
            except Exception:
                self._dirty.add(community_id)
                raise
            persisted = self._save(community_id)
            return result, persisted

    async def flush_and_close(self) -> bool:
        """Save every cached community and refuse further operations.

        Returns True when everything was persisted.
        """
        async with self._lock:
            ok = all([self._save(community_id) for community_id in sorted(self._cache)])
            self._closed = True
            logger.info("Snapshot queue flushed (%d communities, ok=%s)", len(self._cache), ok)
            return ok
