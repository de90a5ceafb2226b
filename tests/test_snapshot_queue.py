"""Tests for breakbot.data.snapshot_queue — serialized load/mutate/persist."""

import asyncio

import pytest

from breakbot.core.errors import PersistenceError
from breakbot.data.snapshot_queue import SnapshotQueue


class FlakyStore:
    """In-memory SnapshotStore whose saves can be made to fail."""

    def __init__(self, initial=None):
        self.data = dict(initial or {})
        self.fail = False
        self.puts = 0

    def get(self, community_id):
        return self.data.get(community_id)

    def put(self, community_id, snapshot):
        self.puts += 1
        if self.fail:
            raise PersistenceError("disk full")
        self.data[community_id] = snapshot


def _grant(community):
    community.ensure_user(1).extra_rights[10] = community.ensure_user(1).extra_rights.get(10, 0) + 1
    return "ok"


class TestSnapshotQueueRun:
    @pytest.mark.asyncio
    async def test_persists_the_mutation(self):
        store = FlakyStore()
        queue = SnapshotQueue(store)

        result, persisted = await queue.run(7, _grant)

        assert (result, persisted) == ("ok", True)
        assert store.data[7]["users"]["1"]["extra_rights"] == {"10": 1}

    @pytest.mark.asyncio
    async def test_loads_existing_snapshot_once(self):
        store = FlakyStore({7: {"users": {"1": {"free_rights": {"10": 1, "20": 0}}}}})
        queue = SnapshotQueue(store)

        seen = []
        await queue.run(7, lambda c: seen.append(c.users[1].free_rights))
        store.data[7] = {"users": {}}
        await queue.run(7, lambda c: seen.append(c.users[1].free_rights))

        assert seen == [{10: 1, 20: 0}, {10: 1, 20: 0}]

    @pytest.mark.asyncio
    async def test_failed_save_keeps_state(self):
        store = FlakyStore()
        store.fail = True
        queue = SnapshotQueue(store)

        _, persisted = await queue.run(7, _grant)
        result, _ = await queue.run(7, lambda c: c.users[1].extra_rights[10])

        assert not persisted
        assert result == 1
        assert queue.dirty == {7}

    @pytest.mark.asyncio
    async def test_dirty_community_retried_on_next_operation(self):
        store = FlakyStore()
        queue = SnapshotQueue(store)
        store.fail = True
        await queue.run(7, _grant)
        store.fail = False

        await queue.run(8, lambda c: None)

        assert queue.dirty == set()
        assert 7 in store.data

    @pytest.mark.asyncio
    async def test_operation_error_propagates(self):
        queue = SnapshotQueue(FlakyStore())

        def boom(community):
            community.ensure_user(1)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await queue.run(7, boom)
        assert queue.dirty == {7}

    @pytest.mark.asyncio
    async def test_operations_do_not_interleave(self):
        queue = SnapshotQueue(FlakyStore())
        order = []

        async def worker(tag):
            def op(community):
                order.append(f"{tag}-start")
                order.append(f"{tag}-end")
            await queue.run(7, op)

        await asyncio.gather(worker("a"), worker("b"), worker("c"))

        assert order == ["a-start", "a-end", "b-start", "b-end", "c-start", "c-end"]


class TestSnapshotQueueFlush:
    @pytest.mark.asyncio
    async def test_flush_saves_and_closes(self):
        store = FlakyStore()
        queue = SnapshotQueue(store)
        await queue.run(7, _grant)
        puts_before = store.puts

        assert await queue.flush_and_close()
        assert store.puts == puts_before + 1
        with pytest.raises(RuntimeError):
            await queue.run(7, _grant)

    @pytest.mark.asyncio
    async def test_flush_reports_failure(self):
        store = FlakyStore()
        queue = SnapshotQueue(store)
        await queue.run(7, _grant)
        store.fail = True

        assert not await queue.flush_and_close()
