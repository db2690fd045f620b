"""Tests for HistoryStore, SummaryLog and StorePool."""

from __future__ import annotations

import asyncio

import pytest

from mneme.models.config import StoreConfig
from mneme.store.history import (
    HistoryStore,
    InvalidRange,
    MessageNotFoundError,
    StoreUnavailable,
    SummaryNotFoundError,
)
from mneme.store.pool import StorePool
from tests.conftest import append_turns


class TestHistoryStore:
    async def test_append_message_assigns_id_and_timestamp(self, store):
        """append_message returns the stored message with its new id."""
        msg = await store.append_message("user", "Hello")
        assert msg.id == 1
        assert msg.role == "user"
        assert msg.content == "Hello"
        assert msg.timestamp > 0

        loaded = await store.get_message(msg.id)
        assert loaded == msg

    async def test_ids_strictly_increasing(self, store):
        """Successive appends get strictly increasing ids."""
        ids = await append_turns(store, 5)
        assert ids == [1, 2, 3, 4, 5]

    async def test_timestamps_strictly_increasing(self, store):
        """Timestamps never repeat even when appends land in the same millisecond."""
        for i in range(50):
            await store.append_message("user", f"m{i}")
        messages = await store.get_range(1, 50)
        stamps = [m.timestamp for m in messages]
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    async def test_empty_content_accepted(self, store):
        """Empty content is stored as-is."""
        msg = await store.append_message("model", "")
        assert (await store.get_message(msg.id)).content == ""

    async def test_unknown_role_raises(self, store):
        """An unknown role is rejected before anything is written."""
        with pytest.raises(ValueError):
            await store.append_message("assistant", "nope")
        assert await store.count() == 0

    async def test_get_message_not_found(self, store):
        with pytest.raises(MessageNotFoundError):
            await store.get_message(99)

    async def test_count_and_count_after(self, store):
        await append_turns(store, 7)
        assert await store.count() == 7
        assert await store.count_after(0) == 7
        assert await store.count_after(4) == 3
        assert await store.count_after(7) == 0

    async def test_get_recent_is_chronological(self, store):
        """get_recent returns the newest N messages, oldest first."""
        await append_turns(store, 10)
        recent = await store.get_recent(3)
        assert [m.id for m in recent] == [8, 9, 10]

    async def test_get_recent_fewer_than_limit(self, store):
        await append_turns(store, 2)
        assert [m.id for m in await store.get_recent(20)] == [1, 2]

    async def test_get_oldest_after(self, store):
        await append_turns(store, 10)
        batch = await store.get_oldest_after(3, 4)
        assert [m.id for m in batch] == [4, 5, 6, 7]

    async def test_get_range_inclusive(self, store):
        await append_turns(store, 6)
        assert [m.id for m in await store.get_range(2, 4)] == [2, 3, 4]
        assert await store.get_range(10, 20) == []

    async def test_delete_range(self, store):
        """delete_range removes exactly the closed range and ids are not reused."""
        await append_turns(store, 5)
        deleted = await store.delete_range(1, 3)
        assert deleted == 3
        assert await store.count() == 2
        assert not await store.message_exists(2)
        msg = await store.append_message("user", "after delete")
        assert msg.id == 6

    async def test_persists_across_reopen(self, config):
        """Messages survive closing and reopening a private connection."""
        s1 = HistoryStore(config.store)
        await s1.initialize()
        first = await s1.append_message("user", "durable")
        await s1.close()

        s2 = HistoryStore(config.store)
        await s2.initialize()
        try:
            assert (await s2.get_message(first.id)).content == "durable"
            second = await s2.append_message("model", "next")
            assert second.id == first.id + 1
            assert second.timestamp > first.timestamp
        finally:
            await s2.close()

    async def test_uninitialized_store_raises(self, config):
        s = HistoryStore(config.store)
        with pytest.raises(StoreUnavailable):
            await s.append_message("user", "hi")

    async def test_closed_store_raises(self, config):
        s = HistoryStore(config.store)
        await s.initialize()
        await s.close()
        assert s.is_open is False
        with pytest.raises(StoreUnavailable):
            await s.count()

    async def test_unopenable_path_raises_store_unavailable(self, tmp_path):
        """A database path that cannot be created surfaces as StoreUnavailable."""
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        s = HistoryStore(StoreConfig(db_path=str(blocker / "sub" / "test.db")))
        with pytest.raises(StoreUnavailable):
            await s.initialize()

    async def test_concurrent_appends_are_all_durable(self, store):
        """Concurrent appends each get a distinct id and none are lost."""
        results = await asyncio.gather(
            *(store.append_message("user", f"c{i}") for i in range(25))
        )
        ids = sorted(m.id for m in results)
        assert ids == list(range(1, 26))
        assert await store.count() == 25


class TestSummaryLog:
    async def test_append_and_latest(self, store, summary_log):
        await append_turns(store, 5)
        summary = await summary_log.append("first three", 1, 3)
        assert summary.id == 1
        assert summary.message_count == 3

        latest = await summary_log.latest()
        assert latest == summary

    async def test_latest_empty(self, summary_log):
        assert await summary_log.latest() is None
        assert await summary_log.list_all() == []

    async def test_latest_is_greatest_end_id(self, store, summary_log):
        await append_turns(store, 10)
        await summary_log.append("a", 1, 3)
        second = await summary_log.append("b", 4, 8)
        assert (await summary_log.latest()).id == second.id
        assert [s.id for s in await summary_log.list_all()] == [1, 2]

    async def test_start_after_end_raises(self, store, summary_log):
        await append_turns(store, 5)
        with pytest.raises(InvalidRange):
            await summary_log.append("bad", 4, 2)

    async def test_missing_end_message_raises(self, store, summary_log):
        await append_turns(store, 3)
        with pytest.raises(InvalidRange):
            await summary_log.append("bad", 1, 9)

    async def test_overlap_raises(self, store, summary_log):
        """A new summary may not start inside an existing summary's coverage."""
        await append_turns(store, 10)
        await summary_log.append("a", 1, 5)
        with pytest.raises(InvalidRange) as exc_info:
            await summary_log.append("b", 5, 8)
        assert exc_info.value.start_message_id == 5
        assert len(await summary_log.list_all()) == 1

    async def test_summary_survives_deleted_messages(self, store, summary_log):
        """Summaries do not depend on the covered rows still existing."""
        await append_turns(store, 6)
        summary = await summary_log.append("covers 1-4", 1, 4)
        await store.delete_range(1, 4)
        assert await summary_log.get(summary.id) == summary

    async def test_get_not_found(self, summary_log):
        with pytest.raises(SummaryNotFoundError):
            await summary_log.get(42)

    async def test_summary_timestamp_after_covered_messages(self, store, summary_log):
        await append_turns(store, 4)
        summary = await summary_log.append("s", 1, 4)
        last = await store.get_message(4)
        assert summary.timestamp > last.timestamp


class TestStorePool:
    async def test_same_path_shares_connection(self, config):
        pool = StorePool()
        try:
            a = await pool.acquire(config.store.db_path)
            b = await pool.acquire(config.store.db_path)
            assert a is b
            assert pool.is_open(config.store.db_path)
        finally:
            await pool.close_all()
        assert not pool.is_open(config.store.db_path)

    async def test_stores_on_pool_see_each_others_writes(self, config, pool):
        s1 = HistoryStore(config.store, pool=pool)
        s2 = HistoryStore(config.store, pool=pool)
        await s1.initialize()
        await s2.initialize()
        await s1.append_message("user", "from s1")
        assert await s2.count() == 1
        await s1.close()
        # Pool-owned connection stays open for the other store
        assert await s2.count() == 1

    async def test_closed_pool_makes_store_unavailable(self, config, pool):
        """A store whose pooled connection was closed raises StoreUnavailable, not a raw error."""
        s = HistoryStore(config.store, pool=pool)
        await s.initialize()
        await s.append_message("user", "kept")
        await pool.close_all()

        with pytest.raises(StoreUnavailable):
            await s.append_message("user", "lost")
        with pytest.raises(StoreUnavailable):
            await s.count()
        with pytest.raises(StoreUnavailable):
            async with s.snapshot():
                pass

    async def test_reopened_pool_requires_reinitialize(self, config, pool):
        s = HistoryStore(config.store, pool=pool)
        await s.initialize()
        await pool.close_all()
        await pool.acquire(config.store.db_path)

        with pytest.raises(StoreUnavailable):
            await s.count()
        await s.initialize()
        assert await s.count() == 0
