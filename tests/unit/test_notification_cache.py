"""Tests for the local notification cache."""

from __future__ import annotations

import json

import pytest
from fakes import MemoryStorage

from storefront_realtime.adapters.client.cache import NotificationCache
from storefront_realtime.adapters.persistence.storage import NOTIFICATIONS_KEY, ClientStorage
from storefront_realtime.domain.model.events import Envelope, EventKind


def _status(order_id: str) -> Envelope:
    return Envelope.create(EventKind.ORDER_STATUS_UPDATED, {"orderId": order_id, "status": "shipped"})


@pytest.fixture
def cache(memory_storage: MemoryStorage) -> NotificationCache:
    return NotificationCache(memory_storage)


class TestNotificationCache:
    """Tests for NotificationCache."""

    def test_rejects_zero_capacity(self, memory_storage: MemoryStorage) -> None:
        with pytest.raises(ValueError, match="capacity"):
            NotificationCache(memory_storage, capacity=0)

    @pytest.mark.asyncio
    async def test_empty_cache(self, cache: NotificationCache) -> None:
        assert await cache.get_all() == []
        assert await cache.unread_count() == 0

    @pytest.mark.asyncio
    async def test_store_persists_under_key(
        self, cache: NotificationCache, memory_storage: MemoryStorage
    ) -> None:
        stored = await cache.store(_status("o1"))

        persisted = json.loads(memory_storage.items[NOTIFICATIONS_KEY])
        assert len(persisted) == 1
        assert persisted[0]["id"] == stored.id
        assert persisted[0]["type"] == "order:status_updated"
        assert persisted[0]["read"] is False

    @pytest.mark.asyncio
    async def test_newest_first(self, cache: NotificationCache) -> None:
        await cache.store(_status("o1"))
        await cache.store(_status("o2"))

        items = await cache.get_all()

        assert [n.payload["orderId"] for n in items] == ["o2", "o1"]

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, cache: NotificationCache) -> None:
        ids = [int((await cache.store(_status(str(i)))).id) for i in range(5)]
        assert ids == sorted(ids)
        assert len(set(ids)) == 5

    @pytest.mark.asyncio
    async def test_bounded_to_capacity(self, cache: NotificationCache) -> None:
        """101 stores keep the 100 newest, oldest dropped."""
        for i in range(101):
            await cache.store(_status(f"o{i}"))

        items = await cache.get_all()

        assert len(items) == 100
        assert items[0].payload["orderId"] == "o100"
        assert items[-1].payload["orderId"] == "o1"

    @pytest.mark.asyncio
    async def test_custom_capacity(self, memory_storage: MemoryStorage) -> None:
        cache = NotificationCache(memory_storage, capacity=3)
        for i in range(5):
            await cache.store(_status(f"o{i}"))
        assert [n.payload["orderId"] for n in await cache.get_all()] == ["o4", "o3", "o2"]

    @pytest.mark.asyncio
    async def test_mark_read(self, cache: NotificationCache) -> None:
        first = await cache.store(_status("o1"))
        await cache.store(_status("o2"))

        assert await cache.mark_read(first.id) is True
        assert await cache.unread_count() == 1
        assert await cache.mark_read("unknown") is False

    @pytest.mark.asyncio
    async def test_clear(self, cache: NotificationCache) -> None:
        await cache.store(_status("o1"))
        await cache.clear()
        assert await cache.get_all() == []

    @pytest.mark.asyncio
    async def test_store_survives_write_failure(
        self, cache: NotificationCache, memory_storage: MemoryStorage
    ) -> None:
        memory_storage.fail_writes = True

        stored = await cache.store(_status("o1"))

        assert stored.type == "order:status_updated"
        assert NOTIFICATIONS_KEY not in memory_storage.items

    @pytest.mark.asyncio
    async def test_read_failure_returns_empty(
        self, cache: NotificationCache, memory_storage: MemoryStorage
    ) -> None:
        await cache.store(_status("o1"))
        memory_storage.fail_reads = True
        assert await cache.get_all() == []

    @pytest.mark.asyncio
    async def test_corrupt_storage_returns_empty(
        self, cache: NotificationCache, memory_storage: MemoryStorage
    ) -> None:
        memory_storage.items[NOTIFICATIONS_KEY] = "{not a list"
        assert await cache.get_all() == []

    @pytest.mark.asyncio
    async def test_corrupt_entries_are_skipped(
        self, cache: NotificationCache, memory_storage: MemoryStorage
    ) -> None:
        await cache.store(_status("o1"))
        items = json.loads(memory_storage.items[NOTIFICATIONS_KEY])
        items.append({"payload": {}})
        memory_storage.items[NOTIFICATIONS_KEY] = json.dumps(items)

        assert len(await cache.get_all()) == 1

    @pytest.mark.asyncio
    async def test_with_sqlite_storage(self) -> None:
        storage = ClientStorage(db_path=":memory:")
        await storage.initialize()
        try:
            cache = NotificationCache(storage, capacity=2)
            await cache.store(_status("o1"))
            await cache.store(_status("o2"))
            await cache.store(_status("o3"))

            assert [n.payload["orderId"] for n in await cache.get_all()] == ["o3", "o2"]
        finally:
            await storage.close()
