"""Unit tests for the key-value state stores and the expiry sweeper."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from storeauth.auth import InMemoryStore, PersistenceUnavailable, RedisStore, StoreSweeper


class TestInMemoryStore:
    """Tests for the process-local store."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, memory_store: InMemoryStore):
        await memory_store.set("k", {"a": 1}, ttl_seconds=60)
        assert await memory_store.get("k") == {"a": 1}

        await memory_store.delete("k")
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, memory_store: InMemoryStore):
        await memory_store.set("k", {"a": 1}, ttl_seconds=60)
        value = await memory_store.get("k")
        value["a"] = 99

        assert await memory_store.get("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_expired_entry_reads_absent(self, memory_store: InMemoryStore, clock):
        await memory_store.set("k", {"a": 1}, ttl_seconds=60)
        clock.advance(60)

        assert await memory_store.get("k") is None
        # Physically removed only by a sweep
        assert len(memory_store) == 1

    @pytest.mark.asyncio
    async def test_increment_merges_fields_and_refreshes_ttl(
        self, memory_store: InMemoryStore, clock
    ):
        assert await memory_store.increment("k", "count", ttl_seconds=60, last=1) == 1
        clock.advance(50)
        assert await memory_store.increment("k", "count", ttl_seconds=60, last=2) == 2
        clock.advance(50)

        assert await memory_store.get("k") == {"count": 2, "last": 2}

    @pytest.mark.asyncio
    async def test_pop_returns_value_once(self, memory_store: InMemoryStore):
        await memory_store.set("k", {"a": 1}, ttl_seconds=60)

        results = await asyncio.gather(*[memory_store.pop("k") for _ in range(5)])

        assert [r for r in results if r is not None] == [{"a": 1}]
        assert await memory_store.get("k") is None

    @pytest.mark.asyncio
    async def test_pop_expired_returns_none(self, memory_store: InMemoryStore, clock):
        await memory_store.set("k", {"a": 1}, ttl_seconds=60)
        clock.advance(60)

        assert await memory_store.pop("k") is None
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_increment_restarts_after_expiry(self, memory_store: InMemoryStore, clock):
        await memory_store.increment("k", "count", ttl_seconds=60)
        await memory_store.increment("k", "count", ttl_seconds=60)
        clock.advance(61)

        assert await memory_store.increment("k", "count", ttl_seconds=60) == 1

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, memory_store: InMemoryStore, clock):
        await memory_store.set("short", {"v": 1}, ttl_seconds=10)
        await memory_store.set("long", {"v": 2}, ttl_seconds=1000)
        clock.advance(11)

        assert await memory_store.sweep() == 1
        assert len(memory_store) == 1
        assert await memory_store.get("long") == {"v": 2}

    @pytest.mark.asyncio
    async def test_sweep_large_store(self, memory_store: InMemoryStore, clock):
        for i in range(InMemoryStore.SWEEP_BATCH * 2 + 5):
            await memory_store.set(f"k{i}", {"v": i}, ttl_seconds=1)
        clock.advance(2)

        assert await memory_store.sweep() == InMemoryStore.SWEEP_BATCH * 2 + 5
        assert len(memory_store) == 0

    @pytest.mark.asyncio
    async def test_close_clears(self, memory_store: InMemoryStore):
        await memory_store.set("k", {"v": 1}, ttl_seconds=60)
        await memory_store.close()
        assert len(memory_store) == 0


def _redis_client(execute_result=None, execute_error=None) -> MagicMock:
    """Build a mock redis client whose pipeline is an async context manager."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=execute_result, side_effect=execute_error)

    pipeline_cm = MagicMock()
    pipeline_cm.__aenter__ = AsyncMock(return_value=pipe)
    pipeline_cm.__aexit__ = AsyncMock(return_value=False)

    client = MagicMock()
    client.pipeline.return_value = pipeline_cm
    client.hgetall = AsyncMock(return_value={})
    client.delete = AsyncMock()
    client.aclose = AsyncMock()
    client._pipe = pipe
    return client


class TestRedisStore:
    """Tests for the Redis-backed store against a mocked client."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self):
        store = RedisStore(_redis_client())
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_get_returns_hash(self):
        client = _redis_client()
        client.hgetall.return_value = {"count": "3"}

        assert await RedisStore(client).get("k") == {"count": "3"}

    @pytest.mark.asyncio
    async def test_increment_uses_one_transaction(self):
        client = _redis_client(execute_result=[4, 1, True])
        store = RedisStore(client)

        count = await store.increment("k", "count", ttl_seconds=3600, last_failure=1.5)

        assert count == 4
        client.pipeline.assert_called_once_with(transaction=True)
        client._pipe.hincrby.assert_called_once_with("k", "count", 1)
        client._pipe.hset.assert_called_once_with("k", mapping={"last_failure": 1.5})
        client._pipe.pexpire.assert_called_once_with("k", 3_600_000)

    @pytest.mark.asyncio
    async def test_set_replaces_hash_with_expiry(self):
        client = _redis_client(execute_result=[1, 2, True])
        await RedisStore(client).set("k", {"a": "1"}, ttl_seconds=2.5)

        client._pipe.delete.assert_called_once_with("k")
        client._pipe.hset.assert_called_once_with("k", mapping={"a": "1"})
        client._pipe.pexpire.assert_called_once_with("k", 2500)

    @pytest.mark.asyncio
    async def test_errors_become_persistence_unavailable(self):
        client = _redis_client(execute_error=RedisConnectionError("down"))
        client.hgetall.side_effect = RedisConnectionError("down")
        store = RedisStore(client)

        with pytest.raises(PersistenceUnavailable):
            await store.get("k")
        with pytest.raises(PersistenceUnavailable):
            await store.increment("k", "count", ttl_seconds=60)

    @pytest.mark.asyncio
    async def test_pop_reads_and_deletes_in_one_transaction(self):
        client = _redis_client(execute_result=[{"identity_id": "3"}, 1])

        assert await RedisStore(client).pop("k") == {"identity_id": "3"}
        client.pipeline.assert_called_once_with(transaction=True)
        client._pipe.hgetall.assert_called_once_with("k")
        client._pipe.delete.assert_called_once_with("k")

    @pytest.mark.asyncio
    async def test_pop_missing_returns_none(self):
        client = _redis_client(execute_result=[{}, 0])
        assert await RedisStore(client).pop("k") is None

    @pytest.mark.asyncio
    async def test_sweep_is_noop_and_close_closes_client(self):
        client = _redis_client()
        store = RedisStore(client)

        assert await store.sweep() == 0
        await store.close()
        client.aclose.assert_awaited_once()


class TestStoreSweeper:
    """Tests for the background expiry sweeper."""

    @pytest.mark.asyncio
    async def test_sweep_once_sums_and_skips_unavailable(self, memory_store: InMemoryStore, clock):
        await memory_store.set("k", {"v": 1}, ttl_seconds=1)
        clock.advance(2)
        broken = MagicMock()
        broken.sweep = AsyncMock(side_effect=PersistenceUnavailable())

        sweeper = StoreSweeper([broken, memory_store])

        assert await sweeper.sweep_once() == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, memory_store: InMemoryStore):
        sweeper = StoreSweeper([memory_store], interval_seconds=0.01)
        sweeper.start()
        assert sweeper.running is True

        await asyncio.sleep(0.05)
        await sweeper.stop()
        assert sweeper.running is False
