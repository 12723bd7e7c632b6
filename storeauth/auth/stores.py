"""Key-value state stores backing login throttling and token revocation.

Two interchangeable implementations of the ``KeyValueStore`` protocol:

- ``InMemoryStore``: a process-local map guarded by a lock. Populated at
  runtime and lost on restart, so a restart lifts every lockout and forgets
  every revocation. Suitable for single-instance deployments only.
- ``RedisStore``: a shared Redis instance using native key expiry, for
  deployments running more than one process.

Values are flat string-keyed dicts. Redis hands every value back as a string,
so readers convert fields explicitly (``int(value["count"])``).
"""

import asyncio
import time
from contextlib import suppress
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from .errors import PersistenceUnavailable

logger = structlog.get_logger(__name__)


class KeyValueStore(Protocol):
    """Storage capability required by the throttle and revocation components."""

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def pop(self, key: str) -> Optional[Dict[str, Any]]:
        """Atomically read and remove a key; at most one caller gets the value."""
        ...

    async def increment(
        self, key: str, field: str, ttl_seconds: float, **fields: Any
    ) -> int:
        """Atomically add one to ``field``, merge ``fields`` and reset the TTL."""
        ...

    async def sweep(self) -> int:
        ...

    async def close(self) -> None:
        ...


@dataclass
class _Entry:
    value: Dict[str, Any]
    expires_at: float


class InMemoryStore:
    """
    Process-local key-value store with per-entry expiry.

    Every read-modify-write happens under one lock that is never held across
    an ``await``, so updates are atomic for coroutines on the event loop and
    for threadpool workers alike. Expired entries read as absent and are
    physically removed by ``sweep``.

    Example:
        >>> store = InMemoryStore()
        >>> await store.increment("ip:10.0.0.1", "count", ttl_seconds=3600)
        1
    """

    # Entries examined between yields to the event loop during a sweep
    SWEEP_BATCH = 500

    def __init__(self, clock: Callable[[], float] = time.time):
        self._entries: Dict[str, _Entry] = {}
        self._lock = Lock()
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def _live(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._live(key, self._clock())
            return dict(entry.value) if entry else None

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        with self._lock:
            self._entries[key] = _Entry(dict(value), self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    async def pop(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._live(key, self._clock())
            self._entries.pop(key, None)
            return dict(entry.value) if entry else None

    async def increment(
        self, key: str, field: str, ttl_seconds: float, **fields: Any
    ) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            value = entry.value if entry else {}
            count = int(value.get(field, 0)) + 1
            value[field] = count
            value.update(fields)
            self._entries[key] = _Entry(value, now + ttl_seconds)
            return count

    async def sweep(self) -> int:
        """
        Remove expired entries.

        The lock is taken per entry and released in between, and control
        returns to the event loop every ``SWEEP_BATCH`` entries, so a large
        store never stalls request handling.

        Returns:
            Number of entries removed
        """
        with self._lock:
            keys = list(self._entries.keys())

        removed = 0
        for index, key in enumerate(keys, start=1):
            with self._lock:
                entry = self._entries.get(key)
                if entry is not None and entry.expires_at <= self._clock():
                    del self._entries[key]
                    removed += 1
            if index % self.SWEEP_BATCH == 0:
                await asyncio.sleep(0)

        if removed:
            logger.debug("store_swept", removed=removed, remaining=len(self._entries))
        return removed

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisStore:
    """
    Redis-backed key-value store using hashes with native expiry.

    Increments run as a MULTI/EXEC pipeline (HINCRBY, HSET, PEXPIRE), so
    concurrent updates from any number of processes never lose counts.
    Redis errors surface as ``PersistenceUnavailable``.
    """

    def __init__(self, client: "redis.Redis"):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        """Create a store from a redis:// URL."""
        client = redis.from_url(url, encoding="utf-8", decode_responses=True)
        logger.info("redis_store_configured", url=url.split("@")[-1])
        return cls(client)

    @staticmethod
    def _ttl_ms(ttl_seconds: float) -> int:
        return max(1, int(ttl_seconds * 1000))

    @staticmethod
    def _unavailable(operation: str, error: RedisError) -> PersistenceUnavailable:
        logger.error("redis_store_error", operation=operation, error=str(error))
        return PersistenceUnavailable()

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._client.hgetall(key)
        except RedisError as e:
            raise self._unavailable("get", e) from e
        return data or None

    async def set(self, key: str, value: Dict[str, Any], ttl_seconds: float) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping=value)
                pipe.pexpire(key, self._ttl_ms(ttl_seconds))
                await pipe.execute()
        except RedisError as e:
            raise self._unavailable("set", e) from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise self._unavailable("delete", e) from e

    async def pop(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hgetall(key)
                pipe.delete(key)
                results = await pipe.execute()
        except RedisError as e:
            raise self._unavailable("pop", e) from e
        return results[0] or None

    async def increment(
        self, key: str, field: str, ttl_seconds: float, **fields: Any
    ) -> int:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, field, 1)
                if fields:
                    pipe.hset(key, mapping=fields)
                pipe.pexpire(key, self._ttl_ms(ttl_seconds))
                results = await pipe.execute()
        except RedisError as e:
            raise self._unavailable("increment", e) from e
        return int(results[0])

    async def sweep(self) -> int:
        # Redis expires keys on its own
        return 0

    async def close(self) -> None:
        await self._client.aclose()


class StoreSweeper:
    """
    Periodically evicts expired entries from one or more stores.

    Runs as a background asyncio task started and stopped by the application
    lifespan.
    """

    def __init__(self, stores: Iterable[KeyValueStore], interval_seconds: float = 3600):
        self.stores = list(stores)
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> int:
        """Sweep every store once and return the total number of evictions."""
        total = 0
        for store in self.stores:
            try:
                total += await store.sweep()
            except PersistenceUnavailable:
                logger.warning("store_sweep_skipped", store=type(store).__name__)
        return total

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            removed = await self.sweep_once()
            logger.debug("store_sweep_completed", removed=removed)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("store_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("store_sweeper_stopped")
