"""Brute-force login throttling keyed by source IP or account."""

import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from .stores import KeyValueStore

logger = structlog.get_logger(__name__)


class AttemptState(str, Enum):
    """Lockout state of a single key."""

    CLEAR = "clear"
    WARMING = "warming"
    BLOCKED = "blocked"


class LoginAttemptGuard:
    """
    Failed-login tracker with temporary lockout.

    Each key moves CLEAR -> WARMING (1..max_attempts-1 failures) -> BLOCKED
    (max_attempts or more). A key returns to CLEAR once ``window_seconds``
    have passed since its *last* failure, or immediately on ``reset``. Expiry
    is evaluated lazily on read; the store's TTL (refreshed on every failure)
    bounds memory.

    The same class serves two scopes: ``scope="ip"`` (source address, 10
    failures per hour by default) and ``scope="account"`` (lower-cased email,
    typically 5 failures locking for 2 hours).

    Attributes:
        max_attempts: Failures that put a key into BLOCKED
        window_seconds: Lockout window measured from the last failure
        scope: Key namespace, also reported in log events

    Example:
        >>> guard = LoginAttemptGuard(InMemoryStore(), max_attempts=10, window_seconds=3600)
        >>> if await guard.is_blocked("192.168.1.1"):
        ...     raise RateLimited(await guard.get_retry_after("192.168.1.1"))
        >>> # On failed login:
        >>> await guard.record_failure("192.168.1.1")
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_attempts: int = 10,
        window_seconds: int = 3600,
        scope: str = "ip",
        clock: Callable[[], float] = time.time,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.scope = scope
        self._clock = clock

    def with_limits(self, max_attempts: int, window_seconds: int) -> "LoginAttemptGuard":
        """
        Guard over the same store and scope with different limits.

        Counters are shared with this guard; only the blocking threshold and
        window differ.
        """
        if max_attempts == self.max_attempts and window_seconds == self.window_seconds:
            return self
        return LoginAttemptGuard(
            self.store,
            max_attempts=max_attempts,
            window_seconds=window_seconds,
            scope=self.scope,
            clock=self._clock,
        )

    def _key(self, key: str) -> str:
        return f"login_attempts:{self.scope}:{key}"

    async def _record(self, key: str) -> Optional[Dict[str, Any]]:
        """Current record, or None if absent or its window has elapsed."""
        record = await self.store.get(self._key(key))
        if not record:
            return None
        last_failure = float(record.get("last_failure", 0))
        if self._clock() - last_failure >= self.window_seconds:
            return None
        return record

    async def failure_count(self, key: str) -> int:
        record = await self._record(key)
        return int(record["count"]) if record else 0

    async def state(self, key: str) -> AttemptState:
        count = await self.failure_count(key)
        if count == 0:
            return AttemptState.CLEAR
        if count < self.max_attempts:
            return AttemptState.WARMING
        return AttemptState.BLOCKED

    async def is_blocked(self, key: str) -> bool:
        """
        Check whether a key is locked out.

        Pure read: never modifies the stored record.

        Args:
            key: IP address or account identifier

        Returns:
            True if blocked, False if allowed
        """
        blocked = await self.state(key) is AttemptState.BLOCKED
        if blocked:
            logger.warning("login_throttled", scope=self.scope, key=key)
        return blocked

    async def record_failure(self, key: str) -> int:
        """
        Record a failed login attempt.

        The increment and the refresh of the last-failure timestamp happen in
        one atomic store operation.

        Args:
            key: IP address or account identifier

        Returns:
            Number of failures in the current window
        """
        count = await self.store.increment(
            self._key(key),
            "count",
            ttl_seconds=self.window_seconds,
            last_failure=self._clock(),
        )

        logger.info(
            "login_attempt_failed",
            scope=self.scope,
            key=key,
            attempt_count=count,
            max_attempts=self.max_attempts,
        )
        if count == self.max_attempts:
            logger.warning(
                "login_lockout_started",
                scope=self.scope,
                key=key,
                window_seconds=self.window_seconds,
            )
        return count

    async def reset(self, key: str) -> None:
        """
        Clear failed attempts for a key (after a successful login).

        Args:
            key: IP address or account identifier
        """
        await self.store.delete(self._key(key))
        logger.debug("login_attempts_cleared", scope=self.scope, key=key)

    async def get_remaining_attempts(self, key: str) -> int:
        """Number of failures left before the key is blocked."""
        return max(0, self.max_attempts - await self.failure_count(key))

    async def get_retry_after(self, key: str) -> int:
        """
        Seconds until the lockout lifts (for the Retry-After header).

        Returns:
            Seconds remaining, or 0 if not blocked
        """
        record = await self._record(key)
        if not record or int(record["count"]) < self.max_attempts:
            return 0
        last_failure = float(record["last_failure"])
        return max(0, int(last_failure + self.window_seconds - self._clock()) + 1)
