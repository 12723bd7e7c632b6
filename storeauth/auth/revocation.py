"""Token revocation (logout denylist) with TTL eviction."""

import hashlib
import time
from datetime import datetime
from typing import Callable, Optional

import structlog

from .stores import KeyValueStore

logger = structlog.get_logger(__name__)

DEFAULT_RETENTION_SECONDS = 7 * 24 * 3600


def token_digest(token: str) -> str:
    """SHA-256 hex digest used as the stored key; raw tokens are never persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenRevocationStore:
    """
    Remembers revoked tokens until they could no longer be accepted anyway.

    Each entry lives until the token's own expiry plus ``retention_seconds``,
    so a token that still verifies by signature is always found here. When
    the caller does not know the expiry, ``default_ttl_seconds`` (the token
    lifetime) stands in for it.
    """

    def __init__(
        self,
        store: KeyValueStore,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        default_ttl_seconds: int = 7 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.retention_seconds = retention_seconds
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    @staticmethod
    def _key(token: str) -> str:
        return f"revoked:{token_digest(token)}"

    async def revoke(self, token: str, expires_at: Optional[datetime] = None) -> None:
        """
        Revoke a token. Revoking an already-revoked token is a no-op success.

        Args:
            token: Raw token string
            expires_at: The token's own expiry, if known
        """
        now = self._clock()
        expiry = expires_at.timestamp() if expires_at else now + self.default_ttl_seconds
        ttl = max(0.0, expiry - now) + self.retention_seconds

        await self.store.set(
            self._key(token),
            {"revoked_at": now, "expires_at": expiry},
            ttl_seconds=ttl,
        )
        logger.info("token_revoked", digest=token_digest(token)[:12], ttl_seconds=int(ttl))

    async def is_revoked(self, token: str) -> bool:
        """Check whether a token has been revoked."""
        return await self.store.get(self._key(token)) is not None
