"""Single-use tokens for email verification and password reset.

The raw token is handed to the identity (through an ``ActionTokenDelivery``)
and never stored: the state store keeps only its SHA-256 digest, the owning
identity and the expiry. Consuming a token removes it atomically, so each
token works exactly once. Issuing a new token for the same identity and
purpose invalidates the previous one.
"""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

import structlog

from .errors import InvalidActionToken
from .revocation import token_digest
from .schemas import Identity
from .stores import KeyValueStore

logger = structlog.get_logger(__name__)


class ActionPurpose(str, Enum):
    """What a single-use token authorizes."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"


# Seconds each kind of token stays redeemable
DEFAULT_LIFETIMES: Dict[ActionPurpose, int] = {
    ActionPurpose.EMAIL_VERIFICATION: 24 * 3600,
    ActionPurpose.PASSWORD_RESET: 10 * 60,
}


@dataclass(frozen=True)
class IssuedActionToken:
    token: str
    purpose: ActionPurpose
    identity_id: int
    expires_at: datetime


class ActionTokenDelivery(Protocol):
    """Sends a freshly issued token to its owner (email, SMS, ...)."""

    async def deliver(self, identity: Identity, issued: IssuedActionToken) -> None:
        ...


class LogTokenDelivery:
    """
    Delivery that only writes a log event.

    The raw token is included in the event only when ``include_token`` is
    set, which the application does in debug mode.
    """

    def __init__(self, include_token: bool = False):
        self.include_token = include_token

    async def deliver(self, identity: Identity, issued: IssuedActionToken) -> None:
        event = {
            "identity_id": identity.id,
            "purpose": issued.purpose.value,
            "expires_at": issued.expires_at.isoformat(),
        }
        if self.include_token:
            event["token"] = issued.token
        logger.info("action_token_issued", **event)


class ActionTokenService:
    """
    Issues and consumes single-use action tokens.

    Example:
        >>> service = ActionTokenService(InMemoryStore())
        >>> issued = await service.issue(1, ActionPurpose.EMAIL_VERIFICATION)
        >>> await service.consume(issued.token, ActionPurpose.EMAIL_VERIFICATION)
        1
    """

    def __init__(
        self,
        store: KeyValueStore,
        lifetimes: Optional[Dict[ActionPurpose, int]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.lifetimes = {**DEFAULT_LIFETIMES, **(lifetimes or {})}
        self._clock = clock

    @staticmethod
    def _token_key(purpose: ActionPurpose, digest: str) -> str:
        return f"action:{purpose.value}:{digest}"

    @staticmethod
    def _owner_key(purpose: ActionPurpose, identity_id: int) -> str:
        return f"action:{purpose.value}:identity:{identity_id}"

    async def issue(self, identity_id: int, purpose: ActionPurpose) -> IssuedActionToken:
        """
        Create a token for ``identity_id``, replacing any outstanding one.

        Returns:
            The raw token and its expiry; only the digest is stored
        """
        purpose = ActionPurpose(purpose)
        lifetime = self.lifetimes[purpose]
        token = secrets.token_hex(32)
        digest = token_digest(token)
        expires_at = self._clock() + lifetime

        previous = await self.store.pop(self._owner_key(purpose, identity_id))
        if previous:
            await self.store.delete(self._token_key(purpose, previous["digest"]))

        await self.store.set(
            self._token_key(purpose, digest),
            {"identity_id": identity_id, "expires_at": expires_at},
            ttl_seconds=lifetime,
        )
        await self.store.set(
            self._owner_key(purpose, identity_id),
            {"digest": digest},
            ttl_seconds=lifetime,
        )
        logger.debug(
            "action_token_created", purpose=purpose.value, identity_id=identity_id
        )
        return IssuedActionToken(
            token=token,
            purpose=purpose,
            identity_id=identity_id,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc),
        )

    async def consume(self, token: str, purpose: ActionPurpose) -> int:
        """
        Redeem a token once.

        Returns:
            ID of the identity the token was issued to

        Raises:
            InvalidActionToken: Unknown, already used, superseded or expired
        """
        purpose = ActionPurpose(purpose)
        record = await self.store.pop(self._token_key(purpose, token_digest(token)))
        if record is None:
            logger.warning("action_token_rejected", purpose=purpose.value)
            raise InvalidActionToken()

        identity_id = int(record["identity_id"])
        await self.store.delete(self._owner_key(purpose, identity_id))

        if float(record["expires_at"]) <= self._clock():
            logger.warning(
                "action_token_expired", purpose=purpose.value, identity_id=identity_id
            )
            raise InvalidActionToken()

        logger.info("action_token_consumed", purpose=purpose.value, identity_id=identity_id)
        return identity_id
