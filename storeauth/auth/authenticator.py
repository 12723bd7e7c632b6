"""Consolidated authentication pipeline and role-based authorization."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional, Protocol, Set

import structlog

from .errors import (
    AuthError,
    Forbidden,
    PersistenceUnavailable,
    RateLimited,
    TokenRevoked,
    Unauthenticated,
)
from .revocation import TokenRevocationStore
from .schemas import AuthContext, Identity, Role
from .throttle import LoginAttemptGuard
from .tokens import TokenService

logger = structlog.get_logger(__name__)


class IdentityLookup(Protocol):
    """User-record lookup consumed by the pipeline.

    Implementations raise ``PersistenceUnavailable`` when their backend is
    down and return None only when the identity genuinely does not exist.
    """

    async def find_by_id(self, identity_id: int) -> Optional[Identity]:
        ...

    async def find_by_email(
        self, email: str, include_password_hash: bool = False
    ) -> Optional[Identity]:
        ...

    async def touch_last_active(self, identity_id: int, when: Optional[datetime] = None) -> None:
        ...


@dataclass(frozen=True)
class AuthConfig:
    """Feature switches for the authentication pipeline.

    ``enable_ip_lockout``, ``lockout_threshold`` and ``lockout_window``
    (seconds) govern the source-IP guard everywhere it is consulted: the
    request pipeline and the login route alike.
    """

    require_email_verification: bool = False
    allow_cookie_token: bool = True
    enable_ip_lockout: bool = True
    lockout_threshold: int = 10
    lockout_window: int = 3600
    cookie_name: str = "token"


def extract_token(
    authorization: Optional[str],
    cookies: Optional[Mapping[str, str]] = None,
    cookie_name: Optional[str] = None,
) -> Optional[str]:
    """
    Pull a bearer token from the Authorization header or, if enabled, a cookie.

    Args:
        authorization: Raw Authorization header value
        cookies: Request cookies
        cookie_name: Cookie to fall back to; None disables the fallback

    Returns:
        The token, or None if no credential was presented
    """
    if authorization:
        scheme, _, credentials = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    if cookie_name and cookies:
        token = cookies.get(cookie_name)
        if token:
            return token
    return None


def expand_roles(allowed: Iterable[Role]) -> Set[Role]:
    """Apply the role hierarchy: superadmin satisfies any admin requirement."""
    roles = {Role(role) for role in allowed}
    if Role.ADMIN in roles:
        roles.add(Role.SUPERADMIN)
    return roles


def authorize(context: Optional[AuthContext], allowed: Iterable[Role]) -> AuthContext:
    """
    Gate an authenticated request on role.

    Args:
        context: Context attached by authentication, if any
        allowed: Roles allowed through (admin implies superadmin)

    Returns:
        The same context, for chaining

    Raises:
        Unauthenticated: No context attached (authentication did not run)
        Forbidden: Identity's role is not allowed
    """
    if context is None:
        logger.error("authorization_without_authentication")
        raise Unauthenticated("Authentication required")

    roles = expand_roles(allowed)
    identity = context.identity
    if identity.role not in roles:
        logger.warning(
            "authorization_denied",
            identity_id=identity.id,
            role=identity.role.value,
            allowed=sorted(role.value for role in roles),
        )
        raise Forbidden("Access denied. Insufficient privileges.", reason="insufficient_role")

    logger.debug("authorization_granted", identity_id=identity.id, role=identity.role.value)
    return context


class Authenticator:
    """
    Per-request authentication pipeline.

    Stages, each short-circuiting with an ``AuthError``:

    1. source IP lockout (``RateLimited``), when enabled
    2. token extraction (``Unauthenticated``)
    3. revocation check (``TokenRevoked``)
    4. signature/time verification (``TokenExpired``, ``TokenMalformed``,
       ``TokenNotYetValid``)
    5. identity lookup (``Unauthenticated`` if gone, ``PersistenceUnavailable``
       if the backend is down)
    6. active flag (``Forbidden``/``account_deactivated``)
    7. email verification, when required (``Forbidden``/``verification_required``)

    On success the identity's last-active timestamp is updated in the
    background; the request does not wait for it and its failure is only
    logged.
    """

    def __init__(
        self,
        config: AuthConfig,
        tokens: TokenService,
        revocations: TokenRevocationStore,
        identities: IdentityLookup,
        ip_guard: Optional[LoginAttemptGuard] = None,
    ):
        self.config = config
        self.tokens = tokens
        self.revocations = revocations
        self.identities = identities
        # The guard supplies store and scope; limits always come from config
        self.ip_guard = (
            ip_guard.with_limits(config.lockout_threshold, config.lockout_window)
            if ip_guard is not None
            else None
        )
        self._background: Set[asyncio.Task] = set()

    @property
    def ip_lockout_enabled(self) -> bool:
        return self.config.enable_ip_lockout and self.ip_guard is not None

    async def check_source_ip(self, source_ip: str, message: Optional[str] = None) -> None:
        """
        Refuse a locked-out source address.

        Raises:
            RateLimited: The address has reached ``lockout_threshold`` failures
                within ``lockout_window``
        """
        if not self.ip_lockout_enabled:
            return
        if await self.ip_guard.is_blocked(source_ip):
            retry_after = await self.ip_guard.get_retry_after(source_ip)
            logger.error("blocked_ip_access_attempt", ip=source_ip)
            raise RateLimited(retry_after, message, reason="ip_blocked")

    async def record_login_failure(self, source_ip: str) -> None:
        """Count a failed login against the source address."""
        if self.ip_lockout_enabled:
            await self.ip_guard.record_failure(source_ip)

    async def clear_login_failures(self, source_ip: str) -> None:
        if self.ip_guard is not None:
            await self.ip_guard.reset(source_ip)

    async def authenticate(
        self,
        source_ip: str,
        authorization: Optional[str],
        cookies: Optional[Mapping[str, str]] = None,
    ) -> AuthContext:
        """
        Run the full pipeline.

        Args:
            source_ip: Client address used for lockout checks
            authorization: Raw Authorization header value
            cookies: Request cookies (used only if cookie tokens are allowed)

        Returns:
            AuthContext with the resolved identity, raw token and claims
        """
        await self.check_source_ip(source_ip)

        token = extract_token(
            authorization,
            cookies,
            self.config.cookie_name if self.config.allow_cookie_token else None,
        )
        if token is None:
            raise Unauthenticated()

        if await self.revocations.is_revoked(token):
            logger.warning("revoked_token_presented", ip=source_ip)
            raise TokenRevoked()

        claims = self.tokens.verify(token)

        identity = await self.identities.find_by_id(claims.identity_id)
        if identity is None:
            logger.warning("token_subject_not_found", identity_id=claims.identity_id)
            raise Unauthenticated("User not found. Please login again.", reason="user_not_found")

        if not identity.is_active:
            logger.warning("inactive_identity_access_attempt", identity_id=identity.id)
            raise Forbidden(
                "Your account has been deactivated. Please contact support.",
                reason="account_deactivated",
            )

        if self.config.require_email_verification and not identity.email_verified:
            logger.warning("unverified_identity_access_attempt", identity_id=identity.id)
            raise Forbidden(
                "Please verify your email address to continue.",
                reason="verification_required",
            )

        self.touch_in_background(identity.id)
        logger.debug("request_authenticated", identity_id=identity.id, role=identity.role.value)
        return AuthContext(identity=identity, token=token, claims=claims)

    async def optional_authenticate(
        self,
        source_ip: str,
        authorization: Optional[str],
        cookies: Optional[Mapping[str, str]] = None,
    ) -> Optional[AuthContext]:
        """Same pipeline as ``authenticate`` but returns None instead of failing."""
        try:
            return await self.authenticate(source_ip, authorization, cookies)
        except AuthError as e:
            logger.debug("optional_authentication_skipped", reason=e.reason)
            return None

    async def logout(self, token: Optional[str]) -> bool:
        """
        Revoke a presented token.

        Idempotent: a missing, malformed, expired or already-revoked token is
        not an error. A correctly signed token whose issue time is still in
        the future is revoked until its own expiry.

        Returns:
            True if the token was (or already was) revoked, False if there was
            nothing revocable
        """
        if not token:
            return False
        try:
            claims = self.tokens.decode_for_revocation(token)
        except AuthError as e:
            logger.debug("logout_token_not_revocable", reason=e.reason)
            return False
        if claims.expires_at <= datetime.fromtimestamp(self.tokens.now(), tz=timezone.utc):
            logger.debug("logout_token_not_revocable", reason="token_expired")
            return False
        await self.revocations.revoke(token, expires_at=claims.expires_at)
        logger.info("logout_token_revoked", identity_id=claims.identity_id, jti=claims.jti)
        return True

    def touch_in_background(self, identity_id: int) -> None:
        """Update last-active without blocking the caller; failures are only logged."""
        task = asyncio.create_task(self._touch_last_active(identity_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _touch_last_active(self, identity_id: int) -> None:
        try:
            await self.identities.touch_last_active(identity_id, datetime.now(timezone.utc))
        except PersistenceUnavailable:
            logger.warning("last_active_update_failed", identity_id=identity_id)
        except Exception as e:
            # Best-effort bookkeeping; never surfaces to the request
            logger.warning("last_active_update_error", identity_id=identity_id, error=str(e))

    async def drain(self) -> None:
        """Wait for pending background updates (used on shutdown and in tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
