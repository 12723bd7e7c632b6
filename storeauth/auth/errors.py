"""Closed error taxonomy for authentication and authorization failures.

Every per-request failure raised by the auth pipeline is an ``AuthError``
subclass carrying a kind (which decides the HTTP status), a stable
machine-readable reason code, and a human message. The web layer translates
them into responses; nothing else inspects exception names.
"""

from enum import Enum
from typing import Any, Dict, Optional


class AuthErrorKind(str, Enum):
    """Kinds of per-request auth failure."""

    UNAUTHENTICATED = "unauthenticated"
    EXPIRED = "expired"
    REVOKED = "revoked"
    MALFORMED = "malformed"
    NOT_YET_VALID = "not_yet_valid"
    RATE_LIMITED = "rate_limited"
    FORBIDDEN = "forbidden"
    INVALID_ACTION_TOKEN = "invalid_action_token"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


STATUS_BY_KIND: Dict[AuthErrorKind, int] = {
    AuthErrorKind.INVALID_ACTION_TOKEN: 400,
    AuthErrorKind.UNAUTHENTICATED: 401,
    AuthErrorKind.EXPIRED: 401,
    AuthErrorKind.REVOKED: 401,
    AuthErrorKind.MALFORMED: 401,
    AuthErrorKind.NOT_YET_VALID: 401,
    AuthErrorKind.RATE_LIMITED: 429,
    AuthErrorKind.FORBIDDEN: 403,
    AuthErrorKind.PERSISTENCE_UNAVAILABLE: 500,
}


class ConfigurationError(Exception):
    """Raised at startup when the auth subsystem is misconfigured.

    Not an ``AuthError``: it is never translated into a response and must stop
    the application from being created.
    """

    pass


class AuthError(Exception):
    """Base class for per-request authentication/authorization failures."""

    kind: AuthErrorKind = AuthErrorKind.UNAUTHENTICATED
    default_reason: str = "unauthenticated"
    default_message: str = "Authentication required"

    def __init__(
        self,
        message: Optional[str] = None,
        reason: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ):
        self.message = message or self.default_message
        self.reason = reason or self.default_reason
        self.headers = dict(headers or {})
        self.extra = extra
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        """Client-safe response body."""
        body: Dict[str, Any] = {
            "detail": self.message,
            "error_type": self.kind.value,
            "reason": self.reason,
        }
        if self.status_code == 401:
            body["requires_auth"] = True
        body.update(self.extra)
        return body


class Unauthenticated(AuthError):
    """No usable credential, or the credential's subject no longer exists."""

    kind = AuthErrorKind.UNAUTHENTICATED
    default_reason = "missing_token"
    default_message = "Not authorized. Please login to access this route."

    def __init__(self, message: Optional[str] = None, reason: Optional[str] = None, **extra: Any):
        super().__init__(
            message, reason, headers={"WWW-Authenticate": "Bearer"}, **extra
        )


class TokenExpired(AuthError):
    """Signature is valid but the token is past its expiry."""

    kind = AuthErrorKind.EXPIRED
    default_reason = "token_expired"
    default_message = "Session expired. Please login again."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class TokenRevoked(AuthError):
    """Token was revoked (logged out) before its natural expiry."""

    kind = AuthErrorKind.REVOKED
    default_reason = "token_revoked"
    default_message = "Token has been revoked. Please login again."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class TokenMalformed(AuthError):
    """Signature invalid or payload unparseable."""

    kind = AuthErrorKind.MALFORMED
    default_reason = "token_malformed"
    default_message = "Invalid authentication token. Please login again."

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class TokenNotYetValid(AuthError):
    """Token claims an issue time in the future."""

    kind = AuthErrorKind.NOT_YET_VALID
    default_reason = "token_not_yet_valid"
    default_message = "Token not yet valid"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"}, **extra)


class RateLimited(AuthError):
    """Source or account is temporarily locked out."""

    kind = AuthErrorKind.RATE_LIMITED
    default_reason = "ip_blocked"
    default_message = "Too many failed attempts. Access temporarily blocked."

    def __init__(
        self,
        retry_after: int,
        message: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        self.retry_after = max(0, int(retry_after))
        super().__init__(
            message,
            reason,
            headers={"Retry-After": str(self.retry_after)},
            retry_after=self.retry_after,
        )


class Forbidden(AuthError):
    """Authenticated, but not allowed to proceed."""

    kind = AuthErrorKind.FORBIDDEN
    default_reason = "insufficient_role"
    default_message = "Access denied."


class InvalidActionToken(AuthError):
    """Email-verification or password-reset token is unknown, used, or expired."""

    kind = AuthErrorKind.INVALID_ACTION_TOKEN
    default_reason = "action_token_invalid"
    default_message = "Invalid or expired token"


class PersistenceUnavailable(AuthError):
    """Identity lookup or state store backend is down."""

    kind = AuthErrorKind.PERSISTENCE_UNAVAILABLE
    default_reason = "persistence_unavailable"
    default_message = "Authentication backend unavailable. Please try again later."
