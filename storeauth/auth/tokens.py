"""Signed bearer token issuance and verification."""

import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Union

import structlog
from jose import JWTError, jwt

from .errors import ConfigurationError, TokenExpired, TokenMalformed, TokenNotYetValid
from .schemas import Role, TokenClaims

logger = structlog.get_logger(__name__)

MIN_SECRET_LENGTH = 32
DEFAULT_TOKEN_TTL = timedelta(days=7)

# Claims the service owns; callers cannot override them through extra claims
RESERVED_CLAIMS = frozenset({"sub", "role", "iat", "exp", "jti", "type"})


def validate_secret(secret: Optional[str]) -> str:
    """
    Check that a signing secret is present and strong enough.

    Args:
        secret: Configured signing secret

    Returns:
        The secret, unchanged

    Raises:
        ConfigurationError: If the secret is missing or shorter than 32 bytes
    """
    if not secret:
        raise ConfigurationError(
            "A JWT signing secret is required. "
            'Generate one with: python -c "import secrets; print(secrets.token_urlsafe(32))"'
        )
    if len(secret.encode("utf-8")) < MIN_SECRET_LENGTH:
        raise ConfigurationError(
            f"JWT signing secret is too short; at least {MIN_SECRET_LENGTH} bytes are required."
        )
    return secret


class TokenService:
    """
    Issues and verifies self-contained JWT access tokens.

    The secret is validated when the service is constructed, so building the
    service at application startup is enough to refuse a misconfigured
    deployment before any request is served.

    Example:
        >>> service = TokenService(secret="x" * 32)
        >>> token = service.issue(1, Role.ADMIN)
        >>> service.verify(token).role
        <Role.ADMIN: 'admin'>
    """

    def __init__(
        self,
        secret: Optional[str],
        algorithm: str = "HS256",
        ttl: timedelta = DEFAULT_TOKEN_TTL,
        clock_skew_seconds: int = 30,
        clock: Callable[[], float] = time.time,
    ):
        self._secret = validate_secret(secret)
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock_skew_seconds = clock_skew_seconds
        self._clock = clock

    @property
    def expires_in(self) -> int:
        """Token lifetime in seconds."""
        return int(self.ttl.total_seconds())

    def now(self) -> float:
        return self._clock()

    def issue(
        self,
        identity_id: Union[int, str],
        role: Union[Role, str],
        claims: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Create a signed access token.

        Args:
            identity_id: ID of the identity the token is issued to
            role: Role snapshot embedded in the token
            claims: Additional non-reserved claims to embed

        Returns:
            Encoded JWT string
        """
        now = int(self._clock())
        to_encode = {k: v for k, v in (claims or {}).items() if k not in RESERVED_CLAIMS}
        to_encode.update(
            {
                "sub": str(identity_id),
                "role": Role(role).value,
                "iat": now,
                "exp": now + self.expires_in,
                "jti": str(uuid.uuid4()),
                "type": "access",
            }
        )
        return jwt.encode(to_encode, self._secret, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """
        Verify a token's signature and time claims.

        Args:
            token: Encoded JWT string

        Returns:
            Verified TokenClaims

        Raises:
            TokenMalformed: Signature invalid, payload unparseable, or claims missing
            TokenExpired: Signature valid but the token is past its expiry
            TokenNotYetValid: Token issued later than now (beyond allowed clock skew)
        """
        claims = self._decode(token)

        now = self._clock()
        if claims.issued_at.timestamp() > now + self.clock_skew_seconds:
            logger.warning(
                "token_not_yet_valid", issued_at=int(claims.issued_at.timestamp()), now=int(now)
            )
            raise TokenNotYetValid()

        if now >= claims.expires_at.timestamp():
            raise TokenExpired(expired_at=claims.expires_at.isoformat())

        return claims

    def decode_for_revocation(self, token: str) -> TokenClaims:
        """
        Check signature and claim shape only, ignoring ``iat`` and ``exp``.

        For logout, which must be able to revoke a token that is not valid
        yet.

        Raises:
            TokenMalformed: Signature invalid, payload unparseable, or claims missing
        """
        return self._decode(token)

    def _decode(self, token: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JWTError as e:
            logger.debug("token_decode_error", error=str(e))
            raise TokenMalformed() from e

        if payload.get("type") != "access":
            logger.warning("token_type_mismatch", actual=payload.get("type"))
            raise TokenMalformed()

        try:
            subject = str(int(payload["sub"]))
            role = Role(payload["role"])
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            jti = str(payload["jti"])
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            # fromtimestamp rejects values outside the platform's datetime range
            logger.warning("token_claims_invalid", error=str(e))
            raise TokenMalformed() from e

        return TokenClaims(
            subject=subject,
            role=role,
            issued_at=issued_at,
            expires_at=expires_at,
            jti=jti,
            extra={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )
