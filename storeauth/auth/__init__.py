"""Authentication and authorization core."""

from .action_tokens import (
    ActionPurpose,
    ActionTokenDelivery,
    ActionTokenService,
    IssuedActionToken,
    LogTokenDelivery,
)
from .authenticator import (
    AuthConfig,
    Authenticator,
    IdentityLookup,
    authorize,
    expand_roles,
    extract_token,
)
from .errors import (
    AuthError,
    AuthErrorKind,
    ConfigurationError,
    Forbidden,
    InvalidActionToken,
    PersistenceUnavailable,
    RateLimited,
    STATUS_BY_KIND,
    TokenExpired,
    TokenMalformed,
    TokenNotYetValid,
    TokenRevoked,
    Unauthenticated,
)
from .revocation import TokenRevocationStore, token_digest
from .schemas import (
    AccessTokenResponse,
    AuthContext,
    EmailRequest,
    Identity,
    IdentityList,
    LoginRequest,
    MessageResponse,
    PasswordResetConfirm,
    RegisterRequest,
    Role,
    RoleUpdateRequest,
    StatusUpdateRequest,
    TokenClaims,
    VerifyEmailRequest,
)
from .security import DUMMY_PASSWORD_HASH, burn_verification, hash_password, verify_password
from .stores import InMemoryStore, KeyValueStore, RedisStore, StoreSweeper
from .throttle import AttemptState, LoginAttemptGuard
from .tokens import MIN_SECRET_LENGTH, TokenService, validate_secret
from .utils import clear_token_cookie, set_token_cookie

__all__ = [
    # Action tokens
    "ActionPurpose",
    "ActionTokenDelivery",
    "ActionTokenService",
    "IssuedActionToken",
    "LogTokenDelivery",
    # Pipeline
    "AuthConfig",
    "Authenticator",
    "IdentityLookup",
    "authorize",
    "expand_roles",
    "extract_token",
    # Errors
    "AuthError",
    "AuthErrorKind",
    "ConfigurationError",
    "Forbidden",
    "InvalidActionToken",
    "PersistenceUnavailable",
    "RateLimited",
    "STATUS_BY_KIND",
    "TokenExpired",
    "TokenMalformed",
    "TokenNotYetValid",
    "TokenRevoked",
    "Unauthenticated",
    # Revocation
    "TokenRevocationStore",
    "token_digest",
    # Schemas
    "AccessTokenResponse",
    "AuthContext",
    "EmailRequest",
    "Identity",
    "IdentityList",
    "LoginRequest",
    "MessageResponse",
    "PasswordResetConfirm",
    "RegisterRequest",
    "Role",
    "RoleUpdateRequest",
    "StatusUpdateRequest",
    "TokenClaims",
    "VerifyEmailRequest",
    # Security functions
    "DUMMY_PASSWORD_HASH",
    "burn_verification",
    "hash_password",
    "verify_password",
    # Stores
    "InMemoryStore",
    "KeyValueStore",
    "RedisStore",
    "StoreSweeper",
    # Throttle
    "AttemptState",
    "LoginAttemptGuard",
    # Tokens
    "MIN_SECRET_LENGTH",
    "TokenService",
    "validate_secret",
    # Cookies
    "clear_token_cookie",
    "set_token_cookie",
]
