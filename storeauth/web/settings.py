"""API-specific settings using Pydantic BaseSettings."""

from datetime import timedelta
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storeauth.auth import AuthConfig, MIN_SECRET_LENGTH
from storeauth.common.config import FileLoggingConfig, LoggingConfig

MAX_TOKEN_TTL_MINUTES = 365 * 24 * 60


class APISettings(BaseSettings):
    """
    FastAPI application settings.

    Settings can be configured via environment variables with the prefix STOREAUTH_API_.
    For example: STOREAUTH_API_JWT_SECRET=..., STOREAUTH_API_STORE_BACKEND=redis

    Attributes:
        host: Server bind address
        port: Server bind port
        debug: Enable debug mode (verbose errors, non-Secure cookies)
        allowed_origins: List of allowed CORS origins
        log_requests: Log all requests and responses
        openapi_url: OpenAPI schema URL
        log_level: Log level for structlog and stdlib logging
        log_format: "json" or "text"
        log_file_enabled: Also write logs to a daily-rotated file
        log_dir: Directory for that file
        database_path: SQLite file holding identities
        jwt_secret: Secret key for JWT signing (always required, >= 32 bytes)
        jwt_algorithm: JWT signing algorithm (default: HS256)
        token_ttl_minutes: Access token lifetime (default: 10080 = 7 days, at most 1 year)
        clock_skew_seconds: Tolerance for tokens issued slightly in the future
        require_email_verification: Reject identities with unverified email
        allow_cookie_token: Accept the token from a cookie when no header is sent
        token_cookie_name: Name of that cookie
        enable_ip_lockout: Block source IPs after repeated failed logins
        lockout_threshold: Failures per IP before blocking (default: 10)
        lockout_window_seconds: IP lockout window (default: 3600)
        enable_account_lockout: Lock accounts after repeated failed logins
        account_lockout_threshold: Failures per account before locking (default: 5)
        account_lockout_seconds: Account lock duration (default: 7200)
        email_verification_ttl_seconds: Lifetime of email verification tokens (default: 24 h)
        password_reset_ttl_seconds: Lifetime of password reset tokens (default: 10 min)
        revocation_retention_seconds: Margin kept past token expiry for revoked tokens
        sweep_interval_seconds: How often in-memory stores evict expired entries
        store_backend: "memory" (single process) or "redis" (shared)
        redis_url: Redis connection URL, required for the redis backend
        trusted_proxy_count: Number of trusted proxies for X-Forwarded-For parsing
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREAUTH_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    log_requests: bool = True
    openapi_url: str = "/openapi.json"
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file_enabled: bool = False
    log_dir: str = "logs"

    # Persistence
    database_path: str = "storeauth.db"

    # Token settings
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    token_ttl_minutes: int = Field(default=10080, ge=1, le=MAX_TOKEN_TTL_MINUTES)
    clock_skew_seconds: int = Field(default=30, ge=0)

    # Pipeline switches
    require_email_verification: bool = False
    allow_cookie_token: bool = True
    token_cookie_name: str = "token"

    # Brute-force protection
    enable_ip_lockout: bool = True
    lockout_threshold: int = Field(default=10, ge=1)
    lockout_window_seconds: int = Field(default=3600, ge=1)
    enable_account_lockout: bool = True
    account_lockout_threshold: int = Field(default=5, ge=1)
    account_lockout_seconds: int = Field(default=7200, ge=1)

    # Single-use action tokens
    email_verification_ttl_seconds: int = Field(default=24 * 3600, ge=60)
    password_reset_ttl_seconds: int = Field(default=10 * 60, ge=60)

    # Revocation and state stores
    revocation_retention_seconds: int = Field(default=7 * 24 * 3600, ge=0)
    sweep_interval_seconds: int = Field(default=3600, ge=1)
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: Optional[str] = None

    # Proxy settings for IP extraction
    trusted_proxy_count: int = 0

    @model_validator(mode="after")
    def validate_auth_config(self) -> "APISettings":
        """Validate authentication configuration.

        Security requirements:
        - jwt_secret is ALWAYS required (no default) and at least 32 bytes
        - the redis store backend needs a redis_url
        """
        if not self.jwt_secret:
            raise ValueError(
                "STOREAUTH_API_JWT_SECRET must be set. "
                'Generate a secure secret with: python -c "import secrets; print(secrets.token_urlsafe(32))"'
            )
        if len(self.jwt_secret.encode("utf-8")) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"STOREAUTH_API_JWT_SECRET must be at least {MIN_SECRET_LENGTH} bytes long."
            )
        if self.store_backend == "redis" and not self.redis_url:
            raise ValueError(
                "STOREAUTH_API_REDIS_URL must be set when STOREAUTH_API_STORE_BACKEND=redis."
            )
        return self

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(minutes=self.token_ttl_minutes)

    @property
    def logging_config(self) -> LoggingConfig:
        return LoggingConfig(
            level=self.log_level,
            format=self.log_format,
            file=FileLoggingConfig(enabled=self.log_file_enabled, log_dir=self.log_dir),
        )

    def to_auth_config(self) -> AuthConfig:
        """Build the pipeline configuration from these settings."""
        return AuthConfig(
            require_email_verification=self.require_email_verification,
            allow_cookie_token=self.allow_cookie_token,
            enable_ip_lockout=self.enable_ip_lockout,
            lockout_threshold=self.lockout_threshold,
            lockout_window=self.lockout_window_seconds,
            cookie_name=self.token_cookie_name,
        )


@lru_cache
def get_settings() -> APISettings:
    """
    Get cached API settings instance.

    Returns:
        APISettings instance (cached)
    """
    return APISettings()
