"""FastAPI application factory and entry point."""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Callable, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from pydantic import BaseModel, Field

import storeauth
from storeauth.auth import (
    ActionPurpose,
    ActionTokenDelivery,
    ActionTokenService,
    AuthContext,
    Authenticator,
    InMemoryStore,
    KeyValueStore,
    LoginAttemptGuard,
    LogTokenDelivery,
    RedisStore,
    StoreSweeper,
    TokenRevocationStore,
    TokenService,
)
from storeauth.common.logging_config import setup_logging
from storeauth.core.db import IdentityRepository

from .dependencies import optional_authenticate
from .middleware import RequestLoggingMiddleware, register_exception_handlers
from .settings import APISettings, get_settings

logger = structlog.get_logger(__name__)


class HealthCheckResponse(BaseModel):
    """Health check endpoint response."""

    status: str = Field(description="Health status ('ok' or 'error')")
    version: str = Field(description="API version string")
    authenticated: bool = Field(description="Whether the request carried a valid token")


def _build_store(settings: APISettings, clock: Callable[[], float]) -> KeyValueStore:
    if settings.store_backend == "redis":
        logger.info("state_store_selected", backend="redis")
        return RedisStore.from_url(settings.redis_url)

    logger.warning(
        "state_store_selected",
        backend="memory",
        note="Lockouts and revocations are lost on restart and not shared between processes",
    )
    return InMemoryStore(clock=clock)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Open the identity database, start the expiry sweeper
    - Shutdown: Stop the sweeper, wait for background updates, close stores
    """
    settings: APISettings = app.state.settings
    logger.info("api_starting", host=settings.host, port=settings.port)

    await app.state.identities.connect()
    app.state.sweeper.start()

    logger.info(
        "api_ready",
        version=storeauth.__version__,
        store_backend=settings.store_backend,
        debug=settings.debug,
    )

    yield

    logger.info("api_shutting_down")

    await app.state.sweeper.stop()
    await app.state.authenticator.drain()
    await app.state.store.close()
    await app.state.identities.close()


def create_app(
    settings: Optional[APISettings] = None,
    store: Optional[KeyValueStore] = None,
    delivery: Optional[ActionTokenDelivery] = None,
    clock: Callable[[], float] = time.time,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    The token service is built eagerly, so a missing or short signing secret
    stops application creation with ``ConfigurationError`` instead of failing
    on the first request.

    Args:
        settings: Settings to use (default: loaded from the environment)
        store: State store shared by the lockout guards and the revocation
            list (default: chosen by ``settings.store_backend``)
        delivery: Sends email verification and password reset tokens
            (default: log events, carrying the raw token only in debug mode)
        clock: Time source for tokens, lockout windows and expiries

    Returns:
        Configured FastAPI application instance

    Example:
        # For testing
        from storeauth.web import create_app
        app = create_app(APISettings(jwt_secret=..., database_path=...))

        # With TestClient
        from fastapi.testclient import TestClient
        with TestClient(app) as client:
            client.get("/health")
    """
    settings = settings or get_settings()
    setup_logging(settings.logging_config)

    tokens = TokenService(
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl=settings.token_ttl,
        clock_skew_seconds=settings.clock_skew_seconds,
        clock=clock,
    )
    store = store or _build_store(settings, clock)
    auth_config = settings.to_auth_config()
    ip_guard = LoginAttemptGuard(
        store,
        max_attempts=auth_config.lockout_threshold,
        window_seconds=auth_config.lockout_window,
        scope="ip",
        clock=clock,
    )
    account_guard = LoginAttemptGuard(
        store,
        max_attempts=settings.account_lockout_threshold,
        window_seconds=settings.account_lockout_seconds,
        scope="account",
        clock=clock,
    )
    revocations = TokenRevocationStore(
        store,
        retention_seconds=settings.revocation_retention_seconds,
        default_ttl_seconds=tokens.expires_in,
        clock=clock,
    )
    action_tokens = ActionTokenService(
        store,
        lifetimes={
            ActionPurpose.EMAIL_VERIFICATION: settings.email_verification_ttl_seconds,
            ActionPurpose.PASSWORD_RESET: settings.password_reset_ttl_seconds,
        },
        clock=clock,
    )
    identities = IdentityRepository(Path(settings.database_path))
    authenticator = Authenticator(
        auth_config,
        tokens=tokens,
        revocations=revocations,
        identities=identities,
        ip_guard=ip_guard,
    )

    app = FastAPI(
        title="storeauth API",
        version=storeauth.__version__,
        description="""Authentication and authorization for the catalog backend.

## Authentication

Protected endpoints require a Bearer token in the `Authorization` header:

```
Authorization: Bearer <your-jwt-token>
```

Obtain a token via `POST /auth/login`. When cookie tokens are enabled the
token is also set as an httpOnly `token` cookie, which is accepted when no
header is sent.

## Errors

Auth failures return `{"detail", "error_type", "reason"}`. `reason` is a
stable code such as `token_expired`, `token_revoked`, `ip_blocked`,
`account_locked`, `account_deactivated`, `insufficient_role` or
`action_token_invalid` (email verification and password reset tokens).
""",
        openapi_url=settings.openapi_url,
        openapi_tags=[
            {
                "name": "Health",
                "description": "Health check and status endpoints",
            },
            {
                "name": "Authentication",
                "description": "Registration, login, logout, email verification and password reset",
            },
            {
                "name": "Users",
                "description": "Role and status administration",
            },
        ],
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.state.settings = settings
    app.state.store = store
    app.state.tokens = tokens
    app.state.ip_guard = authenticator.ip_guard
    app.state.account_guard = account_guard
    app.state.revocations = revocations
    app.state.action_tokens = action_tokens
    app.state.delivery = delivery or LogTokenDelivery(include_token=settings.debug)
    app.state.identities = identities
    app.state.authenticator = authenticator
    app.state.sweeper = StoreSweeper([store], interval_seconds=settings.sweep_interval_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.log_requests:
        app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        response_model=HealthCheckResponse,
        response_description="Health status of the API",
    )
    async def health_check(
        auth: Optional[AuthContext] = Depends(optional_authenticate),
    ) -> HealthCheckResponse:
        """
        Check API health status.

        Never fails on a bad token; reports whether the caller is signed in.
        """
        return HealthCheckResponse(
            status="ok",
            version=storeauth.__version__,
            authenticated=auth is not None,
        )

    from .routes import auth, users

    app.include_router(auth.router)
    app.include_router(users.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "JWT token obtained from POST /auth/login",
            }
        }
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    logger.info("api_app_created", routes=len(app.routes))

    return app


def run() -> None:
    """
    Run the API server with uvicorn.

    This is the entry point for the storeauth-api script.
    """
    settings = get_settings()

    uvicorn.run(
        "storeauth.web.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
