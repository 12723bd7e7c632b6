"""FastAPI dependency injection for authentication and authorization."""

from typing import Callable, Optional

from fastapi import Depends, Request

from storeauth.auth import (
    ActionTokenDelivery,
    ActionTokenService,
    AuthContext,
    Authenticator,
    LoginAttemptGuard,
    Role,
    TokenService,
    authorize,
)
from storeauth.core.db import IdentityRepository

from .settings import APISettings


def get_api_settings(request: Request) -> APISettings:
    """
    Dependency that provides the settings the application was created with.

    Returns:
        APISettings instance
    """
    return request.app.state.settings


def get_identity_repository(request: Request) -> IdentityRepository:
    """Dependency that provides the identity repository."""
    return request.app.state.identities


def get_authenticator(request: Request) -> Authenticator:
    """Dependency that provides the shared authentication pipeline."""
    return request.app.state.authenticator


def get_token_service(request: Request) -> TokenService:
    return request.app.state.tokens


def get_action_tokens(request: Request) -> ActionTokenService:
    return request.app.state.action_tokens


def get_token_delivery(request: Request) -> ActionTokenDelivery:
    return request.app.state.delivery


def get_account_guard(request: Request) -> LoginAttemptGuard:
    return request.app.state.account_guard


def get_client_ip(request: Request, settings: Optional[APISettings] = None) -> str:
    """Extract client IP from request, considering trusted proxies.

    Only parses X-Forwarded-For when trusted_proxy_count > 0.
    Takes the Nth-from-right IP where N = trusted_proxy_count.
    """
    if settings and settings.trusted_proxy_count > 0:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",")]
            index = max(0, len(ips) - settings.trusted_proxy_count)
            return ips[index]
    return request.client.host if request.client else "unknown"


async def authenticate(
    request: Request,
    authenticator: Authenticator = Depends(get_authenticator),
    settings: APISettings = Depends(get_api_settings),
) -> AuthContext:
    """
    Dependency that requires a valid, unrevoked token for an active identity.

    Attaches the resulting AuthContext to ``request.state.auth`` so the route
    (and logout) can reach the raw token.

    Raises:
        AuthError: Any pipeline failure; translated to a response by the
            registered exception handlers

    Example:
        @router.get("/protected")
        async def protected_route(auth: AuthContext = Depends(authenticate)):
            return {"email": auth.identity.email}
    """
    context = await authenticator.authenticate(
        source_ip=get_client_ip(request, settings),
        authorization=request.headers.get("Authorization"),
        cookies=request.cookies,
    )
    request.state.auth = context
    return context


async def optional_authenticate(
    request: Request,
    authenticator: Authenticator = Depends(get_authenticator),
    settings: APISettings = Depends(get_api_settings),
) -> Optional[AuthContext]:
    """
    Dependency that attaches the identity when possible and never fails.

    Used by public endpoints that personalize their response for signed-in
    visitors.
    """
    context = await authenticator.optional_authenticate(
        source_ip=get_client_ip(request, settings),
        authorization=request.headers.get("Authorization"),
        cookies=request.cookies,
    )
    request.state.auth = context
    return context


def require_role(*roles: Role) -> Callable:
    """
    Build a dependency that gates a route on role.

    ``Role.ADMIN`` in the allowed set also admits superadmins.

    Args:
        *roles: Roles allowed through

    Returns:
        Dependency callable returning the AuthContext

    Example:
        @router.delete("/products/{id}", dependencies=[Depends(require_role(Role.ADMIN))])
        async def delete_product(id: int): ...
    """
    allowed = frozenset(Role(role) for role in roles)

    async def _require_role(context: AuthContext = Depends(authenticate)) -> AuthContext:
        return authorize(context, allowed)

    return _require_role


require_admin = require_role(Role.ADMIN)
require_superadmin = require_role(Role.SUPERADMIN)
