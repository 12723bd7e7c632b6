"""Identity administration endpoints (role and status management)."""

import structlog
from fastapi import APIRouter, Depends, Query

from storeauth.auth import (
    AuthContext,
    Forbidden,
    Identity,
    IdentityList,
    RoleUpdateRequest,
    StatusUpdateRequest,
)
from storeauth.core.db import IdentityRepository

from ..dependencies import get_identity_repository, require_admin, require_superadmin

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get(
    "",
    response_model=IdentityList,
    summary="List identities",
    responses={403: {"description": "Requires the admin role"}},
)
async def list_users(
    limit: int = Query(default=100, ge=1, le=500, description="Maximum items to return"),
    offset: int = Query(default=0, ge=0, description="Items to skip"),
    auth: AuthContext = Depends(require_admin),
    identities: IdentityRepository = Depends(get_identity_repository),
) -> IdentityList:
    """List registered identities. Password hashes are never included."""
    items = await identities.list_identities(limit=limit, offset=offset)
    total = await identities.count_identities()
    return IdentityList(items=items, total=total)


@router.patch(
    "/{identity_id}/role",
    response_model=Identity,
    summary="Change an identity's role",
    responses={
        403: {"description": "Requires the superadmin role"},
        404: {"description": "Identity not found"},
    },
)
async def update_role(
    identity_id: int,
    body: RoleUpdateRequest,
    auth: AuthContext = Depends(require_superadmin),
    identities: IdentityRepository = Depends(get_identity_repository),
) -> Identity:
    """
    Change an identity's role.

    The change applies from the identity's next request; tokens issued before
    it keep working but are authorized against the new role.
    """
    if identity_id == auth.identity.id and body.role != auth.identity.role:
        raise Forbidden("You cannot change your own role.", reason="self_modification")
    identity = await identities.update_role(identity_id, body.role)
    logger.info(
        "role_updated",
        identity_id=identity_id,
        role=identity.role.value,
        changed_by=auth.identity.id,
    )
    return identity


@router.patch(
    "/{identity_id}/status",
    response_model=Identity,
    summary="Activate or deactivate an identity",
    responses={
        403: {"description": "Requires the admin role"},
        404: {"description": "Identity not found"},
    },
)
async def update_status(
    identity_id: int,
    body: StatusUpdateRequest,
    auth: AuthContext = Depends(require_admin),
    identities: IdentityRepository = Depends(get_identity_repository),
) -> Identity:
    """Deactivated identities are rejected with 403 on their next request."""
    if identity_id == auth.identity.id and not body.is_active:
        raise Forbidden("You cannot deactivate your own account.", reason="self_modification")
    identity = await identities.set_active(identity_id, body.is_active)
    logger.info(
        "status_updated",
        identity_id=identity_id,
        is_active=identity.is_active,
        changed_by=auth.identity.id,
    )
    return identity
