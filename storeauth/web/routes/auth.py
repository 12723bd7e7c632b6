"""Authentication routes: registration, login, logout, email verification and password reset."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request, Response, status

from storeauth.auth import (
    AccessTokenResponse,
    ActionPurpose,
    ActionTokenDelivery,
    ActionTokenService,
    AuthContext,
    Authenticator,
    EmailRequest,
    Forbidden,
    Identity,
    LoginAttemptGuard,
    LoginRequest,
    MessageResponse,
    PasswordResetConfirm,
    RateLimited,
    RegisterRequest,
    TokenService,
    Unauthenticated,
    VerifyEmailRequest,
    burn_verification,
    clear_token_cookie,
    extract_token,
    hash_password,
    set_token_cookie,
    verify_password,
)
from storeauth.core.db import IdentityRepository

from ..dependencies import (
    authenticate,
    get_account_guard,
    get_action_tokens,
    get_api_settings,
    get_authenticator,
    get_client_ip,
    get_identity_repository,
    get_token_delivery,
    get_token_service,
)
from ..settings import APISettings

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])

INVALID_CREDENTIALS = "Invalid credentials"
VERIFICATION_SENT = "If the account exists and is unverified, a verification token has been sent."
RESET_SENT = "If the account exists, a password reset token has been sent."


@router.post(
    "/register",
    response_model=Identity,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
    responses={
        201: {"description": "Account created with the 'user' role"},
        409: {"description": "Email already registered"},
        422: {"description": "Invalid email or password too short"},
    },
)
async def register(
    register_request: RegisterRequest,
    identities: IdentityRepository = Depends(get_identity_repository),
    action_tokens: ActionTokenService = Depends(get_action_tokens),
    delivery: ActionTokenDelivery = Depends(get_token_delivery),
) -> Identity:
    """
    Create a new account.

    New accounts always start with the ``user`` role and an unverified email;
    a verification token is sent right away.
    """
    identity = await identities.create_identity(
        email=register_request.email,
        password_hash=hash_password(register_request.password),
    )
    logger.info("registration_successful", identity_id=identity.id)
    await _send_action_token(identity, ActionPurpose.EMAIL_VERIFICATION, action_tokens, delivery)
    return identity


@router.post(
    "/login",
    response_model=AccessTokenResponse,
    summary="Authenticate with email and password",
    responses={
        200: {"description": "Successful authentication (token also set as httpOnly cookie)"},
        401: {"description": "Invalid credentials"},
        403: {"description": "Account deactivated"},
        429: {"description": "Too many failed attempts from this IP or for this account"},
    },
)
async def login(
    request: Request,
    response: Response,
    login_request: LoginRequest,
    identities: IdentityRepository = Depends(get_identity_repository),
    tokens: TokenService = Depends(get_token_service),
    authenticator: Authenticator = Depends(get_authenticator),
    account_guard: LoginAttemptGuard = Depends(get_account_guard),
    settings: APISettings = Depends(get_api_settings),
) -> AccessTokenResponse:
    """
    Authenticate an identity and return a signed access token.

    Failed attempts count against both the source IP and, when the email
    belongs to an account, the account itself. Either guard tripping turns
    every further attempt into a 429 until its window passes, even with the
    correct password.

    Once an account is locked, attempts against it are refused before the
    password is checked and no longer add to the IP counter. Repeated wrong
    passwords for one account therefore lock the account (5 failures) well
    before the source IP (10 failures); the IP lock only follows from
    failures spread over other accounts or unknown emails.
    """
    client_ip = get_client_ip(request, settings)
    email = login_request.email

    await authenticator.check_source_ip(
        client_ip, "Too many failed login attempts. Please try again later."
    )

    if settings.enable_account_lockout and await account_guard.is_blocked(email):
        raise RateLimited(
            await account_guard.get_retry_after(email),
            "Account is temporarily locked due to too many failed login attempts.",
            reason="account_locked",
        )

    identity = await identities.find_by_email(email, include_password_hash=True)

    if identity is None:
        # Same bcrypt cost as a real mismatch
        burn_verification(login_request.password)
        await authenticator.record_login_failure(client_ip)
        logger.warning("login_failed_user_not_found", ip=client_ip)
        raise Unauthenticated(INVALID_CREDENTIALS, reason="invalid_credentials")

    if not verify_password(login_request.password, identity.password_hash or ""):
        await authenticator.record_login_failure(client_ip)
        if settings.enable_account_lockout:
            await account_guard.record_failure(email)
        logger.warning("login_failed_invalid_password", identity_id=identity.id, ip=client_ip)
        raise Unauthenticated(INVALID_CREDENTIALS, reason="invalid_credentials")

    if not identity.is_active:
        logger.warning("login_failed_account_deactivated", identity_id=identity.id, ip=client_ip)
        raise Forbidden(
            "Your account has been deactivated. Please contact support.",
            reason="account_deactivated",
        )

    await authenticator.clear_login_failures(client_ip)
    await account_guard.reset(email)
    authenticator.touch_in_background(identity.id)

    access_token = tokens.issue(identity.id, identity.role)
    logger.info("login_successful", identity_id=identity.id, ip=client_ip)

    config = authenticator.config
    if config.allow_cookie_token:
        set_token_cookie(
            response,
            access_token,
            cookie_name=config.cookie_name,
            max_age=tokens.expires_in,
            secure=not settings.debug,
        )

    return AccessTokenResponse(
        access_token=access_token,
        expires_in=tokens.expires_in,
        user=identity,
    )


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Logout and revoke the presented token",
    responses={204: {"description": "Token revoked (or nothing to revoke)"}},
)
async def logout(
    request: Request,
    response: Response,
    authenticator: Authenticator = Depends(get_authenticator),
    settings: APISettings = Depends(get_api_settings),
) -> None:
    """
    Logout and revoke the current access token.

    The token (from the Authorization header or the token cookie) is added
    to the revocation list until it would have expired anyway. Calling this
    without a token, with an invalid one, or twice in a row still returns
    204. The token cookie is always cleared.
    """
    config = authenticator.config
    clear_token_cookie(response, config.cookie_name, secure=not settings.debug)

    token: Optional[str] = extract_token(
        request.headers.get("Authorization"),
        request.cookies,
        config.cookie_name if config.allow_cookie_token else None,
    )
    await authenticator.logout(token)


@router.get(
    "/me",
    response_model=Identity,
    summary="Current identity",
    responses={401: {"description": "Missing, expired, revoked or invalid token"}},
)
async def me(auth: AuthContext = Depends(authenticate)) -> Identity:
    """Return the identity the presented token resolves to."""
    return auth.identity


# ==================== Email verification ====================


async def _send_action_token(
    identity: Identity,
    purpose: ActionPurpose,
    action_tokens: ActionTokenService,
    delivery: ActionTokenDelivery,
) -> None:
    issued = await action_tokens.issue(identity.id, purpose)
    await delivery.deliver(identity, issued)


@router.post(
    "/verify-email/request",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a new email verification token",
    responses={429: {"description": "Source IP is locked out"}},
)
async def request_email_verification(
    request: Request,
    email_request: EmailRequest,
    identities: IdentityRepository = Depends(get_identity_repository),
    authenticator: Authenticator = Depends(get_authenticator),
    action_tokens: ActionTokenService = Depends(get_action_tokens),
    delivery: ActionTokenDelivery = Depends(get_token_delivery),
    settings: APISettings = Depends(get_api_settings),
) -> MessageResponse:
    """
    Issue a fresh verification token, replacing any outstanding one.

    The response is the same whether or not the email is registered.
    """
    await authenticator.check_source_ip(get_client_ip(request, settings))

    identity = await identities.find_by_email(email_request.email)
    if identity is not None and identity.is_active and not identity.email_verified:
        await _send_action_token(
            identity, ActionPurpose.EMAIL_VERIFICATION, action_tokens, delivery
        )
    return MessageResponse(detail=VERIFICATION_SENT)


@router.post(
    "/verify-email",
    response_model=Identity,
    summary="Confirm an email address",
    responses={400: {"description": "Invalid, used or expired token"}},
)
async def verify_email(
    verify_request: VerifyEmailRequest,
    identities: IdentityRepository = Depends(get_identity_repository),
    action_tokens: ActionTokenService = Depends(get_action_tokens),
) -> Identity:
    """Mark the token owner's email as verified. Each token works once."""
    identity_id = await action_tokens.consume(
        verify_request.token, ActionPurpose.EMAIL_VERIFICATION
    )
    return await identities.set_email_verified(identity_id)


# ==================== Password reset ====================


@router.post(
    "/password-reset/request",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Send a password reset token",
    responses={429: {"description": "Source IP is locked out"}},
)
async def request_password_reset(
    request: Request,
    email_request: EmailRequest,
    identities: IdentityRepository = Depends(get_identity_repository),
    authenticator: Authenticator = Depends(get_authenticator),
    action_tokens: ActionTokenService = Depends(get_action_tokens),
    delivery: ActionTokenDelivery = Depends(get_token_delivery),
    settings: APISettings = Depends(get_api_settings),
) -> MessageResponse:
    """
    Issue a short-lived reset token for an active account.

    The response is the same whether or not the email is registered.
    """
    await authenticator.check_source_ip(get_client_ip(request, settings))

    identity = await identities.find_by_email(email_request.email)
    if identity is not None and identity.is_active:
        await _send_action_token(identity, ActionPurpose.PASSWORD_RESET, action_tokens, delivery)
    return MessageResponse(detail=RESET_SENT)


@router.post(
    "/password-reset/confirm",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Set a new password with a reset token",
    responses={
        204: {"description": "Password changed"},
        400: {"description": "Invalid, used or expired token"},
    },
)
async def confirm_password_reset(
    reset_request: PasswordResetConfirm,
    identities: IdentityRepository = Depends(get_identity_repository),
    action_tokens: ActionTokenService = Depends(get_action_tokens),
    account_guard: LoginAttemptGuard = Depends(get_account_guard),
) -> None:
    """
    Replace the password of the token's owner and lift any account lock.

    Access tokens issued before the reset stay valid until they expire or
    are logged out.
    """
    identity_id = await action_tokens.consume(reset_request.token, ActionPurpose.PASSWORD_RESET)
    identity = await identities.update_password(identity_id, hash_password(reset_request.password))
    await account_guard.reset(identity.email)
    logger.info("password_reset_completed", identity_id=identity_id)
