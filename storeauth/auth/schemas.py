"""Pydantic schemas for identities, token claims, and auth requests/responses."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# bcrypt only accepts up to 72 bytes
MAX_PASSWORD_BYTES = 72


def _check_password_bytes(v: str) -> str:
    if len(v.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return v


class Role(str, Enum):
    """Roles an identity can hold."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


class Identity(BaseModel):
    """An authenticated principal.

    ``password_hash`` is only populated on the credential verification path
    and is excluded from every serialization.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Identity ID")
    email: str = Field(..., description="Email address (lower-cased)")
    role: Role = Field(default=Role.USER, description="Authorization role")
    is_active: bool = Field(default=True, description="Whether the account is active")
    email_verified: bool = Field(default=False, description="Whether the email is verified")
    last_active_at: Optional[datetime] = Field(None, description="Last authenticated activity")
    created_at: Optional[datetime] = Field(None, description="Registration timestamp")
    password_hash: Optional[str] = Field(default=None, exclude=True, repr=False)


class TokenClaims(BaseModel):
    """Claims recovered from a verified access token."""

    subject: str = Field(..., description="Identity ID the token was issued to")
    role: Role = Field(..., description="Role snapshot at issuance")
    issued_at: datetime
    expires_at: datetime
    jti: str = Field(..., description="Unique token ID")
    extra: Dict[str, Any] = Field(default_factory=dict)

    @property
    def identity_id(self) -> int:
        return int(self.subject)


@dataclass
class AuthContext:
    """What a successful authentication attaches to the request."""

    identity: Identity
    token: str
    claims: TokenClaims


class RegisterRequest(BaseModel):
    """Request schema for account registration."""

    email: str = Field(
        ...,
        min_length=3,
        max_length=254,
        description="Email address",
        examples=["owner@example.com"],
    )
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="Password (minimum 8 characters)",
    )

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v

    @field_validator("password")
    @classmethod
    def validate_password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)


class LoginRequest(BaseModel):
    """Request schema for user login."""

    email: str = Field(
        ...,
        min_length=1,
        max_length=254,
        description="Email address for authentication",
        examples=["owner@example.com"],
    )
    password: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Password for authentication",
    )

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class AccessTokenResponse(BaseModel):
    """Response schema for successful authentication."""

    access_token: str = Field(
        ...,
        description="JWT access token for API authentication",
    )
    token_type: str = Field(
        default="bearer",
        description="Token type (always 'bearer')",
    )
    expires_in: int = Field(
        ...,
        description="Access token expiration time in seconds",
    )
    user: Identity


class RoleUpdateRequest(BaseModel):
    """Request schema for changing an identity's role."""

    role: Role


class StatusUpdateRequest(BaseModel):
    """Request schema for activating or deactivating an identity."""

    is_active: bool


class IdentityList(BaseModel):
    """Response schema for identity listings."""

    items: List[Identity]
    total: int


class EmailRequest(BaseModel):
    """Request schema naming an account by email (verification resend, reset request)."""

    email: str = Field(..., min_length=1, max_length=254, examples=["owner@example.com"])

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=256, description="Verification token")


class PasswordResetConfirm(BaseModel):
    """Request schema for completing a password reset."""

    token: str = Field(..., min_length=1, max_length=256, description="Password reset token")
    password: str = Field(
        ...,
        min_length=8,
        max_length=128,
        description="New password (minimum 8 characters)",
    )

    @field_validator("password")
    @classmethod
    def validate_password_bytes(cls, v: str) -> str:
        return _check_password_bytes(v)


class MessageResponse(BaseModel):
    detail: str
