"""Plantwatch — Security & Authentication Schemas.

Pydantic models for authentication, identity and user administration.

Security notes:
    - password_hash never appears on a response model
    - Passwords are carried as SecretStr so they cannot leak into logs
    - Token payloads are immutable after decoding
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated
import uuid

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    SecretStr,
    field_validator,
)

from schemas import CamelModel, ValidatedModel, sanitize_string, validate_no_script


# =============================================================================
# Enums
# =============================================================================

class UserRole(str, Enum):
    """User authorization roles.

    - Viewer: read-only access to machines, alerts and analytics.
    - Engineer: controls machines assigned to them, acknowledges alerts.
    - Admin: every operation, including user and fleet administration.
    """
    ADMIN = "Admin"
    ENGINEER = "Engineer"
    VIEWER = "Viewer"

    @classmethod
    def normalize(cls, value: "str | UserRole | None") -> "UserRole":
        """Case-insensitive lookup; anything unknown or empty becomes Viewer."""
        if isinstance(value, UserRole):
            return value
        if value:
            for role in cls:
                if role.value.lower() == str(value).strip().lower():
                    return role
        return cls.VIEWER


class TokenType(str, Enum):
    """JWT token types."""
    ACCESS = "access"


# =============================================================================
# Authentication Requests
# =============================================================================

class LoginRequest(ValidatedModel):
    """User login credentials.

    Example:
        {
            "email": "engineer@plantwatch.io",
            "password": "correct horse battery"
        }
    """

    email: EmailStr = Field(..., description="Account email address")
    password: SecretStr = Field(..., min_length=1, max_length=128, description="Password")


class RegisterRequest(ValidatedModel):
    """Self-registration payload.

    ``role`` is optional and normalized; unknown values register a Viewer.
    """

    name: Annotated[str, Field(min_length=1, max_length=255, description="Display name")]
    email: EmailStr = Field(..., description="Account email address")
    password: SecretStr = Field(..., min_length=8, max_length=128, description="Password")
    role: str | None = Field(None, description="Requested role")

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        return validate_no_script(sanitize_string(v), "name")


class RoleChangeRequest(ValidatedModel):
    """Body for the admin role-change endpoint."""

    role: UserRole = Field(..., description="New role")


# =============================================================================
# Token Models
# =============================================================================

class TokenData(BaseModel):
    """Decoded JWT token payload.

    Attributes:
        sub: Subject (user ID as string).
        role: Role at issue time. Authorization never trusts this claim;
            the live role is loaded from the database on every request.
        token_type: Type of token.
        exp: Token expiration timestamp.
        iat: Token issued-at timestamp.
        jti: Unique token identifier.
    """

    model_config = ConfigDict(frozen=True)

    sub: str = Field(..., description="Subject (user ID)")
    role: UserRole = Field(default=UserRole.VIEWER, description="User role")
    token_type: TokenType = Field(default=TokenType.ACCESS, description="Token type")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(..., description="Issued at time")
    jti: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Token ID")

    @property
    def user_id(self) -> int:
        return int(self.sub)


# =============================================================================
# Identity
# =============================================================================

class Identity(BaseModel):
    """The authenticated caller, resolved fresh from the user store per request."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    role: UserRole
    email: str
    active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# =============================================================================
# User Models
# =============================================================================

class UserRead(CamelModel):
    """User model for API responses. Never carries the password hash."""

    id: int
    name: str
    email: str
    role: UserRole
    approved: bool
    active: bool
    created_at: datetime


class AuthResponse(CamelModel):
    """Returned by login and by Admin self-registration."""

    token: str = Field(..., description="JWT access token")
    token_type: str = Field(default="bearer")
    expires_in: int
    user: UserRead


class RegistrationResponse(CamelModel):
    """Returned when a non-admin registration awaits approval."""

    message: str
    user: UserRead


class UserActionResponse(CamelModel):
    message: str
    user: UserRead | None = None


class RoleCounts(CamelModel):
    """Approved users per role."""

    viewer_count: int
    engineer_count: int
    admin_count: int
