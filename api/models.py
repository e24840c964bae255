"""
API request and response models for Keyward REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes; reject longer input instead of
# silently truncating it.
PASSWORD_MAX_LENGTH = 72
PASSWORD_SPECIALS = "@$!%*?&"


def _check_password_complexity(value: str) -> str:
    """Require upper, lower, digit, and one of PASSWORD_SPECIALS.

    Pydantic's regex engine has no lookaheads, so this runs as a validator
    instead of Field(pattern=...).
    """
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
        and any(c in PASSWORD_SPECIALS for c in value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            f"one number and one special character ({PASSWORD_SPECIALS})"
        )
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class StatusEnum(str, Enum):
    active = "active"
    inactive = "inactive"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh.

    refresh_token is optional at the schema level so a missing token reaches
    the session service and is reported as missing_token, not a 422.
    """

    refresh_token: Optional[str] = None


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout."""

    refresh_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    first_name: str
    last_name: str
    email: str
    role: str
    status: str
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email,
            role=user.role,
            status=user.status,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class RefreshResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Users -- request models
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Request body for POST /api/v1/users (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=PASSWORD_MAX_LENGTH)
    role: RoleEnum = RoleEnum.user
    status: StatusEnum = StatusEnum.active

    @field_validator("password")
    @classmethod
    def password_complexity(cls, value: str) -> str:
        return _check_password_complexity(value)


class UserPatch(BaseModel):
    """Request body for PATCH /api/v1/users/{id}. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=8, max_length=PASSWORD_MAX_LENGTH)
    role: Optional[RoleEnum] = None
    status: Optional[StatusEnum] = None

    @field_validator("password")
    @classmethod
    def password_complexity(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return _check_password_complexity(value)


# ---------------------------------------------------------------------------
# Users -- response models
# ---------------------------------------------------------------------------


class SyncErrorRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str
    error: str


class SyncResponse(BaseModel):
    """Response for POST /api/v1/users/sync."""

    model_config = ConfigDict(frozen=True)

    created: int
    skipped: int
    errors: list[SyncErrorRow] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
