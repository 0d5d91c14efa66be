"""
API request and response models for Shelfguard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field constraints here are a first, cheap filter (types, presence, gross
lengths). The authoritative rules (email shape, password length, name
normalization) live in auth/validation.py and run inside AuthService, so the
same rules apply whether a call arrives over HTTP or from the CLI.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Permission, PublicUser, Role

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh.

    refresh_token may be omitted when the client relies on the scoped
    refresh_token cookie instead.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class LogoutRequest(BaseModel):
    """Request body for POST /api/v1/auth/logout. Same cookie fallback as refresh."""

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/auth/password."""

    current_password: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public profile returned by registration. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str

    @classmethod
    def from_domain(cls, user: PublicUser) -> "UserResponse":
        return cls(id=user.id, email=user.email, first_name=user.first_name, last_name=user.last_name)


class UserInfo(UserResponse):
    """Public profile plus the role and permission names held right now."""

    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, user: PublicUser) -> "UserInfo":
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            roles=list(user.roles),
            permissions=list(user.permissions),
        )


class TokenResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds until the access token expires
    access_expires_at: datetime
    refresh_expires_at: datetime


class LoginResponse(TokenResponse):
    """Response for POST /api/v1/auth/login."""

    user: UserInfo


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class LogoutAllResponse(MessageResponse):
    revoked_sessions: int


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None

    @classmethod
    def from_domain(cls, permission: Permission) -> "PermissionResponse":
        return cls(id=permission.id, name=permission.name, description=permission.description)


class RoleResponse(BaseModel):
    """A role with its permission names, sorted."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=sorted(p.name for p in role.permissions),
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    detail carries structured context where the client can act on it, e.g.
    {"missing_permissions": [...]} on a 403.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[Any] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
