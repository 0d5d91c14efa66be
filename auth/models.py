"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and the
AuthService do the work; api/models.py owns the HTTP shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class User:
    """A registered identity.

    password_hash is the self-describing Argon2 string. It never leaves the
    process: PublicUser is what crosses the service boundary.
    """

    email: str
    first_name: str
    last_name: str
    id: int | None = None
    password_hash: str | None = field(default=None, repr=False)
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Permission:
    name: str  # lower-cased, e.g. "book:create"
    id: int | None = None
    description: str | None = None


@dataclass(frozen=True)
class Role:
    """A named bundle of permissions. name is upper-cased, e.g. "ADMIN"."""

    name: str
    id: int | None = None
    description: str | None = None
    permissions: frozenset[Permission] = frozenset()


@dataclass(frozen=True)
class AccessTokenClaims:
    """Payload of a validated access token.

    Self-contained: the gates authorize from these claims alone, without a
    store lookup. roles/permissions are a snapshot taken at issue time.
    """

    subject: int
    roles: frozenset[str]
    permissions: frozenset[str]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class RefreshTokenRecord:
    """Server-side half of a refresh session.

    token_hash is HMAC-SHA256 of the raw refresh token. The raw token is never
    stored. Presence in the store plus expires_at in the future means valid.
    """

    user_id: int
    token_hash: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class PublicUser:
    """The fields of a User that are safe to return to clients."""

    id: int
    email: str
    first_name: str
    last_name: str
    roles: tuple[str, ...] = ()
    permissions: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a successful login or refresh."""

    tokens: TokenPair
    user: PublicUser


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed token with the timestamps embedded in it."""

    token: str
    issued_at: datetime
    expires_at: datetime
