"""
auth/errors.py -- Error taxonomy for the authentication core.

Every class carries the HTTP status_code and a stable machine-readable code so
the API layer can render any of them with one exception handler. The message
of Unauthorized is kept uniform on purpose: callers must not be able to tell
an unknown email from a wrong password, or a revoked token from an expired one.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable


class AuthError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, detail: dict | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(self.message)


class ValidationFailed(AuthError):
    """Malformed input, rejected before any side effect."""

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class Unauthorized(AuthError):
    """Bad credentials, or an invalid, expired, or revoked token."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class Forbidden(AuthError):
    """Valid identity lacking a required role or permission.

    The missing names are not secrets and are returned to the caller so a
    client can explain the denial.
    """

    status_code = 403
    code = "forbidden"
    default_message = "Access denied."

    def __init__(
        self,
        message: str | None = None,
        *,
        required_roles: Iterable[str] = (),
        missing_permissions: Iterable[str] = (),
    ) -> None:
        self.required_roles = sorted(required_roles)
        self.missing_permissions = sorted(missing_permissions)
        detail: dict = {}
        if self.required_roles:
            detail["required_roles"] = self.required_roles
        if self.missing_permissions:
            detail["missing_permissions"] = self.missing_permissions
        super().__init__(message, detail=detail or None)


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class InternalError(AuthError):
    """Hashing or signing failure, store unavailable, hash collision.

    The message is logged server-side; clients only ever see default_message.
    """

    status_code = 500
    code = "internal_error"


# ---------------------------------------------------------------------------
# Token validation outcomes
# ---------------------------------------------------------------------------


class TokenError(Exception):
    """A token failed validation. Never shown to clients in detail."""


class TokenExpired(TokenError):
    pass


class TokenBadSignature(TokenError):
    pass


class TokenMalformed(TokenError):
    pass


# ---------------------------------------------------------------------------
# Credential storage integrity
# ---------------------------------------------------------------------------


class MalformedHashError(Exception):
    """A stored password hash cannot be parsed.

    This is a data-integrity signal, not a login failure: a correct but
    mismatched password yields False from verify(), never this error.
    """
