"""
auth/dependencies.py -- FastAPI Depends() gates for authentication and RBAC.

The access token is looked up in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "access_token" cookie -- set by the login endpoint for browser clients.

Gate order on a protected route is fixed: get_current_claims() always runs
first, and require_roles() / require_permissions() depend on it, so an
unauthenticated request is answered 401 before any authorization check.
Public routes (register, login, refresh) simply do not declare these.

On success the validated AccessTokenClaims are returned to the route and also
placed on request.state.claims for middleware and logging.

Errors are AuthError subclasses, rendered by the handler in api/main.py.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from fastapi import Depends, Request

from auth.errors import Forbidden, TokenError, Unauthorized
from auth.models import AccessTokenClaims
from auth.tokens import ACCESS_COOKIE
from auth.validation import normalize_permission_name, normalize_role_name

logger = logging.getLogger("shelfguard.auth.gates")


def extract_access_token(request: Request) -> str | None:
    """Return the raw access token from the Bearer header or the cookie, if any."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def get_current_claims(request: Request) -> AccessTokenClaims:
    """Require a valid access token. Raises Unauthorized otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: AccessTokenClaims = Depends(get_current_claims)): ...
    """
    token = extract_access_token(request)
    if token is None:
        raise Unauthorized()
    try:
        claims = request.app.state.tokens.validate_access_token(token)
    except TokenError as exc:
        logger.debug("Access token rejected on %s: %s", request.url.path, type(exc).__name__)
        raise Unauthorized() from exc
    request.state.claims = claims
    return claims


# ---------------------------------------------------------------------------
# Authorization checks
# ---------------------------------------------------------------------------


def check_roles(claims: AccessTokenClaims, required: Iterable[str]) -> None:
    """Pass if the claims hold at least one of the required roles."""
    required = frozenset(required)
    if not (claims.roles & required):
        raise Forbidden("Insufficient role.", required_roles=required)


def check_permissions(claims: AccessTokenClaims, required: Iterable[str]) -> None:
    """Pass only if the claims hold every required permission.

    The Forbidden error lists exactly the permissions that are missing.
    """
    missing = frozenset(required) - claims.permissions
    if missing:
        raise Forbidden("Insufficient permissions.", missing_permissions=missing)


def require_roles(*roles: str) -> Callable[..., AccessTokenClaims]:
    """Dependency factory: authenticated AND holding any one of roles.

    Use as a FastAPI dependency:
        @router.get("/admin", dependencies=[Depends(require_roles("ADMIN"))])
    """
    if not roles:
        raise ValueError("require_roles() needs at least one role name.")
    required = frozenset(normalize_role_name(r) for r in roles)

    def role_gate(claims: AccessTokenClaims = Depends(get_current_claims)) -> AccessTokenClaims:
        check_roles(claims, required)
        return claims

    return role_gate


def require_permissions(*permissions: str) -> Callable[..., AccessTokenClaims]:
    """Dependency factory: authenticated AND holding all of permissions."""
    required = frozenset(normalize_permission_name(p) for p in permissions)

    def permission_gate(claims: AccessTokenClaims = Depends(get_current_claims)) -> AccessTokenClaims:
        check_permissions(claims, required)
        return claims

    return permission_gate
