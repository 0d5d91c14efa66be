"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register     -- create an account; 201 public profile
  POST /api/v1/auth/login        -- password login; returns tokens, sets cookies
  POST /api/v1/auth/refresh      -- rotate the refresh token, mint a new access token
  POST /api/v1/auth/logout       -- revoke one session; always 200
  POST /api/v1/auth/logout-all   -- revoke every session of the caller (requires auth)
  GET  /api/v1/auth/me           -- current profile with live roles (requires auth)
  POST /api/v1/auth/password     -- change password, ends all sessions (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT).
  [C1] Login failures are uniform; see auth/service.py.
  [M5] Cache-Control: no-store on every response that carries a token.
  The refresh cookie is scoped to /api/v1/auth, so the browser only ever
  sends it to these endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    LogoutRequest,
    MessageResponse,
    PasswordChangeRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserInfo,
    UserResponse,
)
from auth.dependencies import get_current_claims
from auth.errors import Unauthorized
from auth.models import AccessTokenClaims, AuthResult
from auth.service import AuthService
from auth.tokens import REFRESH_COOKIE, clear_session_cookies, set_session_cookies
from core.config import Settings, get_settings

# Auth policy:
# - POST /api/v1/auth/register:    public
# - POST /api/v1/auth/login:       public, rate limited
# - POST /api/v1/auth/refresh:     public -- the refresh token is the credential
# - POST /api/v1/auth/logout:      public -- revoking needs no live access token
# - POST /api/v1/auth/logout-all:  requires auth (get_current_claims)
# - GET  /api/v1/auth/me:          requires auth (get_current_claims)
# - POST /api/v1/auth/password:    requires auth (get_current_claims)
router = APIRouter()


def _login_rate_limit() -> str:
    return get_settings().login_rate_limit


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account. Returns the public profile only."""
    service: AuthService = request.app.state.auth_service
    user = await service.register(body.email, body.password, body.first_name, body.last_name)
    return UserResponse.from_domain(user)


@limiter.limit(_login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Both tokens are returned in the body for API clients and also set as
    httpOnly cookies for browser clients.
    """
    service: AuthService = request.app.state.auth_service
    result = await service.login(body.email, body.password)
    settings: Settings = request.app.state.settings
    payload = LoginResponse(**_token_fields(result, settings), user=UserInfo.from_domain(result.user))
    return _token_response(payload, result, settings)


@router.post("/auth/refresh", response_model=TokenResponse)
async def refresh(request: Request, body: Optional[RefreshRequest] = None) -> JSONResponse:
    """Exchange a refresh token (body or cookie) for a new pair.

    The presented refresh token is revoked. Reusing it, or presenting it
    twice concurrently, yields 401 and the client must log in again.
    """
    raw = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not raw:
        raise Unauthorized("Refresh token required.")
    service: AuthService = request.app.state.auth_service
    result = await service.refresh(raw)
    settings: Settings = request.app.state.settings
    return _token_response(TokenResponse(**_token_fields(result, settings)), result, settings)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request, body: Optional[LogoutRequest] = None) -> JSONResponse:
    """Revoke the session named by the refresh token and clear both cookies.

    Always 200, whether or not the session was still live.
    """
    raw = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    service: AuthService = request.app.state.auth_service
    await service.logout(raw)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
async def logout_all(request: Request, claims: AccessTokenClaims = Depends(get_current_claims)) -> JSONResponse:
    """Revoke every refresh session of the caller.

    Access tokens already issued stay valid until they expire.
    """
    service: AuthService = request.app.state.auth_service
    removed = await service.logout_all(claims.subject)
    resp = JSONResponse(
        content=LogoutAllResponse(message="Logged out everywhere.", revoked_sessions=removed).model_dump()
    )
    clear_session_cookies(resp)
    return resp


@router.get("/auth/me", response_model=UserInfo)
async def me(request: Request, claims: AccessTokenClaims = Depends(get_current_claims)) -> UserInfo:
    """Return the caller's profile with roles as currently assigned (not as in the token)."""
    service: AuthService = request.app.state.auth_service
    return UserInfo.from_domain(await service.profile(claims.subject))


@router.post("/auth/password", response_model=MessageResponse)
async def change_password(
    request: Request,
    body: PasswordChangeRequest,
    claims: AccessTokenClaims = Depends(get_current_claims),
) -> JSONResponse:
    """Replace the caller's password and end every session, this one included."""
    service: AuthService = request.app.state.auth_service
    await service.change_password(claims.subject, body.current_password, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password changed. Please log in again.").model_dump())
    clear_session_cookies(resp)
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_fields(result: AuthResult, settings: Settings) -> dict:
    return {
        "access_token": result.tokens.access_token,
        "refresh_token": result.tokens.refresh_token,
        "expires_in": settings.access_token_ttl_seconds,
        "access_expires_at": result.tokens.access_expires_at,
        "refresh_expires_at": result.tokens.refresh_expires_at,
    }


def _token_response(payload: TokenResponse, result: AuthResult, settings: Settings) -> JSONResponse:
    resp = JSONResponse(content=payload.model_dump(mode="json"))
    set_session_cookies(resp, result.tokens.access_token, result.tokens.refresh_token, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
