"""
auth/tokens.py -- JWT issuance/validation and refresh-token hashing.

Security design decisions:
  Two signing domains: access tokens are signed with ACCESS_TOKEN_SECRET,
       refresh tokens with REFRESH_TOKEN_SECRET (python-jose, HS256). Each
       validator only ever tries its own secret, so a refresh token presented
       as an access token fails the signature check, and vice versa.

  Access claims: {sub, roles, permissions, iat, exp}. Self-contained -- the
       gates authorize from them without a store lookup. The price is that a
       revoked role stays usable until the token expires, which is why the
       access lifetime is short and refresh always re-derives roles.

  Refresh claims: {sub, iat, exp, jti}. No roles or permissions: they would go
       stale, and a leaked refresh token should carry as little as possible.
       jti is a random nonce so two refresh tokens minted in the same second
       for the same user still hash to different store keys.

  Expiry: checked against the injected clock rather than inside jose, so
       tests can simulate time passing. jose still verifies the signature.

  Refresh hashing: HMAC-SHA256(REFRESH_TOKEN_SECRET, raw_token), hex. It is
       deterministic, so the store can look a session up by it, and useless to
       anyone who reads the store without also holding the secret.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenBadSignature, TokenExpired, TokenMalformed
from auth.models import AccessTokenClaims, IssuedToken
from core.clock import Clock, utc_now
from core.config import Settings

_ALGORITHM = "HS256"

# Expiry is enforced by TokenService._check_expiry against the injected clock.
_DECODE_OPTIONS = {"verify_exp": False, "verify_aud": False}

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
# The refresh cookie is only ever sent to the auth endpoints.
REFRESH_COOKIE_PATH = "/api/v1/auth"


class TokenService:
    """Mint and check access/refresh JWTs.

    Secrets are copied out of Settings once at construction and never re-read.
    The instance holds no mutable state, so one instance is shared by every
    request without locking.
    """

    def __init__(self, settings: Settings, clock: Clock = utc_now) -> None:
        self._access_secret = settings.access_token_secret
        self._refresh_secret = settings.refresh_token_secret
        self._hash_key = settings.refresh_token_secret.encode("utf-8")
        self.access_ttl = timedelta(minutes=settings.access_token_expire_minutes)
        self.refresh_ttl = timedelta(days=settings.refresh_token_expire_days)
        self._clock = clock

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def generate_access_token(
        self,
        user_id: int,
        roles: set[str] | frozenset[str],
        permissions: set[str] | frozenset[str],
        ttl_minutes: int | None = None,
    ) -> IssuedToken:
        """Sign an access token.

        Args:
            user_id:     Numeric user ID, stored as the string "sub" claim.
            roles:       Role names held at issue time.
            permissions: Permission names held at issue time.
            ttl_minutes: Override for ACCESS_TOKEN_EXPIRE_MINUTES.
        """
        ttl = timedelta(minutes=ttl_minutes) if ttl_minutes is not None else self.access_ttl
        issued_at = self._now()
        expires_at = issued_at + ttl
        payload = {
            "sub": str(user_id),
            "roles": sorted(roles),
            "permissions": sorted(permissions),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return IssuedToken(jwt.encode(payload, self._access_secret, algorithm=_ALGORITHM), issued_at, expires_at)

    def generate_refresh_token(self, user_id: int, ttl_days: int | None = None) -> IssuedToken:
        """Sign a refresh token carrying only the subject, timestamps, and a nonce."""
        ttl = timedelta(days=ttl_days) if ttl_days is not None else self.refresh_ttl
        issued_at = self._now()
        expires_at = issued_at + ttl
        payload = {
            "sub": str(user_id),
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_urlsafe(16),
        }
        return IssuedToken(jwt.encode(payload, self._refresh_secret, algorithm=_ALGORITHM), issued_at, expires_at)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_access_token(self, token: str) -> AccessTokenClaims:
        """Verify an access token and return its claims.

        Raises TokenMalformed, TokenBadSignature, or TokenExpired. Route code
        turns any of them into the same 401.
        """
        payload = self._decode(token, self._access_secret)
        subject = _subject(payload)
        roles = payload.get("roles")
        permissions = payload.get("permissions")
        if not _is_str_list(roles) or not _is_str_list(permissions):
            raise TokenMalformed("Access token is missing roles or permissions.")
        issued_at, expires_at = _timestamps(payload)
        self._check_expiry(expires_at)
        return AccessTokenClaims(
            subject=subject,
            roles=frozenset(roles),
            permissions=frozenset(permissions),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def validate_refresh_token(self, token: str) -> int:
        """Verify a refresh token against the refresh secret only; return the user ID."""
        payload = self._decode(token, self._refresh_secret)
        subject = _subject(payload)
        _issued_at, expires_at = _timestamps(payload)
        self._check_expiry(expires_at)
        return subject

    def hash_refresh_token(self, token: str) -> str:
        """Return the store lookup key for a raw refresh token."""
        return hmac.new(self._hash_key, token.encode("utf-8"), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _now(self) -> datetime:
        # Whole seconds: iat/exp are integer claims, and the datetimes we hand
        # back must match what a later decode produces.
        return self._clock().replace(microsecond=0)

    def _decode(self, token: str, secret: str) -> dict:
        if not token or not isinstance(token, str):
            raise TokenMalformed("Empty token.")
        try:
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed("Token is not a well-formed JWT.") from exc
        try:
            return jwt.decode(token, secret, algorithms=[_ALGORITHM], options=_DECODE_OPTIONS)
        except JWTError as exc:
            raise TokenBadSignature("Token signature or claims rejected.") from exc

    def _check_expiry(self, expires_at: datetime) -> None:
        if self._clock() >= expires_at:
            raise TokenExpired("Token has expired.")


def _subject(payload: dict) -> int:
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        raise TokenMalformed("Token subject is not a user ID.")
    return int(sub)


def _timestamps(payload: dict) -> tuple[datetime, datetime]:
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(iat, int) or not isinstance(exp, int):
        raise TokenMalformed("Token is missing iat/exp.")
    return datetime.fromtimestamp(iat, timezone.utc), datetime.fromtimestamp(exp, timezone.utc)


def _is_str_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookies(response, access_token: str, refresh_token: str, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read either cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    The access cookie is sent on every route; the refresh cookie only to
    REFRESH_COOKIE_PATH so it never travels with ordinary API traffic.
    max_age matches each token's lifetime so cookie and token expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.access_token_ttl_seconds,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        value=refresh_token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_ttl_seconds,
        path=REFRESH_COOKIE_PATH,
    )


def clear_session_cookies(response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
