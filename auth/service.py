"""
auth/service.py -- AuthService: registration, login, refresh, logout.

Session lifecycle:

    Anonymous --login--> Authenticated --access expiry--> NeedsRefresh
        ^                      ^                               |
        |                      +-----------refresh-------------+
        +--- logout | refresh revoked | refresh expiry --------+

Policy decisions:
  [C1] Uniform failures. Unknown email, inactive account, and wrong password
       all raise the same Unauthorized("Invalid credentials."), and the unknown
       email path still pays for one Argon2 verification.

  [R1] Fresh grants on refresh. Roles and permissions are re-read from the
       UserStore on every refresh and never carried forward, so a privilege
       change takes effect at the next refresh at the latest.

  [R2] Single-use rotation. refresh() atomically swaps the old session record
       for a new one. If the old record is gone by then (revoked, or consumed
       by a concurrent refresh of the same token) the caller gets 401 and must
       log in again. There are no automatic retries anywhere in this module.

The UserStore is synchronous SQLAlchemy; every call goes through
asyncio.to_thread so a slow database never blocks the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import Conflict, InternalError, MalformedHashError, TokenError, Unauthorized, ValidationFailed
from auth.models import AuthResult, PublicUser, RefreshTokenRecord, Role, TokenPair, User
from auth.passwords import CredentialHasher
from auth.sessions import RefreshTokenStore
from auth.store import UserStore, collect_grants
from auth.tokens import TokenService
from auth.validation import normalize_email, normalize_person_name, validate_password
from core.clock import Clock, utc_now

logger = logging.getLogger("shelfguard.auth.service")

T = TypeVar("T")

_BAD_CREDENTIALS = "Invalid credentials."
_BAD_REFRESH = "Invalid or expired refresh token."
_TOKEN_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class AuthService:
    """Coordinates the hasher, token service, session store, and user store.

    Usage:
        service = AuthService(users, hasher, tokens, sessions)
        await service.register("a@x.com", "Secret123", "Ada", "Lovelace")
        result = await service.login("a@x.com", "Secret123")
        result = await service.refresh(result.tokens.refresh_token)
        await service.logout(result.tokens.refresh_token)
    """

    def __init__(
        self,
        users: UserStore,
        hasher: CredentialHasher,
        tokens: TokenService,
        sessions: RefreshTokenStore,
        clock: Clock = utc_now,
    ) -> None:
        self._users = users
        self._hasher = hasher
        self._tokens = tokens
        self._sessions = sessions
        self._clock = clock

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, first_name: str, last_name: str) -> PublicUser:
        """Create an account and return its public profile.

        All validation runs before the first store call. Raises
        ValidationFailed or Conflict (email already registered).
        """
        email = normalize_email(email)
        validate_password(password)
        first_name = normalize_person_name(first_name, "First name")
        last_name = normalize_person_name(last_name, "Last name")

        if await self._db(self._users.find_by_email, email) is not None:
            raise Conflict("Email already registered.")

        password_hash = await self._hasher.hash_async(password)
        user = User(email=email, first_name=first_name, last_name=last_name, password_hash=password_hash)
        try:
            user_id = await self._db(self._users.create_user, user)
        except IntegrityError as exc:
            # A concurrent registration inserted the same email after our check.
            raise Conflict("Email already registered.") from exc

        logger.info("Registered user_id=%s", user_id)
        return PublicUser(id=user_id, email=email, first_name=first_name, last_name=last_name)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and open a new session. [C1]"""
        if not email or not email.strip() or not password:
            raise ValidationFailed("Email and password are required.")

        user = await self._db(self._users.find_by_email, email.strip().lower())
        if user is None or not user.is_active or not user.password_hash:
            await self._hasher.dummy_verify_async(password)
            raise Unauthorized(_BAD_CREDENTIALS)

        if not await self._verify(password, user):
            logger.info("Failed login for user_id=%s", user.id)
            raise Unauthorized(_BAD_CREDENTIALS)

        await self._rehash_if_needed(user, password)

        roles = await self._db(self._users.find_roles, user.id)
        result, record = self._mint(user, roles)
        await self._sessions.store(record)
        logger.info("Login user_id=%s roles=%s", user.id, ",".join(result.user.roles) or "-")
        return result

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, raw_refresh_token: str) -> AuthResult:
        """Exchange a refresh token for a new access/refresh pair. [R1][R2]"""
        try:
            user_id = self._tokens.validate_refresh_token(raw_refresh_token)
        except TokenError as exc:
            logger.info("Refresh rejected: %s", type(exc).__name__)
            raise Unauthorized(_BAD_REFRESH) from exc

        old_hash = self._tokens.hash_refresh_token(raw_refresh_token)
        record = await self._sessions.get(old_hash)
        if record is None or record.user_id != user_id or record.expires_at <= self._clock():
            logger.info("Refresh rejected: session revoked or unknown for user_id=%s", user_id)
            raise Unauthorized(_BAD_REFRESH)

        user = await self._db(self._users.find_by_id, user_id)
        if user is None or not user.is_active:
            await self._sessions.revoke(old_hash)
            raise Unauthorized(_BAD_REFRESH)

        roles = await self._db(self._users.find_roles, user.id)
        result, new_record = self._mint(user, roles)
        if not await self._sessions.rotate(old_hash, new_record):
            logger.info("Refresh rejected: token already rotated for user_id=%s", user.id)
            raise Unauthorized(_BAD_REFRESH)
        return result

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, raw_or_hashed_token: str | None) -> None:
        """Revoke one session. Succeeds whether or not the session existed.

        Accepts either the raw refresh token or its 64-char hex hash. The
        signature is not checked: an expired token can still be logged out.
        """
        if not raw_or_hashed_token:
            return
        if _TOKEN_HASH_RE.match(raw_or_hashed_token):
            token_hash = raw_or_hashed_token
        else:
            token_hash = self._tokens.hash_refresh_token(raw_or_hashed_token)
        await self._sessions.revoke(token_hash)

    async def logout_all(self, user_id: int) -> int:
        """Revoke every session of a user. Returns how many were live."""
        removed = await self._sessions.revoke_all(user_id)
        logger.info("Revoked %d session(s) for user_id=%s", removed, user_id)
        return removed

    # ------------------------------------------------------------------
    # Account
    # ------------------------------------------------------------------

    async def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace the credential and end every existing session of the user."""
        validate_password(new_password)
        user = await self._db(self._users.find_by_id, user_id)
        if user is None or not user.is_active or not user.password_hash:
            raise Unauthorized(_BAD_CREDENTIALS)
        if not await self._verify(current_password or "", user):
            raise Unauthorized(_BAD_CREDENTIALS)

        new_hash = await self._hasher.hash_async(new_password)
        await self._db(self._users.update_password, user_id, new_hash)
        await self.logout_all(user_id)
        logger.info("Password changed for user_id=%s", user_id)

    async def profile(self, user_id: int) -> PublicUser:
        """Return the current public profile with roles as they are now in the store."""
        user = await self._db(self._users.find_by_id, user_id)
        if user is None or not user.is_active:
            raise Unauthorized()
        roles = await self._db(self._users.find_roles, user_id)
        role_names, permission_names = collect_grants(roles)
        return _public(user, role_names, permission_names)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _mint(self, user: User, roles: list[Role]) -> tuple[AuthResult, RefreshTokenRecord]:
        """Sign a fresh token pair for user and build the session record to persist."""
        role_names, permission_names = collect_grants(roles)
        access = self._tokens.generate_access_token(user.id, role_names, permission_names)
        refresh = self._tokens.generate_refresh_token(user.id)
        record = RefreshTokenRecord(
            user_id=user.id,
            token_hash=self._tokens.hash_refresh_token(refresh.token),
            issued_at=refresh.issued_at,
            expires_at=refresh.expires_at,
        )
        result = AuthResult(
            tokens=TokenPair(access.token, refresh.token, access.expires_at, refresh.expires_at),
            user=_public(user, role_names, permission_names),
        )
        return result, record

    async def _verify(self, password: str, user: User) -> bool:
        try:
            return await self._hasher.verify_async(password, user.password_hash)
        except MalformedHashError as exc:
            logger.error("Stored password hash for user_id=%s is malformed", user.id)
            raise InternalError("Stored credential is corrupt.") from exc

    async def _rehash_if_needed(self, user: User, password: str) -> None:
        """Upgrade a hash made with older cost parameters, now that we know the password."""
        if not self._hasher.needs_rehash(user.password_hash):
            return
        new_hash = await self._hasher.hash_async(password)
        await self._db(self._users.update_password, user.id, new_hash)
        logger.info("Rehashed credential for user_id=%s with current parameters", user.id)

    async def _db(self, fn: Callable[..., T], *args) -> T:
        """Run a UserStore call off the event loop. IntegrityError passes through."""
        try:
            return await asyncio.to_thread(fn, *args)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("User store failure in %s", getattr(fn, "__name__", fn))
            raise InternalError("User store unavailable.") from exc


def _public(user: User, roles: frozenset[str], permissions: frozenset[str]) -> PublicUser:
    return PublicUser(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        roles=tuple(sorted(roles)),
        permissions=tuple(sorted(permissions)),
    )
