"""
auth/sessions.py -- Persistence for refresh-token sessions.

Pattern: Repository behind a Protocol. AuthService depends on
RefreshTokenStore, not on Redis, so the backing store can be swapped (e.g. a
stateless variant with no revocation) without touching the orchestrator.

Redis layout:
  refresh_token:<hash>        JSON {user_id, issued_at, expires_at}. PX is set
                              to the time remaining until expires_at, so Redis
                              reclaims stale sessions without a sweep job.
  refresh_tokens:user:<id>    SET of hashes belonging to the user. Used only by
                              revoke_all(); members may outlive their session
                              keys, which is harmless.

Rotation is one MULTI/EXEC under WATCH: the old key is deleted and the new one
inserted atomically, and if another client touched the old key in between the
transaction aborts. Of two requests racing to rotate the same token, exactly
one wins; the other sees False and is answered with 401.

Security:
  Keys contain the HMAC of the token, never the token itself.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from auth.errors import InternalError
from auth.models import RefreshTokenRecord
from core.clock import Clock, utc_now

logger = logging.getLogger("shelfguard.auth.sessions")

_KEY_PREFIX = "refresh_token:"
_USER_INDEX_PREFIX = "refresh_tokens:user:"


class RefreshTokenStore(Protocol):
    async def store(self, record: RefreshTokenRecord) -> None: ...

    async def get(self, token_hash: str) -> RefreshTokenRecord | None: ...

    async def revoke(self, token_hash: str) -> None: ...

    async def rotate(self, old_hash: str, new_record: RefreshTokenRecord) -> bool: ...

    async def revoke_all(self, user_id: int) -> int: ...


class RedisRefreshTokenStore:
    """RefreshTokenStore backed by redis.asyncio.

    Usage:
        store = RedisRefreshTokenStore(Redis.from_url("redis://localhost:6379/0", decode_responses=True))
        await store.store(record)
        await store.get(record.token_hash)
        await store.revoke(record.token_hash)
        await store.close()

    The client must be created with decode_responses=True.
    """

    def __init__(self, redis: Redis, clock: Clock = utc_now) -> None:
        self._redis = redis
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, clock: Clock = utc_now) -> RedisRefreshTokenStore:
        return cls(Redis.from_url(url, decode_responses=True), clock=clock)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def store(self, record: RefreshTokenRecord) -> None:
        """Insert a session record.

        Raises InternalError if a live record already uses the same hash: with
        a random jti in every token that can only be a programming error.
        """
        ttl_ms = self._ttl_ms(record)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(_key(record.token_hash), _dump(record), px=ttl_ms, nx=True)
                pipe.sadd(_user_key(record.user_id), record.token_hash)
                pipe.pexpire(_user_key(record.user_id), ttl_ms)
                created, _added, _expired = await pipe.execute()
        except RedisError as exc:
            logger.error("Refresh token store unavailable during insert: %s", exc)
            raise InternalError("Refresh token store unavailable.") from exc
        if not created:
            logger.error("Refresh token hash collision for user_id=%s", record.user_id)
            raise InternalError("Refresh token hash collision.")

    async def get(self, token_hash: str) -> RefreshTokenRecord | None:
        try:
            raw = await self._redis.get(_key(token_hash))
        except RedisError as exc:
            logger.error("Refresh token store unavailable during lookup: %s", exc)
            raise InternalError("Refresh token store unavailable.") from exc
        if raw is None:
            return None
        return _load(token_hash, raw)

    async def revoke(self, token_hash: str) -> None:
        """Delete a session. Revoking an unknown or already-revoked hash is a no-op."""
        try:
            raw = await self._redis.getdel(_key(token_hash))
            if raw is not None:
                record = _load(token_hash, raw)
                await self._redis.srem(_user_key(record.user_id), token_hash)
        except RedisError as exc:
            logger.error("Refresh token store unavailable during revoke: %s", exc)
            raise InternalError("Refresh token store unavailable.") from exc

    async def rotate(self, old_hash: str, new_record: RefreshTokenRecord) -> bool:
        """Atomically replace old_hash with new_record.

        Returns False if old_hash is no longer present (revoked, expired, or
        consumed by a concurrent rotation); nothing is written in that case.
        """
        old_key = _key(old_hash)
        new_key = _key(new_record.token_hash)
        ttl_ms = self._ttl_ms(new_record)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(old_key, new_key)
                raw = await pipe.get(old_key)
                if raw is None:
                    return False
                if await pipe.exists(new_key):
                    logger.error("Refresh token hash collision for user_id=%s", new_record.user_id)
                    raise InternalError("Refresh token hash collision.")
                old_record = _load(old_hash, raw)
                pipe.multi()
                pipe.delete(old_key)
                pipe.srem(_user_key(old_record.user_id), old_hash)
                pipe.set(new_key, _dump(new_record), px=ttl_ms)
                pipe.sadd(_user_key(new_record.user_id), new_record.token_hash)
                pipe.pexpire(_user_key(new_record.user_id), ttl_ms)
                await pipe.execute()
        except WatchError:
            logger.info("Refresh token rotation lost a race for user_id=%s", new_record.user_id)
            return False
        except RedisError as exc:
            logger.error("Refresh token store unavailable during rotation: %s", exc)
            raise InternalError("Refresh token store unavailable.") from exc
        return True

    async def revoke_all(self, user_id: int) -> int:
        """Delete every session of a user. Returns the number of live sessions removed."""
        user_key = _user_key(user_id)
        try:
            hashes = await self._redis.smembers(user_key)
            if not hashes:
                return 0
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(*(_key(h) for h in hashes))
                pipe.delete(user_key)
                removed, _ = await pipe.execute()
        except RedisError as exc:
            logger.error("Refresh token store unavailable during revoke_all: %s", exc)
            raise InternalError("Refresh token store unavailable.") from exc
        return removed

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ttl_ms(self, record: RefreshTokenRecord) -> int:
        ttl_ms = int((record.expires_at - self._clock()).total_seconds() * 1000)
        if ttl_ms <= 0:
            raise InternalError("Refusing to store an already-expired refresh token.")
        return ttl_ms


def _key(token_hash: str) -> str:
    return f"{_KEY_PREFIX}{token_hash}"


def _user_key(user_id: int) -> str:
    return f"{_USER_INDEX_PREFIX}{user_id}"


# ---------------------------------------------------------------------------
# Serialization (Data Mapper)
# ---------------------------------------------------------------------------


def _dump(record: RefreshTokenRecord) -> str:
    return json.dumps(
        {
            "user_id": record.user_id,
            "issued_at": record.issued_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
        }
    )


def _load(token_hash: str, raw: str) -> RefreshTokenRecord:
    try:
        data = json.loads(raw)
        return RefreshTokenRecord(
            user_id=int(data["user_id"]),
            token_hash=token_hash,
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )
    except (ValueError, KeyError, TypeError) as exc:
        logger.error("Corrupt refresh token record under hash prefix %s", token_hash[:8])
        raise InternalError("Corrupt refresh token record.") from exc
