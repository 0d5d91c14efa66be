"""
tests/test_sessions.py -- Unit tests for auth/sessions.py (RedisRefreshTokenStore).

Uses fakeredis (in-memory Redis emulation) with one FakeServer per test, so
WATCH/MULTI/EXEC and PX expiry run for real without a Redis container.

Covers:
  - store/get round trip; revoke then get is None; revoke is idempotent
  - native expiry (PX) matches expires_at
  - duplicate active hash is an Internal condition
  - rotation: atomic swap, single use, concurrent race has exactly one winner
  - revoke_all clears every session of one user and no one else's
  - Redis outages and corrupt records surface as InternalError
  - a rotation that fails at EXEC writes nothing
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError

from auth.errors import InternalError
from auth.models import RefreshTokenRecord
from auth.sessions import RedisRefreshTokenStore
from tests.conftest import FrozenClock


def _record(clock: FrozenClock, token_hash: str, user_id: int = 1, days: int = 7) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        user_id=user_id,
        token_hash=token_hash,
        issued_at=clock.now,
        expires_at=clock.now + timedelta(days=days),
    )


class TestStoreAndGet:
    @pytest.mark.asyncio
    async def test_round_trip(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        record = _record(clock, "a" * 64)
        await sessions.store(record)
        assert await sessions.get(record.token_hash) == record

    @pytest.mark.asyncio
    async def test_unknown_hash_is_none(self, sessions: RedisRefreshTokenStore) -> None:
        assert await sessions.get("f" * 64) is None

    @pytest.mark.asyncio
    async def test_native_expiry_matches_expires_at(
        self, sessions: RedisRefreshTokenStore, redis_client, clock: FrozenClock
    ) -> None:
        record = _record(clock, "b" * 64, days=2)
        await sessions.store(record)
        pttl = await redis_client.pttl(f"refresh_token:{record.token_hash}")
        two_days_ms = 2 * 24 * 60 * 60 * 1000
        assert two_days_ms - 5000 < pttl <= two_days_ms

    @pytest.mark.asyncio
    async def test_duplicate_active_hash_is_internal(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        record = _record(clock, "c" * 64)
        await sessions.store(record)
        with pytest.raises(InternalError):
            await sessions.store(record)

    @pytest.mark.asyncio
    async def test_already_expired_record_is_refused(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        record = _record(clock, "d" * 64, days=1)
        clock.advance(days=2)
        with pytest.raises(InternalError):
            await sessions.store(record)

    @pytest.mark.asyncio
    async def test_raw_token_never_stored(
        self, sessions: RedisRefreshTokenStore, redis_client, clock: FrozenClock
    ) -> None:
        await sessions.store(_record(clock, "e" * 64))
        keys = await redis_client.keys("*")
        assert sorted(keys) == ["refresh_token:" + "e" * 64, "refresh_tokens:user:1"]


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_then_get_is_none(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        record = _record(clock, "a" * 64)
        await sessions.store(record)
        await sessions.revoke(record.token_hash)
        assert await sessions.get(record.token_hash) is None

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        record = _record(clock, "a" * 64)
        await sessions.store(record)
        await sessions.revoke(record.token_hash)
        await sessions.revoke(record.token_hash)
        await sessions.revoke("0" * 64)

    @pytest.mark.asyncio
    async def test_revoke_all_only_touches_one_user(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        mine = [_record(clock, c * 64, user_id=1) for c in "abc"]
        theirs = _record(clock, "d" * 64, user_id=2)
        for record in [*mine, theirs]:
            await sessions.store(record)

        assert await sessions.revoke_all(1) == 3
        for record in mine:
            assert await sessions.get(record.token_hash) is None
        assert await sessions.get(theirs.token_hash) == theirs
        assert await sessions.revoke_all(1) == 0


class TestRotate:
    @pytest.mark.asyncio
    async def test_swaps_old_for_new(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        old = _record(clock, "a" * 64)
        new = _record(clock, "b" * 64)
        await sessions.store(old)
        assert await sessions.rotate(old.token_hash, new) is True
        assert await sessions.get(old.token_hash) is None
        assert await sessions.get(new.token_hash) == new

    @pytest.mark.asyncio
    async def test_second_use_is_refused(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        old = _record(clock, "a" * 64)
        await sessions.store(old)
        assert await sessions.rotate(old.token_hash, _record(clock, "b" * 64)) is True
        assert await sessions.rotate(old.token_hash, _record(clock, "c" * 64)) is False
        assert await sessions.get("c" * 64) is None

    @pytest.mark.asyncio
    async def test_revoked_token_cannot_rotate(self, sessions: RedisRefreshTokenStore, clock: FrozenClock) -> None:
        old = _record(clock, "a" * 64)
        await sessions.store(old)
        await sessions.revoke(old.token_hash)
        assert await sessions.rotate(old.token_hash, _record(clock, "b" * 64)) is False

    @pytest.mark.asyncio
    async def test_concurrent_rotation_has_one_winner(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        old = _record(clock, "a" * 64)
        await sessions.store(old)
        first, second = _record(clock, "b" * 64), _record(clock, "c" * 64)

        results = await asyncio.gather(
            sessions.rotate(old.token_hash, first),
            sessions.rotate(old.token_hash, second),
        )

        assert sorted(results) == [False, True]
        survivors = [r for r in (first, second) if await sessions.get(r.token_hash) is not None]
        assert len(survivors) == 1
        assert await sessions.get(old.token_hash) is None

    @pytest.mark.asyncio
    async def test_new_session_listed_for_revoke_all(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        old = _record(clock, "a" * 64)
        await sessions.store(old)
        await sessions.rotate(old.token_hash, _record(clock, "b" * 64))
        assert await sessions.revoke_all(1) == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_outage_is_internal(self, clock: FrozenClock) -> None:
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        store = RedisRefreshTokenStore(redis, clock=clock)
        with pytest.raises(InternalError):
            await store.get("a" * 64)

    @pytest.mark.asyncio
    async def test_failed_rotation_leaves_store_untouched(
        self, sessions: RedisRefreshTokenStore, clock: FrozenClock
    ) -> None:
        old, new = _record(clock, "a" * 64), _record(clock, "b" * 64)
        await sessions.store(old)

        failing_exec = AsyncMock(side_effect=RedisConnectionError("connection reset"))
        with patch.object(Pipeline, "execute", failing_exec):
            with pytest.raises(InternalError):
                await sessions.rotate(old.token_hash, new)

        assert await sessions.get(old.token_hash) == old
        assert await sessions.get(new.token_hash) is None
        assert await sessions.revoke_all(1) == 1

    @pytest.mark.asyncio
    async def test_corrupt_record_is_internal(self, sessions: RedisRefreshTokenStore, redis_client) -> None:
        await redis_client.set("refresh_token:" + "a" * 64, "{not json")
        with pytest.raises(InternalError):
            await sessions.get("a" * 64)

    @pytest.mark.asyncio
    async def test_ping(self, sessions: RedisRefreshTokenStore) -> None:
        assert await sessions.ping() is True
