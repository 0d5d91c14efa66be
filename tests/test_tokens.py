"""
tests/test_tokens.py -- Unit tests for auth/tokens.py (TokenService).

Covers:
  - access tokens round-trip their claims and expire on the simulated clock
  - refresh tokens carry no roles/permissions and a unique nonce
  - domain separation: neither token type validates under the other secret
  - malformed vs bad-signature classification
  - refresh-token hashing is deterministic, keyed, and hides the token
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.errors import TokenBadSignature, TokenExpired, TokenMalformed
from auth.tokens import TokenService
from tests.conftest import ACCESS_SECRET, REFRESH_SECRET, FrozenClock, make_settings


class TestAccessTokens:
    def test_fresh_token_validates_with_claims(self, tokens: TokenService, clock: FrozenClock) -> None:
        issued = tokens.generate_access_token(42, {"ADMIN", "EDITOR"}, {"book:create", "role:read"})
        claims = tokens.validate_access_token(issued.token)
        assert claims.subject == 42
        assert claims.roles == frozenset({"ADMIN", "EDITOR"})
        assert claims.permissions == frozenset({"book:create", "role:read"})
        assert claims.issued_at == clock.now
        assert claims.expires_at == clock.now + tokens.access_ttl

    def test_payload_layout(self, tokens: TokenService) -> None:
        issued = tokens.generate_access_token(7, {"USER"}, set())
        payload = jwt.get_unverified_claims(issued.token)
        assert set(payload) == {"sub", "roles", "permissions", "iat", "exp"}
        assert payload["sub"] == "7"

    def test_expires_after_ttl(self, tokens: TokenService, clock: FrozenClock) -> None:
        issued = tokens.generate_access_token(1, set(), set())
        clock.advance(minutes=14, seconds=59)
        tokens.validate_access_token(issued.token)
        clock.advance(seconds=1)
        with pytest.raises(TokenExpired):
            tokens.validate_access_token(issued.token)

    def test_ttl_override(self, tokens: TokenService, clock: FrozenClock) -> None:
        issued = tokens.generate_access_token(1, set(), set(), ttl_minutes=1)
        assert issued.expires_at - issued.issued_at == timedelta(minutes=1)
        clock.advance(minutes=2)
        with pytest.raises(TokenExpired):
            tokens.validate_access_token(issued.token)

    def test_tampered_token_has_bad_signature(self, tokens: TokenService) -> None:
        issued = tokens.generate_access_token(1, {"USER"}, set())
        forged = jwt.encode(
            {**jwt.get_unverified_claims(issued.token), "roles": ["ADMIN"]},
            "attacker-secret-that-is-long-enough-1234",
            algorithm="HS256",
        )
        with pytest.raises(TokenBadSignature):
            tokens.validate_access_token(forged)

    @pytest.mark.parametrize("garbage", ["", "abc", "a.b.c", "not a jwt at all"])
    def test_garbage_is_malformed(self, tokens: TokenService, garbage: str) -> None:
        with pytest.raises(TokenMalformed):
            tokens.validate_access_token(garbage)

    def test_missing_roles_claim_is_malformed(self, tokens: TokenService, clock: FrozenClock) -> None:
        token = jwt.encode(
            {"sub": "1", "iat": int(clock.now.timestamp()), "exp": int(clock.now.timestamp()) + 60},
            ACCESS_SECRET,
            algorithm="HS256",
        )
        with pytest.raises(TokenMalformed):
            tokens.validate_access_token(token)


class TestRefreshTokens:
    def test_validates_to_user_id(self, tokens: TokenService) -> None:
        issued = tokens.generate_refresh_token(42)
        assert tokens.validate_refresh_token(issued.token) == 42

    def test_carries_no_authorization_claims(self, tokens: TokenService) -> None:
        payload = jwt.get_unverified_claims(tokens.generate_refresh_token(42).token)
        assert "roles" not in payload
        assert "permissions" not in payload
        assert set(payload) == {"sub", "iat", "exp", "jti"}

    def test_same_second_tokens_differ(self, tokens: TokenService) -> None:
        first = tokens.generate_refresh_token(42)
        second = tokens.generate_refresh_token(42)
        assert first.token != second.token
        assert tokens.hash_refresh_token(first.token) != tokens.hash_refresh_token(second.token)

    def test_expires_after_ttl_days(self, tokens: TokenService, clock: FrozenClock) -> None:
        issued = tokens.generate_refresh_token(42)
        clock.advance(days=7)
        with pytest.raises(TokenExpired):
            tokens.validate_refresh_token(issued.token)


class TestDomainSeparation:
    def test_refresh_token_rejected_as_access(self, tokens: TokenService) -> None:
        refresh = tokens.generate_refresh_token(1)
        with pytest.raises(TokenBadSignature):
            tokens.validate_access_token(refresh.token)

    def test_access_token_rejected_as_refresh(self, tokens: TokenService) -> None:
        access = tokens.generate_access_token(1, {"ADMIN"}, set())
        with pytest.raises(TokenBadSignature):
            tokens.validate_refresh_token(access.token)

    def test_other_deployment_tokens_rejected(self, tokens: TokenService, clock: FrozenClock) -> None:
        other = TokenService(
            make_settings(
                access_token_secret="another-access-secret-0123456789abcdef",
                refresh_token_secret="another-refresh-secret-0123456789abcdef",
            ),
            clock=clock,
        )
        with pytest.raises(TokenBadSignature):
            tokens.validate_access_token(other.generate_access_token(1, set(), set()).token)


class TestRefreshHashing:
    def test_deterministic(self, tokens: TokenService) -> None:
        raw = tokens.generate_refresh_token(1).token
        assert tokens.hash_refresh_token(raw) == tokens.hash_refresh_token(raw)

    def test_hex_sha256_and_hides_token(self, tokens: TokenService) -> None:
        raw = tokens.generate_refresh_token(1).token
        digest = tokens.hash_refresh_token(raw)
        assert len(digest) == 64
        assert int(digest, 16) >= 0
        assert raw not in digest

    def test_keyed_by_refresh_secret(self, tokens: TokenService, clock: FrozenClock) -> None:
        other = TokenService(
            make_settings(
                access_token_secret=ACCESS_SECRET,
                refresh_token_secret=REFRESH_SECRET + "-rotated",
            ),
            clock=clock,
        )
        raw = tokens.generate_refresh_token(1).token
        assert tokens.hash_refresh_token(raw) != other.hash_refresh_token(raw)
