"""
auth/passwords.py -- Argon2id credential hashing.

Security design decisions:
  Algorithm: argon2-cffi's PasswordHasher with Type.ID. Argon2id is memory-hard,
       which makes GPU/ASIC brute force expensive. The output is the standard
       PHC string ($argon2id$v=19$m=...,t=...,p=...$salt$digest), so verify()
       reads the parameters back from the stored hash and needs no config.

  Cost: memory/time/parallelism/hash length come from Settings and are checked
       against the floors in core.config once, when the hasher is built.
       Building a hasher with unsafe parameters raises ConfigError.

  Concurrency: hashing costs tens of milliseconds and megabytes of RAM by
       design. hash_async()/verify_async() run it on a dedicated thread pool so
       the event loop keeps serving other requests. argon2-cffi releases the
       GIL while hashing, so the pool gives real parallelism.

  Timing equalization [C1]: dummy_verify() burns the same cost as a real
       verification. AuthService calls it when the email is unknown, so the
       response time does not reveal which accounts exist.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

from argon2 import PasswordHasher, Type
from argon2.exceptions import HashingError, InvalidHashError, VerificationError, VerifyMismatchError

from auth.errors import InternalError, MalformedHashError
from core.config import Settings, check_hash_parameters

logger = logging.getLogger("shelfguard.auth.passwords")

_SALT_LEN = 16


class CredentialHasher:
    """Hash and verify passwords with Argon2id.

    Usage:
        hasher = CredentialHasher(memory_cost=19456, time_cost=2, parallelism=1)
        stored = hasher.hash("correct horse")
        hasher.verify("correct horse", stored)   # True
        hasher.close()
    """

    def __init__(
        self,
        *,
        memory_cost: int,
        time_cost: int,
        parallelism: int,
        hash_len: int = 32,
        workers: int = 4,
    ) -> None:
        check_hash_parameters(
            memory_cost=memory_cost,
            time_cost=time_cost,
            parallelism=parallelism,
            hash_len=hash_len,
        )
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=_SALT_LEN,
            type=Type.ID,
        )
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="argon2")
        # Computed once at construction so the first unknown-email login is
        # not measurably faster or slower than later ones.
        self._dummy_hash = self._hasher.hash("shelfguard_timing_dummy")

    @classmethod
    def from_settings(cls, settings: Settings) -> CredentialHasher:
        return cls(
            memory_cost=settings.argon2_memory_cost,
            time_cost=settings.argon2_time_cost,
            parallelism=settings.argon2_parallelism,
            hash_len=settings.argon2_hash_len,
            workers=settings.password_hash_workers,
        )

    # ------------------------------------------------------------------
    # Synchronous primitives
    # ------------------------------------------------------------------

    def hash(self, plaintext: str) -> str:
        """Return a fresh PHC-format Argon2id hash. A new random salt every call."""
        try:
            return self._hasher.hash(plaintext)
        except HashingError as exc:
            raise InternalError("Password hashing failed.") from exc

    def verify(self, plaintext: str, hash_string: str) -> bool:
        """Return True if plaintext matches hash_string, False if it does not.

        Raises MalformedHashError when hash_string is not a usable Argon2
        hash. That covers an unknown prefix as well as a truncated string or
        an undecodable salt or digest behind a valid prefix: the stored
        credential is corrupt.
        """
        try:
            return self._hasher.verify(hash_string, plaintext)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            raise MalformedHashError("Stored password hash is not a valid Argon2 hash.") from exc

    def needs_rehash(self, hash_string: str) -> bool:
        """True if hash_string was produced with different cost parameters."""
        try:
            return self._hasher.check_needs_rehash(hash_string)
        except InvalidHashError as exc:
            raise MalformedHashError("Stored password hash is not a valid Argon2 hash.") from exc

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one verification's worth of work and discard the result."""
        self.verify(plaintext, self._dummy_hash)

    # ------------------------------------------------------------------
    # Event-loop friendly wrappers
    # ------------------------------------------------------------------

    async def hash_async(self, plaintext: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.hash, plaintext)

    async def verify_async(self, plaintext: str, hash_string: str) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self.verify, plaintext, hash_string)

    async def dummy_verify_async(self, plaintext: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self.dummy_verify, plaintext)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
