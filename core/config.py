"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Shelfguard happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      instance is then handed to each component at startup and never mutated.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_token_secret -> ACCESS_TOKEN_SECRET).

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Any violation aborts startup with a descriptive error.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright. The access
       and refresh secrets must also differ -- a refresh token signed with the
       access secret would otherwise validate as an access token.

  [M7] In production mode (DEBUG not set or false), a missing secret is a
       hard startup failure. Dev mode generates throwaway secrets with a warning.

  [M8] Argon2 cost parameters have floors. Values below them make the stored
       hashes cheap to brute-force, so they are refused at startup.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("shelfguard.config")

# ---------------------------------------------------------------------------
# Safe minimums for credential hashing [M8]
# ---------------------------------------------------------------------------

MIN_SECRET_LENGTH = 32
MIN_MEMORY_COST_KB = 1024
MIN_TIME_COST = 1
MIN_PARALLELISM = 1
MIN_HASH_LEN = 16
MAX_ACCESS_TOKEN_MINUTES = 24 * 60


class ConfigError(ValueError):
    """Raised when a component is handed configuration outside its safe bounds."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except the secrets have defaults. In tests, instantiate
    Settings(debug=True, ...) directly with explicit values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    environment: Literal["development", "staging", "production"] = "production"

    # ------------------------------------------------------------------
    # Token signing -- two domains, two secrets
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expire_minutes: int = 15
    refresh_token_expire_days: int = 7

    # ------------------------------------------------------------------
    # Credential hashing (Argon2id)
    # ------------------------------------------------------------------

    argon2_memory_cost: int = 19456  # KiB
    argon2_time_cost: int = 2
    argon2_parallelism: int = 1
    argon2_hash_len: int = 32
    # Size of the dedicated thread pool that runs Argon2 off the event loop.
    password_hash_workers: int = 4

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///shelfguard.db"
    redis_url: str = "redis://localhost:6379/0"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cors_allowed_origins: str = "http://localhost:3000"
    login_rate_limit: str = "10/minute"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("access_token_secret", "refresh_token_secret"):
            if getattr(self, field):
                continue
            if self.debug:
                setattr(self, field, secrets.token_hex(32))
                logger.warning(
                    "Using auto-generated %s. Sessions will not persist across restarts.", field.upper()
                )
            else:
                raise ValueError(
                    f"{field.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )

        if len(self.access_token_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"ACCESS_TOKEN_SECRET must be at least {MIN_SECRET_LENGTH} characters.")
        if len(self.refresh_token_secret) < MIN_SECRET_LENGTH:
            raise ValueError(f"REFRESH_TOKEN_SECRET must be at least {MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        if not 0 < self.access_token_expire_minutes <= MAX_ACCESS_TOKEN_MINUTES:
            raise ValueError(f"ACCESS_TOKEN_EXPIRE_MINUTES must be between 1 and {MAX_ACCESS_TOKEN_MINUTES}.")
        if self.refresh_token_expire_days < 1:
            raise ValueError("REFRESH_TOKEN_EXPIRE_DAYS must be at least 1.")
        return self

    @model_validator(mode="after")
    def validate_hashing_cost(self) -> "Settings":
        """Reject Argon2 parameters below the documented safe minimums [M8]."""
        check_hash_parameters(
            memory_cost=self.argon2_memory_cost,
            time_cost=self.argon2_time_cost,
            parallelism=self.argon2_parallelism,
            hash_len=self.argon2_hash_len,
        )
        if self.password_hash_workers < 1:
            raise ValueError("PASSWORD_HASH_WORKERS must be at least 1.")
        return self

    @model_validator(mode="after")
    def validate_cors(self) -> "Settings":
        if self.environment != "development" and "*" in self.cors_origins:
            raise ValueError(f"CORS cannot allow all origins (*) in {self.environment}.")
        return self


def check_hash_parameters(*, memory_cost: int, time_cost: int, parallelism: int, hash_len: int) -> None:
    """Raise ConfigError if any Argon2 parameter is below its floor."""
    if memory_cost < MIN_MEMORY_COST_KB:
        raise ConfigError(f"ARGON2_MEMORY_COST must be at least {MIN_MEMORY_COST_KB} KiB (got {memory_cost}).")
    if time_cost < MIN_TIME_COST:
        raise ConfigError(f"ARGON2_TIME_COST must be at least {MIN_TIME_COST} (got {time_cost}).")
    if parallelism < MIN_PARALLELISM:
        raise ConfigError(f"ARGON2_PARALLELISM must be at least {MIN_PARALLELISM} (got {parallelism}).")
    if hash_len < MIN_HASH_LEN:
        raise ConfigError(f"ARGON2_HASH_LEN must be at least {MIN_HASH_LEN} bytes (got {hash_len}).")
    # Argon2 requires at least 8 KiB of memory per lane.
    if memory_cost < 8 * parallelism:
        raise ConfigError("ARGON2_MEMORY_COST must be at least 8 KiB per unit of ARGON2_PARALLELISM.")


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
