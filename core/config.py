"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Keyward happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      startup code (api/main.py lifespan, main.py CLI) reads it once and
      passes the values down to the components it builds; the components
      themselves never call get_settings().

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       JWT_REFRESH_SECRET is a hard startup failure.

  [M8] JWT_SECRET and JWT_REFRESH_SECRET must differ. With a shared secret a
       refresh token would verify as an access token and vice versa.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or mirror/.
"""

import logging
import secrets
from datetime import timedelta
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (with DEBUG=true). Values are
    process-wide and treated as immutable after startup.
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
    database_url: str = "sqlite:///data/keyward.db"
    # Upper bound on how long a store call waits for a database lock before
    # the driver raises (surfaced to callers as StoreUnavailable).
    db_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_refresh_secret: str = ""
    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    # Server-side expiry of ledger rows. Independent of the refresh token's
    # own exp claim; the ledger is the authority for revocation.
    refresh_ledger_ttl_seconds: int = Field(default=7 * 24 * 3600, gt=0)
    token_purge_interval_seconds: int = Field(default=6 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Passwords and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    max_login_attempts: int = Field(default=3, ge=1)
    lockout_minutes: int = Field(default=15, ge=1)

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "5 per 15 minutes"

    # ------------------------------------------------------------------
    # Bulk mirror
    # ------------------------------------------------------------------

    mirror_path: str = "data/users.csv"
    mirror_sync_on_startup: bool = True

    # ------------------------------------------------------------------
    # First-run bootstrap
    # ------------------------------------------------------------------

    default_admin_email: str = "admin@example.com"
    default_admin_password: str = "Admin123!"
    default_admin_first_name: str = "Admin"
    default_admin_last_name: str = "User"

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(minutes=self.lockout_minutes)

    @property
    def refresh_ledger_ttl(self) -> timedelta:
        return timedelta(seconds=self.refresh_ledger_ttl_seconds)

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject a
            refresh secret equal to the access secret.
        """
        for name in ("jwt_secret", "jwt_refresh_secret"):
            value = getattr(self, name)
            if not value:
                if self.debug:
                    setattr(self, name, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Issued tokens will not survive restarts.", name.upper()
                    )
                else:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_REFRESH_SECRET must differ from JWT_SECRET.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
