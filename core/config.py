"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for RoleGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session
       cookie signature (itsdangerous HMAC) relies on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. A random per-process key would silently log every
       user out on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rolegate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'rolegate.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_days: int = 7
    session_cookie_name: str = "RGSESSID"
    # Set to true when served over TLS; the browser-session cookie then
    # carries the Secure attribute.
    secure_cookies: bool = False
    # Seconds between expired-session purges. 0 disables the background task;
    # lookups filter on expires_at either way.
    session_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Registration / access control
    # ------------------------------------------------------------------

    # Role granted to every self-registered user. Empty string disables.
    default_role_key: str = "user"
    # When true, startup fails if default_role_key names a role that is not
    # present in the store. When false a warning is logged and registrations
    # simply report the role as skipped.
    require_default_role: bool = True
    admin_users_limit: int = 200

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    api_prefix: str = "/auth/api"
    cors_allowed_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("session_days")
    @classmethod
    def validate_session_days(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SESSION_DAYS must be at least 1.")
        return value

    @field_validator("default_role_key")
    @classmethod
    def strip_default_role(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
