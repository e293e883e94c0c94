"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Bennu happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing, refresh
  token hashing and CSRF derivation all rely on key entropy.

  SECURE_COOKIES defaults to on. It is switched off automatically in DEBUG
  mode unless set explicitly, so local http:// development still works.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bennu.config")


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
    service_name: str = "bennu"
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///bennu_auth.db"
    # Upper bound for a single backing-store wait (lock or pool checkout).
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # None = follow DEBUG (off in dev, on in production).
    secure_cookies: bool | None = None
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 3600
    email_verify_token_expire_seconds: int = 24 * 3600
    password_reset_token_expire_seconds: int = 3600
    csrf_enabled: bool = True

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 14
    max_concurrent_hashes: int = 4

    # ------------------------------------------------------------------
    # Login protection
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    login_max_failed_attempts: int = 5
    login_lockout_seconds: int = 15 * 60
    # Per-IP limit on redeeming reset tokens; each attempt costs a bcrypt hash.
    verification_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Links placed in verification / reset emails
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------------

    cors_allowed_origins: list[str] = ["http://localhost:3000"]
    cors_allowed_methods: list[str] = ["GET", "POST"]
    cors_allowed_headers: list[str] = ["Content-Type", "Authorization", "X-CSRF-Token"]
    cors_allow_credentials: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing. Every refresh token hash and CSRF token
            would silently stop matching after a restart otherwise.

        Both modes: reject keys shorter than 32 characters.
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
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.max_concurrent_hashes < 1:
            raise ValueError("MAX_CONCURRENT_HASHES must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
