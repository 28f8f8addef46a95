"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY, session_ttl_seconds -> SESSION_TTL_SECONDS).

  @model_validator(mode="after"): Cross-field validation once all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  SECRET_KEY signs the session cookie. Shorter than 32 chars is rejected.

  The signup allow-list is configuration, not code. An empty
  SIGNUP_ALLOWED_USERNAMES means "any username" while SELF_REGISTRATION_ENABLED
  stays true; setting the flag to false closes registration entirely.
  The variable is a JSON list: SIGNUP_ALLOWED_USERNAMES='["benwis"]'.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    log_level: str = "INFO"
    database_url: str = "sqlite:///gatehouse.db"
    home_path: str = "/"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "gatehouse_session"
    secure_cookies: bool = False
    # Browser-session logins: 6 hours of inactivity.
    session_ttl_seconds: int = 6 * 60 * 60
    # Remember-me logins: 60 days.
    remember_ttl_seconds: int = 60 * 24 * 60 * 60
    session_purge_interval_seconds: int = 60 * 60

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    signup_allowed_usernames: list[str] = []
    signup_rejected_redirect: str = "/nedry"

    # ------------------------------------------------------------------
    # Password hashing (Argon2id; defaults are the RFC 9106 low-memory profile)
    # ------------------------------------------------------------------

    argon2_time_cost: int = 3
    argon2_memory_cost: int = 65536  # KiB
    argon2_parallelism: int = 4

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Signed session cookies will not survive a restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Session cookies will not survive restarts."
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

    @model_validator(mode="after")
    def validate_session_lifetimes(self) -> "Settings":
        if self.session_ttl_seconds <= 0 or self.remember_ttl_seconds <= 0:
            raise ValueError("Session lifetimes must be positive.")
        if self.remember_ttl_seconds < self.session_ttl_seconds:
            raise ValueError("REMEMBER_TTL_SECONDS must not be shorter than SESSION_TTL_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
