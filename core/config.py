"""
core/config.py -- ResumeLens settings, read from the environment by pydantic-settings.

Every environment variable the service understands is a field on Settings.
Other modules call get_settings() and never touch os.environ themselves.

get_settings() is lru_cached, so the environment (plus an optional .env
file) is parsed exactly once per process. Field names become upper-case env
var names: google_client_id is read from GOOGLE_CLIENT_ID.

SECRET_KEY policy (validate_secret_key):
  [M6] Anything shorter than 32 characters is refused. The key signs the
       OAuth state token, so a weak key means forgeable post-login redirects.

  [M7] With DEBUG off, a missing key stops startup. With DEBUG on, a random
       key is generated and a warning logged; in-flight sign-ins then fail
       their state check after a restart and land on the default page.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or kv/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("resumelens.config")


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # Empty string means "no database". /auth?action=status then reports
    # unauthenticated instead of failing, and the purge loop is not started.
    database_url: str = ""

    # ------------------------------------------------------------------
    # Google OAuth (empty string means sign-in is unavailable)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/auth?action=callback"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_cookie_name: str = "session_token"
    session_ttl_seconds: int = 7 * 24 * 3600
    state_token_ttl_seconds: int = 600
    secure_cookies: bool = False
    # 0 disables the background purge loop.
    session_purge_interval_seconds: int = 6 * 3600

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    auth_rate_limit: str = "60/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("database_url")
    @classmethod
    def normalize_database_url(cls, value: str) -> str:
        """Accept Heroku/Neon-style postgres:// URLs.

        SQLAlchemy 2.x only registers the "postgresql" dialect name, so the
        short scheme would fail at create_engine() time.
        """
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate (DEBUG) or require (production) SECRET_KEY, then check its length.

        See the module docstring for [M6] and [M7].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. State tokens will not survive restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def database_configured(self) -> bool:
        return bool(self.database_url)


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Modules that cache values at import (auth/tokens.py, api/limiter.py) do
    not see a later cache_clear(); tests set env vars before importing them.
    """
    return Settings()
