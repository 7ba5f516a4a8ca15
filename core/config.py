"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Falcons happen here. No module should
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
  SECRET_KEY shorter than 32 chars is rejected outright. HMAC-SHA256 JWT
  signing relies on key entropy.

  secure_cookies is the single switch for the cookie Secure flag. Every cookie
  helper in auth/tokens.py reads it; no route hardcodes the flag.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
courses/, or mail/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("falcons.config")

_ROOT = Path(__file__).resolve().parent.parent


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
    database_url: str = f"sqlite:///{_ROOT / 'falcons.db'}"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    host: str = "127.0.0.1"
    port: int = 5000
    # Hard deadline for draining in-flight requests on SIGTERM/SIGINT.
    shutdown_timeout_seconds: int = 30
    client_url: str = "http://localhost:5173"
    allowed_origins: list[str] = ["http://localhost:5173"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = 7 * 24 * 3600
    refresh_token_expire_seconds: int = 30 * 24 * 3600
    email_verification_expire_seconds: int = 24 * 3600
    password_reset_expire_seconds: int = 10 * 60

    # Roles a visitor may pick at POST /auth/register. admin and manager are
    # only ever granted through the admin user-management routes.
    registration_roles: list[str] = ["student", "jobseeker", "instructor", "employee", "designer"]
    default_role: str = "student"

    permissions_file: Path = _ROOT / "auth" / "permissions.json"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    # Shared per-IP budget for the credential endpoints (register, login,
    # verify-email, password reset). Moving window, slowapi limit syntax.
    auth_rate_limit: str = "5/15minutes"
    # Blanket slowapi limit applied to every API route.
    api_rate_limit: str = "100/15minutes"

    # ------------------------------------------------------------------
    # Email (empty smtp_host means "log instead of send")
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_timeout_seconds: int = 10
    email_from: str = "Falcons <no-reply@falcons.local>"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.default_role not in self.registration_roles:
            raise ValueError("DEFAULT_ROLE must be one of REGISTRATION_ROLES.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
