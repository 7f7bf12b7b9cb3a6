"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Airlock happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.
Business components (TokenIssuer, TokenVerifier, CredentialIssuer, mailers)
never see Settings at all: the lifespan in api/main.py reads the values once
and passes them into each constructor, so tests can build components with
arbitrary values without touching the environment.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Used for the DEBUG-conditional JWT_SECRET logic: dev mode
      generates a key with a warning, production mode refuses to start.

Security notes:
  JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key weakens every credential issued with it.

  In production mode (DEBUG not set or false), a missing JWT_SECRET is a hard
  startup failure. Credentials signed with a random per-process key would be
  silently invalidated on every restart.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, directory/, mail/, or storage/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("airlock.config")


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
    database_url: str = "sqlite:///data/airlock.db"

    # ------------------------------------------------------------------
    # Bearer credentials
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_issuer: str = "airlock"

    # ------------------------------------------------------------------
    # Email challenges
    # ------------------------------------------------------------------

    email_auth_debounce: int = Field(default=180, ge=0)  # seconds between issuances
    email_auth_expiry: int = Field(default=900, ge=1)  # max challenge age in seconds

    # ------------------------------------------------------------------
    # Mail delivery
    # ------------------------------------------------------------------

    mail_backend: Literal["ses", "memory"] = "ses"
    service_url: str = "localhost:8080"  # host[:port], scheme is always https
    email_auth_path: str = "/auth/email/verify"
    email_auth_sender: str = "noreply@luna4.me"
    aws_region: str = "us-east-1"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    email_request_rate_limit: str = "10/minute"
    maintenance_api_key: str = ""  # empty disables /api/maintenance entirely
    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://127.0.0.1"]
    allowed_redirect_hosts: list[str] = []
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_jwt_secret(self) -> "Settings":
        """Enforce the JWT_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Credentials will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            JWT_SECRET is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated JWT_SECRET. " "Issued credentials will not survive a restart."
                )
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if not self.jwt_issuer.strip():
            raise ValueError("JWT_ISSUER must not be empty.")
        if not self.email_auth_path.startswith("/"):
            raise ValueError("EMAIL_AUTH_PATH must start with '/'.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
