"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing keys with a warning, production mode
      refuses to start without them.

Security notes:
  [M6] SECRET_KEY and ENCRYPTION_KEY shorter than 32 chars are rejected.
       JWT signing and the reset-link cipher both rely on key entropy.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY or
       ENCRYPTION_KEY is a hard startup failure. A random key in production
       would invalidate every issued token and reset link on restart.

  KYC_WEBHOOK_SECRET may be empty: the webhook endpoint then rejects every
  call (fail closed) instead of refusing to start the whole service.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, kyc/, or notify/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rentalauth.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'rentalauth.db'}"


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
    encryption_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:8000"

    # ------------------------------------------------------------------
    # Credential lifetimes
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 900
    refresh_token_ttl_days: int = 90
    rotate_refresh_tokens: bool = False
    session_exchange_ttl_seconds: int = 120
    password_reset_ttl_minutes: int = 30
    email_verification_ttl_hours: int = 24

    # ------------------------------------------------------------------
    # Password policy and lockout
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    max_failed_logins: int = 5
    lockout_minutes: int = 15

    # ------------------------------------------------------------------
    # Identity providers
    # ------------------------------------------------------------------

    # Google web client ID; empty string disables POST /auth/google.
    google_client_id: str = ""

    kyc_webhook_secret: str = ""
    webhook_tolerance_seconds: int = 300

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    login_rate_limit: str = "10/minute"
    token_rate_limit: str = "30/minute"
    recovery_rate_limit: str = "5/minute"
    webhook_rate_limit: str = "120/minute"

    # ------------------------------------------------------------------
    # Mail (SMTP). Empty smtp_host = dev mode: messages are logged, not sent.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    mail_from_name: str = "Pool & Chill"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce SECRET_KEY / ENCRYPTION_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens and reset links will not survive restart.

        Production mode: refuse to start if either key is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        for field in ("secret_key", "encryption_key"):
            value = getattr(self, field)
            env_name = field.upper()
            if not value:
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning("WARNING: Using auto-generated %s. Tokens will not persist across restarts.", env_name)
                else:
                    raise ValueError(
                        f"{env_name} is required in production mode. "
                        f"Set {env_name} in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field)) < 32:
                raise ValueError(f"{env_name} must be at least 32 characters.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if not self.kyc_webhook_secret:
            logger.warning("KYC_WEBHOOK_SECRET is not set -- KYC webhooks will be rejected.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
