"""
core/config.py -- SessionGate settings (pydantic-settings).

Environment variables and an optional .env file are read here and nowhere
else. Field names map to upper-case env vars (otp_length -> OTP_LENGTH).

get_settings() is an lru_cache'd singleton. api/main.py calls it once while
assembling the app and passes plain values (TTLs, limits, the signing key)
into TokenIssuer, the stores and AuthService. Nothing in auth/ or cache/
reads settings at request time.

SECRET_KEY:
  DEBUG=true without a key -> a random key is generated (tokens die with
  the process). DEBUG unset/false without a key -> startup fails. Any key
  under 32 characters is rejected in both modes.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sessiongate.config")

_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Every tunable of the service. Each field has a default, so tests can
    build Settings(...) directly with keyword overrides.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    app_name: str = "SessionGate"
    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_ROOT / 'auth' / 'sessiongate_auth.db'}"
    cache_path: str = str(_ROOT / "cache" / "sessiongate_cache.db")
    # Upper bound (seconds) on how long any store call may block on a lock.
    db_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_minutes: int = 15
    refresh_token_expire_hours: int = 168

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    otp_length: int = 6
    otp_expire_minutes: int = 5

    # ------------------------------------------------------------------
    # Rate limiting (fixed window)
    # ------------------------------------------------------------------

    rate_limit_requests_per_minute: int = 10
    rate_limit_window_seconds: int = 60
    login_rate_limit_requests_per_minute: int = 5
    login_rate_limit_window_seconds: int = 60
    # `limits` storage URI: "memory://" per process, "redis://host:6379" when shared.
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_allowed_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator(
        "access_token_expire_minutes",
        "refresh_token_expire_hours",
        "otp_length",
        "otp_expire_minutes",
        "rate_limit_requests_per_minute",
        "rate_limit_window_seconds",
        "login_rate_limit_requests_per_minute",
        "login_rate_limit_window_seconds",
    )
    @classmethod
    def must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key, or refuse a missing or short one (see module docstring)."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("No SECRET_KEY set; generated a throwaway key for this process")
            else:
                raise ValueError("SECRET_KEY is required unless DEBUG=true.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings. Tests that change env vars must call get_settings.cache_clear()."""
    return Settings()
