"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Sentinel happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. Only the
      process entry points (api/main.py lifespan, main.py CLI) call it; every
      auth component receives the Settings instance through its constructor.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens every issued token.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("sentinel.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'sentinel_auth.db'}"


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
    app_name: str = "Sentinel"
    frontend_base_url: str = "http://localhost:3000"
    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["api.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens and sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 900
    refresh_token_rotation: bool = True
    refresh_token_bytes: int = 40
    session_ttl_seconds: int = 24 * 60 * 60

    # ------------------------------------------------------------------
    # Verification codes and password reset
    # ------------------------------------------------------------------

    verification_code_ttl_seconds: int = 30 * 60
    reset_token_ttl_seconds: int = 30 * 60

    # ------------------------------------------------------------------
    # Brute-force defense
    # ------------------------------------------------------------------

    failed_login_threshold: int = 5
    failed_login_window_seconds: int = 60 * 60
    # 0 means blocks never expire; an operator must unblock explicitly.
    block_ttl_seconds: int = 0

    # Per-route request throttles (slowapi limit strings)
    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    verification_rate_limit: str = "5/minute"
    password_reset_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Anomaly detection
    # ------------------------------------------------------------------

    suspicious_distance_km: float = 1000.0
    geoip_database_path: str = ""
    geoip_timeout_seconds: float = 0.5
    # Only enable behind a proxy that overwrites X-Forwarded-For.
    trust_forwarded_for: bool = False

    # ------------------------------------------------------------------
    # Credentials and identifiers
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    agent_code_attempts: int = 5

    # ------------------------------------------------------------------
    # Outbound email
    # ------------------------------------------------------------------

    smtp_enabled: bool = False
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: SecretStr | None = None
    smtp_use_tls: bool = False
    smtp_starttls: bool = True
    smtp_from_email: str = "no-reply@localhost"
    smtp_from_name: str = "Sentinel"
    smtp_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.failed_login_threshold < 1:
            raise ValueError("FAILED_LOGIN_THRESHOLD must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Call it from process entry points only and pass the instance down.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
