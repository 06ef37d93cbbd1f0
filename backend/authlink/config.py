"""
Configuration for the authlink backend.

All settings are read once per process from the environment (and an optional
`.env` file) into an immutable `Settings` object.  Components never read the
environment themselves; they receive the values they need through their
constructors, usually from `get_settings()`.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Only accepted against a local SQLite database.
DEV_SECRET_KEY = "change-me"


class Settings(BaseSettings):
    """Process-wide settings loaded from the environment."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    # Database.  The default is a local SQLite file for development; point
    # DATABASE_URL at PostgreSQL in production.
    database_url: str = "sqlite:///./authlink.db"
    database_echo: bool = False
    # Upper bound for a single storage call (lock wait / statement timeout).
    db_timeout_seconds: float = Field(5.0, gt=0)

    # Token secrets and hashing
    secret_key: SecretStr = SecretStr(DEV_SECRET_KEY)
    token_hash_scheme: Literal["hmac", "pbkdf2"] = "hmac"
    token_hash_salt: SecretStr = SecretStr("authlink-token-salt")
    token_hash_rounds: int = Field(29000, ge=1000)
    token_bytes: int = Field(32, ge=16)

    # Lifetimes
    auth_code_ttl_minutes: int = Field(15, gt=0)
    reset_token_ttl_minutes: int = Field(30, gt=0)

    # Links embedded in outgoing emails
    base_url: str = "http://localhost:8000"
    min_password_length: int = Field(8, ge=1)

    # Email delivery
    email_mode: Literal["console", "smtp"] = "console"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[SecretStr] = None
    smtp_from_email: str = "noreply@example.com"
    smtp_use_tls: bool = False
    smtp_timeout_seconds: float = 10.0

    # Celery (periodic sweep)
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: Optional[str] = None
    cleanup_interval_minutes: int = Field(60, gt=0)

    @model_validator(mode="after")
    def require_real_secret_key(self) -> "Settings":
        """Refuse the development secret key outside local SQLite."""
        if self.database_url.startswith("sqlite"):
            return self
        if self.secret_key.get_secret_value() in ("", DEV_SECRET_KEY):
            raise ValueError("SECRET_KEY must be set when DATABASE_URL is not SQLite")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached process settings."""
    return Settings()
