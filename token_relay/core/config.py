"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the background jobs and the
operator scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

import os
import secrets

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file into the environment."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class OAuthSettings(BaseSettings):
    """Identity provider endpoints and client credentials."""

    authorization_url: AnyHttpUrl = Field(..., validation_alias="AUTHORIZATION_URL")
    token_url: AnyHttpUrl = Field(..., validation_alias="TOKEN_URL")
    client_id: str = Field(..., validation_alias="CLIENT_ID")
    client_secret: str = Field(..., validation_alias="CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="REDIRECT_URI")
    scope: str = Field("openid", validation_alias="SCOPE")
    exchange_timeout_seconds: float = Field(
        10.0,
        validation_alias="OAUTH_EXCHANGE_TIMEOUT",
        description="Upper bound for a single token endpoint request.",
    )

    @field_validator("scope", mode="before")
    @classmethod
    def _normalize_scope(cls, value: str | list[str] | tuple[str, ...]) -> str:
        """Support providing scopes as a list or a comma-separated string."""
        if isinstance(value, (list, tuple)):
            return " ".join(value)
        return " ".join(part.strip() for part in value.replace(",", " ").split())

    @field_validator("exchange_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("OAUTH_EXCHANGE_TIMEOUT must be positive.")
        return value


class SessionSettings(BaseSettings):
    """Server-side authorization session configuration."""

    secret: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        validation_alias="SESSION_SECRET",
        description="Key used to sign the session cookie. Random per process when unset.",
    )
    ttl_seconds: int = Field(1800, validation_alias="SESSION_TTL_SECONDS")
    cookie_name: str = Field("token_relay_sid", validation_alias="SESSION_COOKIE_NAME")
    cookie_secure: bool = Field(True, validation_alias="SESSION_COOKIE_SECURE")


class SchedulerSettings(BaseSettings):
    """Cadence of the background refresh and session cleanup jobs."""

    enabled: bool = Field(True, validation_alias="SCHEDULER_ENABLED")
    refresh_interval_seconds: float = Field(
        86400, validation_alias="REFRESH_INTERVAL_SECONDS"
    )
    stale_after_days: float = Field(3, validation_alias="REFRESH_STALE_AFTER_DAYS")
    refresh_concurrency: int = Field(1, validation_alias="REFRESH_CONCURRENCY")
    session_reap_interval_seconds: float = Field(
        3600, validation_alias="SESSION_REAP_INTERVAL_SECONDS"
    )

    @field_validator("refresh_concurrency")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("REFRESH_CONCURRENCY must be at least 1.")
        return value


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    database_path: str = Field("oauth.db", validation_alias="DATABASE_PATH")
    database_reconnect_backoff_seconds: float = Field(
        5.0,
        validation_alias="DATABASE_RECONNECT_BACKOFF",
        description="Minimum delay before reconnecting after a storage failure.",
    )
    refresh_api_key: Optional[str] = Field(
        None,
        validation_alias="REFRESH_API_KEY",
        description=(
            "Optional bearer credential required by POST /api/refresh. "
            "When unset the endpoint accepts any caller."
        ),
    )
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "OAuthSettings",
    "SchedulerSettings",
    "SessionSettings",
    "get_settings",
]
