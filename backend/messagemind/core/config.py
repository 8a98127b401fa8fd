"""Runtime settings (pydantic-settings).

Every field reads from the environment variable of the same name
(case-insensitive) or from ``.env``. Misconfiguration that would make
billing or auth unsafe fails at import time.
"""

import uuid
from datetime import timedelta
from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEV_DATABASE_PASSWORD = "messagemind_dev_password"  # nosec B105

# 256-bit HS256 key
_MIN_AUTH_SECRET_LENGTH = 32


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        msg = f"{name} must be positive. Got: {value}"
        raise ValueError(msg)


class Settings(BaseSettings):
    """MessageMind backend settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: str = "development"
    log_level: str = "INFO"

    # Postgres
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "messagemind"
    database_user: str = "messagemind_user"
    database_password: str = _DEV_DATABASE_PASSWORD

    # Browser origins allowed to call the API with the session cookie
    allowed_origins: list[str] = ["http://localhost:5173"]

    # Session cookie (hosted) or a fixed account (local, AUTH_ENABLED=false)
    auth_enabled: bool = False
    default_user_id: uuid.UUID | None = None
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "messagemind"
    auth_audience: str = "messagemind"
    auth_cookie_name: str = "messagemind.session-token"

    # Analysis provider
    llm_provider: Literal["openai", "claude", "mock"] = "openai"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.groq.com/openai/v1"
    anthropic_api_key: str = ""
    default_analysis_model: str = "llama-3.3-70b-versatile"
    tier_model_overrides: dict[str, str] = {}  # e.g. {"max": "llama-3.3-70b-specdec"}
    analysis_timeout_seconds: float = 60.0

    cache_enabled: bool = True
    cache_retention_days: int = 30
    idempotency_ttl_hours: int = 24

    # slowapi limit string for POST /analyses, e.g. "10/minute"
    rate_limit_analysis: str = "10/minute"
    rate_limit_enabled: bool = True

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @property
    def idempotency_ttl(self) -> timedelta:
        return timedelta(hours=self.idempotency_ttl_hours)

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Reject unsafe or nonsensical configuration.

        Always: positive timeout, cache retention and idempotency TTL, and
        no wildcard CORS origin (the session cookie needs credentials).
        In production: a non-default database password, and a strong
        AUTH_SECRET whenever auth is enabled.
        """
        _require_positive("ANALYSIS_TIMEOUT_SECONDS", self.analysis_timeout_seconds)
        _require_positive("CACHE_RETENTION_DAYS", self.cache_retention_days)
        _require_positive("IDEMPOTENCY_TTL_HOURS", self.idempotency_ttl_hours)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*'; credentialed CORS "
                "requires explicit origins."
            )
            raise ValueError(msg)

        if self.environment != "production":
            return self

        if self.database_password == _DEV_DATABASE_PASSWORD:
            msg = "Set DATABASE_PASSWORD; the development default is not allowed in production."
            raise ValueError(msg)
        if self.auth_enabled:
            secret = self.auth_secret.get_secret_value()
            if len(secret) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    "AUTH_SECRET must be set to at least "
                    f"{_MIN_AUTH_SECRET_LENGTH} characters when AUTH_ENABLED=true."
                )
                raise ValueError(msg)
        return self


settings = Settings()
