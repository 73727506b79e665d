"""Application settings and logging configuration."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from messaging.session import ProviderCredentials

_LOG_CONTEXT: dict[str, str] = {"environment": "development", "service": "storefront-messaging"}


class AppSettings(BaseModel):
    """Application identity and runtime settings."""

    environment: Literal["development", "staging", "production"] = "development"
    service: str = "storefront-messaging"
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"


class ProviderSettings(BaseModel):
    """Messaging provider endpoint, credentials and client tuning."""

    base_url: str = Field(description="Provider manager URL, optionally ending in /api.")
    email: str | None = None
    password: SecretStr | None = None
    api_key: SecretStr | None = None
    global_api_key: SecretStr | None = None
    country_code: str = Field(default="55", pattern=r"^\d{1,3}$")
    integration: str = "WHATSAPP-BAILEYS"
    timeout_seconds: float = Field(default=15.0, gt=0)
    settle_delay_seconds: float = Field(default=5.0, ge=0)
    credential_ttl_seconds: int = Field(default=86400, ge=1)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, value: str) -> str:
        """Ensure the provider URL is absolute HTTP(S) and has no trailing slash."""
        if not value.startswith(("http://", "https://")):
            raise ValueError("provider.base_url must start with 'http://' or 'https://'.")
        return value.rstrip("/")

    def credentials(self) -> ProviderCredentials:
        """Unwrap secrets into the client's credential bundle."""
        return ProviderCredentials(
            email=self.email,
            password=self.password.get_secret_value() if self.password else None,
            api_key=self.api_key.get_secret_value() if self.api_key else None,
            global_api_key=(
                self.global_api_key.get_secret_value() if self.global_api_key else None
            ),
        )


class Settings(BaseSettings):
    """Root application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=AppSettings)
    provider: ProviderSettings


def _standard_log_fields(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Inject required structured logging fields."""
    context_vars = structlog.contextvars.get_contextvars()
    event_dict.setdefault("correlation_id", str(context_vars.get("correlation_id", "unknown")))
    event_dict.setdefault("environment", _LOG_CONTEXT["environment"])
    event_dict.setdefault("service", _LOG_CONTEXT["service"])
    event_dict.setdefault("timestamp", datetime.now(UTC).isoformat())
    return event_dict


def configure_structlog(settings: Settings) -> None:
    """Configure structlog for JSON output with required fields."""
    _LOG_CONTEXT["environment"] = settings.app.environment
    _LOG_CONTEXT["service"] = settings.app.service

    log_level = getattr(logging, settings.app.log_level, logging.INFO)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            _standard_log_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


@lru_cache
def get_settings() -> Settings:
    """Load and cache application settings from environment variables."""
    return Settings()
