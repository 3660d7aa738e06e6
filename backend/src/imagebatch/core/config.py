"""Application configuration using Pydantic BaseSettings."""

import logging
from typing import Literal

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Image Generation Provider
    image_provider: Literal["gemini", "replicate"] = Field(
        default="gemini", alias="IMAGE_PROVIDER"
    )
    image_aspect_ratio: str = Field(default="1:1", alias="IMAGE_ASPECT_RATIO")
    provider_http_timeout_seconds: float = Field(
        default=120.0, gt=0, alias="PROVIDER_HTTP_TIMEOUT_SECONDS"
    )
    # Unset means provider calls may run indefinitely
    provider_timeout_seconds: float | None = Field(
        default=None, gt=0, alias="PROVIDER_TIMEOUT_SECONDS"
    )

    # Gemini
    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.5-flash-image", alias="GEMINI_MODEL")
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_API_BASE_URL"
    )

    # Replicate
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_model_version: str = Field(
        default="black-forest-labs/flux-kontext-pro", alias="REPLICATE_MODEL_VERSION"
    )

    # Job reclamation
    job_retention_seconds: float = Field(default=3600, ge=0, alias="JOB_RETENTION_SECONDS")
    cleanup_interval_seconds: float = Field(default=900, gt=0, alias="CLEANUP_INTERVAL_SECONDS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate provider credentials on startup.

        Only enforced in production. Elsewhere a missing credential surfaces
        as an error on each generated job instead of blocking startup.
        """
        if self.app_env != "production":
            return self

        missing = []

        if self.image_provider == "gemini" and not self.gemini_api_key:
            missing.append(
                "GEMINI_API_KEY: Create an API key at https://aistudio.google.com/apikey"
            )

        if self.image_provider == "replicate" and not self.replicate_api_token:
            missing.append(
                "REPLICATE_API_TOKEN: Get your API token from https://replicate.com/account/api-tokens"
            )

        if missing:
            error_msg = "CRITICAL: Missing required environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
