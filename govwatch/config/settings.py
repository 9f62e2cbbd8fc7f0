"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the govwatch application.

    All settings can be overridden via environment variables.
    Prefix is not used so the Salesforce variables keep their usual
    names (e.g., SF_INSTANCE_URL, SF_ACCESS_TOKEN).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Salesforce org connection (credentials are obtained elsewhere)
    sf_instance_url: str | None = None
    sf_access_token: str | None = None
    sf_api_version: str = "59.0"
    org_alias: str | None = None

    # Limit monitoring
    monitor_interval_seconds: int = Field(default=30, ge=1, le=3600)

    # HTTP retry configuration
    http_timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_http_retries: int = Field(default=3, ge=0, le=10)
    max_backoff_seconds: float = Field(default=60.0, ge=1.0, le=300.0)

    # Observability
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def salesforce_configured(self) -> bool:
        """Check if an org connection is configured."""
        return (
            self.sf_instance_url is not None
            and self.sf_access_token is not None
        )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()
