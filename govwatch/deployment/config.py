"""Deployment correlation configuration.

All settings can be overridden via ``DEPLOY_*`` environment variables
(e.g. ``DEPLOY_POLLING_RATE_SECONDS=5``).
"""

import re

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeploymentConfig(BaseSettings):
    """Polling rate and identifier extraction settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_",
        case_sensitive=False,
        extra="ignore",
    )

    polling_rate_seconds: float = Field(
        default=2.0,
        gt=0.0,
        le=300.0,
        description="Seconds between status/limit checks while a deployment runs",
    )
    polling_jitter_seconds: float = Field(
        default=0.0,
        ge=0.0,
        description="Upper bound of random delay added to each polling interval",
    )
    id_label: str = Field(
        default="Deploy ID",
        min_length=1,
        description="Label that precedes the deployment id in process output",
    )
    id_min_length: int = Field(default=15, ge=1)
    id_max_length: int = Field(default=18, ge=1)

    @model_validator(mode="after")
    def _check_lengths(self) -> "DeploymentConfig":
        if self.id_min_length > self.id_max_length:
            raise ValueError("id_min_length must be <= id_max_length")
        return self

    def id_pattern(self) -> re.Pattern[str]:
        """Regex capturing the deployment id that follows ``id_label``."""
        return re.compile(
            rf"{re.escape(self.id_label)}:\s*"
            rf"([A-Za-z0-9]{{{self.id_min_length},{self.id_max_length}}})(?![A-Za-z0-9])"
        )
