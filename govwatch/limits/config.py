"""Limit classification configuration.

Thresholds can be overridden via ``LIMITS_*`` environment variables
(e.g. ``LIMITS_WARNING_THRESHOLD=70``).
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from govwatch.limits.schemas import Thresholds


class LimitsConfig(BaseSettings):
    """Thresholds used to classify limit usage."""

    model_config = SettingsConfigDict(
        env_prefix="LIMITS_",
        case_sensitive=False,
        extra="ignore",
    )

    warning_threshold: float = Field(
        default=80.0,
        ge=0.0,
        le=100.0,
        description="Usage percentage at which a limit becomes WARNING",
    )
    critical_threshold: float = Field(
        default=95.0,
        ge=0.0,
        le=100.0,
        description="Usage percentage at which a limit becomes CRITICAL",
    )

    @model_validator(mode="after")
    def _check_ordering(self) -> "LimitsConfig":
        if self.warning_threshold > self.critical_threshold:
            raise ValueError(
                "warning_threshold must be <= critical_threshold "
                f"(got {self.warning_threshold} > {self.critical_threshold})"
            )
        return self

    def thresholds(self) -> Thresholds:
        """Build the immutable threshold pair used by the classifier."""
        return Thresholds(
            warning=self.warning_threshold,
            critical=self.critical_threshold,
        )
