"""Alert delivery configuration.

Controls which channels are enabled, per-severity cooldown windows, and the
per-channel connection details. All settings can be overridden via
``ALERTS_*`` environment variables; nested channel settings use ``__``
(e.g. ``ALERTS_SLACK__WEBHOOK_URL``, ``ALERTS_EMAIL__TO='["ops@example.com"]'``).
"""

from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ChannelType = Literal["console", "email", "slack", "webhook"]


class EmailConfig(BaseModel):
    """SMTP connection and recipients."""

    host: str
    port: int = Field(default=587, ge=1, le=65535)
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    from_address: str = "govwatch@localhost"
    to: list[str] = Field(default_factory=list)
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class SlackConfig(BaseModel):
    """Slack incoming webhook."""

    webhook_url: str
    channel: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class WebhookConfig(BaseModel):
    """Generic HTTP webhook."""

    url: str
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class AlertConfig(BaseSettings):
    """Configuration for alert delivery."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    enabled: bool = Field(
        default=True,
        description="Master switch; dispatch is a no-op when disabled",
    )
    types: list[ChannelType] = Field(
        default_factory=lambda: ["console"],
        description="Channels to deliver through",
    )

    # Per-severity cooldown: the same subject at the same severity is not
    # re-sent on a channel within this window.
    cooldown_critical_seconds: float = Field(
        default=300.0,
        ge=0.0,
        description="Cooldown for critical alerts (5 minutes)",
    )
    cooldown_warning_seconds: float = Field(
        default=600.0,
        ge=0.0,
        description="Cooldown for warning alerts (10 minutes)",
    )
    cooldown_info_seconds: float = Field(
        default=600.0,
        ge=0.0,
        description="Cooldown for info alerts",
    )

    email: EmailConfig | None = None
    slack: SlackConfig | None = None
    webhook: WebhookConfig | None = None

    @model_validator(mode="after")
    def _check_cooldowns(self) -> "AlertConfig":
        if self.cooldown_warning_seconds <= self.cooldown_critical_seconds:
            raise ValueError(
                "cooldown_warning_seconds must exceed cooldown_critical_seconds "
                f"(got {self.cooldown_warning_seconds} <= {self.cooldown_critical_seconds})"
            )
        return self
