"""Alert delivery for limits above threshold.

Components:
- AlertEvent: Alert payload with severity derived from its limits
- CooldownTracker: Per (subject, severity) fatigue suppression
- NotificationChannel: Console, email, Slack and webhook delivery
- AlertDispatcher: Concurrent fan-out with per-channel cooldown
- AlertConfig: Pydantic settings for channels and cooldowns
"""

from govwatch.alerts.channels import (
    ConsoleChannel,
    EmailChannel,
    NotificationChannel,
    SlackChannel,
    WebhookChannel,
    build_channels,
)
from govwatch.alerts.config import AlertConfig, EmailConfig, SlackConfig, WebhookConfig
from govwatch.alerts.cooldown import CooldownTracker
from govwatch.alerts.dispatcher import AlertDispatcher, DeliveryResult
from govwatch.alerts.schemas import VALID_SEVERITIES, AlertEvent, AlertSeverity

__all__ = [
    "AlertConfig",
    "AlertDispatcher",
    "AlertEvent",
    "AlertSeverity",
    "ConsoleChannel",
    "CooldownTracker",
    "DeliveryResult",
    "EmailChannel",
    "EmailConfig",
    "NotificationChannel",
    "SlackChannel",
    "VALID_SEVERITIES",
    "WebhookChannel",
    "build_channels",
]
