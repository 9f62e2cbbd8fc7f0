"""Notification channel implementations for alert delivery.

Provides an ABC for notification channels plus concrete implementations
for the console, SMTP email, Slack and generic webhooks. Channels raise
``ChannelDeliveryError`` when delivery fails; retry and fan-out policy
live in the dispatcher.
"""

import asyncio
import html
import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import click
import httpx

from govwatch import __version__
from govwatch.alerts.config import AlertConfig, EmailConfig, SlackConfig, WebhookConfig
from govwatch.alerts.schemas import AlertEvent
from govwatch.exceptions import ChannelDeliveryError, ConfigurationError

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    "critical": "\U0001F6A8",
    "warning": "⚠️",
    "info": "ℹ️",
}

SEVERITY_COLOR = {
    "critical": "#d9534f",
    "warning": "#f0ad4e",
    "info": "#5bc0de",
}

_CONSOLE_COLOR = {
    "critical": "red",
    "warning": "yellow",
    "info": "cyan",
}


def _affected(event: AlertEvent) -> list[str]:
    return [f"{r.name}: {r.percentage}% ({r.used}/{r.max})" for r in event.limits]


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (e.g. 'webhook', 'slack')."""

    @abstractmethod
    async def send(self, event: AlertEvent) -> None:
        """Deliver an alert through this channel.

        Args:
            event: Alert to deliver.

        Raises:
            ChannelDeliveryError: If delivery failed.
        """


class ConsoleChannel(NotificationChannel):
    """Prints a coloured alert block to the terminal."""

    def __init__(self, err: bool = False) -> None:
        self._err = err

    @property
    def name(self) -> str:
        return "console"

    def format(self, event: AlertEvent) -> list[str]:
        lines = [
            f"ALERT [{event.severity.upper()}]",
            f"Time: {event.timestamp.isoformat()}",
            f"Org: {event.org}",
            "Affected limits:",
        ]
        lines.extend(f"  - {line}" for line in _affected(event))
        lines.append(event.message)
        return lines

    async def send(self, event: AlertEvent) -> None:
        color = _CONSOLE_COLOR.get(event.severity, "white")
        lines = self.format(event)
        click.secho(lines[0], fg=color, bold=True, err=self._err)
        for line in lines[1:]:
            click.secho(line, fg=color, err=self._err)


class EmailChannel(NotificationChannel):
    """Sends an HTML alert email over SMTP.

    ``smtplib`` is blocking, so the SMTP conversation runs in a worker
    thread via ``asyncio.to_thread``.
    """

    def __init__(self, config: EmailConfig | None) -> None:
        if config is None or not config.to:
            raise ConfigurationError("email channel requires a host and at least one recipient")
        self._config = config

    @property
    def name(self) -> str:
        return "email"

    def build_subject(self, event: AlertEvent) -> str:
        emoji = SEVERITY_EMOJI.get(event.severity, "")
        return f"{emoji} govwatch Alert [{event.severity.upper()}] - {event.org}"

    def render_html(self, event: AlertEvent) -> str:
        rows = "".join(
            "<tr>"
            f"<td>{html.escape(r.name)}</td>"
            f"<td>{r.used}</td>"
            f"<td>{r.max}</td>"
            f"<td>{r.percentage}%</td>"
            f"<td>{r.status.value}</td>"
            "</tr>"
            for r in event.limits
        )
        color = SEVERITY_COLOR.get(event.severity, "#777777")
        return f"""
        <html>
        <body style="font-family: Arial, sans-serif;">
            <h2 style="color: {color};">govwatch Alert [{event.severity.upper()}]</h2>
            <p><strong>Org:</strong> {html.escape(event.org)}</p>
            <p><strong>Time:</strong> {event.timestamp.isoformat()}</p>
            <p>{html.escape(event.message)}</p>
            <table border="1" cellpadding="6" style="border-collapse: collapse;">
                <tr><th>Limit</th><th>Used</th><th>Max</th><th>Usage</th><th>Status</th></tr>
                {rows}
            </table>
        </body>
        </html>
        """

    def build_message(self, event: AlertEvent) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = self.build_subject(event)
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(self._config.to)
        msg.attach(MIMEText("\n".join([event.message, *_affected(event)]), "plain"))
        msg.attach(MIMEText(self.render_html(event), "html"))
        return msg

    def _deliver(self, msg: MIMEMultipart) -> None:
        cfg = self._config
        with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds) as server:
            if cfg.use_tls:
                server.starttls()
            if cfg.username and cfg.password:
                server.login(cfg.username, cfg.password)
            server.send_message(msg)

    async def send(self, event: AlertEvent) -> None:
        msg = self.build_message(event)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelDeliveryError(self.name, f"SMTP delivery failed: {e}") from e


class SlackChannel(NotificationChannel):
    """Delivers alerts to Slack via incoming webhook.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    """

    def __init__(self, config: SlackConfig | None) -> None:
        if config is None or not config.webhook_url:
            raise ConfigurationError("slack channel requires a webhook_url")
        self._config = config

    @property
    def name(self) -> str:
        return "slack"

    def build_payload(self, event: AlertEvent) -> dict:
        """Build the attachment payload for an alert."""
        emoji = SEVERITY_EMOJI.get(event.severity, "")
        attachment = {
            "color": SEVERITY_COLOR.get(event.severity, "#777777"),
            "title": f"{emoji} govwatch Alert [{event.severity.upper()}]",
            "text": event.message,
            "fields": [
                {"title": "Org", "value": event.org, "short": True},
                {"title": "Severity", "value": event.severity.upper(), "short": True},
                {
                    "title": "Affected Limits",
                    "value": "\n".join(_affected(event)) or "none",
                    "short": False,
                },
            ],
            "footer": "govwatch",
            "ts": int(event.timestamp.timestamp()),
        }
        payload: dict = {"attachments": [attachment]}
        if self._config.channel:
            payload["channel"] = self._config.channel
        return payload

    async def send(self, event: AlertEvent) -> None:
        payload = self.build_payload(event)
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(self._config.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.name, f"request failed: {e}") from e
        if not resp.is_success:
            raise ChannelDeliveryError(self.name, f"webhook returned {resp.status_code}")


class WebhookChannel(NotificationChannel):
    """Delivers alerts as JSON to an arbitrary HTTP endpoint."""

    def __init__(self, config: WebhookConfig | None) -> None:
        if config is None or not config.url:
            raise ConfigurationError("webhook channel requires a url")
        self._config = config

    @property
    def name(self) -> str:
        return "webhook"

    def build_payload(self, event: AlertEvent) -> dict:
        return {
            "alert": event.to_dict(),
            "source": "govwatch",
            "version": __version__,
        }

    async def send(self, event: AlertEvent) -> None:
        cfg = self._config
        headers = {"Content-Type": "application/json", **cfg.headers}
        try:
            async with httpx.AsyncClient(timeout=cfg.timeout_seconds) as client:
                resp = await client.request(
                    cfg.method,
                    cfg.url,
                    json=self.build_payload(event),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise ChannelDeliveryError(self.name, f"request to {cfg.url} failed: {e}") from e
        if not resp.is_success:
            raise ChannelDeliveryError(
                self.name, f"{cfg.url} returned {resp.status_code}",
            )


def build_channels(config: AlertConfig) -> list[NotificationChannel]:
    """Build the enabled channels, skipping any whose config is missing."""
    factories = {
        "console": lambda: ConsoleChannel(),
        "email": lambda: EmailChannel(config.email),
        "slack": lambda: SlackChannel(config.slack),
        "webhook": lambda: WebhookChannel(config.webhook),
    }
    channels: list[NotificationChannel] = []
    for channel_type in dict.fromkeys(config.types):
        try:
            channels.append(factories[channel_type]())
        except ConfigurationError as e:
            logger.warning("Skipping %s channel: %s", channel_type, e)
    return channels
