"""Alert dispatcher orchestrating delivery across notification channels.

Every enabled channel is attempted concurrently and independently: one
channel failing never prevents the others from delivering, and dispatch
itself never raises. Each channel keeps its own cooldown, so a channel
that failed is not suppressed on the next attempt while the channels
that succeeded are.

Cooldown slots are reserved before the send is awaited and handed back
if it fails, so overlapping dispatches of the same alert deliver once.
Limits still cooling down are dropped from an alert; the rest go out.

Pattern: Orchestrator, delegates to stateless channels.
"""

import asyncio
import logging
from dataclasses import dataclass

from govwatch.alerts.channels import NotificationChannel, build_channels
from govwatch.alerts.config import AlertConfig
from govwatch.alerts.cooldown import CooldownTracker
from govwatch.alerts.schemas import AlertEvent
from govwatch.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of one channel for one alert."""

    channel: str
    success: bool
    suppressed: bool = False
    error: str | None = None


class AlertDispatcher:
    """Fans an alert out to all configured channels.

    Args:
        channels: Channels to deliver through.
        config: Cooldown windows and master switch (or load from env).
        clock: Time source handed to each channel's cooldown tracker.
    """

    def __init__(
        self,
        channels: list[NotificationChannel],
        config: AlertConfig | None = None,
        clock=None,
    ) -> None:
        self._config = config or AlertConfig()
        self._channels = list(channels)
        self._metrics = get_metrics()

        tracker_kwargs = {
            "critical_cooldown": self._config.cooldown_critical_seconds,
            "warning_cooldown": self._config.cooldown_warning_seconds,
            "info_cooldown": self._config.cooldown_info_seconds,
        }
        if clock is not None:
            tracker_kwargs["clock"] = clock
        # Aligned with _channels; names need not be unique.
        self._cooldowns: list[CooldownTracker] = [
            CooldownTracker(**tracker_kwargs) for _ in self._channels
        ]

    @classmethod
    def from_config(cls, config: AlertConfig | None = None) -> "AlertDispatcher":
        """Build a dispatcher with the channels enabled in ``config``."""
        config = config or AlertConfig()
        return cls(build_channels(config), config)

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def cooldown(self, channel_name: str) -> CooldownTracker:
        """Cooldown tracker of the first channel with this name (for inspection/testing)."""
        for channel, tracker in zip(self._channels, self._cooldowns):
            if channel.name == channel_name:
                return tracker
        raise KeyError(channel_name)

    async def dispatch(self, event: AlertEvent) -> list[DeliveryResult]:
        """Send an alert to all channels concurrently.

        Args:
            event: Alert to deliver.

        Returns:
            One DeliveryResult per channel, in channel order.
        """
        if not self._config.enabled or not self._channels:
            return []

        results = await asyncio.gather(
            *(
                self._deliver(ch, tracker, event)
                for ch, tracker in zip(self._channels, self._cooldowns)
            ),
            return_exceptions=True,
        )

        delivered: list[DeliveryResult] = []
        for channel, result in zip(self._channels, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Unexpected error delivering to %s: %s", channel.name, result,
                )
                result = DeliveryResult(channel=channel.name, success=False, error=str(result))
            delivered.append(result)

        self._record_delivery(event, delivered)
        return delivered

    async def dispatch_batch(self, events: list[AlertEvent]) -> None:
        """Send a batch of alerts, isolating failures per alert."""
        for event in events:
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(
                    "Unexpected error dispatching %s alert for %s: %s",
                    event.severity, event.subject, e,
                )

    async def _deliver(
        self,
        channel: NotificationChannel,
        cooldown: CooldownTracker,
        event: AlertEvent,
    ) -> DeliveryResult:
        due = _due_part(event, cooldown)
        if due is None:
            logger.debug(
                "Alert %s (%s) suppressed on %s by cooldown",
                event.subject, event.severity, channel.name,
            )
            self._metrics.record_delivery(channel.name, "suppressed")
            return DeliveryResult(channel=channel.name, success=False, suppressed=True)

        # No await between the cooldown check above and this reservation.
        reservation = cooldown.reserve(due.cooldown_keys)
        try:
            await channel.send(due)
        except Exception as e:
            cooldown.release(reservation)
            logger.warning("Channel %s failed to deliver alert: %s", channel.name, e)
            self._metrics.record_delivery(channel.name, "failed")
            return DeliveryResult(channel=channel.name, success=False, error=str(e))
        except BaseException:
            cooldown.release(reservation)
            raise

        self._metrics.record_delivery(channel.name, "success")
        return DeliveryResult(channel=channel.name, success=True)

    def _record_delivery(
        self,
        event: AlertEvent,
        results: list[DeliveryResult],
    ) -> None:
        successes = [r.channel for r in results if r.success]
        failures = [r.channel for r in results if not r.success and not r.suppressed]

        if failures and not successes:
            logger.error(
                "Alert %s (%s) failed ALL attempted channels: %s",
                event.subject, event.severity, failures,
            )
        elif failures:
            logger.warning(
                "Alert %s partial delivery: ok=%s failed=%s",
                event.subject, successes, failures,
            )
        else:
            logger.debug(
                "Alert %s delivered: %s", event.subject, successes,
            )


def _due_part(event: AlertEvent, cooldown: CooldownTracker) -> AlertEvent | None:
    """The part of ``event`` not suppressed by ``cooldown``, or None."""
    if event.subject_id or not event.limits:
        if cooldown.should_send(event.subject, event.severity):
            return event
        return None

    due = [r for r in event.limits if cooldown.should_send(r.key, r.status.severity)]
    if not due:
        return None
    if len(due) == len(event.limits):
        return event
    return event.narrowed(due)
