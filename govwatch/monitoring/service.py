"""Limit monitoring service.

Wires fetch -> classify -> alert for the org's governor limits, either as
a one-shot check or continuously through a ``Poller``. Each continuous
tick publishes ``LimitsChecked`` (or ``ErrorEvent`` when the fetch
failed) on ``events``; a failed tick never stops monitoring.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from govwatch.alerts.dispatcher import AlertDispatcher, DeliveryResult
from govwatch.alerts.schemas import AlertEvent
from govwatch.exceptions import TransientFetchError
from govwatch.limits.baseline import FetchRawLimits
from govwatch.limits.classifier import MONITORED_LIMITS, alerting, classify, severity_for
from govwatch.limits.schemas import LimitRecord, Thresholds
from govwatch.observability.metrics import get_metrics
from govwatch.polling.events import ErrorEvent, EventChannel, LimitsChecked
from govwatch.polling.poller import Poller, PollerRegistry

logger = structlog.get_logger(__name__)


@dataclass
class LimitCheckResult:
    """Classified limits from one check.

    Attributes:
        limits: Every monitored limit, highest usage first.
        alert_limits: The WARNING/CRITICAL subset.
        checked_at: When the check ran.
    """

    limits: list[LimitRecord]
    alert_limits: list[LimitRecord]
    checked_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def has_alerts(self) -> bool:
        return bool(self.alert_limits)

    @property
    def severity(self) -> str:
        return severity_for(self.alert_limits)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "checked_at": self.checked_at.isoformat(),
            "has_alerts": self.has_alerts,
            "severity": self.severity,
            "limits": [r.to_dict() for r in self.limits],
            "alert_limits": [r.to_dict() for r in self.alert_limits],
        }


class LimitsMonitor:
    """
    One-shot and continuous limit monitoring for a single org.

    Usage:
        monitor = LimitsMonitor(client.fetch_raw_limits, dispatcher, org="prod")
        result = await monitor.check_limits()
        monitor.start(interval=30)
    """

    def __init__(
        self,
        fetch_raw_limits: FetchRawLimits,
        dispatcher: AlertDispatcher | None = None,
        thresholds: Thresholds | None = None,
        org: str = "default",
        registry: PollerRegistry | None = None,
        jitter: float = 0.0,
    ):
        """
        Initialize monitor.

        Args:
            fetch_raw_limits: Async callable returning the raw limits payload
            dispatcher: Alert dispatcher (None disables alerting)
            thresholds: Classification thresholds
            org: Org label attached to alerts
            registry: Poller registry used for process shutdown
            jitter: Random delay bound added to each interval
        """
        self._fetch = fetch_raw_limits
        self._dispatcher = dispatcher
        self._thresholds = thresholds
        self._org = org
        self._metrics = get_metrics()
        self._poller = Poller(name="limits", jitter=jitter, registry=registry)
        self.events = EventChannel("limits")
        self._last_result: LimitCheckResult | None = None

    @property
    def is_running(self) -> bool:
        return self._poller.is_running

    @property
    def last_result(self) -> LimitCheckResult | None:
        return self._last_result

    async def check_limits(self) -> LimitCheckResult:
        """
        Fetch and classify the monitored limits.

        Raises:
            TransientFetchError: If the fetch fails
        """
        try:
            raw = await self._fetch()
        except TransientFetchError:
            self._metrics.limit_fetch_errors.inc()
            raise
        except Exception as e:
            self._metrics.limit_fetch_errors.inc()
            raise TransientFetchError(f"Failed to fetch limits: {e}") from e

        limits = classify(raw, self._thresholds, allowed=MONITORED_LIMITS)
        for record in limits:
            self._metrics.set_limit_usage(record.key, record.percentage)

        result = LimitCheckResult(limits=limits, alert_limits=alerting(limits))
        self._last_result = result
        return result

    async def check_and_alert(
        self,
        limits: list[LimitRecord],
    ) -> tuple[list[LimitRecord], list[DeliveryResult]]:
        """
        Dispatch one alert covering every WARNING/CRITICAL limit.

        Args:
            limits: Classified limits

        Returns:
            Tuple of (alerting limits, per-channel delivery results)
        """
        alert_limits = alerting(limits)
        if not alert_limits or self._dispatcher is None:
            return alert_limits, []

        event = AlertEvent.from_limits(alert_limits, org=self._org)
        logger.info(
            "Limits above threshold",
            org=self._org,
            severity=event.severity,
            count=len(alert_limits),
        )
        deliveries = await self._dispatcher.dispatch(event)
        return alert_limits, deliveries

    def start(self, interval: float) -> bool:
        """
        Start continuous monitoring.

        Args:
            interval: Seconds between checks

        Returns:
            True if started, False if already running
        """
        started = self._poller.start(interval, self._tick)
        if started:
            logger.info("Limit monitoring started", org=self._org, interval=interval)
        return started

    def stop(self) -> None:
        """Stop continuous monitoring. Idempotent."""
        self._poller.stop()

    async def wait(self) -> None:
        """Wait until the monitoring loop exits."""
        await self._poller.wait()

    async def _tick(self) -> LimitCheckResult | None:
        try:
            result = await self.check_limits()
        except TransientFetchError as e:
            logger.warning("Limit check failed", org=self._org, error=str(e))
            await self.events.publish(ErrorEvent(kind="monitoring", error=str(e)))
            return None

        await self.check_and_alert(result.limits)
        await self.events.publish(LimitsChecked(result=result))
        return result
