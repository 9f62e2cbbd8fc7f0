"""
Prometheus metrics for monitoring the sampling and alert pipeline.

Defines and exposes metrics for:
- Poll ticks and tick failures per poller
- Current limit usage
- Deployment status checks and fallbacks
- Alert delivery outcomes and suppression

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from govwatch.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for govwatch.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_tick("limits", latency=0.4)
        metrics.set_limit_usage("DailyApiRequests", 85.0)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Polling
        self.poll_ticks = Counter(
            "govwatch_poll_ticks_total",
            "Total poll callback invocations",
            ["poller"],
        )

        self.poll_errors = Counter(
            "govwatch_poll_errors_total",
            "Total poll callback invocations that raised",
            ["poller", "error_type"],
        )

        self.tick_latency = Histogram(
            "govwatch_tick_latency_seconds",
            "Time spent inside one poll callback",
            ["poller"],
            buckets=LATENCY_BUCKETS,
        )

        # Limits
        self.limit_usage = Gauge(
            "govwatch_limit_usage_percent",
            "Most recent usage percentage per governor limit",
            ["limit"],
        )

        self.limit_fetch_errors = Counter(
            "govwatch_limit_fetch_errors_total",
            "Total failed limit fetches",
        )

        # Deployments
        self.status_checks = Counter(
            "govwatch_deploy_status_checks_total",
            "Deployment status checks by resolution path",
            ["source"],  # api, record, none
        )

        self.deployment_sessions = Counter(
            "govwatch_deployment_sessions_total",
            "Deployment sessions by outcome",
            ["outcome"],  # completed, failed, error
        )

        # Alerts
        self.alerts_delivered = Counter(
            "govwatch_alerts_delivered_total",
            "Alert deliveries by channel and outcome",
            ["channel", "outcome"],  # outcome: success, failed, suppressed
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_tick(self, poller: str, latency: float | None = None) -> None:
        """
        Record one poll callback invocation.

        Args:
            poller: Poller name
            latency: Optional callback duration in seconds
        """
        self.poll_ticks.labels(poller=poller).inc()
        if latency is not None:
            self.tick_latency.labels(poller=poller).observe(latency)

    def record_tick_error(self, poller: str, error_type: str) -> None:
        """Record a poll callback that raised."""
        self.poll_errors.labels(poller=poller, error_type=error_type).inc()

    def set_limit_usage(self, limit: str, percentage: float) -> None:
        """
        Set the usage gauge for one limit.

        Args:
            limit: Raw limit key (e.g., DailyApiRequests)
            percentage: Usage percentage
        """
        self.limit_usage.labels(limit=limit).set(percentage)

    def record_status_check(self, source: str) -> None:
        """Record which path resolved a deployment status check."""
        self.status_checks.labels(source=source).inc()

    def record_session(self, outcome: str) -> None:
        """Record the outcome of a deployment session."""
        self.deployment_sessions.labels(outcome=outcome).inc()

    def record_delivery(self, channel: str, outcome: str) -> None:
        """
        Record an alert delivery attempt.

        Args:
            channel: Channel name
            outcome: success, failed, or suppressed
        """
        self.alerts_delivered.labels(channel=channel, outcome=outcome).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
