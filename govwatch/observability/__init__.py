"""Observability layer - logging and metrics."""

from govwatch.observability.logging import setup_logging
from govwatch.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
