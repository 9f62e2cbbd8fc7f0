"""Continuous and one-shot limit monitoring."""

from govwatch.monitoring.service import LimitCheckResult, LimitsMonitor

__all__ = ["LimitCheckResult", "LimitsMonitor"]
