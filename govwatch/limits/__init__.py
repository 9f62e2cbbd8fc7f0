"""Governor limit classification and baseline tracking.

Components:
- LimitRecord / LimitStatus / Thresholds: Classified limit types
- classify: Pure raw-payload -> sorted records classifier
- Baseline / Delta / BaselineTracker: Snapshot and delta computation
- LimitsConfig: Pydantic settings for thresholds
"""

from govwatch.limits.baseline import BASELINE_LIMITS, BaselineTracker, capture, delta
from govwatch.limits.classifier import (
    MONITORED_LIMITS,
    alerting,
    classify,
    classify_status,
    format_limit_name,
    severity_for,
)
from govwatch.limits.config import LimitsConfig
from govwatch.limits.schemas import Baseline, Delta, LimitRecord, LimitStatus, Thresholds

__all__ = [
    "BASELINE_LIMITS",
    "Baseline",
    "BaselineTracker",
    "Delta",
    "LimitRecord",
    "LimitStatus",
    "LimitsConfig",
    "MONITORED_LIMITS",
    "Thresholds",
    "alerting",
    "capture",
    "classify",
    "classify_status",
    "delta",
    "format_limit_name",
    "severity_for",
]
