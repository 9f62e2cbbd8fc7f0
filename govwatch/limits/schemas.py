"""Schema definitions for governor limit records, baselines, and deltas.

A ``RawLimitMap`` is the untrusted payload returned by the org's limits
endpoint. The classifier turns it into ``LimitRecord`` objects; the
baseline tracker snapshots a subset of those into a ``Baseline`` and
compares later records against it, producing ``Delta`` values.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping

from govwatch.exceptions import ConfigurationError

RawLimitMap = Mapping[str, Any]

Trend = Literal["increasing", "decreasing", "stable"]


class LimitStatus(str, Enum):
    """Threshold classification of a single limit, ordered OK < WARNING < CRITICAL."""

    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @property
    def severity(self) -> str:
        """Alert severity corresponding to this status."""
        return _STATUS_SEVERITY[self]


_STATUS_RANK = {
    LimitStatus.OK: 0,
    LimitStatus.WARNING: 1,
    LimitStatus.CRITICAL: 2,
}

_STATUS_SEVERITY = {
    LimitStatus.OK: "info",
    LimitStatus.WARNING: "warning",
    LimitStatus.CRITICAL: "critical",
}


@dataclass(frozen=True)
class Thresholds:
    """Warning and critical usage percentages.

    Attributes:
        warning: Percentage at or above which a limit is WARNING.
        critical: Percentage at or above which a limit is CRITICAL.
    """

    warning: float = 80.0
    critical: float = 95.0

    def __post_init__(self) -> None:
        if not 0.0 <= self.warning <= self.critical <= 100.0:
            raise ConfigurationError(
                f"Invalid thresholds warning={self.warning} "
                f"critical={self.critical}: expected 0 <= warning <= critical <= 100"
            )


@dataclass(frozen=True)
class LimitRecord:
    """A classified governor limit.

    Attributes:
        key: Raw API name (e.g. ``DailyApiRequests``).
        name: Human-readable name (e.g. ``Daily Api Requests``).
        used: Units consumed (``max - remaining``, or 0 when remaining is unknown).
        max: Ceiling reported by the API.
        remaining: Units left, if reported.
        percentage: ``used / max * 100`` rounded to 2 decimals (0 when max is 0).
        status: Threshold classification.
    """

    key: str
    name: str
    used: int
    max: int
    remaining: int | None
    percentage: float
    status: LimitStatus

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "key": self.key,
            "name": self.name,
            "used": self.used,
            "max": self.max,
            "remaining": self.remaining,
            "percentage": self.percentage,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Baseline:
    """Point-in-time snapshot used as the reference for delta computation.

    Attributes:
        metrics: Snapshot records keyed by raw limit name (read-only).
        context: Opaque caller context (e.g. org info).
        captured_at: When the snapshot was taken.
    """

    metrics: Mapping[str, LimitRecord]
    context: Any = None
    captured_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "metrics", MappingProxyType(dict(self.metrics)))

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "captured_at": self.captured_at.isoformat(),
            "metrics": {k: r.to_dict() for k, r in self.metrics.items()},
            "context": self.context,
        }


@dataclass(frozen=True)
class Delta:
    """Change of one metric relative to its baseline entry."""

    used_delta: int
    percentage_delta: float
    trend: Trend

    def to_dict(self) -> dict[str, Any]:
        return {
            "used_delta": self.used_delta,
            "percentage_delta": self.percentage_delta,
            "trend": self.trend,
        }
