"""Schema definitions for limit alerts.

An alert bundles the limits that crossed a threshold at one sampling
moment. Severity is derived from the worst included limit unless given
explicitly.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal

from govwatch.limits.classifier import severity_for
from govwatch.limits.schemas import LimitRecord

AlertSeverity = Literal["critical", "warning", "info"]

VALID_SEVERITIES: frozenset[str] = frozenset({
    "critical",
    "warning",
    "info",
})


def default_message(limits: list[LimitRecord]) -> str:
    """Human-readable summary line for a set of limits."""
    if not limits:
        return "No limits above threshold"
    names = ", ".join(f"{r.name} ({r.percentage}%)" for r in limits)
    return f"{len(limits)} limit(s) above threshold: {names}"


@dataclass
class AlertEvent:
    """A notification about limits above threshold.

    Attributes:
        severity: Urgency level (critical, warning, info).
        limits: Limit records included in the alert.
        message: Human-readable summary.
        subject_id: Cooldown subject; derived from limit keys when None.
        org: Org label shown by channels.
        timestamp: When the alert was generated.
    """

    severity: str
    limits: list[LimitRecord]
    message: str
    subject_id: str | None = None
    org: str = "default"
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def __post_init__(self) -> None:
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )

    @classmethod
    def from_limits(
        cls,
        limits: list[LimitRecord],
        message: str | None = None,
        subject_id: str | None = None,
        org: str = "default",
    ) -> "AlertEvent":
        """Build an alert whose severity is the max across ``limits``."""
        limits = list(limits)
        return cls(
            severity=severity_for(limits),
            limits=limits,
            message=message or default_message(limits),
            subject_id=subject_id,
            org=org,
        )

    @property
    def subject(self) -> str:
        """Key used for cooldown suppression."""
        if self.subject_id:
            return self.subject_id
        return ",".join(sorted(r.key for r in self.limits))

    @property
    def cooldown_keys(self) -> list[tuple[str, str]]:
        """(subject, severity) pairs this alert occupies in a cooldown tracker.

        Limit alerts are suppressed per limit, so a newly crossing limit does
        not re-announce the ones still cooling down. An explicit ``subject_id``
        keys the whole alert.
        """
        if self.subject_id or not self.limits:
            return [(self.subject, self.severity)]
        return [(r.key, r.status.severity) for r in self.limits]

    def narrowed(self, limits: list[LimitRecord]) -> "AlertEvent":
        """Copy of this alert carrying only ``limits``."""
        message = self.message
        if message == default_message(self.limits):
            message = default_message(limits)
        return replace(
            self, limits=list(limits), severity=severity_for(limits), message=message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "severity": self.severity,
            "timestamp": self.timestamp.isoformat(),
            "org": self.org,
            "message": self.message,
            "subject": self.subject,
            "limits": [r.to_dict() for r in self.limits],
        }
