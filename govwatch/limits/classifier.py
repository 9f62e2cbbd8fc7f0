"""Stateless classification of raw governor limit counters.

Turns the org's ``/limits`` payload into sorted ``LimitRecord`` objects.
No I/O, no logging, no state: malformed entries are skipped rather than
reported, so a partially broken payload still yields every usable limit.

Follows the trigger-function pattern of pure, trivially testable helpers.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from govwatch.limits.schemas import LimitRecord, LimitStatus, RawLimitMap, Thresholds

MONITORED_LIMITS: tuple[str, ...] = (
    "DailyApiRequests",
    "DailyAsyncApexExecutions",
    "DailyBulkApiRequests",
    "DailyScratchOrgs",
    "DailyStreamingApiEvents",
    "DailyWorkflowEmails",
    "DataStorageMB",
    "FileStorageMB",
    "HourlyAsyncReportRuns",
    "HourlyDashboardRefreshes",
    "HourlyDashboardResults",
    "HourlyDashboardStatuses",
    "HourlyODataCallout",
    "HourlySyncReportRuns",
    "HourlyTimeBasedWorkflow",
    "MassEmail",
    "MonthlyPlatformEventsUsedMB",
    "SingleEmail",
    "StreamingApiConcurrentClients",
)

DEFAULT_THRESHOLDS = Thresholds()

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def format_limit_name(key: str) -> str:
    """Split a CamelCase limit key into words.

    ``DailyApiRequests`` -> ``Daily Api Requests``,
    ``DataStorageMB`` -> ``Data Storage MB``.
    """
    spaced = _WORD_BOUNDARY.sub(" ", key).strip()
    return spaced[:1].upper() + spaced[1:]


def classify_status(percentage: float, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> LimitStatus:
    """Classify a usage percentage against warning/critical thresholds.

    Monotonic: a higher percentage never yields a lower status.
    """
    if percentage >= thresholds.critical:
        return LimitStatus.CRITICAL
    if percentage >= thresholds.warning:
        return LimitStatus.WARNING
    return LimitStatus.OK


def _field(entry: Mapping[str, Any], name: str) -> Any:
    # The API uses "Max"/"Remaining"; accept lower-case keys from other callers.
    if name in entry:
        return entry[name]
    return entry.get(name.lower())


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def build_record(
    key: str,
    entry: Any,
    thresholds: Thresholds = DEFAULT_THRESHOLDS,
) -> LimitRecord | None:
    """Build a single record, or None when the entry is not usable.

    Args:
        key: Raw limit name.
        entry: Raw ``{"Max": ..., "Remaining": ...}`` mapping.
        thresholds: Classification thresholds.

    Returns:
        LimitRecord, or None for a missing/null ``Max`` or a malformed entry.
    """
    if not isinstance(entry, Mapping):
        return None

    max_value = _as_int(_field(entry, "Max"))
    if max_value is None:
        return None

    remaining = _as_int(_field(entry, "Remaining"))
    used = max_value - remaining if remaining is not None else 0

    if max_value > 0:
        percentage = min(max(used / max_value * 100, 0.0), 100.0)
    else:
        percentage = 0.0

    return LimitRecord(
        key=key,
        name=format_limit_name(key),
        used=used,
        max=max_value,
        remaining=remaining,
        percentage=round(percentage, 2),
        status=classify_status(percentage, thresholds),
    )


def classify(
    raw: RawLimitMap,
    thresholds: Thresholds | None = None,
    allowed: Iterable[str] = MONITORED_LIMITS,
) -> list[LimitRecord]:
    """Classify a raw limits payload.

    Args:
        raw: Mapping of limit name to ``{"Max", "Remaining"}``.
        thresholds: Classification thresholds (defaults to 80/95).
        allowed: Limit names to keep; everything else is ignored.

    Returns:
        Records sorted by percentage descending. Ties keep payload order.
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    allowed_set = frozenset(allowed)

    records: list[LimitRecord] = []
    for key, entry in raw.items():
        if key not in allowed_set:
            continue
        record = build_record(key, entry, thresholds)
        if record is not None:
            records.append(record)

    return sorted(records, key=lambda r: r.percentage, reverse=True)


def alerting(records: Iterable[LimitRecord]) -> list[LimitRecord]:
    """Return the records at WARNING or CRITICAL status, preserving order."""
    return [r for r in records if r.status is not LimitStatus.OK]


def severity_for(records: Iterable[LimitRecord]) -> str:
    """Return the highest alert severity across records (``info`` when all are OK)."""
    worst = LimitStatus.OK
    for record in records:
        if record.status.rank > worst.rank:
            worst = record.status
    return worst.severity
