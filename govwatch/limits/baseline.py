"""Baseline capture and delta computation.

Deltas are tracked for a smaller set of high-signal limits than the
classifier monitors. ``capture`` and ``delta`` are pure; ``BaselineTracker``
adds the fetch step and holds the current baseline for one session.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from govwatch.exceptions import TransientFetchError
from govwatch.limits.classifier import classify
from govwatch.limits.schemas import Baseline, Delta, LimitRecord, RawLimitMap, Thresholds

logger = logging.getLogger(__name__)

BASELINE_LIMITS: tuple[str, ...] = (
    "DailyApiRequests",
    "DailyAsyncApexExecutions",
    "DataStorageMB",
    "FileStorageMB",
)

FetchRawLimits = Callable[[], Awaitable[RawLimitMap]]


def _by_key(records: Iterable[LimitRecord] | Mapping[str, LimitRecord]) -> dict[str, LimitRecord]:
    if isinstance(records, Mapping):
        return dict(records)
    return {r.key: r for r in records}


def snapshot(
    records: Iterable[LimitRecord] | Mapping[str, LimitRecord],
    allowed: Iterable[str] = BASELINE_LIMITS,
) -> dict[str, LimitRecord]:
    """Keep only the delta-tracked limits, keyed by raw limit name."""
    allowed_set = frozenset(allowed)
    return {k: r for k, r in _by_key(records).items() if k in allowed_set}


def capture(
    metrics: Iterable[LimitRecord] | Mapping[str, LimitRecord],
    context: Any = None,
    allowed: Iterable[str] = BASELINE_LIMITS,
) -> Baseline:
    """Snapshot the delta-tracked subset of ``metrics`` into a Baseline."""
    return Baseline(metrics=snapshot(metrics, allowed), context=context)


def trend_for(used_delta: int) -> str:
    if used_delta > 0:
        return "increasing"
    if used_delta < 0:
        return "decreasing"
    return "stable"


def delta(
    baseline: Baseline | None,
    current: Iterable[LimitRecord] | Mapping[str, LimitRecord],
) -> dict[str, Delta]:
    """Compare current records to their baseline entries.

    Metrics missing from the baseline are omitted. A missing baseline
    yields an empty mapping.

    Args:
        baseline: Session baseline, or None if capture failed.
        current: Current records (list or mapping keyed by raw name).

    Returns:
        Mapping of raw limit name to Delta.
    """
    if baseline is None:
        return {}

    deltas: dict[str, Delta] = {}
    for key, record in _by_key(current).items():
        reference = baseline.metrics.get(key)
        if reference is None:
            continue
        used_delta = record.used - reference.used
        deltas[key] = Delta(
            used_delta=used_delta,
            percentage_delta=round(record.percentage - reference.percentage, 2),
            trend=trend_for(used_delta),
        )
    return deltas


class BaselineTracker:
    """Holds the baseline for one correlation session.

    ``capture_from_source`` is all-or-nothing: on a failed fetch the
    previously held baseline (if any) is left untouched and a
    ``TransientFetchError`` propagates to the caller.
    """

    def __init__(
        self,
        fetch_raw_limits: FetchRawLimits,
        thresholds: Thresholds | None = None,
        allowed: Iterable[str] = BASELINE_LIMITS,
    ) -> None:
        self._fetch = fetch_raw_limits
        self._thresholds = thresholds
        self._allowed = tuple(allowed)
        self._baseline: Baseline | None = None

    @property
    def baseline(self) -> Baseline | None:
        return self._baseline

    async def fetch_current(self) -> dict[str, LimitRecord]:
        """Fetch and classify limits, keeping only the delta-tracked subset.

        Raises:
            TransientFetchError: If the fetch fails.
        """
        try:
            raw = await self._fetch()
        except TransientFetchError:
            raise
        except Exception as e:
            raise TransientFetchError(f"Failed to fetch limits: {e}") from e
        records = classify(raw, self._thresholds, allowed=self._allowed)
        return snapshot(records, self._allowed)

    async def capture_from_source(self, context: Any = None) -> Baseline:
        """Fetch limits and replace the held baseline.

        Raises:
            TransientFetchError: If the fetch fails; the prior baseline is kept.
        """
        current = await self.fetch_current()
        self._baseline = capture(current, context=context, allowed=self._allowed)
        logger.info(
            "Baseline captured with %d metrics", len(self._baseline.metrics),
        )
        return self._baseline

    def delta(self, current: Iterable[LimitRecord] | Mapping[str, LimitRecord]) -> dict[str, Delta]:
        """Delta of ``current`` against the held baseline."""
        return delta(self._baseline, current)
