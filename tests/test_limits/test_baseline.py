"""Tests for baseline capture and delta computation."""

from unittest.mock import AsyncMock

import pytest

from govwatch.exceptions import TransientFetchError
from govwatch.limits import BASELINE_LIMITS, BaselineTracker, capture, classify, delta


def _records(used: int, storage_used: int = 500):
    return classify({
        "DailyApiRequests": {"Max": 100000, "Remaining": 100000 - used},
        "DataStorageMB": {"Max": 1000, "Remaining": 1000 - storage_used},
        "MassEmail": {"Max": 10, "Remaining": 5},
    })


class TestCapture:
    def test_keeps_only_baseline_limits(self):
        baseline = capture(_records(1000), context={"Name": "Acme"})

        assert set(baseline.metrics) == {"DailyApiRequests", "DataStorageMB"}
        assert set(baseline.metrics) <= set(BASELINE_LIMITS)
        assert baseline.context == {"Name": "Acme"}

    def test_metrics_read_only(self):
        baseline = capture(_records(1000))
        with pytest.raises(TypeError):
            baseline.metrics["DailyApiRequests"] = None

    def test_to_dict(self):
        data = capture(_records(1000)).to_dict()
        assert data["metrics"]["DailyApiRequests"]["used"] == 1000
        assert "captured_at" in data


class TestDelta:
    def test_example_from_baseline(self):
        """used 1000 -> 1500 of 100000 is +500, +0.5%, increasing."""
        baseline = capture(_records(1000))
        deltas = delta(baseline, _records(1500))

        api = deltas["DailyApiRequests"]
        assert api.used_delta == 500
        assert api.percentage_delta == 0.5
        assert api.trend == "increasing"

    def test_trends(self):
        baseline = capture(_records(1000, storage_used=500))
        deltas = delta(baseline, _records(1000, storage_used=400))

        assert deltas["DailyApiRequests"].trend == "stable"
        assert deltas["DailyApiRequests"].used_delta == 0
        assert deltas["DataStorageMB"].trend == "decreasing"
        assert deltas["DataStorageMB"].percentage_delta == -10.0

    def test_metrics_missing_from_baseline_omitted(self):
        baseline = capture(classify({"DailyApiRequests": {"Max": 100, "Remaining": 90}}))
        deltas = delta(baseline, _records(1500))
        assert set(deltas) == {"DailyApiRequests"}

    def test_no_baseline_yields_empty(self):
        assert delta(None, _records(1500)) == {}

    def test_accepts_mapping(self):
        baseline = capture(_records(1000))
        current = {r.key: r for r in _records(2000)}
        assert delta(baseline, current)["DailyApiRequests"].used_delta == 1000


class TestBaselineTracker:
    @pytest.mark.asyncio
    async def test_capture_from_source(self, raw_limits):
        tracker = BaselineTracker(AsyncMock(return_value=raw_limits))

        baseline = await tracker.capture_from_source(context="ctx")

        assert tracker.baseline is baseline
        assert baseline.context == "ctx"
        assert baseline.metrics["DailyApiRequests"].used == 85000

    @pytest.mark.asyncio
    async def test_failed_capture_keeps_prior_baseline(self, raw_limits):
        fetch = AsyncMock(side_effect=[raw_limits, RuntimeError("boom")])
        tracker = BaselineTracker(fetch)

        first = await tracker.capture_from_source()
        with pytest.raises(TransientFetchError):
            await tracker.capture_from_source()

        assert tracker.baseline is first

    @pytest.mark.asyncio
    async def test_transient_error_passes_through(self):
        error = TransientFetchError("down", status_code=503)
        tracker = BaselineTracker(AsyncMock(side_effect=error))

        with pytest.raises(TransientFetchError) as exc_info:
            await tracker.fetch_current()

        assert exc_info.value is error
        assert tracker.baseline is None

    @pytest.mark.asyncio
    async def test_delta_against_held_baseline(self):
        fetch = AsyncMock(side_effect=[
            {"DailyApiRequests": {"Max": 100000, "Remaining": 99000}},
            {"DailyApiRequests": {"Max": 100000, "Remaining": 98500}},
        ])
        tracker = BaselineTracker(fetch)

        await tracker.capture_from_source()
        current = await tracker.fetch_current()

        assert tracker.delta(current)["DailyApiRequests"].used_delta == 500
