"""Pytest fixtures for govwatch tests."""

from typing import Any

import pytest

from govwatch.config.settings import Settings
from govwatch.limits import LimitRecord, classify
from govwatch.observability.logging import clear_context


@pytest.fixture(autouse=True)
def _clean_log_context():
    """Keep structlog context variables from leaking between tests."""
    yield
    clear_context()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        sf_instance_url="https://acme.my.salesforce.com",
        sf_access_token="00D-test-token",
        max_http_retries=2,
    )


@pytest.fixture
def raw_limits() -> dict[str, Any]:
    """A /limits payload with one limit in each status band."""
    return {
        "DailyApiRequests": {"Max": 100000, "Remaining": 15000},
        "DataStorageMB": {"Max": 1024, "Remaining": 30},
        "FileStorageMB": {"Max": 2048, "Remaining": 2000},
        "DailyAsyncApexExecutions": {"Max": 250000, "Remaining": 250000},
        "ConcurrentAsyncGetReportInstances": {"Max": 200, "Remaining": 200},
        "DailyScratchOrgs": {"Max": None, "Remaining": None},
    }


@pytest.fixture
def classified(raw_limits) -> list[LimitRecord]:
    return classify(raw_limits)

