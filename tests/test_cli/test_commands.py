"""Tests for the govwatch CLI commands."""

import json
import sys
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from govwatch.cli import main
from govwatch.exceptions import ConfigurationError, TransientFetchError

DEPLOY_ID = "0Af5g00000ABCDE"


# ── Fixtures ──────────────────────────────────────────────


class FakeClient:
    """Stands in for SalesforceClient as an async context manager."""

    def __init__(self, raw_limits=None, error=None, deploy_result=None):
        self.raw_limits = raw_limits or {}
        self.error = error
        self.deploy_result = deploy_result or {
            "done": True,
            "success": True,
            "status": "Succeeded",
            "numberComponentsDeployed": 3,
            "numberComponentsTotal": 3,
        }
        self.status_checks = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def fetch_raw_limits(self):
        if self.error is not None:
            raise self.error
        return self.raw_limits

    async def check_deploy_status(self, deploy_id):
        self.status_checks += 1
        return self.deploy_result

    async def query_deploy_request(self, deploy_id):
        return None

    async def get_org_info(self):
        return {"Name": "Acme"}


@pytest.fixture
def runner():
    return CliRunner()


def _patch_client(client):
    return patch("govwatch.cli.SalesforceClient.from_settings", return_value=client)


def _json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


# ── status ────────────────────────────────────────────────


class TestStatus:
    def test_table(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 0, result.output
        assert "Data Storage MB" in result.output
        assert "97.07%" in result.output
        assert "2 limit(s) above threshold (critical)" in result.output
        assert "Concurrent" not in result.output

    def test_json(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["status", "--format", "json"])

        assert result.exit_code == 0, result.output
        data = _json_lines(result.output)[-1]
        assert data["severity"] == "critical"
        assert data["limits"][0]["key"] == "DataStorageMB"

    def test_all_ok(self, runner):
        raw = {"DailyApiRequests": {"Max": 100000, "Remaining": 99000}}
        with _patch_client(FakeClient(raw)):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 0
        assert "All limits within thresholds" in result.output

    def test_fetch_failure(self, runner):
        with _patch_client(FakeClient(error=TransientFetchError("503 from org"))):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 1
        assert "Failed to fetch limits: 503 from org" in result.output

    def test_not_configured(self, runner):
        with patch(
            "govwatch.cli.SalesforceClient.from_settings",
            side_effect=ConfigurationError("Salesforce connection not configured"),
        ):
            result = runner.invoke(main, ["status"])

        assert result.exit_code == 2
        assert "not configured" in result.output


# ── monitor ───────────────────────────────────────────────


class TestMonitor:
    def test_one_shot_dispatches_console_alert(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["monitor"])

        assert result.exit_code == 0, result.output
        assert "ALERT [CRITICAL]" in result.output
        assert "Data Storage MB: 97.07% (994/1024)" in result.output

    def test_no_alerts(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["monitor", "--no-alerts"])

        assert result.exit_code == 0
        assert "ALERT [" not in result.output

    def test_threshold_override(self, runner):
        raw = {"DailyApiRequests": {"Max": 100000, "Remaining": 40000}}
        with _patch_client(FakeClient(raw)):
            result = runner.invoke(main, ["monitor", "--no-alerts", "--threshold", "50"])

        assert result.exit_code == 0
        assert "WARNING" in result.output

    def test_threshold_out_of_range(self, runner):
        result = runner.invoke(main, ["monitor", "--threshold", "150"])
        assert result.exit_code == 2


# ── deploy / watch-deploy ─────────────────────────────────


class TestDeploy:
    def test_successful_command(self, runner, raw_limits):
        script = f"print('Deploy ID: {DEPLOY_ID}')"
        client = FakeClient(raw_limits)
        with _patch_client(client):
            result = runner.invoke(main, ["deploy", "--", sys.executable, "-c", script])

        assert result.exit_code == 0, result.output
        assert f"Deploy ID: {DEPLOY_ID}" in result.output
        assert "Baseline captured" in result.output
        assert f"Deployment {DEPLOY_ID} completed successfully" in result.output

    def test_failed_command_propagates_exit_code(self, runner, raw_limits):
        script = "import sys; sys.stderr.write('component error\\n'); sys.exit(3)"
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["deploy", "--", sys.executable, "-c", script])

        assert result.exit_code == 3
        assert "Deployment failed with code 3: component error" in result.output

    def test_missing_executable(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["deploy", "--", "definitely-not-a-real-binary-xyz"])

        assert result.exit_code == 1
        assert "Failed to start" in result.output

    def test_watch_existing_deployment(self, runner, raw_limits):
        client = FakeClient(raw_limits)
        with _patch_client(client):
            result = runner.invoke(main, ["watch-deploy", DEPLOY_ID])

        assert result.exit_code == 0, result.output
        assert f"Monitoring deployment {DEPLOY_ID}" in result.output
        assert "[Succeeded] components 3/3" in result.output
        assert "Monitoring stopped: deployment_done" in result.output
        assert client.status_checks == 1

    def test_watch_json_events(self, runner, raw_limits):
        with _patch_client(FakeClient(raw_limits)):
            result = runner.invoke(main, ["watch-deploy", DEPLOY_ID, "--format", "json"])

        assert result.exit_code == 0, result.output
        types = [e["type"] for e in _json_lines(result.output)]
        assert types[:2] == ["baseline_captured", "monitoring_started"]
        assert "monitoring_update" in types
        assert types[-1] == "monitoring_stopped"


# ── alerts-test ───────────────────────────────────────────


class TestAlertsTest:
    def test_console(self, runner):
        result = runner.invoke(main, ["alerts-test", "--type", "console"])

        assert result.exit_code == 0, result.output
        assert "This is a test alert from govwatch" in result.output
        assert "✓ console" in result.output

    def test_unconfigured_channel(self, runner):
        result = runner.invoke(main, ["alerts-test", "--type", "slack"])

        assert result.exit_code == 1
        assert "No alert channels configured" in result.output
