"""
Command-line interface for govwatch.

Provides commands to check governor limits, monitor them continuously,
and correlate deployments with limit consumption.

Usage:
    govwatch status                                 # One-shot limits table
    govwatch monitor --continuous --interval 60     # Continuous monitoring
    govwatch deploy -- sf project deploy start ...  # Wrap a deployment
    govwatch watch-deploy 0Af5g00000ABCDE           # Watch a running deployment
    govwatch alerts-test --type slack               # Send a test alert
"""

import asyncio
import json
import signal
import sys
from typing import Any

import click

from govwatch.alerts import AlertConfig, AlertDispatcher, AlertEvent
from govwatch.config.settings import get_settings
from govwatch.deployment import (
    DeploymentConfig,
    DeploymentCorrelator,
    DeployStatusResolver,
)
from govwatch.exceptions import ConfigurationError, TerminalProcessError, TransientFetchError
from govwatch.limits import LimitRecord, LimitsConfig, Thresholds, alerting, classify
from govwatch.monitoring import LimitCheckResult, LimitsMonitor
from govwatch.observability.logging import bind_context, setup_logging
from govwatch.observability.metrics import get_metrics
from govwatch.polling import PollerRegistry
from govwatch.polling.events import (
    BaselineCaptured,
    ErrorEvent,
    LimitsChecked,
    MonitoringStarted,
    MonitoringStopped,
    MonitoringUpdate,
    OperationOutput,
    SessionEvent,
)
from govwatch.salesforce import SalesforceClient

STATUS_COLOR = {
    "OK": "green",
    "WARNING": "yellow",
    "CRITICAL": "red",
}


def _fail(message: str, code: int = 1) -> None:
    click.echo(click.style(message, fg="red"), err=True)
    sys.exit(code)


def _org_label() -> str:
    settings = get_settings()
    return settings.org_alias or settings.sf_instance_url or "default"


def _open_client() -> SalesforceClient:
    try:
        return SalesforceClient.from_settings()
    except ConfigurationError as e:
        _fail(str(e), code=2)


def _thresholds(threshold: float | None) -> Thresholds:
    config = LimitsConfig()
    if threshold is None:
        return config.thresholds()
    return Thresholds(
        warning=threshold,
        critical=max(threshold, config.critical_threshold),
    )


def _install_signal_handlers(registry: PollerRegistry) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, registry.stop_all)


def _render_limits(records: list[LimitRecord]) -> None:
    click.echo(f"\n{'Limit':<36} {'Used':>12} {'Max':>12} {'Usage':>9}  Status")
    click.echo("-" * 80)
    for r in records:
        line = f"{r.name:<36} {r.used:>12,} {r.max:>12,} {r.percentage:>8.2f}%  {r.status.value}"
        click.echo(click.style(line, fg=STATUS_COLOR.get(r.status.value)))
    click.echo("-" * 80)


def _render_result(result: LimitCheckResult, output_format: str) -> None:
    if output_format == "json":
        click.echo(json.dumps(result.to_dict()))
        return

    _render_limits(result.limits)
    if result.has_alerts:
        click.echo(click.style(
            f"{len(result.alert_limits)} limit(s) above threshold ({result.severity})",
            fg=STATUS_COLOR.get(result.severity.upper(), "yellow"),
        ))
    else:
        click.echo(click.style("All limits within thresholds", fg="green"))


def _render_session_event(event: SessionEvent, output_format: str) -> None:
    """Print one deployment session event."""
    if isinstance(event, OperationOutput):
        click.echo(event.data, nl=False, err=event.stream == "stderr")
        return

    if output_format == "json":
        click.echo(json.dumps(event.to_dict()))
        return

    if isinstance(event, BaselineCaptured):
        click.echo(click.style(
            f"Baseline captured ({len(event.baseline.metrics)} metrics)", fg="cyan",
        ))
    elif isinstance(event, MonitoringStarted):
        click.echo(click.style(f"Monitoring deployment {event.operation_id}", fg="cyan"))
    elif isinstance(event, MonitoringUpdate):
        status = event.deployment_status
        parts = []
        if status is not None:
            parts.append(
                f"[{status.state}] components {status.number_components_deployed}/"
                f"{status.number_components_total} tests {status.number_tests_completed}/"
                f"{status.number_tests_total}"
            )
        for key, d in event.deltas.items():
            parts.append(f"{key} {d.used_delta:+d} ({d.percentage_delta:+.2f}%, {d.trend})")
        click.echo(" | ".join(parts))
    elif isinstance(event, MonitoringStopped):
        click.echo(click.style(f"Monitoring stopped: {event.reason}", fg="cyan"))
    elif isinstance(event, ErrorEvent):
        click.echo(click.style(f"Warning ({event.kind}): {event.error}", fg="yellow"), err=True)


def _alert_on_update(dispatcher: AlertDispatcher, org: str):
    """Subscriber that alerts on WARNING/CRITICAL limits seen during a deployment."""

    async def handler(event: MonitoringUpdate) -> None:
        limits = alerting(event.current_limits.values())
        if limits:
            await dispatcher.dispatch(AlertEvent.from_limits(limits, org=org))

    return handler


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """govwatch - Salesforce governor limit monitoring."""
    setup_logging("DEBUG" if debug else None)
    bind_context(org=_org_label())


@main.command()
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
def status(output_format: str) -> None:
    """Show current governor limit usage."""

    async def run() -> None:
        async with _open_client() as client:
            monitor = LimitsMonitor(client.fetch_raw_limits, thresholds=_thresholds(None))
            try:
                result = await monitor.check_limits()
            except TransientFetchError as e:
                _fail(f"Failed to fetch limits: {e}")
            _render_result(result, output_format)

    asyncio.run(run())


@main.command()
@click.option("--interval", default=None, type=float, help="Seconds between checks")
@click.option("--threshold", default=None, type=click.FloatRange(0, 100), help="Warning threshold (%)")
@click.option("--continuous", is_flag=True, help="Keep monitoring until interrupted")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--alerts/--no-alerts", default=True, help="Dispatch alerts for limits above threshold")
@click.option("--metrics/--no-metrics", default=False, help="Enable metrics server")
def monitor(
    interval: float | None,
    threshold: float | None,
    continuous: bool,
    output_format: str,
    alerts: bool,
    metrics: bool,
) -> None:
    """Check limits and alert, once or continuously."""
    settings = get_settings()
    interval = interval or settings.monitor_interval_seconds

    async def run() -> None:
        if metrics:
            get_metrics().start_server()

        dispatcher = AlertDispatcher.from_config() if alerts else None
        registry = PollerRegistry()

        async with _open_client() as client:
            limits_monitor = LimitsMonitor(
                client.fetch_raw_limits,
                dispatcher=dispatcher,
                thresholds=_thresholds(threshold),
                org=_org_label(),
                registry=registry,
            )

            if not continuous:
                try:
                    result = await limits_monitor.check_limits()
                except TransientFetchError as e:
                    _fail(f"Failed to fetch limits: {e}")
                _render_result(result, output_format)
                await limits_monitor.check_and_alert(result.limits)
                return

            def on_event(event: SessionEvent) -> None:
                if isinstance(event, LimitsChecked):
                    _render_result(event.result, output_format)
                elif isinstance(event, ErrorEvent):
                    click.echo(click.style(f"Check failed: {event.error}", fg="yellow"), err=True)

            limits_monitor.events.subscribe(on_event)
            _install_signal_handlers(registry)
            limits_monitor.start(interval)
            await limits_monitor.wait()

    asyncio.run(run())


def _run_correlated(
    action,
    output_format: str,
    alerts: bool,
    metrics: bool,
) -> Any:
    """Build a correlator wired to the org, run ``action(correlator)``."""

    async def run() -> Any:
        if metrics:
            get_metrics().start_server()

        registry = PollerRegistry()
        org = _org_label()

        async with _open_client() as client:
            correlator = DeploymentCorrelator(
                fetch_raw_limits=client.fetch_raw_limits,
                fetch_deploy_status=DeployStatusResolver(
                    client.check_deploy_status, client.query_deploy_request,
                ),
                config=DeploymentConfig(),
                thresholds=_thresholds(None),
                registry=registry,
                fetch_context=client.get_org_info,
            )
            correlator.subscribe(lambda e: _render_session_event(e, output_format))
            if alerts:
                correlator.subscribe(
                    _alert_on_update(AlertDispatcher.from_config(), org), MonitoringUpdate,
                )
            _install_signal_handlers(registry)
            return await action(correlator)

    return asyncio.run(run())


@main.command(context_settings={"ignore_unknown_options": True})
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--alerts/--no-alerts", default=False, help="Dispatch alerts during the deployment")
@click.option("--metrics/--no-metrics", default=False, help="Enable metrics server")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
def deploy(output_format: str, alerts: bool, metrics: bool, command: tuple[str, ...]) -> None:
    """Run a deploy COMMAND and track limit usage while it runs.

    Example: govwatch deploy -- sf project deploy start --target-org prod
    """

    async def action(correlator: DeploymentCorrelator):
        return await correlator.intercept(command[0], list(command[1:]))

    try:
        result = _run_correlated(action, output_format, alerts, metrics)
    except TerminalProcessError as e:
        _fail(str(e), code=e.exit_code or 1)

    label = f"Deployment {result.operation_id}" if result.operation_id else "Deployment"
    click.echo(click.style(f"{label} completed successfully", fg="green"))


@main.command("watch-deploy")
@click.argument("deploy_id")
@click.option("--format", "output_format", type=click.Choice(["table", "json"]), default="table")
@click.option("--alerts/--no-alerts", default=False, help="Dispatch alerts during the deployment")
def watch_deploy(deploy_id: str, output_format: str, alerts: bool) -> None:
    """Track limit usage for an already running deployment."""

    async def action(correlator: DeploymentCorrelator):
        await correlator.monitor_existing(deploy_id)
        await correlator.wait()
        return correlator.session

    session = _run_correlated(action, output_format, alerts, metrics=False)
    if session.stop_reason == "shutdown":
        click.echo("Stopped watching")


@main.command("alerts-test")
@click.option(
    "--type",
    "channel_type",
    type=click.Choice(["console", "email", "slack", "webhook"]),
    default=None,
    help="Only test this channel (default: all configured)",
)
def alerts_test(channel_type: str | None) -> None:
    """Send a sample alert through the configured channels."""
    overrides = {"types": [channel_type]} if channel_type else {}
    try:
        config = AlertConfig(**overrides)
    except ValueError as e:
        _fail(f"Invalid alert configuration: {e}")

    dispatcher = AlertDispatcher.from_config(config)
    if not dispatcher.channels:
        _fail("No alert channels configured")

    sample = classify({
        "DailyApiRequests": {"Max": 100000, "Remaining": 15000},
        "DataStorageMB": {"Max": 1024, "Remaining": 30},
    }, _thresholds(None))
    event = AlertEvent.from_limits(
        alerting(sample),
        message="This is a test alert from govwatch",
        subject_id="alerts-test",
        org=_org_label(),
    )

    results = asyncio.run(dispatcher.dispatch(event))

    click.echo("\nAlert Test Results:")
    click.echo("-" * 40)
    for r in results:
        icon = "✓" if r.success else "✗"
        color = "green" if r.success else "red"
        detail = f" ({r.error})" if r.error else ""
        click.echo(click.style(f"  {icon} {r.channel}{detail}", fg=color))
    click.echo("-" * 40)

    if not all(r.success for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
