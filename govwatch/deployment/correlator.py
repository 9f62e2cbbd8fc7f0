"""
Deployment correlator - ties a long-running deployment to limit deltas.

Wraps an external operation (a spawned deploy command, or a deployment id
supplied directly), captures a limits baseline before it starts, and once
the deployment id is known polls deployment status and current limits on
a short interval, emitting a combined ``MonitoringUpdate`` per tick until
the deployment reaches a terminal state.

Features:
- Baseline capture that tolerates failure (deltas degrade, operation proceeds)
- Line-by-line stdout scanning for the deployment id (captured once)
- Concurrent status + limit fetch per tick, partial data still emitted
- Process exit code decides the outcome of ``intercept``
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from govwatch.deployment.config import DeploymentConfig
from govwatch.deployment.process import ProcessHandle, spawn_external_process
from govwatch.deployment.schemas import DeployStatus, OperationSession, ProcessResult
from govwatch.exceptions import TerminalProcessError, TransientFetchError
from govwatch.limits.baseline import BaselineTracker, FetchRawLimits, delta
from govwatch.limits.schemas import Baseline, Thresholds
from govwatch.observability.logging import bind_context
from govwatch.observability.metrics import get_metrics
from govwatch.polling.events import (
    BaselineCaptured,
    ErrorEvent,
    EventChannel,
    MonitoringStarted,
    MonitoringStopped,
    MonitoringUpdate,
    OperationCompleted,
    OperationFailed,
    OperationOutput,
    OperationStarted,
    SessionEvent,
)
from govwatch.polling.poller import Poller, PollerRegistry

logger = structlog.get_logger(__name__)

FetchDeployStatus = Callable[[str], Awaitable[DeployStatus]]
SpawnProcess = Callable[..., Awaitable[ProcessHandle]]
FetchContext = Callable[[], Awaitable[Any]]


class DeploymentCorrelator:
    """
    Correlates one deployment at a time with limit consumption.

    Each session gets its own ``EventChannel``; subscribe before calling
    ``intercept`` or ``monitor_existing``. The channel is closed when the
    session ends, which unsubscribes everyone.

    Usage:
        correlator = DeploymentCorrelator(client.fetch_raw_limits, resolver)
        correlator.subscribe(print_event)
        result = await correlator.intercept("sf", ["project", "deploy", "start"])
    """

    def __init__(
        self,
        fetch_raw_limits: FetchRawLimits,
        fetch_deploy_status: FetchDeployStatus,
        spawn_process: SpawnProcess = spawn_external_process,
        config: DeploymentConfig | None = None,
        thresholds: Thresholds | None = None,
        registry: PollerRegistry | None = None,
        fetch_context: FetchContext | None = None,
    ):
        """
        Initialize correlator.

        Args:
            fetch_raw_limits: Async callable returning the raw limits payload
            fetch_deploy_status: Async callable resolving an id to DeployStatus
            spawn_process: Async callable launching the external process
            config: Polling rate and id pattern (or load from env)
            thresholds: Classification thresholds for limit records
            registry: Poller registry used for process shutdown
            fetch_context: Optional async callable providing baseline context
        """
        self._config = config or DeploymentConfig()
        self._fetch_status = fetch_deploy_status
        self._spawn = spawn_process
        self._registry = registry
        self._fetch_context = fetch_context
        self._tracker = BaselineTracker(fetch_raw_limits, thresholds)
        self._id_pattern = self._config.id_pattern()
        self._metrics = get_metrics()

        self._session = OperationSession()
        self._events = EventChannel("deployment")
        self._session_used = False
        self._owns_process = False
        self._shutdown_task: asyncio.Task | None = None

    @property
    def session(self) -> OperationSession:
        return self._session

    @property
    def events(self) -> EventChannel:
        """Event channel of the current session, or of the next one once it ended."""
        return self._open_channel()

    def subscribe(self, handler: Callable[[SessionEvent], Any], *event_types: type[SessionEvent]):
        """Subscribe to the session's events. Returns an unsubscribe callable."""
        return self.events.subscribe(handler, *event_types)

    def get_status(self) -> dict[str, Any]:
        """Introspect the current session without side effects."""
        return {
            "is_monitoring": self._session.is_active,
            "operation_id": self._session.operation_id,
            "has_baseline": self._session.baseline is not None,
            "polling_rate": self._config.polling_rate_seconds,
        }

    # ── Session lifecycle ────────────────────────────────────

    def _begin_session(self, owns_process: bool) -> OperationSession:
        if self._session.is_active:
            raise RuntimeError(
                f"Deployment {self._session.operation_id} is still being monitored"
            )
        if self._session_used:
            self._session = OperationSession()
        self._open_channel()
        self._session_used = True
        self._owns_process = owns_process
        self._shutdown_task = None
        return self._session

    def _open_channel(self) -> EventChannel:
        if self._events.closed and not self._session.is_active:
            self._events = EventChannel("deployment")
        return self._events

    def _end_session(self) -> None:
        self._events.close()

    async def capture_baseline(self) -> Baseline | None:
        """Capture the session baseline; failures emit ``error`` and return None."""
        context = None
        if self._fetch_context is not None:
            try:
                context = await self._fetch_context()
            except Exception as e:
                logger.debug("Baseline context unavailable", error=str(e))

        try:
            baseline = await self._tracker.capture_from_source(context)
        except TransientFetchError as e:
            logger.warning("Baseline capture failed, deltas unavailable", error=str(e))
            await self._events.publish(ErrorEvent(kind="baseline", error=str(e)))
            return None

        self._session.baseline = baseline
        await self._events.publish(BaselineCaptured(baseline=baseline))
        return baseline

    async def intercept(
        self,
        command: str,
        args: list[str],
        **options: Any,
    ) -> ProcessResult:
        """
        Run a deploy command and monitor the deployment it starts.

        The process exit code decides the outcome, independently of the
        last status tick.

        Args:
            command: Executable (e.g. ``sf``)
            args: Arguments for the executable
            **options: Passed to the spawn capability

        Returns:
            ProcessResult for a zero exit code

        Raises:
            TerminalProcessError: Process could not start, its output could not
                be read, or it exited non-zero
        """
        session = self._begin_session(owns_process=True)
        await self._events.publish(OperationStarted(command=command, args=list(args)))
        logger.info("Deployment command starting", command=command, args=args)

        await self.capture_baseline()

        try:
            handle = await self._spawn(command, list(args), **options)
        except OSError as e:
            logger.error("Failed to start deployment command", command=command, error=str(e))
            await self._stop_monitoring("spawn_error")
            await self._events.publish(ErrorEvent(kind="spawn", error=str(e)))
            self._metrics.record_session("error")
            self._end_session()
            raise TerminalProcessError(f"Failed to start {command}: {e}") from e

        stdout_parts: list[str] = []
        stderr_parts: list[str] = []
        try:
            exit_code = await self._collect_output(handle, stdout_parts, stderr_parts)
        except Exception as e:
            logger.error("Lost deployment command output", command=command, error=str(e))
            await self._finish_polling(session)
            await self._events.publish(ErrorEvent(
                kind="process", error=str(e), operation_id=session.operation_id,
            ))
            self._metrics.record_session("error")
            self._end_session()
            raise TerminalProcessError(f"Failed reading output of {command}: {e}") from e
        except BaseException:
            self._mark_stopped()
            self._end_session()
            raise

        await self._finish_polling(session)

        stdout = "".join(stdout_parts)
        stderr = "".join(stderr_parts)
        operation_id = session.operation_id

        try:
            if exit_code == 0:
                logger.info("Deployment command completed", operation_id=operation_id)
                await self._events.publish(OperationCompleted(
                    operation_id=operation_id, exit_code=exit_code,
                    stdout=stdout, stderr=stderr,
                ))
                self._metrics.record_session("completed")
                return ProcessResult(
                    success=True,
                    exit_code=exit_code,
                    stdout=stdout,
                    stderr=stderr,
                    operation_id=operation_id,
                )

            logger.error(
                "Deployment command failed", operation_id=operation_id, exit_code=exit_code,
            )
            await self._events.publish(OperationFailed(
                operation_id=operation_id, exit_code=exit_code,
                stdout=stdout, stderr=stderr,
            ))
            self._metrics.record_session("failed")
            raise TerminalProcessError(
                f"Deployment failed with code {exit_code}: {stderr.strip()}",
                exit_code=exit_code,
                stdout=stdout,
                stderr=stderr,
            )
        finally:
            self._end_session()

    async def monitor_existing(self, operation_id: str) -> None:
        """
        Monitor a deployment that was started elsewhere.

        Captures a baseline, then polls until the deployment is terminal
        or ``stop()`` is called. Use ``wait()`` to block until then.
        """
        self._begin_session(owns_process=False)
        await self.capture_baseline()
        await self._start_monitoring(operation_id)

    async def wait(self) -> None:
        """Wait until the current session's polling loop exits."""
        poller = self._session.poll_handle
        if poller is not None:
            await poller.wait()
        if self._shutdown_task is not None:
            await self._shutdown_task

    async def stop(self) -> None:
        """Stop monitoring explicitly. Idempotent."""
        await self._stop_monitoring("stopped")

    # ── Output scanning ──────────────────────────────────────

    async def _collect_output(
        self,
        handle: ProcessHandle,
        stdout_parts: list[str],
        stderr_parts: list[str],
    ) -> int:
        readers = asyncio.gather(
            self._read_stream(handle.stdout, "stdout", stdout_parts, scan=True),
            self._read_stream(handle.stderr, "stderr", stderr_parts),
        )
        try:
            await readers
        except BaseException:
            readers.cancel()
            raise
        return await handle.wait()

    async def _finish_polling(self, session: OperationSession) -> None:
        """Stop polling for an exited process and let an in-flight tick finish."""
        poller = session.poll_handle
        await self._stop_monitoring("process_exit")
        if poller is not None:
            await poller.wait()
        if self._shutdown_task is not None:
            await self._shutdown_task

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        name: str,
        sink: list[str],
        scan: bool = False,
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError as e:
                # Over the reader's line limit; the oversized chunk was discarded.
                logger.warning("Skipped oversized output line", stream=name, error=str(e))
                continue
            if not line:
                break
            text = line.decode("utf-8", errors="replace")
            sink.append(text)
            if scan:
                await self._scan_line(text)
            await self._events.publish(OperationOutput(stream=name, data=text))

    async def _scan_line(self, text: str) -> None:
        """Start monitoring on the first line carrying a deployment id."""
        if self._session.operation_id is not None:
            return
        match = self._id_pattern.search(text)
        if match is None:
            return
        await self._start_monitoring(match.group(1))

    # ── Polling ──────────────────────────────────────────────

    async def _start_monitoring(self, operation_id: str) -> None:
        session = self._session
        if session.is_active:
            return

        session.operation_id = operation_id
        session.is_active = True
        bind_context(operation_id=operation_id)
        poller = Poller(
            name="deployment",
            jitter=self._config.polling_jitter_seconds,
            registry=self._registry,
            on_stop=self._on_poller_stopped,
        )
        session.poll_handle = poller

        logger.info(
            "Deployment monitoring started",
            operation_id=operation_id,
            polling_rate=self._config.polling_rate_seconds,
        )
        await self._events.publish(MonitoringStarted(operation_id=operation_id))
        poller.start(self._config.polling_rate_seconds, self._tick)

    async def _stop_monitoring(self, reason: str) -> bool:
        if not self._mark_stopped():
            return False
        await self._announce_stop(self._session, self._events, reason)
        return True

    def _mark_stopped(self) -> bool:
        session = self._session
        if not session.is_active:
            return False

        session.is_active = False
        if session.poll_handle is not None:
            session.poll_handle.stop()
        return True

    async def _announce_stop(
        self,
        session: OperationSession,
        events: EventChannel,
        reason: str,
    ) -> None:
        session.stop_reason = reason
        logger.info(
            "Deployment monitoring stopped", operation_id=session.operation_id, reason=reason,
        )
        await events.publish(
            MonitoringStopped(operation_id=session.operation_id, reason=reason)
        )
        if not self._owns_process:
            events.close()

    def _on_poller_stopped(self) -> None:
        """The poller was stopped from outside (registry shutdown)."""
        if not self._mark_stopped():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._session.stop_reason = "shutdown"
            self._events.close()
            return
        self._shutdown_task = loop.create_task(
            self._announce_stop(self._session, self._events, "shutdown")
        )

    async def _tick(self) -> MonitoringUpdate | None:
        """One status + limits check; emits ``MonitoringUpdate`` every time."""
        session = self._session
        operation_id = session.operation_id
        if not session.is_active or operation_id is None:
            return None

        status_result, limits_result = await asyncio.gather(
            self._fetch_status(operation_id),
            self._tracker.fetch_current(),
            return_exceptions=True,
        )

        # Stopped while the fetches were in flight: discard.
        if not session.is_active:
            return None

        if isinstance(status_result, BaseException):
            logger.warning(
                "Deploy status check raised", operation_id=operation_id, error=str(status_result),
            )
            await self._events.publish(ErrorEvent(
                kind="status", error=str(status_result), operation_id=operation_id,
            ))
            status = DeployStatus.unknown(operation_id, str(status_result))
        else:
            status = status_result

        if isinstance(limits_result, BaseException):
            logger.warning(
                "Limit fetch failed during monitoring",
                operation_id=operation_id,
                error=str(limits_result),
            )
            self._metrics.limit_fetch_errors.inc()
            await self._events.publish(ErrorEvent(
                kind="monitoring", error=str(limits_result), operation_id=operation_id,
            ))
            current = {}
        else:
            current = limits_result

        update = MonitoringUpdate(
            operation_id=operation_id,
            deployment_status=status,
            current_limits=current,
            deltas=delta(session.baseline, current),
        )
        await self._events.publish(update)

        if status.is_terminal:
            reason = "deployment_failed" if status.state == "Failed" else "deployment_done"
            await self._stop_monitoring(reason)

        return update
