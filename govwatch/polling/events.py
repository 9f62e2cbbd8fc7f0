"""Typed session events and the per-session pub/sub channel.

Every event is a small dataclass with a ``type`` tag and a ``timestamp``.
``EventChannel`` fans events out to subscribers: plain callbacks, async
callbacks, or async iterators obtained from ``stream()``. Closing the
channel drops every subscriber and ends every open stream.

Pattern: one channel per session, subscribers unsubscribed on session end.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from govwatch.deployment.schemas import DeployStatus
    from govwatch.limits.schemas import Baseline, Delta, LimitRecord
    from govwatch.monitoring.service import LimitCheckResult

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


@dataclass
class SessionEvent:
    """Base class for all session events."""

    type: ClassVar[str] = "event"

    def payload(self) -> dict[str, Any]:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
            **self.payload(),
        }


@dataclass
class OperationStarted(SessionEvent):
    type: ClassVar[str] = "operation_started"

    command: str
    args: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"command": self.command, "args": list(self.args)}


@dataclass
class BaselineCaptured(SessionEvent):
    type: ClassVar[str] = "baseline_captured"

    baseline: Baseline
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"baseline": self.baseline.to_dict()}


@dataclass
class MonitoringStarted(SessionEvent):
    type: ClassVar[str] = "monitoring_started"

    operation_id: str
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"operation_id": self.operation_id}


@dataclass
class MonitoringUpdate(SessionEvent):
    """Combined status/limits/deltas snapshot emitted on every tick."""

    type: ClassVar[str] = "monitoring_update"

    operation_id: str | None
    deployment_status: DeployStatus | None
    current_limits: dict[str, LimitRecord] = field(default_factory=dict)
    deltas: dict[str, Delta] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "deployment_status": (
                self.deployment_status.to_dict() if self.deployment_status else None
            ),
            "current_limits": {k: r.to_dict() for k, r in self.current_limits.items()},
            "deltas": {k: d.to_dict() for k, d in self.deltas.items()},
        }


@dataclass
class MonitoringStopped(SessionEvent):
    type: ClassVar[str] = "monitoring_stopped"

    operation_id: str | None
    reason: str
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"operation_id": self.operation_id, "reason": self.reason}


@dataclass
class OperationOutput(SessionEvent):
    type: ClassVar[str] = "operation_output"

    stream: str  # stdout or stderr
    data: str
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"stream": self.stream, "data": self.data}


@dataclass
class OperationCompleted(SessionEvent):
    type: ClassVar[str] = "operation_completed"

    operation_id: str | None
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"operation_id": self.operation_id, "exit_code": self.exit_code}


@dataclass
class OperationFailed(SessionEvent):
    type: ClassVar[str] = "operation_failed"

    operation_id: str | None
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {
            "operation_id": self.operation_id,
            "exit_code": self.exit_code,
            "stderr": self.stderr,
        }


@dataclass
class ErrorEvent(SessionEvent):
    """A reported failure (baseline capture, tick fetch, spawn, process output)."""

    type: ClassVar[str] = "error"

    kind: str
    error: str
    operation_id: str | None = None
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"kind": self.kind, "error": self.error, "operation_id": self.operation_id}


@dataclass
class LimitsChecked(SessionEvent):
    type: ClassVar[str] = "limits_checked"

    result: LimitCheckResult
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return self.result.to_dict()


@dataclass
class TickCompleted(SessionEvent):
    type: ClassVar[str] = "tick_completed"

    poller: str
    tick: int
    result: Any = None
    timestamp: datetime = field(default_factory=_utc_now)

    def payload(self) -> dict[str, Any]:
        return {"poller": self.poller, "tick": self.tick}


Handler = Callable[[SessionEvent], Any]

_CLOSED = object()


class EventChannel:
    """Pub/sub channel for one session's events.

    Lifecycle:
        1. ``subscribe(handler)`` / ``stream()`` - register consumers
        2. ``publish(event)`` - deliver to every matching consumer
        3. ``close()`` - drop all consumers, end open streams
    """

    def __init__(self, name: str = "session") -> None:
        self._name = name
        self._handlers: list[tuple[Handler, tuple[type[SessionEvent], ...] | None]] = []
        self._queues: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers) + len(self._queues)

    def subscribe(
        self,
        handler: Handler,
        *event_types: type[SessionEvent],
    ) -> Callable[[], None]:
        """Register a callback (sync or async).

        Args:
            handler: Called with each published event.
            *event_types: Restrict delivery to these event classes.

        Returns:
            Callable that removes the subscription.
        """
        entry = (handler, event_types or None)
        self._handlers.append(entry)

        def unsubscribe() -> None:
            if entry in self._handlers:
                self._handlers.remove(entry)

        return unsubscribe

    async def stream(self) -> AsyncIterator[SessionEvent]:
        """Iterate over events published from now until the channel closes."""
        if self._closed:
            return
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)

    async def publish(self, event: SessionEvent) -> None:
        """Deliver an event to all subscribers.

        A failing subscriber is logged and skipped; it never prevents
        delivery to the others or propagates to the publisher.
        """
        if self._closed:
            logger.debug("Channel %s closed, dropping %s", self._name, event.type)
            return

        for handler, event_types in list(self._handlers):
            if event_types is not None and not isinstance(event, event_types):
                continue
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "Subscriber on %s failed handling %s: %s",
                    self._name, event.type, e,
                )

        for queue in list(self._queues):
            queue.put_nowait(event)

    def close(self) -> None:
        """Unsubscribe everyone and end all streams. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        for queue in list(self._queues):
            queue.put_nowait(_CLOSED)
