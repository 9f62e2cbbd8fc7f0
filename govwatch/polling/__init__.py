"""Interval polling and per-session event channels.

Components:
- Poller: Cancellable interval scheduler (one loop per instance)
- PollerRegistry: Stops every running poller on shutdown
- EventChannel: Typed pub/sub channel with unsubscribe-on-close
- Session event dataclasses (OperationStarted, MonitoringUpdate, ...)
"""

from govwatch.polling.events import (
    BaselineCaptured,
    ErrorEvent,
    EventChannel,
    LimitsChecked,
    MonitoringStarted,
    MonitoringStopped,
    MonitoringUpdate,
    OperationCompleted,
    OperationFailed,
    OperationOutput,
    OperationStarted,
    SessionEvent,
    TickCompleted,
)
from govwatch.polling.poller import Poller, PollerRegistry

__all__ = [
    "BaselineCaptured",
    "ErrorEvent",
    "EventChannel",
    "LimitsChecked",
    "MonitoringStarted",
    "MonitoringStopped",
    "MonitoringUpdate",
    "OperationCompleted",
    "OperationFailed",
    "OperationOutput",
    "OperationStarted",
    "Poller",
    "PollerRegistry",
    "SessionEvent",
    "TickCompleted",
]
