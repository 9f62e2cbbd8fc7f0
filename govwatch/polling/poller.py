"""Cancellable interval scheduler for sampling callbacks.

State machine: IDLE -> RUNNING -> IDLE.

- ``start(interval, callback)`` spawns one background task that invokes the
  callback immediately, then again every ``interval`` seconds (plus optional
  random jitter) until stopped.
- ``stop()`` is synchronous and idempotent. A sleeping loop is cancelled at
  once; an in-flight callback is allowed to finish, but no new invocation
  begins after ``stop()`` returns. Callers that do long I/O inside the
  callback must check their own liveness before acting on results.
- A ``start()`` issued while a stopped run is still inside its callback
  defers the new run's first invocation until that callback returns.

Callback failures are logged and counted; they never end the loop.
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from govwatch.observability.metrics import get_metrics
from govwatch.polling.events import ErrorEvent, EventChannel, TickCompleted

logger = structlog.get_logger(__name__)

Callback = Callable[[], Awaitable[Any]]


class _PollRun:
    """Book-keeping for one start()..stop() cycle."""

    __slots__ = ("task", "in_callback")

    def __init__(self) -> None:
        self.task: asyncio.Task | None = None
        self.in_callback = False


class Poller:
    """
    Interval-driven scheduler with at most one active loop per instance.

    Every invocation result is published on ``events`` as ``TickCompleted``
    (or ``ErrorEvent`` when the callback raised).

    Usage:
        poller = Poller(name="limits", jitter=1.0)
        poller.start(30.0, sample)
        ...
        poller.stop()
    """

    def __init__(
        self,
        name: str = "poller",
        jitter: float = 0.0,
        registry: "PollerRegistry | None" = None,
        on_stop: Callable[[], None] | None = None,
    ) -> None:
        """
        Initialize poller.

        Args:
            name: Name used in logs and metrics
            jitter: Upper bound (seconds) of random delay added to each interval
            registry: Registry to join while running (for shutdown)
            on_stop: Called synchronously whenever ``stop()`` ends a run
        """
        if jitter < 0:
            raise ValueError("jitter must be non-negative")
        self.name = name
        self.events = EventChannel(name)
        self._jitter = jitter
        self._registry = registry
        self._on_stop = on_stop
        self._interval: float | None = None
        self._run: _PollRun | None = None
        self._last_task: asyncio.Task | None = None
        self._prior_task: asyncio.Task | None = None
        self._tick_count = 0
        self._metrics = get_metrics()

    @property
    def is_running(self) -> bool:
        return self._run is not None

    @property
    def interval(self) -> float | None:
        return self._interval

    @property
    def tick_count(self) -> int:
        """Number of callback invocations that have finished."""
        return self._tick_count

    def start(self, interval: float, callback: Callback) -> bool:
        """
        Start polling.

        Must be called from within a running event loop.

        Args:
            interval: Seconds between invocations
            callback: Async callable invoked on every tick

        Returns:
            True if a loop was started, False if already running (no-op)
        """
        if interval <= 0:
            raise ValueError("interval must be positive")

        if self._run is not None:
            logger.warning("Poller already running, ignoring start", poller=self.name)
            return False

        # A callback left running by stop() must finish before the new run's first tick.
        previous = self._in_flight()
        self._prior_task = previous

        run = _PollRun()
        self._run = run
        self._interval = interval
        run.task = asyncio.create_task(
            self._loop(run, interval, callback, previous), name=f"poller_{self.name}",
        )
        self._last_task = run.task

        if self._registry is not None:
            self._registry.add(self)

        logger.info("Poller started", poller=self.name, interval=interval, jitter=self._jitter)
        return True

    def stop(self) -> None:
        """Stop polling. Safe to call from any state, any number of times."""
        run = self._run
        if run is None:
            return

        self._run = None
        if run.task is not None and not run.in_callback and not run.task.done():
            run.task.cancel()

        if self._registry is not None:
            self._registry.discard(self)

        logger.info("Poller stopped", poller=self.name, ticks=self._tick_count)

        if self._on_stop is not None:
            self._on_stop()

    async def wait(self) -> None:
        """Wait for the most recent loop (including an in-flight callback) to exit."""
        for task in (self._prior_task, self._last_task):
            if task is None:
                continue
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    def _in_flight(self) -> asyncio.Task | None:
        """Return the loop task that may still be inside a callback, if any."""
        for task in (self._last_task, self._prior_task):
            if task is not None and not task.done():
                return task
        return None

    def _next_delay(self, interval: float) -> float:
        if self._jitter:
            return interval + random.uniform(0, self._jitter)
        return interval

    async def _loop(
        self,
        run: _PollRun,
        interval: float,
        callback: Callback,
        previous: asyncio.Task | None = None,
    ) -> None:
        """Invoke the callback until this run is no longer the active one."""
        try:
            if previous is not None:
                await asyncio.wait({previous})
            while self._run is run:
                start_time = time.monotonic()
                run.in_callback = True
                try:
                    result = await callback()
                    event = TickCompleted(
                        poller=self.name, tick=self._tick_count + 1, result=result,
                    )
                except Exception as e:
                    logger.error(
                        "Poll callback failed",
                        poller=self.name,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    self._metrics.record_tick_error(self.name, type(e).__name__)
                    event = ErrorEvent(kind="tick", error=str(e))
                finally:
                    run.in_callback = False

                self._tick_count += 1
                self._metrics.record_tick(self.name, time.monotonic() - start_time)
                await self.events.publish(event)

                if self._run is not run:
                    break
                await asyncio.sleep(self._next_delay(interval))
        except asyncio.CancelledError:
            logger.debug("Poller loop cancelled", poller=self.name)


class PollerRegistry:
    """Tracks running pollers so process shutdown can stop all of them."""

    def __init__(self) -> None:
        self._pollers: set[Poller] = set()

    def __len__(self) -> int:
        return len(self._pollers)

    def add(self, poller: Poller) -> None:
        self._pollers.add(poller)

    def discard(self, poller: Poller) -> None:
        self._pollers.discard(poller)

    def stop_all(self) -> int:
        """Stop every registered poller.

        Returns:
            Number of pollers stopped.
        """
        pollers = list(self._pollers)
        for poller in pollers:
            poller.stop()
        if pollers:
            logger.info("Stopped all pollers", count=len(pollers))
        return len(pollers)
