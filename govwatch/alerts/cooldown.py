"""Alert fatigue suppression.

A ``(subject, severity)`` pair that was delivered recently is suppressed
until its cooldown elapses. Critical alerts use the shortest window so
they repeat sooner than warnings.
"""

import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from govwatch.exceptions import ConfigurationError

DEFAULT_CRITICAL_COOLDOWN = 300.0
DEFAULT_WARNING_COOLDOWN = 600.0
DEFAULT_INFO_COOLDOWN = 600.0


@dataclass(frozen=True)
class Reservation:
    """Timestamps held by one in-flight delivery."""

    stamp: float
    previous: dict[tuple[str, str], float | None]


class CooldownTracker:
    """In-memory last-sent map keyed by (subject, severity).

    Args:
        critical_cooldown: Seconds before a critical alert may repeat.
        warning_cooldown: Seconds before a warning alert may repeat;
            must be longer than ``critical_cooldown``.
        info_cooldown: Seconds before an info alert may repeat.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        critical_cooldown: float = DEFAULT_CRITICAL_COOLDOWN,
        warning_cooldown: float = DEFAULT_WARNING_COOLDOWN,
        info_cooldown: float = DEFAULT_INFO_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if warning_cooldown <= critical_cooldown:
            raise ConfigurationError(
                "warning cooldown must exceed critical cooldown "
                f"({warning_cooldown} <= {critical_cooldown})"
            )
        self._cooldowns = {
            "critical": critical_cooldown,
            "warning": warning_cooldown,
            "info": info_cooldown,
        }
        self._clock = clock
        self._last_sent: dict[tuple[str, str], float] = {}

    def __len__(self) -> int:
        return len(self._last_sent)

    def cooldown_for(self, severity: str) -> float:
        return self._cooldowns.get(severity, self._cooldowns["warning"])

    def should_send(self, subject: str, severity: str) -> bool:
        """True if the pair was never sent or its cooldown has elapsed."""
        last = self._last_sent.get((subject, severity))
        if last is None:
            return True
        return self._clock() - last >= self.cooldown_for(severity)

    def mark_sent(self, subject: str, severity: str) -> None:
        self._last_sent[(subject, severity)] = self._clock()

    def reserve(self, keys: Iterable[tuple[str, str]]) -> Reservation:
        """Mark every pair as sent now, before delivery is attempted.

        Returns the prior state so a failed delivery can ``release`` it.
        """
        stamp = self._clock()
        previous: dict[tuple[str, str], float | None] = {}
        for key in keys:
            previous[key] = self._last_sent.get(key)
            self._last_sent[key] = stamp
        return Reservation(stamp=stamp, previous=previous)

    def release(self, reservation: Reservation) -> None:
        """Restore pairs taken by ``reserve`` unless they were re-marked since."""
        for key, last in reservation.previous.items():
            if self._last_sent.get(key) != reservation.stamp:
                continue
            if last is None:
                del self._last_sent[key]
            else:
                self._last_sent[key] = last

    def clear(self) -> None:
        self._last_sent.clear()
