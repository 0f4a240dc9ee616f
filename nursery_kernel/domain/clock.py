"""
Clock -- injectable time source.

Responsibility:
    Lets the lifecycle and allocation services stamp events and evaluate
    reservation holds without calling ``datetime.now()`` themselves.

Architecture position:
    Kernel > Domain -- pure, zero I/O (except SystemClock, the one sanctioned
    I/O boundary for time).

Audit relevance:
    Every ``occurred_at`` on a unit event and every ``hold_until`` comparison
    made by the reservation expiry sweep comes from an injected Clock, so
    tests can reproduce timelines exactly.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Contract:
        ``now()`` returns the same value on repeated calls until ``advance()``,
        ``advance_days()`` or ``set_time()`` is called.  ``tick()`` moves
        forward one second and returns the new time, which is how tests give
        consecutive ledger events distinct timestamps.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(
            2024, 1, 1, 8, 0, 0, tzinfo=timezone.utc
        )

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: int = 1) -> None:
        self._current = self._current + timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current = self._current + timedelta(days=days)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current
