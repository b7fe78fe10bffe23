"""Injectable clocks.

All gate logic reads time through a ``Clock`` so temporal behaviour can
be driven deterministically in tests with ``ManualClock``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current timezone-aware time."""
        ...


class SystemClock:
    """Clock backed by the system wall clock, in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to.

    Args:
        start: Initial time. Defaults to the current UTC time.

    Example::

        clock = ManualClock()
        clock.advance(seconds=5)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, moment: datetime) -> None:
        """Jump to an absolute time (backwards jumps are allowed)."""
        self._now = moment

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward.

        Args:
            delta: Amount to advance by.
            **kwargs: Alternatively, ``timedelta`` keyword arguments.

        Returns:
            The new current time.
        """
        self._now += delta if delta is not None else timedelta(**kwargs)
        return self._now

    def __repr__(self) -> str:
        return f"ManualClock({self._now.isoformat()})"
