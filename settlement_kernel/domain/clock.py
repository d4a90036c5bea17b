"""
Injectable time source.

Services stamp completed_at, canceled_at and released_at from the Clock they
were given, never from ``datetime.now()``, so tests can pin every timestamp a
settlement operation writes.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol

SETTLEMENT_EPOCH = datetime(2025, 1, 31, 9, 0, tzinfo=timezone.utc)


class Clock(Protocol):
    """``now()`` is timezone-aware UTC; ``today()`` is its UTC date."""

    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class DeterministicClock:
    """Frozen at ``start`` until moved with advance()."""

    def __init__(self, start: datetime = SETTLEMENT_EPOCH):
        if start.tzinfo is None:
            raise ValueError("DeterministicClock needs a timezone-aware start")
        self._now = start

    def now(self) -> datetime:
        return self._now

    def today(self) -> date:
        return self._now.date()

    def advance(self, **delta: float) -> datetime:
        """Move forward, e.g. ``advance(days=1)``; returns the new time."""
        self._now += timedelta(**delta)
        return self._now
