"""Clock sources for the session engine.

The engine never calls ``datetime.now()`` directly; it asks an injected
clock, so tests and simulations can move time by hand.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta
from typing import Optional, Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...

    def today(self) -> date: ...


class SystemClock:
    """Local wall-clock time (naive datetimes)."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return date.today()


class ManualClock:
    """Controllable clock for tests and long simulations.

    Time only moves when ``advance`` or ``set`` is called.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2026, 2, 10, 8, 0, 0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def today(self) -> date:
        return self.now().date()

    def advance(self, delta: timedelta) -> datetime:
        with self._lock:
            self._now = self._now + delta
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = value


__all__ = ["Clock", "SystemClock", "ManualClock"]
