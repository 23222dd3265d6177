"""
Pomodoro countdown for Dayloader

Features:
- IDLE -> RUNNING -> IDLE state machine driven by the injected clock
- Remaining time computed from the start/end snapshot, not per-tick counters,
  so a slow or irregular poll loop never drifts
- Completion reported exactly once by tick(), so the host can notify

Integration contract:
- The host calls tick() on its poll cadence; a True result means the
  focus period just finished.
- No thread of its own; the app's poll loop drives it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

IDLE = "IDLE"
RUNNING = "RUNNING"


class PomodoroTimer:
    """Focus countdown of ``minutes`` length, started and stopped by the user."""

    def __init__(self, minutes: int = 25, clock: Optional[Clock] = None) -> None:
        self.minutes = minutes
        self._clock = clock or SystemClock()

        # Public stats
        self.completed_sessions: int = 0

        # Internal state
        self._state: str = IDLE
        self._started_at: Optional[datetime] = None
        self._ends_at: Optional[datetime] = None

    # ---------- Public API ----------
    @property
    def state(self) -> str:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state == RUNNING

    def start(self, minutes: Optional[int] = None) -> None:
        if minutes is not None and minutes > 0:
            self.minutes = int(minutes)
        now = self._clock.now()
        self._state = RUNNING
        self._started_at = now
        self._ends_at = now + timedelta(minutes=self.minutes)
        logger.info("Pomodoro started for %d min", self.minutes)

    def stop(self) -> None:
        """Cancel the running countdown."""
        if self._state == RUNNING:
            logger.info("Pomodoro cancelled")
        self._reset()

    def toggle(self) -> bool:
        """Start when idle, cancel when running; returns the new active state."""
        if self.is_active:
            self.stop()
        else:
            self.start()
        return self.is_active

    def tick(self) -> bool:
        """Return True exactly once, when a running countdown reaches zero."""
        if self._state != RUNNING:
            return False
        if self.remaining() > timedelta(0):
            return False
        self.completed_sessions += 1
        self._reset()
        logger.info("Pomodoro completed (%d today)", self.completed_sessions)
        return True

    def remaining(self) -> timedelta:
        if self._state != RUNNING or self._ends_at is None:
            return timedelta(0)
        return max(timedelta(0), self._ends_at - self._clock.now())

    def progress(self) -> float:
        """Fraction of the countdown elapsed, in [0, 1]."""
        if self._state != RUNNING or self._started_at is None or self._ends_at is None:
            return 0.0
        total = (self._ends_at - self._started_at).total_seconds()
        if total <= 0:
            return 1.0
        elapsed = total - self.remaining().total_seconds()
        return min(1.0, max(0.0, elapsed / total))

    def display(self) -> str:
        """Remaining time as ``MM:SS``."""
        seconds = int(self.remaining().total_seconds())
        return f"{seconds // 60:02d}:{seconds % 60:02d}"

    # ---------- Internals ----------
    def _reset(self) -> None:
        self._state = IDLE
        self._started_at = None
        self._ends_at = None


__all__ = ["PomodoroTimer", "IDLE", "RUNNING"]
