from __future__ import annotations

"""
Screen lock/unlock detection for Dayloader.

Lock events are the only lunch-break signal the engine has. They come from a
background thread, so subscribers must not touch shared state directly: the
session engine just queues them and drains the queue on its poll tick.

Usage:

    source = create_lock_source()
    result = source.subscribe(lambda evt: print(evt.kind, evt.timestamp))
    if not result.available:
        print("No lunch auto-detection:", result.reason)
    ...
    source.unsubscribe(callback)
"""

import logging
import platform
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Protocol

import psutil  # type: ignore[import-not-found]

from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

# Process shown by Windows while the workstation is locked
WINDOWS_LOCK_PROCESS = "logonui.exe"


class LockEventKind(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"


@dataclass(frozen=True)
class LockEvent:
    kind: LockEventKind
    timestamp: datetime


@dataclass(frozen=True)
class SubscriptionResult:
    """Outcome of subscribing; ``available=False`` is an expected degraded mode."""

    available: bool
    reason: str = ""


LockCallback = Callable[[LockEvent], None]


class LockEventSource(Protocol):
    def subscribe(self, callback: LockCallback) -> SubscriptionResult: ...

    def unsubscribe(self, callback: LockCallback) -> None: ...


class UnavailableLockSource:
    """Source for platforms without lock detection; never emits."""

    def __init__(self, reason: str) -> None:
        self.reason = reason

    def subscribe(self, callback: LockCallback) -> SubscriptionResult:
        return SubscriptionResult(available=False, reason=self.reason)

    def unsubscribe(self, callback: LockCallback) -> None:
        return None


class PollingLockMonitor:
    """
    Polls a boolean "is the screen locked" check and emits transitions.

    The polling thread starts with the first subscriber and stops when the
    last one unsubscribes. Events are stamped with the injected clock.
    """

    def __init__(
        self,
        is_locked: Callable[[], bool],
        clock: Optional[Clock] = None,
        interval: float = 2.0,
    ) -> None:
        self.is_locked = is_locked
        self.clock = clock or SystemClock()
        self.interval = interval

        self._callbacks: List[LockCallback] = []
        self._locked = False
        self._check_failed = False
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # ---------- Public API ----------
    def subscribe(self, callback: LockCallback) -> SubscriptionResult:
        with self._lock:
            if callback not in self._callbacks:
                self._callbacks.append(callback)
        self._ensure_thread()
        return SubscriptionResult(available=True, reason=f"polling every {self.interval:g}s")

    def unsubscribe(self, callback: LockCallback) -> None:
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)
            remaining = len(self._callbacks)
        if remaining == 0:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=self.interval + 1.0)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop_event.is_set()

    def poll_once(self) -> Optional[LockEvent]:
        """Run the lock check once; emit and return an event on a state change."""
        try:
            locked = bool(self.is_locked())
        except Exception:
            if not self._check_failed:
                logger.exception("Screen lock check failed; keeping last known state")
                self._check_failed = True
            return None
        self._check_failed = False

        if locked == self._locked:
            return None
        self._locked = locked
        kind = LockEventKind.LOCKED if locked else LockEventKind.UNLOCKED
        event = LockEvent(kind=kind, timestamp=self.clock.now())
        self._emit(event)
        return event

    # ---------- Internals ----------
    def _ensure_thread(self) -> None:
        if self._thread is None or not self._thread.is_alive():
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run, name="Dayloader-LockMonitor", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.poll_once()

    def _emit(self, event: LockEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks)
        for cb in callbacks:
            try:
                cb(event)
            except Exception:
                logger.exception("Lock event subscriber failed")


def windows_screen_locked() -> bool:
    """True while the Windows lock screen process is running."""
    for proc in psutil.process_iter(["name"]):
        name = (proc.info.get("name") or "").lower()
        if name == WINDOWS_LOCK_PROCESS:
            return True
    return False


def create_lock_source(clock: Optional[Clock] = None, interval: float = 2.0) -> "PollingLockMonitor | UnavailableLockSource":
    """Return the lock source for this platform, or an unavailable placeholder."""
    if sys.platform == "win32":
        return PollingLockMonitor(windows_screen_locked, clock=clock, interval=interval)
    return UnavailableLockSource(f"screen lock detection is not supported on {platform.system() or sys.platform}")


__all__ = [
    "LockEvent",
    "LockEventKind",
    "LockEventSource",
    "LockCallback",
    "SubscriptionResult",
    "PollingLockMonitor",
    "UnavailableLockSource",
    "windows_screen_locked",
    "create_lock_source",
]
