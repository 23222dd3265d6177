"""
Session engine: the time-tracking core of Dayloader.

Tracks one calendar day of work and derives everything the UI shows from
three inputs: the login time, the accumulated pauses, and the lunch time
detected from screen locks.

Contract:
- The host polls on a single thread: check_new_day(), the getters,
  check_and_notify_overtime(), save_state().
- User intents call pause()/resume()/toggle_pause()/reset_day()/update_settings().
- Lock events may arrive on any thread; they are queued and applied by
  process_lock_events(), which every poll-path call and pause/resume run first.

Edge cases handled:
- Clock moving backwards: elapsed and effective time are floored at zero.
- Weekends and long sleeps: one rollover per check_new_day() call, skipped
  days are not back-filled.
- Restart mid-pause: the saved pause start is kept, so paused time keeps
  accruing as if the process never stopped.
- Corrupt stored timestamps: normalized on load instead of raising.
"""

from __future__ import annotations

import logging
import queue
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .clock import Clock, SystemClock
from .lock_events import LockEvent, LockEventKind, LockEventSource, SubscriptionResult
from .models import DaySession, SessionStore, date_key, format_timestamp, parse_timestamp
from .settings import AppSettings
from .storage import Storage, StorageError

logger = logging.getLogger(__name__)


def _minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


class SessionEngine:
    def __init__(
        self,
        settings: AppSettings,
        storage: Storage,
        clock: Optional[Clock] = None,
        lock_source: Optional[LockEventSource] = None,
    ) -> None:
        self._settings = settings.validated()
        self._storage = storage
        self._clock = clock or SystemClock()
        self._store: SessionStore = storage.load_sessions()

        # Per-day state
        self._current_date = ""
        self._login_time: datetime = self._clock.now()
        self._overtime_notified = False
        self._is_paused = False
        self._pause_start: Optional[datetime] = None
        self._paused_minutes = 0.0
        self._lunch_minutes = 0.0

        # Lock / lunch state, only touched on the polling thread
        self._is_locked = False
        self._lock_time: Optional[datetime] = None
        self._on_lunch = False
        self._lock_events: "queue.Queue[LockEvent]" = queue.Queue()

        # Subscribers
        self._overtime_callbacks: List[Callable[[], None]] = []
        self._pause_callbacks: List[Callable[[bool], None]] = []
        self._save_failed_callbacks: List[Callable[[StorageError], None]] = []

        self.last_save_error: Optional[StorageError] = None

        self._initialize()

        self._lock_source = lock_source
        self.lunch_detection = self._subscribe_lock_events()

    # ---------- Lifecycle ----------
    def _initialize(self) -> None:
        now = self._clock.now()
        self._current_date = date_key(self._clock.today())
        current = self._store.current_session

        if current is not None and current.date == self._current_date:
            self._restore(current, now)
        else:
            if current is not None:
                logger.info("Archiving session from %s", current.date)
                self._store.archive_current()
            self._start_session(now)
        self._persist()

    def _restore(self, session: DaySession, now: datetime) -> None:
        login = parse_timestamp(session.first_login_time)
        if login is None:
            logger.warning("Unreadable login time %r for %s; restarting the clock now", session.first_login_time, session.date)
            login = now
            session.first_login_time = format_timestamp(now)
        self._login_time = login
        self._paused_minutes = session.total_paused_minutes
        self._lunch_minutes = session.total_lunch_minutes

        if session.is_paused:
            last_activity = parse_timestamp(session.last_activity_time)
            pause_start = parse_timestamp(session.pause_start_time) or last_activity
            if pause_start is None:
                logger.warning("Session %s was paused without a pause start; resuming tracking", session.date)
                session.is_paused = False
                session.pause_start_time = None
            else:
                self._is_paused = True
                self._pause_start = pause_start
                session.pause_start_time = format_timestamp(pause_start)
                # The saved total already holds the open pause up to the last snapshot
                if last_activity is not None:
                    snapshotted = max(0.0, _minutes(last_activity - pause_start))
                    self._paused_minutes = max(0.0, self._paused_minutes - snapshotted)
        else:
            session.pause_start_time = None
        logger.info("Resumed session for %s (login %s)", session.date, self._login_time.strftime("%H:%M"))

    def _start_session(self, now: datetime) -> None:
        self._login_time = now
        self._is_paused = False
        self._pause_start = None
        self._paused_minutes = 0.0
        self._lunch_minutes = 0.0
        self._on_lunch = False
        self._lock_time = None
        self._overtime_notified = False
        self._store.current_session = DaySession(date=self._current_date, first_login_time=format_timestamp(now))

    def _subscribe_lock_events(self) -> SubscriptionResult:
        if self._lock_source is None:
            result = SubscriptionResult(available=False, reason="no lock event source")
        else:
            try:
                result = self._lock_source.subscribe(self._enqueue_lock_event)
            except Exception:
                logger.exception("Lock event subscription failed; lunch auto-detection disabled")
                return SubscriptionResult(available=False, reason="subscription failed")
        if not result.available:
            logger.info("Lunch auto-detection unavailable: %s", result.reason)
        return result

    def close(self) -> None:
        """Release the lock event subscription. Safe to call twice."""
        source, self._lock_source = self._lock_source, None
        if source is not None and self.lunch_detection.available:
            try:
                source.unsubscribe(self._enqueue_lock_event)
            except Exception:
                logger.exception("Lock event unsubscribe failed")

    # ---------- Subscribers ----------
    def on_overtime_started(self, cb: Callable[[], None]) -> None:
        self._overtime_callbacks.append(cb)

    def on_pause_state_changed(self, cb: Callable[[bool], None]) -> None:
        self._pause_callbacks.append(cb)

    def on_save_failed(self, cb: Callable[[StorageError], None]) -> None:
        self._save_failed_callbacks.append(cb)

    # ---------- Lock events ----------
    def _enqueue_lock_event(self, event: LockEvent) -> None:
        # Runs on the lock source's thread: hand off only.
        self._lock_events.put(event)

    def process_lock_events(self) -> int:
        """Apply queued lock/unlock events; returns how many were applied."""
        applied = 0
        while True:
            try:
                event = self._lock_events.get_nowait()
            except queue.Empty:
                return applied
            if event.kind == LockEventKind.LOCKED:
                self._on_locked(event.timestamp)
            else:
                self._on_unlocked(event.timestamp)
            applied += 1

    def _on_locked(self, ts: datetime) -> None:
        if self._is_locked:
            return
        self._is_locked = True
        self._lock_time = ts
        start, end = self._settings.lunch_window(ts)
        # Not lunch while paused: that time is already deducted as pause.
        self._on_lunch = start <= ts < end and not self._is_paused
        if self._on_lunch:
            logger.info("Screen locked at %s inside the lunch window", ts.strftime("%H:%M"))

    def _on_unlocked(self, ts: datetime) -> None:
        if self._on_lunch and self._lock_time is not None:
            locked_minutes = max(0.0, _minutes(ts - self._lock_time))
            if locked_minutes >= self._settings.min_lunch_lock_minutes:
                self._lunch_minutes = self._capped_lunch(locked_minutes)
                logger.info("Lunch break of %.1f min recorded (total %.1f)", locked_minutes, self._lunch_minutes)
            else:
                logger.info("Ignoring %.1f min lock: shorter than the lunch threshold", locked_minutes)
        self._is_locked = False
        self._lock_time = None
        self._on_lunch = False

    def _capped_lunch(self, extra_minutes: float) -> float:
        cap = float(max(0, self._settings.lunch_duration_minutes))
        return max(self._lunch_minutes, min(self._lunch_minutes + extra_minutes, cap))

    # ---------- Pause / resume ----------
    def pause(self) -> None:
        self.process_lock_events()
        if self._is_paused:
            return
        self._pause_start = self._clock.now()
        self._is_paused = True
        self._notify_pause_state(True)

    def resume(self) -> None:
        self.process_lock_events()
        if not self._is_paused:
            return
        self._paused_minutes += self._open_pause_minutes(self._clock.now())
        self._is_paused = False
        self._pause_start = None
        self._notify_pause_state(False)

    def toggle_pause(self) -> None:
        if self._is_paused:
            self.resume()
        else:
            self.pause()

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def total_paused_time(self) -> timedelta:
        return timedelta(minutes=self._total_paused_minutes(self._clock.now()))

    def _open_pause_minutes(self, now: datetime) -> float:
        if not self._is_paused or self._pause_start is None:
            return 0.0
        return max(0.0, _minutes(now - self._pause_start))

    def _total_paused_minutes(self, now: datetime) -> float:
        return self._paused_minutes + self._open_pause_minutes(now)

    # ---------- Day rollover / reset ----------
    def check_new_day(self) -> bool:
        """Archive the session and start a new one if the calendar date changed."""
        self.process_lock_events()
        today = date_key(self._clock.today())
        if today == self._current_date:
            return False

        now = self._clock.now()
        session = self._store.current_session
        if session is not None:
            self._snapshot(session, now)
            self._store.archive_current()
            logger.info(
                "Day rollover %s -> %s: archived %.0f effective minutes",
                self._current_date,
                today,
                session.total_effective_work_minutes,
            )

        self._current_date = today
        self._start_session(now)
        self._persist()
        return True

    def reset_day(self) -> None:
        """Throw away today's session (not archived) and restart the clock now."""
        self.process_lock_events()
        self._start_session(self._clock.now())
        logger.info("Day %s reset", self._current_date)
        self._persist()

    def update_settings(self, settings: AppSettings) -> None:
        self._settings = settings.validated()

    @property
    def settings(self) -> AppSettings:
        return self._settings

    # ---------- Time calculations ----------
    @property
    def login_time(self) -> datetime:
        return self._login_time

    @property
    def current_date(self) -> str:
        return self._current_date

    def get_lunch_deduction(self) -> timedelta:
        """Lunch consumed so far, including a lunch lock still in progress."""
        self.process_lock_events()
        return timedelta(minutes=self._lunch_minutes_at(self._clock.now()))

    def _lunch_minutes_at(self, now: datetime) -> float:
        if self._is_locked and self._on_lunch and self._lock_time is not None:
            return self._capped_lunch(max(0.0, _minutes(now - self._lock_time)))
        return self._lunch_minutes

    def get_effective_work_time(self) -> timedelta:
        """Elapsed since login, minus lunch and pauses; never negative."""
        self.process_lock_events()
        return timedelta(minutes=self._effective_minutes(self._clock.now()))

    def _effective_minutes(self, now: datetime) -> float:
        elapsed = max(0.0, _minutes(now - self._login_time))
        effective = elapsed - self._lunch_minutes_at(now) - self._total_paused_minutes(now)
        return max(0.0, effective)

    def get_progress_percent(self) -> float:
        """Progress percentage (can exceed 100)."""
        return _minutes(self.get_effective_work_time()) / self._settings.work_day_minutes * 100.0

    def get_filled_cells(self, total_cells: int) -> int:
        """Number of filled cells, capped at ``total_cells``."""
        percent = min(self.get_progress_percent(), 100.0)
        return int(percent / 100.0 * total_cells)

    def get_remaining_time(self) -> timedelta:
        remaining = self._settings.work_day_minutes - _minutes(self.get_effective_work_time())
        return timedelta(minutes=remaining) if remaining > 0 else timedelta(0)

    def get_overtime_time(self) -> timedelta:
        overtime = _minutes(self.get_effective_work_time()) - self._settings.work_day_minutes
        return timedelta(minutes=overtime) if overtime > 0 else timedelta(0)

    @property
    def is_overtime(self) -> bool:
        return _minutes(self.get_effective_work_time()) > self._settings.work_day_minutes

    @property
    def is_in_lunch_window(self) -> bool:
        now = self._clock.now()
        start, end = self._settings.lunch_window(now)
        return start <= now < end

    @property
    def is_on_lunch_break(self) -> bool:
        self.process_lock_events()
        return self._is_locked and self._on_lunch

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    def get_estimated_end_time(self) -> datetime:
        """Expected finish: now + remaining work (+ the lunch still to take)."""
        now = self._clock.now()
        remaining = self.get_remaining_time()
        _, lunch_end = self._settings.lunch_window(now)
        lunch_left = max(0.0, self._settings.lunch_duration_minutes - self._lunch_minutes_at(now))
        if now < lunch_end and lunch_left > 0:
            return now + remaining + timedelta(minutes=lunch_left)
        return now + remaining

    # ---------- Notifications ----------
    def check_and_notify_overtime(self) -> bool:
        """Fire overtime-started once per crossing; True when it fired now."""
        if self.is_overtime and not self._overtime_notified:
            self._overtime_notified = True
            logger.info("Workday of %d min reached; overtime started", self._settings.work_day_minutes)
            for cb in list(self._overtime_callbacks):
                try:
                    cb()
                except Exception:
                    logger.exception("Overtime subscriber failed")
            return True
        return False

    def _notify_pause_state(self, paused: bool) -> None:
        for cb in list(self._pause_callbacks):
            try:
                cb(paused)
            except Exception:
                logger.exception("Pause state subscriber failed")

    # ---------- Persistence ----------
    def save_state(self) -> bool:
        """Snapshot today's totals into the store and write it; False on write failure."""
        self.process_lock_events()
        session = self._store.current_session
        if session is None:
            return True
        now = self._clock.now()
        self._snapshot(session, now)
        session.last_activity_time = format_timestamp(now)
        return self._persist()

    def _snapshot(self, session: DaySession, now: datetime) -> None:
        session.total_effective_work_minutes = self._effective_minutes(now)
        session.total_paused_minutes = self._total_paused_minutes(now)
        session.total_lunch_minutes = self._lunch_minutes_at(now)
        session.is_paused = self._is_paused
        session.pause_start_time = format_timestamp(self._pause_start) if self._is_paused and self._pause_start else None

    def _persist(self) -> bool:
        try:
            self._storage.save_sessions(self._store)
        except StorageError as exc:
            logger.error("Saving sessions failed: %s", exc)
            self.last_save_error = exc
            for cb in list(self._save_failed_callbacks):
                try:
                    cb(exc)
                except Exception:
                    logger.exception("Save-failed subscriber failed")
            return False
        self.last_save_error = None
        return True


__all__ = ["SessionEngine"]
