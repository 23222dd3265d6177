"""
Dayloader application: the poll loop around the session engine.

Threads:
- main thread: runs ``run()``, the only thread that touches the engine
- tray thread (pystray): menu clicks ``post()`` commands onto a queue
- lock monitor thread: lock events go to the engine's own queue

Each ``tick()`` drains the command queue, then does what the host of the
engine owes it on every poll: day rollover check, overtime check, Pomodoro
countdown, tray refresh and a state save.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional, Tuple

from .clock import Clock, SystemClock
from .engine import SessionEngine
from .formatting import format_duration, format_time
from .lock_events import LockEventSource
from .pomodoro import PomodoroTimer
from .settings import AppSettings
from .storage import Storage, StorageError
from . import notifier as base_notifier

if TYPE_CHECKING:
    from .system_tray import SystemTrayManager

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0

TOGGLE_PAUSE = "toggle_pause"
TOGGLE_STOP = "toggle_stop"
TOGGLE_POMODORO = "toggle_pomodoro"
RESET_DAY = "reset_day"
UPDATE_SETTINGS = "update_settings"
QUIT = "quit"

Command = Tuple[str, Any]


class DayloaderApp:
    def __init__(
        self,
        storage: Storage,
        clock: Optional[Clock] = None,
        lock_source: Optional[LockEventSource] = None,
        tray: Optional["SystemTrayManager"] = None,
        notify: Optional[Callable[[str, str], None]] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.storage = storage
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self._notify = notify

        self.settings = storage.load_settings()
        self.engine = SessionEngine(self.settings, storage, clock=self.clock, lock_source=lock_source)
        self.pomodoro = PomodoroTimer(self.settings.pomodoro_minutes, clock=self.clock)

        self.is_stopped = False
        self._commands: "queue.Queue[Command]" = queue.Queue()
        self._stop_event = threading.Event()
        self._save_failing = False

        self.engine.on_overtime_started(self._on_overtime_started)
        self.engine.on_pause_state_changed(self._on_pause_state_changed)
        self.engine.on_save_failed(self._on_save_failed)

        self.tray = tray
        if self.tray is not None:
            self.tray.on_toggle_pause = lambda: self.post(TOGGLE_PAUSE)
            self.tray.on_toggle_stop = lambda: self.post(TOGGLE_STOP)
            self.tray.on_toggle_pomodoro = lambda: self.post(TOGGLE_POMODORO)
            self.tray.on_reset_day = lambda: self.post(RESET_DAY)
            self.tray.on_exit = lambda: self.post(QUIT)

    # ---------- Commands (any thread) ----------
    def post(self, command: str, payload: Any = None) -> None:
        self._commands.put((command, payload))

    def request_stop(self) -> None:
        self.post(QUIT)
        self._stop_event.set()

    # ---------- Poll thread ----------
    def run(self) -> None:
        """Poll until quit is requested; always ends with a final save."""
        if self.tray is not None:
            if not self.tray.dependencies_available():
                logger.warning("System tray unavailable (missing pystray or Pillow); running headless")
            elif not self.tray.start():
                logger.warning("System tray failed to start; running headless")
        logger.info("Tracking %s, workday %s", self.engine.current_date, format_duration(self.settings.work_day_minutes))
        try:
            while self.tick():
                if self._stop_event.wait(self.poll_interval):
                    break
        finally:
            self.shutdown()

    def tick(self) -> bool:
        """One poll cycle; returns False once quit was requested."""
        if not self._drain_commands():
            return False

        if self.engine.check_new_day():
            logger.info("New day started: %s", self.engine.current_date)
            if self.is_stopped:
                self.is_stopped = False
        self.engine.check_and_notify_overtime()
        if self.pomodoro.tick():
            self._send("Pomodoro finished!", "Well done! Take a short break.")
        self._refresh_tray()
        self.engine.save_state()
        return True

    def shutdown(self) -> None:
        self._stop_event.set()
        self.engine.save_state()
        self.engine.close()
        if self.tray is not None:
            self.tray.stop()
        logger.info("Dayloader stopped")

    def _drain_commands(self) -> bool:
        keep_running = True
        while True:
            try:
                command, payload = self._commands.get_nowait()
            except queue.Empty:
                return keep_running
            if command == QUIT:
                keep_running = False
            elif command == TOGGLE_PAUSE:
                if not self.is_stopped:
                    self.engine.toggle_pause()
            elif command == TOGGLE_STOP:
                self.toggle_stop()
            elif command == TOGGLE_POMODORO:
                self.toggle_pomodoro()
            elif command == RESET_DAY:
                self.is_stopped = False
                self.engine.reset_day()
            elif command == UPDATE_SETTINGS:
                self.update_settings(payload)
            else:
                logger.warning("Unknown command %r", command)

    # ---------- User intents ----------
    def toggle_stop(self) -> None:
        """End the day (pause and save) or pick it back up."""
        if self.is_stopped:
            self.is_stopped = False
            self.engine.resume()
            logger.info("Day resumed")
        else:
            self.is_stopped = True
            self.engine.pause()
            self.engine.save_state()
            logger.info("Day ended at %s worked", format_time(self.engine.get_effective_work_time()))

    def toggle_pomodoro(self) -> None:
        if self.pomodoro.toggle():
            self._send("Pomodoro", f"Focus {self.pomodoro.minutes} min")

    def update_settings(self, settings: AppSettings) -> None:
        self.settings = settings.validated()
        self.engine.update_settings(self.settings)
        self.pomodoro.minutes = self.settings.pomodoro_minutes
        try:
            self.storage.save_settings(self.settings)
        except StorageError as exc:
            logger.error("Saving settings failed: %s", exc)
            self._send("Dayloader", "Settings could not be saved.")

    # ---------- Engine events ----------
    def _on_overtime_started(self) -> None:
        self._send("Dayloader", "Workday complete! Overtime starts now.")

    def _on_pause_state_changed(self, paused: bool) -> None:
        logger.info("Tracking %s", "paused" if paused else "resumed")
        self._refresh_tray()

    def _on_save_failed(self, exc: StorageError) -> None:
        # One notification per failure streak
        if not self._save_failing:
            self._save_failing = True
            self._send("Dayloader", f"History is not being saved: {exc}")

    # ---------- Presentation ----------
    def status(self) -> str:
        if self.is_stopped:
            return "stopped"
        if self.engine.is_paused:
            return "paused"
        if self.engine.is_on_lunch_break:
            return "lunch"
        if self.engine.is_overtime:
            return "overtime"
        return "working"

    def _refresh_tray(self) -> None:
        if self.engine.last_save_error is None:
            self._save_failing = False
        if self.tray is None:
            return
        self.tray.update_state(
            status=self.status(),
            progress_percent=self.engine.get_progress_percent(),
            effective_s=self.engine.get_effective_work_time().total_seconds(),
            remaining_s=self.engine.get_remaining_time().total_seconds(),
            overtime_s=self.engine.get_overtime_time().total_seconds(),
            is_paused=self.engine.is_paused,
            is_stopped=self.is_stopped,
            pomodoro_text=self.pomodoro.display() if self.pomodoro.is_active else "",
            estimated_end=self._estimated_end_text(),
        )

    def _estimated_end_text(self) -> str:
        """Expected finish as HH:MM while the workday is still running."""
        if self.is_stopped or self.engine.is_paused or self.engine.is_overtime:
            return ""
        return self.engine.get_estimated_end_time().strftime("%H:%M")

    def _send(self, title: str, message: str) -> None:
        if self._notify is not None:
            self._notify(title, message)
            return
        if self.tray is not None and self.tray.notify(title, message):
            return
        base_notifier.notify(title, message)


__all__ = ["DayloaderApp", "DEFAULT_POLL_INTERVAL"]
