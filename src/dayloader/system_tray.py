"""
System Tray host for Dayloader

A thin presentation layer around the session engine:
- Status dot whose color follows the day state and whose filled wedge
  follows workday progress
- Tooltip with effective time and remaining time (or overtime)
- Right-click menu forwarding user intents (pause, end of day, Pomodoro,
  reset, quit) to callbacks

Menu callbacks run on the pystray thread. The app passes callbacks that
only post commands to its own queue, so the engine is never touched from
here.

Usage:
    from dayloader.system_tray import SystemTrayManager

    tray = SystemTrayManager(on_toggle_pause=..., on_exit=...)
    tray.start()
    tray.update_state(status="working", progress_percent=42.0, effective_s=12000, remaining_s=16800)
    tray.stop()

Icon States:
    - Green (#2ECC71): working
    - Yellow (#F39C12): paused
    - Blue (#3498DB): lunch break
    - Red (#E74C3C): overtime
    - Gray (#7F8C8D): day ended
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional, Callable, Any, Dict

try:
    import pystray  # type: ignore
    from pystray import Menu, MenuItem  # type: ignore
    pystray_available = True
except Exception:  # pragma: no cover
    # ImportError, or a backend failing at import time (e.g. Xlib without a display)
    pystray = None  # type: ignore[assignment]
    Menu = None  # type: ignore[assignment]
    MenuItem = None  # type: ignore[assignment]
    pystray_available = False

try:
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover
    Image = None  # type: ignore[assignment]
    ImageDraw = None  # type: ignore[assignment]

from .formatting import format_time

logger = logging.getLogger(__name__)


# ------------------------ Configuration & State ------------------------

@dataclass
class TrayState:
    """What the tray currently shows"""
    status: str = "working"  # "working" | "paused" | "lunch" | "overtime" | "stopped"
    progress_percent: float = 0.0
    effective_s: float = 0.0
    remaining_s: float = 0.0
    overtime_s: float = 0.0
    is_paused: bool = False
    is_stopped: bool = False
    pomodoro_text: str = ""
    estimated_end: str = ""  # HH:MM, empty when not applicable
    last_update_ms: int = 0


@dataclass
class TrayConfig:
    """Configuration for system tray appearance"""
    # Icon properties
    icon_size: int = 64
    icon_padding: int = 6

    # Colors (RGBA tuples)
    color_working: tuple[int, int, int, int] = (46, 204, 113, 255)    # Green
    color_paused: tuple[int, int, int, int] = (243, 156, 18, 255)     # Yellow
    color_lunch: tuple[int, int, int, int] = (52, 152, 219, 255)      # Blue
    color_overtime: tuple[int, int, int, int] = (231, 76, 60, 255)    # Red
    color_stopped: tuple[int, int, int, int] = (127, 140, 141, 255)   # Gray
    color_track: tuple[int, int, int, int] = (60, 60, 60, 255)

    # Progress wedge granularity, in percent; keeps the icon cache small
    progress_step: int = 5

    app_name: str = "Dayloader"


# ------------------------ Icon Generation ------------------------

class TrayIconGenerator:
    """Generates tray icons: dark track plus a colored progress wedge"""

    def __init__(self, config: TrayConfig) -> None:
        self.config = config
        self._icon_cache: Dict[str, Any] = {}

    def create_icon(self, state: TrayState) -> Optional[Any]:
        """Create a PIL Image for ``state``, or None if PIL is unavailable"""
        if Image is None or ImageDraw is None:
            return None

        color = self._get_state_color(state)
        step = max(1, self.config.progress_step)
        bucket = min(100, int(state.progress_percent // step) * step)
        cache_key = f"{color}_{bucket}"

        if cache_key in self._icon_cache:
            return self._icon_cache[cache_key]

        size = self.config.icon_size
        img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(img)

        padding = self.config.icon_padding
        bounds = (padding, padding, size - padding, size - padding)
        draw.ellipse(bounds, fill=self.config.color_track)
        if bucket >= 100:
            draw.ellipse(bounds, fill=color)
        elif bucket > 0:
            draw.pieslice(bounds, start=-90, end=-90 + 360 * bucket / 100, fill=color)

        self._icon_cache[cache_key] = img
        return img

    def _get_state_color(self, state: TrayState) -> tuple[int, int, int, int]:
        return {
            "paused": self.config.color_paused,
            "lunch": self.config.color_lunch,
            "overtime": self.config.color_overtime,
            "stopped": self.config.color_stopped,
        }.get(state.status, self.config.color_working)

    def clear_cache(self) -> None:
        self._icon_cache.clear()


# ------------------------ System Tray Manager ------------------------

class SystemTrayManager:
    """
    Owns the pystray icon and its thread.

    All user intents leave through the ``on_*`` callbacks; state comes in
    through ``update_state``.
    """

    def __init__(
        self,
        on_toggle_pause: Optional[Callable[[], None]] = None,
        on_toggle_stop: Optional[Callable[[], None]] = None,
        on_toggle_pomodoro: Optional[Callable[[], None]] = None,
        on_reset_day: Optional[Callable[[], None]] = None,
        on_exit: Optional[Callable[[], None]] = None,
        config: Optional[TrayConfig] = None,
    ) -> None:
        self.config = config or TrayConfig()
        self.state = TrayState()
        self.icon_generator = TrayIconGenerator(self.config)

        # Callbacks
        self.on_toggle_pause = on_toggle_pause
        self.on_toggle_stop = on_toggle_stop
        self.on_toggle_pomodoro = on_toggle_pomodoro
        self.on_reset_day = on_reset_day
        self.on_exit = on_exit

        # Threading
        self._tray_icon: Optional[Any] = None
        self._tray_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._update_lock = threading.Lock()

    # -------------------- Public API --------------------

    def start(self) -> bool:
        """Start the tray icon thread; False if pystray/PIL are missing"""
        if not self.dependencies_available():
            return False

        if self._tray_thread and self._tray_thread.is_alive():
            return True

        self._stop_event.clear()
        self._tray_thread = threading.Thread(
            target=self._run_tray,
            name="Dayloader-SystemTray",
            daemon=True,
        )
        self._tray_thread.start()

        # Brief wait to ensure tray initializes
        time.sleep(0.1)
        return True

    def stop(self) -> None:
        """Stop the tray and wait for its thread"""
        self._stop_event.set()

        if self._tray_icon is not None:
            try:
                self._tray_icon.stop()
            except Exception:
                logger.debug("Tray icon stop failed", exc_info=True)

        if (
            self._tray_thread
            and self._tray_thread.is_alive()
            and self._tray_thread is not threading.current_thread()
        ):
            self._tray_thread.join(timeout=3.0)

        self._cleanup()

    def update_state(self, **changes: Any) -> None:
        """Apply ``TrayState`` field changes and refresh icon, tooltip and menu"""
        with self._update_lock:
            menu_changed = False
            icon_changed = False
            for name, value in changes.items():
                if not hasattr(self.state, name):
                    raise AttributeError(f"TrayState has no field {name!r}")
                if getattr(self.state, name) == value:
                    continue
                setattr(self.state, name, value)
                if name in ("is_paused", "is_stopped", "pomodoro_text", "progress_percent"):
                    menu_changed = True
                if name in ("status", "progress_percent"):
                    icon_changed = True
            self.state.last_update_ms = int(time.time() * 1000)

            if icon_changed:
                self._update_icon_async()
            if menu_changed:
                self._update_menu_async()
            self._update_tooltip_async()

    def notify(self, title: str, message: str) -> bool:
        """Show a balloon through the tray icon; False if the tray is not running"""
        if self._tray_icon is None:
            return False
        try:
            self._tray_icon.notify(message, title)
            return True
        except Exception:
            logger.debug("Tray balloon failed", exc_info=True)
            return False

    # -------------------- Internal Implementation --------------------

    def _run_tray(self) -> None:
        """Main tray thread - creates and runs the pystray icon"""
        try:
            if pystray is not None:
                self._tray_icon = pystray.Icon(
                    name=self.config.app_name,
                    icon=self.icon_generator.create_icon(self.state),
                    title=self._generate_tooltip(),
                    menu=self._create_menu(),
                )
                # Blocks until stopped
                self._tray_icon.run()
        except Exception:
            logger.exception("Tray icon crashed")
        finally:
            self._tray_icon = None

    def _create_menu(self) -> Any:
        if Menu is None or MenuItem is None:
            return None

        pause_label = "Resume" if self.state.is_paused else "Pause"
        stop_label = "Resume day" if self.state.is_stopped else "End of day"
        pomodoro_label = f"Stop Pomodoro ({self.state.pomodoro_text})" if self.state.pomodoro_text else "Pomodoro"

        return Menu(
            MenuItem(
                text=self._generate_stats_text(),
                action=None,  # Display-only item
                enabled=False,
            ),
            Menu.SEPARATOR,
            MenuItem(
                text=pause_label,
                action=self._menu_toggle_pause,
                enabled=not self.state.is_stopped,
                default=True,
            ),
            MenuItem(text=stop_label, action=self._menu_toggle_stop),
            MenuItem(text=pomodoro_label, action=self._menu_toggle_pomodoro),
            Menu.SEPARATOR,
            MenuItem(text="Reset day", action=self._menu_reset_day),
            MenuItem(text=f"Quit {self.config.app_name}", action=self._menu_exit),
        )

    def _generate_tooltip(self) -> str:
        labels = {
            "paused": "Paused",
            "lunch": "Lunch break",
            "overtime": "Overtime",
            "stopped": "Day ended",
        }
        status = labels.get(self.state.status, "Working")
        worked = format_time(timedelta(seconds=self.state.effective_s))
        if self.state.overtime_s > 0:
            tail = f"+{format_time(timedelta(seconds=self.state.overtime_s))} overtime"
        else:
            tail = f"{format_time(timedelta(seconds=self.state.remaining_s))} left"
            if self.state.estimated_end:
                tail += f", done ~{self.state.estimated_end}"
        return f"{self.config.app_name}: {status} | {worked} worked, {tail}"

    def _generate_stats_text(self) -> str:
        return f"Progress: {min(self.state.progress_percent, 999.0):.0f}%"

    # -------------------- Event Handlers --------------------

    def _invoke(self, callback: Optional[Callable[[], None]], what: str) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Tray %s handler failed", what)

    def _menu_toggle_pause(self, icon: Any, item: Any) -> None:
        self._invoke(self.on_toggle_pause, "pause")

    def _menu_toggle_stop(self, icon: Any, item: Any) -> None:
        self._invoke(self.on_toggle_stop, "end-of-day")

    def _menu_toggle_pomodoro(self, icon: Any, item: Any) -> None:
        self._invoke(self.on_toggle_pomodoro, "pomodoro")

    def _menu_reset_day(self, icon: Any, item: Any) -> None:
        self._invoke(self.on_reset_day, "reset")

    def _menu_exit(self, icon: Any, item: Any) -> None:
        self._invoke(self.on_exit, "exit")

    # -------------------- Async Updates --------------------

    def _update_icon_async(self) -> None:
        if self._tray_icon is None:
            return
        try:
            new_icon = self.icon_generator.create_icon(self.state)
            if new_icon:
                self._tray_icon.icon = new_icon
        except Exception:
            logger.warning("Tray icon update failed", exc_info=True)

    def _update_tooltip_async(self) -> None:
        if self._tray_icon is None:
            return
        try:
            self._tray_icon.title = self._generate_tooltip()
        except Exception:
            logger.warning("Tray tooltip update failed", exc_info=True)

    def _update_menu_async(self) -> None:
        if self._tray_icon is None:
            return
        try:
            new_menu = self._create_menu()
            if new_menu:
                self._tray_icon.menu = new_menu
        except Exception:
            logger.warning("Tray menu update failed", exc_info=True)

    # -------------------- Cleanup --------------------

    def _cleanup(self) -> None:
        self.icon_generator.clear_cache()
        self._tray_icon = None

    # -------------------- Utility Properties --------------------

    @property
    def is_running(self) -> bool:
        return (
            self._tray_thread is not None
            and self._tray_thread.is_alive()
            and not self._stop_event.is_set()
        )

    @staticmethod
    def dependencies_available() -> bool:
        return pystray_available and Image is not None


__all__ = [
    "SystemTrayManager",
    "TrayConfig",
    "TrayState",
    "TrayIconGenerator",
]
