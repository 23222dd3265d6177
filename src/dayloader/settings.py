from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, time, timedelta
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_LUNCH_START = time(12, 0)


@dataclass
class AppSettings:
    """User configuration, persisted as ``settings.json`` in the data folder."""

    # Workday
    work_day_minutes: int = 480
    lunch_start_time: str = "12:00"  # HH:MM
    lunch_duration_minutes: int = 60
    min_lunch_lock_minutes: float = 0.0  # shorter locks in the lunch window are ignored

    # Pomodoro
    pomodoro_minutes: int = 25

    # Presentation-only, kept so the document round-trips
    auto_start: bool = True
    language: str = "auto"
    window_left: float = -1.0
    window_top: float = -1.0
    window_width: float = -1.0
    window_height: float = -1.0
    mini_mode_width: float = -1.0

    def get_lunch_start(self) -> time:
        """Parse ``lunch_start_time``; falls back to 12:00 when invalid."""
        return parse_time_of_day(self.lunch_start_time) or DEFAULT_LUNCH_START

    def get_lunch_end(self) -> time:
        # Wraps past midnight for late windows; use lunch_window() for comparisons.
        start = datetime.combine(datetime.min.date(), self.get_lunch_start())
        return (start + timedelta(minutes=self.lunch_duration_minutes)).time()

    def lunch_window(self, day: datetime) -> tuple[datetime, datetime]:
        """Return the [start, end) lunch window anchored on ``day``'s date."""
        start = datetime.combine(day.date(), self.get_lunch_start())
        return start, start + timedelta(minutes=max(0, self.lunch_duration_minutes))

    def validated(self) -> "AppSettings":
        """Return a copy with out-of-range values replaced by defaults."""
        defaults = AppSettings()
        changes: Dict[str, Any] = {}
        if not _positive(self.work_day_minutes):
            changes["work_day_minutes"] = defaults.work_day_minutes
        if not _non_negative(self.lunch_duration_minutes):
            changes["lunch_duration_minutes"] = defaults.lunch_duration_minutes
        if not _non_negative(self.min_lunch_lock_minutes):
            changes["min_lunch_lock_minutes"] = defaults.min_lunch_lock_minutes
        if not _positive(self.pomodoro_minutes):
            changes["pomodoro_minutes"] = defaults.pomodoro_minutes
        if parse_time_of_day(self.lunch_start_time) is None:
            changes["lunch_start_time"] = defaults.lunch_start_time
        if changes:
            logger.warning("Replacing invalid settings with defaults: %s", sorted(changes))
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "AppSettings":
        """Build settings from a JSON document, ignoring unknown keys and bad types."""
        defaults = cls()
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in raw:
                continue
            default = getattr(defaults, f.name)
            value = raw[f.name]
            try:
                if isinstance(default, bool):
                    values[f.name] = bool(value)
                elif isinstance(default, int):
                    values[f.name] = int(value)
                elif isinstance(default, float):
                    values[f.name] = float(value)
                else:
                    values[f.name] = str(value)
            except (TypeError, ValueError, OverflowError):
                logger.warning("Ignoring invalid value for setting %r: %r", f.name, value)
        return cls(**values).validated()


def parse_time_of_day(value: Any) -> Optional[time]:
    try:
        return datetime.strptime(str(value).strip(), "%H:%M").time()
    except ValueError:
        return None


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0


def _non_negative(value: Any) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value >= 0


__all__ = ["AppSettings", "DEFAULT_LUNCH_START", "parse_time_of_day"]
