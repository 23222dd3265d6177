"""
Persisted records for Dayloader.

A ``DaySession`` is one calendar day of work; a ``SessionStore`` holds the
current day plus the append-only history of completed days. Both are plain
dataclasses with ``to_dict``/``from_dict`` so the storage layer can write
them as JSON without knowing their shape.

Timestamps are stored as local ISO-8601 strings and dates as ``YYYY-MM-DD``.
Reading is lenient: a bad number becomes 0, a bad timestamp becomes None,
and the engine decides what None means.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y-%m-%d"


def date_key(day: date) -> str:
    return day.strftime(DATE_FORMAT)


def format_timestamp(ts: datetime) -> str:
    return ts.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into a naive local datetime, or None.

    Offset-aware values (e.g. written by another tool) are converted to
    local time first.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _minutes(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


@dataclass
class DaySession:
    date: str
    first_login_time: str
    last_activity_time: Optional[str] = None
    total_effective_work_minutes: float = 0.0
    total_paused_minutes: float = 0.0
    total_lunch_minutes: float = 0.0
    is_paused: bool = False
    pause_start_time: Optional[str] = None
    day_completed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "first_login_time": self.first_login_time,
            "last_activity_time": self.last_activity_time,
            "total_effective_work_minutes": self.total_effective_work_minutes,
            "total_paused_minutes": self.total_paused_minutes,
            "total_lunch_minutes": self.total_lunch_minutes,
            "is_paused": self.is_paused,
            "pause_start_time": self.pause_start_time,
            "day_completed": self.day_completed,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "DaySession":
        """Build a session from a JSON record; raises ValueError without a date."""
        day = raw.get("date")
        if not isinstance(day, str) or not day:
            raise ValueError("session record has no date")
        return cls(
            date=day,
            first_login_time=str(raw.get("first_login_time") or ""),
            last_activity_time=_optional_str(raw.get("last_activity_time")),
            total_effective_work_minutes=_minutes(raw.get("total_effective_work_minutes")),
            total_paused_minutes=_minutes(raw.get("total_paused_minutes")),
            total_lunch_minutes=_minutes(raw.get("total_lunch_minutes")),
            is_paused=bool(raw.get("is_paused", False)),
            pause_start_time=_optional_str(raw.get("pause_start_time")),
            day_completed=bool(raw.get("day_completed", False)),
        )


def _new_history() -> List[DaySession]:
    return []


@dataclass
class SessionStore:
    current_session: Optional[DaySession] = None
    history: List[DaySession] = field(default_factory=_new_history)

    def archive_current(self) -> Optional[DaySession]:
        """Seal the current session and append it to history exactly once."""
        session = self.current_session
        if session is None:
            return None
        session.day_completed = True
        session.is_paused = False
        session.pause_start_time = None
        self.history.append(session)
        self.current_session = None
        return session

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_session": self.current_session.to_dict() if self.current_session else None,
            "history": [s.to_dict() for s in self.history],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SessionStore":
        current: Optional[DaySession] = None
        raw_current = raw.get("current_session")
        if isinstance(raw_current, dict):
            try:
                current = DaySession.from_dict(raw_current)
            except ValueError:
                logger.warning("Discarding unreadable current session record")

        history: List[DaySession] = []
        raw_history = raw.get("history")
        for entry in raw_history if isinstance(raw_history, list) else []:
            if not isinstance(entry, dict):
                continue
            try:
                history.append(DaySession.from_dict(entry))
            except ValueError:
                # Skip invalid entry
                continue
        return cls(current_session=current, history=history)


__all__ = [
    "DATE_FORMAT",
    "DaySession",
    "SessionStore",
    "date_key",
    "format_timestamp",
    "parse_timestamp",
]
