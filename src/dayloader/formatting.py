from __future__ import annotations

from datetime import timedelta


def format_time(value: timedelta) -> str:
    """Compact clock text: ``"1h 05m"`` from an hour up, ``"5m"`` below."""
    total_minutes = max(0, int(value.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    if hours >= 1:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m"


def format_duration(total_minutes: float) -> str:
    """Rounded duration text: ``"1h 30min"`` or ``"45min"``."""
    mins = max(0, int(round(total_minutes)))
    hours, minutes = divmod(mins, 60)
    return f"{hours}h {minutes:02d}min" if hours > 0 else f"{minutes}min"


__all__ = ["format_time", "format_duration"]
