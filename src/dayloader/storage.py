"""
JSON persistence for Dayloader.

Two documents live in the data folder:

- ``settings.json``: the ``AppSettings`` fields
- ``sessions.json``: ``{"current_session": {...} | null, "history": [...]}``

Loading never fails: a missing or corrupt document yields defaults (an
empty store). Saving is an atomic temp-file replace and raises
``StorageError`` when the write cannot be completed, so callers can tell
the user their history is not being kept.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional, Protocol

from .models import SessionStore
from .settings import AppSettings

logger = logging.getLogger(__name__)

SETTINGS_FILE = "settings.json"
SESSIONS_FILE = "sessions.json"


class StorageError(Exception):
    """A document could not be written."""


class Storage(Protocol):
    def load_settings(self) -> AppSettings: ...

    def save_settings(self, settings: AppSettings) -> None: ...

    def load_sessions(self) -> SessionStore: ...

    def save_sessions(self, store: SessionStore) -> None: ...


def default_data_folder() -> str:
    override = os.environ.get("DAYLOADER_HOME", "").strip()
    if override:
        return os.path.expanduser(override)
    return os.path.join(os.path.expanduser("~"), ".dayloader")


class JsonStorage:
    """Manages load/save of settings and sessions with atomic writes."""

    def __init__(self, data_folder: Optional[str] = None) -> None:
        self.data_folder = data_folder or default_data_folder()
        self.settings_path = os.path.join(self.data_folder, SETTINGS_FILE)
        self.sessions_path = os.path.join(self.data_folder, SESSIONS_FILE)

    # ---------------- Settings ----------------
    def load_settings(self) -> AppSettings:
        raw = self._read(self.settings_path)
        if raw is None:
            return AppSettings()
        return AppSettings.from_dict(raw)

    def save_settings(self, settings: AppSettings) -> None:
        self._write(self.settings_path, settings.to_dict())

    # ---------------- Sessions ----------------
    def load_sessions(self) -> SessionStore:
        raw = self._read(self.sessions_path)
        if raw is None:
            return SessionStore()
        return SessionStore.from_dict(raw)

    def save_sessions(self, store: SessionStore) -> None:
        self._write(self.sessions_path, store.to_dict())

    # ---------------- Internals ----------------
    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable %s: %s", path, exc)
            return None
        if not isinstance(raw, dict):
            logger.warning("Ignoring %s: expected a JSON object", path)
            return None
        return raw

    def _write(self, path: str, raw: Dict[str, Any]) -> None:
        # Atomic write: write to temp and replace
        tmp = path + ".tmp"
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(raw, f, indent=2, ensure_ascii=False)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Could not write {path}: {exc}") from exc


__all__ = [
    "JsonStorage",
    "Storage",
    "StorageError",
    "default_data_folder",
    "SETTINGS_FILE",
    "SESSIONS_FILE",
]
