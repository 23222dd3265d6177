from datetime import datetime
from typing import Callable, List, Optional
from unittest.mock import MagicMock

import pytest

from dayloader.clock import ManualClock
from dayloader.engine import SessionEngine
from dayloader.lock_events import LockCallback, LockEvent, LockEventKind, SubscriptionResult
from dayloader.models import SessionStore
from dayloader.settings import AppSettings
from dayloader.storage import JsonStorage


START = datetime(2026, 2, 10, 8, 0, 0)


class FakeLockSource:
    """Lock source whose events are fired by the test."""

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.callbacks: List[LockCallback] = []

    def subscribe(self, callback: LockCallback) -> SubscriptionResult:
        if not self.available:
            return SubscriptionResult(available=False, reason="not supported here")
        self.callbacks.append(callback)
        return SubscriptionResult(available=True)

    def unsubscribe(self, callback: LockCallback) -> None:
        self.callbacks.remove(callback)

    def lock(self, ts: datetime) -> None:
        for cb in list(self.callbacks):
            cb(LockEvent(LockEventKind.LOCKED, ts))

    def unlock(self, ts: datetime) -> None:
        for cb in list(self.callbacks):
            cb(LockEvent(LockEventKind.UNLOCKED, ts))


def make_storage(store: Optional[SessionStore] = None, settings: Optional[AppSettings] = None) -> MagicMock:
    storage = MagicMock(spec=JsonStorage)
    storage.load_sessions.return_value = store if store is not None else SessionStore()
    storage.load_settings.return_value = settings or AppSettings()
    return storage


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def lock_source() -> FakeLockSource:
    return FakeLockSource()


@pytest.fixture
def build_engine(clock: ManualClock, lock_source: FakeLockSource) -> Callable[..., SessionEngine]:
    """Factory: build_engine(settings=..., store=...) with the shared clock and lock source."""

    def _build(
        settings: Optional[AppSettings] = None,
        store: Optional[SessionStore] = None,
        storage: Optional[MagicMock] = None,
    ) -> SessionEngine:
        return SessionEngine(
            settings or AppSettings(),
            storage or make_storage(store),
            clock=clock,
            lock_source=lock_source,
        )

    return _build
