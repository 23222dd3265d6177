"""Multi-day simulations driving the engine with a manual clock."""

import random
from datetime import date, datetime, time, timedelta

import pytest

from dayloader.clock import ManualClock
from dayloader.engine import SessionEngine
from dayloader.models import DaySession, SessionStore
from dayloader.settings import AppSettings
from dayloader.storage import JsonStorage

from conftest import FakeLockSource, make_storage


def morning(day: date) -> datetime:
    return datetime.combine(day, time(8, 0))


def run_days(engine, clock, days, work_minutes=lambda i: 480, pause_minutes=0):
    """Work each day, end it with a pause, then roll over to the next morning."""
    for i in range(days):
        if pause_minutes:
            clock.advance(timedelta(hours=2))
            engine.pause()
            clock.advance(timedelta(minutes=pause_minutes))
            engine.resume()
            clock.advance(timedelta(minutes=work_minutes(i) - 120))
        else:
            clock.advance(timedelta(minutes=work_minutes(i)))
        engine.check_and_notify_overtime()
        engine.save_state()
        if not pause_minutes:
            engine.pause()
        clock.set(morning(clock.today() + timedelta(days=1)))
        assert engine.check_new_day()


def build(start: datetime, store=None, settings=None):
    clock = ManualClock(start)
    engine = SessionEngine(settings or AppSettings(), make_storage(store or SessionStore()), clock=clock, lock_source=FakeLockSource())
    return engine, clock


def assert_consecutive(history, first: date):
    for offset, session in enumerate(history):
        assert session.date == (first + timedelta(days=offset)).isoformat()
        assert session.day_completed


@pytest.mark.parametrize("days", [365, 1095])
def test_full_workdays_produce_exact_history(days):
    store = SessionStore()
    engine, clock = build(datetime(2026, 2, 10, 8, 0), store)

    run_days(engine, clock, days)

    assert len(store.history) == days
    assert_consecutive(store.history, date(2026, 2, 10))
    for session in store.history:
        assert session.total_effective_work_minutes == pytest.approx(480)
        assert not session.is_paused
    assert store.current_session.date == (date(2026, 2, 10) + timedelta(days=days)).isoformat()
    assert engine.get_effective_work_time() == timedelta(0)


def test_varied_day_lengths():
    rng = random.Random(42)
    lengths = [rng.randint(240, 660) for _ in range(120)]
    store = SessionStore()
    engine, clock = build(datetime(2026, 2, 10, 8, 0), store)

    run_days(engine, clock, len(lengths), work_minutes=lambda i: lengths[i])

    assert [round(s.total_effective_work_minutes) for s in store.history] == lengths


def test_overtime_fires_once_per_day():
    engine, clock = build(datetime(2026, 2, 10, 8, 0))
    fired = []
    engine.on_overtime_started(lambda: fired.append(clock.today()))

    run_days(engine, clock, 30, work_minutes=lambda i: 540)

    assert len(fired) == 30
    assert len(set(fired)) == 30


def test_daily_pauses_are_recorded_per_day():
    store = SessionStore()
    engine, clock = build(datetime(2026, 2, 10, 8, 0), store)

    run_days(engine, clock, 60, pause_minutes=25)

    assert len(store.history) == 60
    for session in store.history:
        assert session.total_paused_minutes == pytest.approx(25)


def test_weekend_bridges_friday_to_monday():
    store = SessionStore()
    engine, clock = build(datetime(2026, 2, 6, 8, 0), store)
    clock.advance(timedelta(hours=8))
    engine.pause()

    clock.set(datetime(2026, 2, 9, 8, 0))
    assert engine.check_new_day() is True
    assert engine.check_new_day() is False

    assert [s.date for s in store.history] == ["2026-02-06"]
    assert store.history[0].total_effective_work_minutes == pytest.approx(480)
    assert store.current_session.date == "2026-02-09"


def test_leap_day_and_year_boundary():
    store = SessionStore()
    engine, clock = build(datetime(2027, 12, 31, 8, 0), store)

    run_days(engine, clock, 62)

    dates = [s.date for s in store.history]
    assert dates[0] == "2027-12-31"
    assert dates[1] == "2028-01-01"
    assert "2028-02-29" in dates
    assert dates[dates.index("2028-02-29") + 1] == "2028-03-01"
    assert_consecutive(store.history, date(2027, 12, 31))


def test_large_history_survives_startup_and_disk(tmp_path):
    history = [
        DaySession(
            date=(date(2020, 1, 1) + timedelta(days=i)).isoformat(),
            first_login_time=morning(date(2020, 1, 1) + timedelta(days=i)).isoformat(),
            total_effective_work_minutes=480,
            day_completed=True,
        )
        for i in range(2000)
    ]
    stale = DaySession(date="2026-02-09", first_login_time=morning(date(2026, 2, 9)).isoformat())
    storage = JsonStorage(str(tmp_path))
    storage.save_sessions(SessionStore(current_session=stale, history=history))

    clock = ManualClock(datetime(2026, 2, 10, 8, 0))
    engine = SessionEngine(AppSettings(), storage, clock=clock, lock_source=FakeLockSource())
    engine.close()

    reloaded = storage.load_sessions()
    assert len(reloaded.history) == 2001
    assert reloaded.history[0].date == "2020-01-01"
    assert reloaded.history[-1].date == "2026-02-09"
    assert reloaded.current_session.date == "2026-02-10"
