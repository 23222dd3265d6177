import threading
from datetime import datetime, timedelta

import pytest

from dayloader.settings import AppSettings


LUNCH = AppSettings(work_day_minutes=480, lunch_start_time="12:00", lunch_duration_minutes=60)


def at(hour, minute=0, second=0):
    return datetime(2026, 2, 10, hour, minute, second)


def test_lock_inside_window_deducts_locked_time(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 10))
    lock_source.lock(clock.now())
    clock.set(at(12, 40))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(minutes=30)
    assert engine.get_effective_work_time() == timedelta(hours=4, minutes=10)


def test_progress_plateaus_during_lunch_lock(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())

    clock.set(at(12, 15))
    first = engine.get_effective_work_time()
    assert engine.is_on_lunch_break
    clock.set(at(12, 45))
    second = engine.get_effective_work_time()

    assert first == second == timedelta(hours=4)
    assert engine.get_progress_percent() == pytest.approx(50.0)


def test_long_lunch_is_capped_at_duration(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(13, 30))

    # live cap while still locked: the last 30 minutes count as work
    assert engine.get_lunch_deduction() == timedelta(minutes=60)
    assert engine.get_effective_work_time() == timedelta(hours=4, minutes=30)

    lock_source.unlock(clock.now())
    assert engine.get_lunch_deduction() == timedelta(minutes=60)
    assert not engine.is_on_lunch_break


def test_several_locks_share_one_allowance(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(12, 40))
    lock_source.unlock(clock.now())
    clock.set(at(12, 45))
    lock_source.lock(clock.now())
    clock.set(at(13, 15))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(minutes=60)


def test_lock_started_before_window_is_not_lunch(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(11, 50))
    lock_source.lock(clock.now())
    clock.set(at(12, 30))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(0)
    assert engine.get_effective_work_time() == timedelta(hours=4, minutes=30)


def test_lock_outside_window_is_ignored(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(15, 0))
    lock_source.lock(clock.now())
    assert not engine.is_on_lunch_break
    assert engine.is_locked
    clock.set(at(15, 30))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(0)
    assert not engine.is_locked


def test_lock_at_window_end_is_not_lunch(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(13, 0))
    lock_source.lock(clock.now())
    assert not engine.is_on_lunch_break


def test_short_lock_below_threshold_is_discarded(build_engine, clock, lock_source):
    settings = AppSettings(lunch_start_time="12:00", lunch_duration_minutes=60, min_lunch_lock_minutes=5)
    engine = build_engine(settings)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(12, 2))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(0)

    lock_source.lock(clock.now())
    clock.set(at(12, 32))
    lock_source.unlock(clock.now())
    assert engine.get_lunch_deduction() == timedelta(minutes=30)


def test_duplicate_lock_event_keeps_first_timestamp(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    lock_source.lock(at(12, 0))
    lock_source.lock(at(12, 20))
    clock.set(at(12, 30))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(minutes=30)


def test_unlock_without_lock_is_harmless(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 30))
    lock_source.unlock(clock.now())

    assert engine.get_lunch_deduction() == timedelta(0)
    assert engine.process_lock_events() == 0


def test_lock_while_paused_is_not_lunch(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(11, 55))
    engine.pause()
    clock.set(at(12, 5))
    lock_source.lock(clock.now())
    clock.set(at(12, 35))
    lock_source.unlock(clock.now())
    engine.resume()

    assert engine.get_lunch_deduction() == timedelta(0)
    assert engine.total_paused_time == timedelta(minutes=40)


def test_zero_duration_lunch_never_deducts(build_engine, clock, lock_source):
    engine = build_engine(AppSettings(lunch_start_time="12:00", lunch_duration_minutes=0))
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(12, 30))

    assert not engine.is_on_lunch_break
    assert engine.get_lunch_deduction() == timedelta(0)


def test_events_are_queued_until_processed(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    lock_source.lock(at(12, 0))
    lock_source.unlock(at(12, 30))

    assert not engine.is_locked
    assert engine.process_lock_events() == 2
    assert engine.process_lock_events() == 0


def test_events_from_another_thread(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 45))

    def fire():
        lock_source.lock(at(12, 0))
        lock_source.unlock(at(12, 45))

    worker = threading.Thread(target=fire)
    worker.start()
    worker.join()

    assert engine.get_lunch_deduction() == timedelta(minutes=45)


def test_lunch_is_persisted_and_restored(clock, lock_source):
    from dayloader.engine import SessionEngine
    from dayloader.models import SessionStore

    from conftest import make_storage

    store = SessionStore()
    first = SessionEngine(LUNCH, make_storage(store), clock=clock, lock_source=lock_source)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(12, 40))
    lock_source.unlock(clock.now())
    first.save_state()
    first.close()

    assert store.current_session.total_lunch_minutes == pytest.approx(40)

    clock.set(at(14, 0))
    second = SessionEngine(LUNCH, make_storage(store), clock=clock, lock_source=lock_source)
    assert second.get_lunch_deduction() == timedelta(minutes=40)
    assert second.get_effective_work_time() == timedelta(hours=5, minutes=20)


def test_reset_clears_lunch(build_engine, clock, lock_source):
    engine = build_engine(LUNCH)
    clock.set(at(12, 0))
    lock_source.lock(clock.now())
    clock.set(at(12, 30))
    lock_source.unlock(clock.now())

    engine.reset_day()
    assert engine.get_lunch_deduction() == timedelta(0)
