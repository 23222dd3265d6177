from datetime import timedelta

from dayloader.pomodoro import IDLE, RUNNING, PomodoroTimer


def test_idle_by_default(clock):
    timer = PomodoroTimer(25, clock=clock)
    assert timer.state == IDLE
    assert not timer.is_active
    assert timer.remaining() == timedelta(0)
    assert timer.progress() == 0.0
    assert timer.tick() is False


def test_countdown_and_display(clock):
    timer = PomodoroTimer(25, clock=clock)
    timer.start()
    assert timer.state == RUNNING
    assert timer.display() == "25:00"

    clock.advance(timedelta(minutes=10, seconds=30))
    assert timer.display() == "14:30"
    assert timer.progress() == 0.42


def test_tick_reports_completion_once(clock):
    timer = PomodoroTimer(25, clock=clock)
    timer.start()
    clock.advance(timedelta(minutes=24))
    assert timer.tick() is False

    clock.advance(timedelta(minutes=3))
    assert timer.tick() is True
    assert timer.tick() is False
    assert timer.completed_sessions == 1
    assert timer.state == IDLE


def test_toggle_cancels_without_counting(clock):
    timer = PomodoroTimer(25, clock=clock)
    assert timer.toggle() is True
    clock.advance(timedelta(minutes=5))
    assert timer.toggle() is False
    assert timer.completed_sessions == 0
    assert timer.display() == "00:00"


def test_start_with_custom_length(clock):
    timer = PomodoroTimer(25, clock=clock)
    timer.start(50)
    assert timer.minutes == 50
    clock.advance(timedelta(minutes=50))
    assert timer.remaining() == timedelta(0)
    assert timer.progress() == 1.0
    assert timer.tick() is True


def test_irregular_polling_does_not_drift(clock):
    timer = PomodoroTimer(1, clock=clock)
    timer.start()
    for _ in range(7):
        clock.advance(timedelta(seconds=7))
        timer.tick()
    assert timer.display() == "00:11"
