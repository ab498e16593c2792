"""Unit tests for the persistent countdown timer."""

import json

from app.services.countdown import (
    STORAGE_PREFIX,
    CountdownTimer,
    clear_all_timers,
    format_hours_minutes,
    format_time,
    format_time_hindi,
    get_timer_remaining,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestFormatting:
    def test_format_time(self):
        assert format_time(28) == "0:28"
        assert format_time(65) == "1:05"
        assert format_time(0) == "0:00"
        assert format_time(-3) == "0:00"

    def test_format_time_hindi(self):
        assert format_time_hindi(65) == "1 मिनट 5 सेकंड"
        assert format_time_hindi(28) == "28 सेकंड"

    def test_format_hours_minutes(self):
        assert format_hours_minutes(4 * 3600 + 23 * 60 + 10) == "4h 23m"
        assert format_hours_minutes(23 * 60) == "23m"
        assert format_hours_minutes(4 * 3600 + 23 * 60, "hi") == "4 घंटे 23 मिनट"
        assert format_hours_minutes(5 * 60, "hi") == "5 मिनट"


class TestCountdownTimer:
    def test_auto_start_counts_down(self):
        clock = FakeClock()
        timer = CountdownTimer(30, "otp", store={}, clock=clock)

        assert timer.is_active
        assert timer.remaining == 30
        clock.advance(2)
        assert timer.remaining == 28
        assert timer.formatted == "0:28"

    def test_survives_recreation(self):
        """Test that a new timer on the same key resumes instead of restarting."""
        store = {}
        clock = FakeClock()
        CountdownTimer(30, "otp", store=store, clock=clock)
        clock.advance(10)

        again = CountdownTimer(30, "otp", store=store, clock=clock)
        assert again.remaining == 20
        assert f"{STORAGE_PREFIX}otp" in store

    def test_completion_fires_once(self):
        clock = FakeClock()
        calls = []
        timer = CountdownTimer(5, "otp", store={}, clock=clock,
                               on_complete=lambda: calls.append("done"))
        clock.advance(6)

        assert timer.remaining == 0
        assert timer.is_complete
        assert not timer.is_active
        timer.tick()
        timer.tick()
        assert calls == ["done"]

    def test_pause_and_resume(self):
        store = {}
        clock = FakeClock()
        timer = CountdownTimer(30, "otp", store=store, clock=clock)
        clock.advance(10)
        timer.pause()
        clock.advance(100)

        assert timer.remaining == 20
        assert not timer.is_active
        assert json.loads(store[timer.storage_key])["started_at"] is None

        timer.start()
        clock.advance(5)
        assert timer.remaining == 15

    def test_reset_without_auto_start_stays_paused(self):
        clock = FakeClock()
        timer = CountdownTimer(30, "otp", store={}, auto_start=False, clock=clock)
        assert not timer.is_active

        timer.reset()
        clock.advance(10)
        assert timer.remaining == 30
        assert not timer.is_active

    def test_skip_completes_immediately(self):
        calls = []
        timer = CountdownTimer(30, "otp", store={}, clock=FakeClock(),
                               on_complete=lambda: calls.append("done"))
        timer.skip()
        assert timer.remaining == 0
        assert timer.is_complete
        assert calls == ["done"]

    def test_tick_reports_remaining(self):
        clock = FakeClock()
        ticks = []
        timer = CountdownTimer(10, "otp", store={}, clock=clock, on_tick=ticks.append)
        clock.advance(1)
        assert timer.tick() == 9
        assert ticks == [9]

    def test_unreadable_state_is_discarded(self):
        store = {f"{STORAGE_PREFIX}otp": "not json"}
        timer = CountdownTimer(30, "otp", store=store, clock=FakeClock())
        assert timer.remaining == 30


def test_get_timer_remaining_and_clear_all():
    store = {"unrelated": "keep"}
    clock = FakeClock()
    CountdownTimer(30, "a", store=store, clock=clock)
    clock.advance(12)

    assert get_timer_remaining(store, "a", 30, clock=clock) == 18
    assert get_timer_remaining(store, "missing", 30, clock=clock) == 30

    clear_all_timers(store)
    assert store == {"unrelated": "keep"}
