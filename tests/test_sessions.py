"""Tests for screentime.sessions: SessionTracker, FocusTracker and IntervalTicker."""

import random
import threading
import time
from collections import defaultdict
from datetime import datetime, timezone

import pytest

from screentime.clock import date_key
from screentime.ledger import DailyLedger
from screentime.sessions import FocusTracker, IntervalTicker, SessionState, SessionTracker
from screentime.storage import MemoryKeyValueStore

from .conftest import BASE, TODAY, FakeTicker, ManualClock


@pytest.fixture
def ticker():
    return FakeTicker(lambda: None)


@pytest.fixture
def tracker(ledger, clock, ticker):
    return SessionTracker(ledger, clock, ticker)


class TestStateMachine:
    def test_initial_state_idle(self, tracker):
        assert tracker.state is SessionState.IDLE
        assert not tracker.is_active
        assert not tracker.ticker_armed

    def test_scenario_foreground_tick_background(self, tracker, ledger):
        assert tracker.on_foreground(BASE) is True
        assert tracker.state is SessionState.ACTIVE

        assert tracker.on_tick(BASE + 60) == pytest.approx(1.0)
        assert tracker.live_minutes == pytest.approx(1.0)
        assert TODAY not in ledger

        delta = tracker.on_background(BASE + 120)
        assert delta.date_key == TODAY
        assert delta.minutes == 2.0
        assert delta.persisted
        assert tracker.state is SessionState.IDLE
        assert ledger.get(TODAY).screen_time_minutes == 2.0
        assert ledger.get(TODAY).session_count == 1

    def test_close_commits_full_duration_not_tick_sum(self, tracker, ledger):
        tracker.on_foreground(BASE)
        tracker.on_tick(BASE + 60)
        tracker.on_tick(BASE + 120)
        tracker.on_background(BASE + 150)
        assert ledger.get(TODAY).screen_time_minutes == 2.5
        assert tracker.live_minutes == 0.0

    def test_duplicate_foreground_is_noop(self, tracker, ledger):
        tracker.on_foreground(BASE)
        assert tracker.on_foreground(BASE + 60) is False
        assert tracker.session_start == BASE
        tracker.on_background(BASE + 120)
        assert ledger.get(TODAY).screen_time_minutes == 2.0

    def test_duplicate_background_is_noop(self, tracker, ledger):
        tracker.on_foreground(BASE)
        tracker.on_background(BASE + 60)
        assert tracker.on_background(BASE + 120) is None
        assert ledger.get(TODAY).session_count == 1
        assert ledger.get(TODAY).screen_time_minutes == 1.0

    def test_background_while_idle(self, tracker, ledger):
        assert tracker.on_background(BASE) is None
        assert len(ledger) == 0

    def test_tick_while_idle(self, tracker):
        assert tracker.on_tick(BASE) == 0.0
        assert tracker.live_minutes == 0.0

    def test_tick_going_backwards_ignored(self, tracker):
        tracker.on_foreground(BASE)
        tracker.on_tick(BASE + 120)
        assert tracker.on_tick(BASE + 60) == 0.0
        assert tracker.live_minutes == pytest.approx(2.0)

    def test_clock_skew_clamped_to_zero(self, tracker, ledger):
        tracker.on_foreground(BASE)
        delta = tracker.on_background(BASE - 300)
        assert delta.minutes == 0.0
        assert ledger.get(TODAY).screen_time_minutes == 0.0
        assert ledger.get(TODAY).session_count == 1

    def test_midnight_session_attributed_to_start_date(self, tracker, ledger):
        late = datetime(2025, 12, 9, 23, 50, tzinfo=timezone.utc).timestamp()
        tracker.on_foreground(late)
        tracker.on_background(late + 20 * 60)
        assert ledger.get("2025-12-09").screen_time_minutes == 20.0
        assert "2025-12-10" not in ledger

    @pytest.mark.parametrize("timestamp", [1e20, float("inf"), float("nan")])
    def test_unmappable_foreground_leaves_tracker_idle(self, tracker, ticker, ledger, timestamp):
        with pytest.raises(ValueError):
            tracker.on_foreground(timestamp)
        assert tracker.state is SessionState.IDLE
        assert tracker.session_start is None
        assert not ticker.armed and not tracker.ticker_armed

        assert tracker.on_background(BASE) is None
        assert tracker.on_foreground(BASE) is True
        tracker.on_background(BASE + 60)
        assert ledger.get(TODAY).screen_time_minutes == 1.0

    def test_flush_failure_reported_on_delta(self, tracker, ledger, store):
        store.fail_writes = True
        tracker.on_foreground(BASE)
        delta = tracker.on_background(BASE + 60)
        assert delta.persisted is False
        assert ledger.get(TODAY).screen_time_minutes == 1.0


class TestTickerArming:
    def test_armed_only_while_active(self, tracker, ticker):
        tracker.on_foreground(BASE)
        assert ticker.armed and tracker.ticker_armed
        tracker.on_background(BASE + 60)
        assert not ticker.armed and not tracker.ticker_armed

    def test_duplicate_foreground_does_not_rearm(self, tracker, ticker):
        tracker.on_foreground(BASE)
        tracker.on_foreground(BASE + 1)
        assert ticker.arm_count == 1

    def test_drop_disarms_and_discards(self, tracker, ticker, ledger):
        tracker.on_foreground(BASE)
        tracker.on_tick(BASE + 180)
        assert tracker.drop() == pytest.approx(3.0)
        assert not ticker.armed
        assert tracker.state is SessionState.IDLE
        assert len(ledger) == 0

    def test_drop_when_idle(self, tracker):
        assert tracker.drop() == 0.0

    def test_works_without_ticker(self, ledger, clock):
        tracker = SessionTracker(ledger, clock)
        tracker.on_foreground(BASE)
        assert tracker.ticker_armed
        tracker.on_background(BASE + 60)
        assert not tracker.ticker_armed


def test_committed_sum_matches_session_durations():
    """Sum of committed minutes per date equals the sum of its sessions' durations."""
    rng = random.Random(42)
    clock = ManualClock()
    ledger = DailyLedger(MemoryKeyValueStore(), clock)
    ledger.load()
    tracker = SessionTracker(ledger, clock)

    expected = defaultdict(float)
    sessions = defaultdict(int)
    ts = BASE
    for _ in range(200):
        ts += rng.uniform(0, 4 * 3600)
        start = ts
        tracker.on_foreground(start)
        for _ in range(rng.randint(0, 3)):
            if rng.random() < 0.3:
                tracker.on_foreground(ts)  # duplicate delivery
            ts += rng.uniform(0, 600)
            tracker.on_tick(ts)
        ts += rng.uniform(0, 1800)
        tracker.on_background(ts)
        if rng.random() < 0.3:
            tracker.on_background(ts)  # duplicate delivery

        key = date_key(clock.date_for(start))
        expected[key] += (ts - start) / 60.0
        sessions[key] += 1

    snapshot = ledger.snapshot()
    assert set(snapshot) == set(expected)
    for key, minutes in expected.items():
        assert snapshot[key].screen_time_minutes == pytest.approx(minutes)
        assert snapshot[key].session_count == sessions[key]


class TestIntervalTicker:
    def test_fires_repeatedly_while_armed(self):
        fired = threading.Event()
        count = []

        def callback():
            count.append(1)
            if len(count) >= 2:
                fired.set()

        ticker = IntervalTicker(0.01, callback)
        ticker.arm()
        try:
            assert fired.wait(2.0)
        finally:
            ticker.disarm()
        assert ticker.armed is False

    def test_disarm_cancels_pending_fire(self):
        count = []
        ticker = IntervalTicker(0.05, lambda: count.append(1))
        ticker.arm()
        ticker.disarm()
        time.sleep(0.15)
        assert count == []

    def test_stale_fire_is_noop(self):
        count = []
        ticker = IntervalTicker(60, lambda: count.append(1))
        ticker.arm()
        ticker.disarm()
        ticker._fire(1)
        assert count == []

    def test_callback_error_does_not_stop_ticker(self):
        fired = threading.Event()
        calls = []

        def callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            fired.set()

        ticker = IntervalTicker(0.01, callback)
        ticker.arm()
        try:
            assert fired.wait(2.0)
        finally:
            ticker.disarm()


class TestFocusTracker:
    @pytest.fixture
    def focus(self, ledger, clock):
        return FocusTracker(ledger, clock)

    def test_start_and_end_commits_session(self, focus, ledger):
        assert focus.start(BASE, "reading") is True
        assert focus.is_active
        assert focus.date_key == TODAY

        session = focus.end(BASE + 25 * 60)
        assert session.category == "reading"
        assert session.minutes == 25.0
        assert session.end == BASE + 25 * 60
        assert not focus.is_active

        record = ledger.get(TODAY)
        assert record.focus_time_minutes == 25.0
        assert [s.category for s in record.focus_sessions] == ["reading"]
        assert record.screen_time_minutes == 0.0
        assert record.session_count == 0

    def test_duplicate_start_keeps_first(self, focus):
        focus.start(BASE, "reading")
        assert focus.start(BASE + 60, "email") is False
        assert focus.active.category == "reading"
        assert focus.active.start == BASE

    def test_end_without_start(self, focus, ledger):
        assert focus.end(BASE) is None
        assert len(ledger) == 0

    def test_live_minutes(self, focus):
        assert focus.live_minutes(BASE) == 0.0
        focus.start(BASE)
        assert focus.live_minutes(BASE + 90) == 1.5
        assert focus.live_minutes(BASE - 60) == 0.0

    def test_end_before_start_commits_zero(self, focus, ledger):
        focus.start(BASE)
        assert focus.end(BASE - 60).minutes == 0.0
        assert ledger.get(TODAY).focus_time_minutes == 0.0
        assert len(ledger.get(TODAY).focus_sessions) == 1

    def test_attributed_to_start_date(self, focus, ledger):
        late = datetime(2025, 12, 9, 23, 50, tzinfo=timezone.utc).timestamp()
        focus.start(late)
        focus.end(late + 30 * 60)
        assert ledger.get("2025-12-09").focus_time_minutes == 30.0
        assert "2025-12-10" not in ledger

    def test_drop_discards(self, focus, ledger, clock):
        focus.start(BASE)
        clock.advance(120)
        assert focus.drop() == 2.0
        assert not focus.is_active
        assert len(ledger) == 0

    def test_unmappable_start_rejected(self, focus):
        with pytest.raises(ValueError):
            focus.start(1e20)
        assert not focus.is_active
