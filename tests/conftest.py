"""Shared fixtures for screentime tests."""

from datetime import datetime, timezone

import pytest

from screentime.clock import Clock
from screentime.engine import ScreenTimeEngine
from screentime.ledger import DailyLedger
from screentime.storage import MemoryKeyValueStore

# Tuesday 2025-12-09 09:00 UTC
BASE = datetime(2025, 12, 9, 9, 0, tzinfo=timezone.utc).timestamp()
TODAY = "2025-12-09"


class ManualClock(Clock):
    """Clock pinned to UTC that only moves when told to."""

    def __init__(self, start: float = BASE):
        super().__init__(tz=timezone.utc)
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float) -> float:
        self.current += seconds
        return self.current


class FakeTicker:
    """Records arm/disarm calls instead of starting timer threads."""

    def __init__(self, callback):
        self.callback = callback
        self.armed = False
        self.arm_count = 0
        self.disarm_count = 0

    def arm(self):
        self.armed = True
        self.arm_count += 1

    def disarm(self):
        self.armed = False
        self.disarm_count += 1

    def fire(self):
        """Simulate a timer fire, even a late one after disarm."""
        self.callback()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def ledger(store, clock):
    led = DailyLedger(store, clock)
    led.load()
    return led


@pytest.fixture
def engine(store, clock):
    eng = ScreenTimeEngine(store, clock=clock, ticker_factory=FakeTicker)
    eng.load()
    return eng
