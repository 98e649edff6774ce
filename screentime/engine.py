"""Screen time engine.

Wires a lifecycle source, the session tracker, the daily ledger and the
aggregation views into one object the UI layer can query.

All inputs (lifecycle transitions, timer ticks, manual resets, focus
start/end) go through a single FIFO queue and are applied one at a time in
arrival order. A tick queued after the background transition that closed
its session finds the tracker idle and is ignored. A background transition
also ends a running focus session. The engine runs in one of two modes:

- started: a worker thread drains the queue (daemon / web use)
- not started: every submission is drained inline in the caller's thread
  (tests, scripts, embedding in an existing event loop)

Example:
    >>> engine = ScreenTimeEngine(MemoryKeyValueStore())
    >>> engine.load()
    >>> engine.handle_lifecycle(LifecycleEvent("foreground", 0.0))
    >>> engine.handle_lifecycle(LifecycleEvent("background", 120.0))
    >>> engine.screen_time_data
    {'1970-01-01': {'date': '1970-01-01', 'screenTime': 2.0, 'sessions': 1, ...}}
"""

import logging
import queue
import threading
from datetime import date
from typing import Callable, Dict, List, Optional

from .clock import Clock
from .ledger import DEFAULT_STORAGE_KEY, DailyLedger
from .lifecycle import FOREGROUND, LifecycleEvent, LifecycleSource
from .sessions import FocusTracker, IntervalTicker, SessionTracker
from .storage import KeyValueStore
from .views import (
    DEFAULT_FOCUS_FRACTION,
    WeekEntry,
    average_daily,
    average_focus,
    default_day_label,
    focus_percentage,
    rolling_week,
    round_minutes,
)

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 60.0

# Queue item kinds
_LIFECYCLE = "lifecycle"
_TICK = "tick"
_RESET = "reset"
_FOCUS_START = "focus_start"
_FOCUS_END = "focus_end"


class ScreenTimeEngine:
    """Session tracking and daily usage aggregation.

    Attributes:
        clock: Clock for timestamps and today's date.
        ledger: DailyLedger holding the authoritative usage data.
        tracker: SessionTracker for the open/closed session state.
        focus: FocusTracker for user-started focus sessions.
        source: Optional LifecycleSource subscribed on start().
        day_label: Weekday ordinal (Monday=0) -> display label.
        focus_fraction: Share of screen time reported as focus time.
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Optional[Clock] = None,
        source: Optional[LifecycleSource] = None,
        ticker_factory: Optional[Callable[[Callable[[], None]], object]] = None,
        day_label: Optional[Callable[[int], str]] = None,
        focus_fraction: float = DEFAULT_FOCUS_FRACTION,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        storage_key: str = DEFAULT_STORAGE_KEY,
    ):
        """
        Args:
            store: Persistence gateway for the ledger.
            clock: Clock (defaults to host local time).
            source: Lifecycle source to subscribe to on start().
            ticker_factory: Builds the tick timer from a callback. Defaults to
                an IntervalTicker firing every tick_interval seconds.
            day_label: Localized weekday label function.
            focus_fraction: Focus time estimate as a fraction of screen time.
            tick_interval: Seconds between live ticks while a session is open.
            storage_key: Key the ledger blob is stored under.
        """
        if not 0.0 <= focus_fraction <= 1.0:
            raise ValueError(f"focus_fraction must be between 0 and 1, got {focus_fraction}")

        self.clock = clock or Clock()
        self.ledger = DailyLedger(store, self.clock, storage_key)
        self.source = source
        self.day_label = day_label or default_day_label
        self.focus_fraction = focus_fraction

        if ticker_factory is None:
            def ticker_factory(callback):
                return IntervalTicker(tick_interval, callback)
        self.tracker = SessionTracker(self.ledger, self.clock, ticker_factory(self._on_timer))
        self.focus = FocusTracker(self.ledger, self.clock)

        self._queue: queue.Queue = queue.Queue()
        self._process_lock = threading.RLock()
        self._listeners: List[Callable[["ScreenTimeEngine"], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # Lifecycle

    def load(self):
        """Load the ledger from storage."""
        with self._process_lock:
            self.ledger.load()

    def start(self):
        """Load the ledger, subscribe to the source and start the worker."""
        if self._running:
            logger.warning("ScreenTimeEngine already running")
            return

        self.load()
        self._running = True
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.start()
        if self.source:
            self._unsubscribe = self.source.subscribe(self.handle_lifecycle)
        logger.info("ScreenTimeEngine started")

    def stop(self):
        """Unsubscribe, drain pending input and stop the worker.

        A screen or focus session still open afterwards is dropped, not
        committed; send a background event first to keep it.
        """
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        if self._running:
            self._running = False
            if self._thread:
                self._thread.join(timeout=5)
                self._thread = None

        self.drain()
        with self._process_lock:
            self.tracker.drop()
            self.focus.drop()
        logger.info("ScreenTimeEngine stopped")

    @property
    def running(self) -> bool:
        return self._running

    # Input

    def handle_lifecycle(self, event: LifecycleEvent):
        """Queue a lifecycle transition (LifecycleSource subscriber)."""
        self._submit((_LIFECYCLE, event, None))

    def tick(self, timestamp: Optional[float] = None):
        """Queue a live tick."""
        self._submit((_TICK, self.clock.now() if timestamp is None else timestamp, None))

    def reset_today_screen_time(self, timeout: float = 5.0) -> bool:
        """Zero today's committed usage.

        Waits up to timeout seconds for the worker to apply it.

        Returns:
            True if the reset was applied within the timeout.
        """
        done = threading.Event()
        self._submit((_RESET, None, done))
        return done.wait(timeout)

    def start_focus_session(self, category: str = "general", timestamp: Optional[float] = None):
        """Queue the start of a focus session."""
        ts = self.clock.now() if timestamp is None else timestamp
        self._submit((_FOCUS_START, (ts, category), None))

    def end_focus_session(self, timestamp: Optional[float] = None):
        """Queue the end of the open focus session."""
        self._submit((_FOCUS_END, self.clock.now() if timestamp is None else timestamp, None))

    def _on_timer(self):
        self.tick()

    def _submit(self, item):
        self._queue.put(item)
        if not self._running:
            self.drain()

    def drain(self):
        """Apply every queued item in order in the calling thread."""
        with self._process_lock:
            while True:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    return
                self._process(item)

    def _run_loop(self):
        logger.debug("Engine worker started")
        while self._running:
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            with self._process_lock:
                self._process(item)
        logger.debug("Engine worker stopped")

    def _process(self, item):
        kind, payload, done = item
        try:
            if kind == _LIFECYCLE:
                if payload.kind == FOREGROUND:
                    self.tracker.on_foreground(payload.timestamp)
                else:
                    self.tracker.on_background(payload.timestamp)
                    # Leaving the foreground also ends a running focus session
                    if self.focus.is_active:
                        self.focus.end(payload.timestamp)
            elif kind == _TICK:
                self.tracker.on_tick(payload)
            elif kind == _RESET:
                self.ledger.reset_today()
            elif kind == _FOCUS_START:
                timestamp, category = payload
                self.focus.start(timestamp, category)
            elif kind == _FOCUS_END:
                self.focus.end(payload)
        except Exception as e:
            logger.error(f"Error processing {kind} event: {e}")
        finally:
            if done:
                done.set()

        self._notify_listeners()

    # Listeners

    def add_listener(self, callback: Callable[["ScreenTimeEngine"], None]) -> Callable[[], None]:
        """Call callback(engine) after every processed input.

        Returns:
            Function removing the listener.
        """
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _notify_listeners(self):
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Engine listener error: {e}")

    # Queries

    @property
    def is_tracking(self) -> bool:
        return self.tracker.is_active

    @property
    def today_screen_time(self) -> float:
        """Committed minutes today plus live minutes of the open session."""
        key = self.clock.today_key()
        committed = self.ledger.get(key).screen_time_minutes
        live = self.tracker.live_minutes if self.tracker.live_date_key == key else 0.0
        return round_minutes(committed + live)

    @property
    def session_count_today(self) -> int:
        return self.ledger.get(self.clock.today_key()).session_count

    def weekly_data(self, reference: Optional[date] = None) -> List[WeekEntry]:
        """Rolling 7-day window ending at reference (default today)."""
        return rolling_week(
            self.ledger.snapshot(),
            reference or self.clock.today(),
            day_label=self.day_label,
            focus_fraction=self.focus_fraction,
        )

    @property
    def average_daily_screen_time(self) -> float:
        return average_daily(self.ledger.snapshot())

    @property
    def screen_time_data(self) -> Dict[str, dict]:
        """Raw ledger contents in the persisted layout."""
        return {key: record.to_dict() for key, record in self.ledger.snapshot().items()}

    # Focus

    @property
    def is_focusing(self) -> bool:
        return self.focus.is_active

    @property
    def active_focus_session(self) -> Optional[dict]:
        """The open focus session with its running duration, or None."""
        session = self.focus.active
        if session is None:
            return None
        data = session.to_dict()
        data["duration"] = round_minutes(self.focus.live_minutes(self.clock.now()))
        return data

    @property
    def today_focus_time(self) -> float:
        """Completed focus minutes today plus the running focus session."""
        key = self.clock.today_key()
        committed = self.ledger.get(key).focus_time_minutes
        live = 0.0
        if self.focus.date_key == key:
            live = self.focus.live_minutes(self.clock.now())
        return round_minutes(committed + live)

    @property
    def focus_sessions_today(self) -> List[dict]:
        record = self.ledger.get(self.clock.today_key())
        return [s.to_dict() for s in record.focus_sessions]

    @property
    def average_focus_time(self) -> float:
        return average_focus(self.ledger.snapshot())

    @property
    def focus_percentage(self) -> int:
        """Today's focus time as a percentage of today's screen time."""
        return focus_percentage(self.today_focus_time, self.today_screen_time)
