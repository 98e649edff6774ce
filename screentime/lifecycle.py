"""
Lifecycle sources: where foreground/background transitions come from.

A source delivers LifecycleEvent objects to subscribers. Two sources are
provided:

- ManualLifecycleSource: events pushed by code (web API, tests, app hooks)
- InputActivitySource: keyboard/mouse activity via pynput, modeled after
  ActivityWatch's aw-watcher-afk. Input after idleness is "foreground",
  `timeout` seconds without input is "background".
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

FOREGROUND = "foreground"
BACKGROUND = "background"
EVENT_KINDS = (FOREGROUND, BACKGROUND)


@dataclass(frozen=True)
class LifecycleEvent:
    """A foreground or background transition.

    Attributes:
        kind: "foreground" or "background".
        timestamp: Epoch seconds when the transition happened.
    """
    kind: str
    timestamp: float

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown lifecycle event kind: {self.kind!r}")


class LifecycleSource:
    """Fan-out of lifecycle events to subscribers."""

    def __init__(self):
        self._subscribers: List[Callable[[LifecycleEvent], None]] = []
        self._sub_lock = threading.Lock()

    def subscribe(self, callback: Callable[[LifecycleEvent], None]) -> Callable[[], None]:
        """Register a callback.

        Returns:
            A function that removes the subscription; safe to call twice.
        """
        with self._sub_lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._sub_lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def start(self):
        """Begin producing events. Sources backed by threads override this."""

    def stop(self):
        """Stop producing events."""

    def emit(self, event: LifecycleEvent):
        with self._sub_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Lifecycle subscriber error: {e}")


class ManualLifecycleSource(LifecycleSource):
    """Source driven by explicit calls."""

    def __init__(self, time_fn: Callable[[], float] = time.time):
        super().__init__()
        self.time_fn = time_fn

    def foreground(self, timestamp: Optional[float] = None):
        self.emit(LifecycleEvent(FOREGROUND, self.time_fn() if timestamp is None else timestamp))

    def background(self, timestamp: Optional[float] = None):
        self.emit(LifecycleEvent(BACKGROUND, self.time_fn() if timestamp is None else timestamp))


class InputActivitySource(LifecycleSource):
    """
    Maps keyboard and mouse activity to lifecycle events.

    Uses pynput listeners; a poll thread compares time since last input to
    the timeout. If pynput cannot be loaded or started (missing display or
    input-monitoring permission), the source emits nothing and the engine
    simply never sees a foreground.

    Attributes:
        timeout: Seconds of inactivity before emitting background.
        poll_time: How often to check idleness.
        is_idle: Current idle state.
    """

    def __init__(self, timeout: int = 180, poll_time: float = 5.0,
                 time_fn: Callable[[], float] = time.time):
        """
        Args:
            timeout: Seconds of inactivity before considered idle (default 180).
            poll_time: How often to check status in seconds (default 5.0).
            time_fn: Source of epoch seconds.
        """
        super().__init__()
        self.timeout = timeout
        self.poll_time = poll_time
        self.time_fn = time_fn

        self._lock = threading.Lock()
        # Held across a state flip and its emit so transitions reach
        # subscribers in the order they happened
        self._emit_lock = threading.Lock()
        self._last_activity = time_fn()
        self._is_idle = True
        self._running = False
        self._poll_thread: Optional[threading.Thread] = None
        self._keyboard_listener = None
        self._mouse_listener = None

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return self._is_idle

    @property
    def last_activity(self) -> float:
        """Epoch seconds of the most recent input event."""
        with self._lock:
            return self._last_activity

    @property
    def listening(self) -> bool:
        """True while input listeners and the poll thread are running."""
        return self._running

    def seconds_since_last_input(self) -> float:
        with self._lock:
            return self.time_fn() - self._last_activity

    def _on_input_event(self, *args, **kwargs):
        """Called on any keyboard or mouse event.

        Emits foreground immediately when coming back from idle.
        """
        with self._emit_lock:
            became_active = False
            with self._lock:
                now = self.time_fn()
                self._last_activity = now
                if self._is_idle:
                    self._is_idle = False
                    became_active = True

            if became_active:
                logger.info("User became active")
                self.emit(LifecycleEvent(FOREGROUND, now))

    def check_idle(self):
        """Emit background if the idle timeout has elapsed.

        Called from the poll loop; the background timestamp is the last input
        time, so idle time waiting for the timeout is not counted as usage.
        """
        with self._emit_lock:
            went_idle = False
            with self._lock:
                idle_seconds = self.time_fn() - self._last_activity
                if idle_seconds >= self.timeout and not self._is_idle:
                    self._is_idle = True
                    went_idle = True
                    last_activity = self._last_activity

            if went_idle:
                logger.info(f"User went idle after {idle_seconds:.0f}s of inactivity")
                self.emit(LifecycleEvent(BACKGROUND, last_activity))

    def _poll_loop(self):
        logger.info(f"Idle poll loop started (timeout={self.timeout}s, poll={self.poll_time}s)")
        while self._running:
            try:
                self.check_idle()
            except Exception as e:
                logger.error(f"Poll loop error: {e}")
            time.sleep(self.poll_time)
        logger.info("Idle poll loop stopped")

    def start(self):
        """Start input listeners and the poll thread, then emit foreground."""
        if self._running:
            logger.warning("InputActivitySource already running")
            return

        try:
            from pynput import keyboard, mouse
        except ImportError as e:
            logger.warning(f"pynput unavailable ({e}) - input activity tracking disabled")
            return

        try:
            self._keyboard_listener = keyboard.Listener(
                on_press=self._on_input_event,
                on_release=self._on_input_event,
            )
            self._keyboard_listener.start()
            self._mouse_listener = mouse.Listener(
                on_move=self._on_input_event,
                on_click=self._on_input_event,
                on_scroll=self._on_input_event,
            )
            self._mouse_listener.start()
        except Exception as e:
            logger.warning(f"Failed to start input listeners ({e}) - input activity tracking disabled")
            self._stop_listeners()
            return

        self._running = True
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._poll_thread.start()
        logger.info("InputActivitySource started")

        # The user launched us, so they are present now
        self._on_input_event()

    def _stop_listeners(self):
        for listener in (self._keyboard_listener, self._mouse_listener):
            if listener:
                try:
                    listener.stop()
                except Exception as e:
                    logger.debug(f"Error stopping input listener: {e}")
        self._keyboard_listener = None
        self._mouse_listener = None

    def stop(self):
        """Stop listeners and the poll thread."""
        if not self._running:
            return

        self._running = False
        self._stop_listeners()
        if self._poll_thread:
            self._poll_thread.join(timeout=self.poll_time + 1.0)
            self._poll_thread = None
        logger.info("InputActivitySource stopped")
