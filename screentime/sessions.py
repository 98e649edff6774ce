"""Session tracking state machine.

Converts foreground/background transitions into committed ledger deltas
and periodic ticks into a live, uncommitted estimate of the open session.

States:
    IDLE   - no open session (initial state)
    ACTIVE - one open session with a recorded start time

A duplicate foreground while ACTIVE, a background while IDLE, and a tick
while IDLE are all ignored. A closed session is committed once, as a whole,
to the date its start timestamp falls on. Sessions that cross midnight are
therefore attributed entirely to the start date; this is a known
approximation and is kept on purpose.

The tick timer is armed on entering ACTIVE and disarmed on leaving it, so
the armed flag always mirrors the state.

FocusTracker is a second, user-driven state machine for focus periods,
started and ended explicitly with a category. It follows the same date
attribution rule and commits completed focus sessions to the same ledger.
"""

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .clock import Clock
from .ledger import DailyLedger, FocusSession

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"


@dataclass
class CommittedDelta:
    """A closed session as applied to the ledger.

    Attributes:
        date_key: Date the session is attributed to (its start date).
        minutes: Session duration in minutes, clamped at zero.
        session_increment: Sessions added (always 1 for a closed session).
        persisted: False if the ledger could not flush after applying it.
    """
    date_key: str
    minutes: float
    session_increment: int = 1
    persisted: bool = True


class IntervalTicker:
    """Repeating timer that can be armed and disarmed.

    Each arm() starts a new generation; a timer thread that fires after a
    disarm() (or after a newer arm()) sees a stale generation and does
    nothing.

    Attributes:
        interval: Seconds between fires.
        callback: Called on every fire while armed.
    """

    def __init__(self, interval: float, callback: Callable[[], None]):
        self.interval = interval
        self.callback = callback
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._armed = False
        self._generation = 0

    @property
    def armed(self) -> bool:
        with self._lock:
            return self._armed

    def arm(self):
        with self._lock:
            if self._armed:
                return
            self._armed = True
            self._generation += 1
            self._schedule(self._generation)

    def disarm(self):
        with self._lock:
            self._armed = False
            if self._timer:
                self._timer.cancel()
                self._timer = None

    def _schedule(self, generation: int):
        # Caller holds self._lock
        self._timer = threading.Timer(self.interval, self._fire, args=(generation,))
        self._timer.daemon = True
        self._timer.start()

    def _fire(self, generation: int):
        with self._lock:
            if not self._armed or generation != self._generation:
                return

        try:
            self.callback()
        except Exception as e:
            logger.error(f"Tick callback error: {e}")

        with self._lock:
            if self._armed and generation == self._generation:
                self._schedule(generation)


class SessionTracker:
    """Single open/closed session state machine.

    Holds no persisted state: after a restart it is IDLE, and a session that
    was open when the process died is lost.

    Attributes:
        ledger: DailyLedger that receives committed deltas.
        clock: Clock used to map timestamps to date keys.
        ticker: Optional object with arm()/disarm() for periodic ticks.
        state: Current SessionState.
        session_start: Start timestamp of the open session, or None.
        live_minutes: Minutes accrued by ticks in the open session.
        live_date_key: Date key the open session is attributed to.
    """

    def __init__(self, ledger: DailyLedger, clock: Clock = None, ticker=None):
        self.ledger = ledger
        self.clock = clock or Clock()
        self.ticker = ticker

        self.state = SessionState.IDLE
        self.session_start: Optional[float] = None
        self.live_minutes = 0.0
        self.live_date_key: Optional[str] = None
        self._last_tick: Optional[float] = None
        self._armed = False

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def ticker_armed(self) -> bool:
        return self._armed

    def _arm(self):
        self._armed = True
        if self.ticker:
            self.ticker.arm()

    def _disarm(self):
        self._armed = False
        if self.ticker:
            self.ticker.disarm()

    def _close(self):
        self._disarm()
        self.state = SessionState.IDLE
        self.session_start = None
        self._last_tick = None
        self.live_minutes = 0.0
        self.live_date_key = None

    def on_foreground(self, timestamp: float) -> bool:
        """Open a session at timestamp.

        Returns:
            True if a session was opened, False if one was already open.

        Raises:
            ValueError: If timestamp cannot be mapped to a calendar date.
                The tracker stays IDLE.
        """
        if self.is_active:
            logger.debug(f"Ignoring foreground at {timestamp}: session already open")
            return False

        key = self.clock.date_key_for(timestamp)
        self.state = SessionState.ACTIVE
        self.session_start = timestamp
        self._last_tick = timestamp
        self.live_minutes = 0.0
        self.live_date_key = key
        self._arm()
        logger.info(f"Session started ({self.live_date_key})")
        return True

    def on_background(self, timestamp: float) -> Optional[CommittedDelta]:
        """Close the open session and commit its full duration.

        Returns:
            The committed delta, or None if no session was open.
        """
        if not self.is_active:
            logger.debug(f"Ignoring background at {timestamp}: no open session")
            return None

        minutes = (timestamp - self.session_start) / 60.0
        if minutes < 0:
            logger.warning(
                f"Clock skew: background at {timestamp} precedes session start "
                f"{self.session_start}, committing 0 minutes"
            )
            minutes = 0.0

        delta = CommittedDelta(date_key=self.live_date_key, minutes=minutes)
        self._close()

        delta.persisted = self.ledger.apply_delta(
            delta.date_key, delta.minutes, delta.session_increment
        )
        logger.info(f"Session ended ({delta.date_key}), {delta.minutes:.1f}m")
        return delta

    def on_tick(self, timestamp: float) -> float:
        """Accrue live minutes since the previous tick.

        Live minutes only feed the in-memory estimate; the ledger is not
        touched until the session closes.

        Returns:
            Minutes added to the live estimate (0.0 when idle).
        """
        if not self.is_active:
            logger.debug(f"Ignoring tick at {timestamp}: no open session")
            return 0.0

        elapsed = (timestamp - self._last_tick) / 60.0
        if elapsed < 0:
            logger.debug(f"Tick at {timestamp} is before previous tick, ignoring")
            return 0.0

        self._last_tick = timestamp
        self.live_minutes += elapsed
        return elapsed

    def drop(self) -> float:
        """Discard the open session without committing it.

        Returns:
            Minutes that were accrued live and are now lost.
        """
        if not self.is_active:
            return 0.0
        lost = self.live_minutes
        logger.info(f"Dropping open session, {lost:.1f} uncommitted minute(s) lost")
        self._close()
        return lost


class FocusTracker:
    """User-driven focus periods, independent of the screen session.

    A focus session is started and ended explicitly. Its duration is
    committed as a whole to the date it started on, like a screen session.
    Only one focus session can be open at a time.

    Attributes:
        ledger: DailyLedger that receives completed focus sessions.
        clock: Clock used to map timestamps to date keys.
        active: The open FocusSession, or None.
        date_key: Date key the open focus session is attributed to.
    """

    def __init__(self, ledger: DailyLedger, clock: Clock = None):
        self.ledger = ledger
        self.clock = clock or Clock()
        self.active: Optional[FocusSession] = None
        self.date_key: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.active is not None

    def start(self, timestamp: float, category: str = "general") -> bool:
        """Open a focus session.

        Returns:
            True if a session was opened, False if one was already open.

        Raises:
            ValueError: If timestamp cannot be mapped to a calendar date.
        """
        if self.active is not None:
            logger.debug(f"Ignoring focus start at {timestamp}: focus session already open")
            return False

        key = self.clock.date_key_for(timestamp)
        self.active = FocusSession(
            id=f"focus_{int(timestamp * 1000)}",
            category=category,
            start=timestamp,
        )
        self.date_key = key
        logger.info(f"Focus session started ({category}, {key})")
        return True

    def end(self, timestamp: float) -> Optional[FocusSession]:
        """Close the open focus session and commit it.

        Returns:
            The completed session, or None if none was open.
        """
        session = self.active
        if session is None:
            logger.debug(f"Ignoring focus end at {timestamp}: no focus session open")
            return None

        minutes = (timestamp - session.start) / 60.0
        if not minutes >= 0:
            logger.warning(
                f"Clock skew: focus end at {timestamp} precedes start {session.start}, "
                f"committing 0 minutes"
            )
            minutes = 0.0
        session.end = timestamp
        session.minutes = minutes

        key = self.date_key
        self.active = None
        self.date_key = None

        self.ledger.apply_focus(key, session)
        logger.info(f"Focus session ended ({session.category}, {key}), {minutes:.1f}m")
        return session

    def live_minutes(self, now: float) -> float:
        """Minutes the open focus session has run so far (0.0 if none)."""
        if self.active is None:
            return 0.0
        return max(0.0, (now - self.active.start) / 60.0)

    def drop(self) -> float:
        """Discard the open focus session without committing it."""
        if self.active is None:
            return 0.0
        lost = self.live_minutes(self.clock.now())
        logger.info(f"Dropping open focus session, {lost:.1f} minute(s) lost")
        self.active = None
        self.date_key = None
        return lost
