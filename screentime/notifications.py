"""Daily usage limit notifications.

The engine only exposes today's usage; deciding when to warn the user lives
here, in the consumer layer. ThresholdNotifier is registered as an engine
listener and calls the supplied notify function once per day, the first
time today's usage reaches the limit.

Example:
    >>> notifier = ThresholdNotifier(120, lambda minutes, limit: print(minutes))
    >>> engine.add_listener(notifier)
"""

import logging
import threading
from typing import Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .engine import ScreenTimeEngine

logger = logging.getLogger(__name__)


class ThresholdNotifier:
    """Fires a callback when today's screen time crosses a limit.

    Attributes:
        threshold_minutes: Daily limit in minutes.
        notify: Called as notify(today_minutes, threshold_minutes).
        notified_date: Date key the notification was last sent for.
    """

    def __init__(self, threshold_minutes: float, notify: Callable[[float, float], None]):
        if threshold_minutes <= 0:
            raise ValueError(f"threshold_minutes must be positive, got {threshold_minutes}")
        self.threshold_minutes = threshold_minutes
        self.notify = notify
        self.notified_date: Optional[str] = None
        self._lock = threading.Lock()

    def __call__(self, engine: "ScreenTimeEngine"):
        self.check(engine.today_screen_time, engine.clock.today_key())

    def check(self, minutes: float, today_key: str) -> bool:
        """Notify if minutes reached the limit and today was not notified yet.

        Dropping back under the limit (after a reset) re-arms the
        notification for the same day.

        Returns:
            True if notify was called.
        """
        with self._lock:
            if minutes < self.threshold_minutes:
                if self.notified_date == today_key:
                    self.notified_date = None
                return False
            if self.notified_date == today_key:
                return False
            self.notified_date = today_key

        logger.info(f"Daily limit reached: {minutes:.1f}m >= {self.threshold_minutes}m")
        try:
            self.notify(minutes, self.threshold_minutes)
        except Exception as e:
            logger.error(f"Notification callback error: {e}")
        return True
