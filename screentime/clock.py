"""Clock and date-key helpers for the screen time engine.

All date keys are local calendar dates formatted as ``YYYY-MM-DD``. The
clock is injected into every component that needs "now" or "today" so
tests can cross midnight without waiting for it.

Example:
    >>> clock = Clock()
    >>> date_key(clock.today())
    '2025-12-09'
"""

import math
import time
from datetime import date, datetime, tzinfo
from typing import Optional

DATE_KEY_FORMAT = "%Y-%m-%d"


def date_key(d: date) -> str:
    """Format a date as a ledger key."""
    return d.strftime(DATE_KEY_FORMAT)


def parse_date_key(key: str) -> date:
    """Parse a ledger key back into a date.

    Raises:
        ValueError: If the key is not a valid, zero-padded YYYY-MM-DD date.
    """
    parsed = datetime.strptime(key, DATE_KEY_FORMAT).date()
    # strptime also accepts unpadded forms like 2025-1-5
    if date_key(parsed) != key:
        raise ValueError(f"Date key is not in canonical YYYY-MM-DD form: {key!r}")
    return parsed


def canonical_date_key(key: str) -> str:
    """Normalize a loosely formatted key ("2025-1-5") to "2025-01-05".

    Raises:
        ValueError: If the key is not a date at all.
    """
    return date_key(datetime.strptime(key, DATE_KEY_FORMAT).date())


class Clock:
    """Wall clock with an optional pinned timezone.

    Attributes:
        tz: Timezone used to map timestamps to calendar dates. None means
            the host's local time.
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        self.tz = tz

    def now(self) -> float:
        """Current time as epoch seconds."""
        return time.time()

    def now_datetime(self) -> datetime:
        return self.to_datetime(self.now())

    def to_datetime(self, ts: float) -> datetime:
        return datetime.fromtimestamp(ts, self.tz)

    def date_for(self, ts: float) -> date:
        """Calendar date a timestamp falls on."""
        return self.to_datetime(ts).date()

    def date_key_for(self, ts: float) -> str:
        """Date key for a timestamp.

        Raises:
            ValueError: If ts is not finite or outside the platform's
                supported datetime range.
        """
        try:
            if not math.isfinite(ts):
                raise ValueError(f"timestamp must be finite, got {ts!r}")
            return date_key(self.date_for(ts))
        except (TypeError, OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {ts!r}") from e

    def today(self) -> date:
        return self.date_for(self.now())

    def today_key(self) -> str:
        return date_key(self.today())
