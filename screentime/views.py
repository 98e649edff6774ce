"""Read-only projections over the usage ledger.

Every function here takes a snapshot of ledger records and derives a view
from it; nothing is cached or mutated, so views always agree with the
ledger they were computed from.

Day labels come from a caller-supplied function mapping a weekday ordinal
(Monday=0 .. Sunday=6) to a display string. The default uses the host
locale's abbreviated weekday names.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, List, TYPE_CHECKING

from .clock import date_key

if TYPE_CHECKING:
    from .ledger import UsageRecord

DEFAULT_FOCUS_FRACTION = 0.3
WEEK_LENGTH = 7


@dataclass
class WeekEntry:
    """One day in a rolling week.

    Attributes:
        day: Display label from the day-label function.
        date: Date key.
        screen_time: Minutes, rounded to one decimal.
        focus_time: Estimated focus minutes, rounded to one decimal. This is
            a fixed fraction of screen time, not a measurement.
        measured_focus_time: Minutes of completed focus sessions.
    """
    day: str
    date: str
    screen_time: float
    focus_time: float
    measured_focus_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "day": self.day,
            "date": self.date,
            "screenTime": self.screen_time,
            "focusTime": self.focus_time,
            "measuredFocusTime": self.measured_focus_time,
        }


def default_day_label(ordinal: int) -> str:
    return calendar.day_abbr[ordinal]


def round_minutes(value: float) -> float:
    return round(value, 1)


def rolling_week(
    records: Dict[str, "UsageRecord"],
    reference_date: date,
    day_label: Callable[[int], str] = default_day_label,
    focus_fraction: float = DEFAULT_FOCUS_FRACTION,
) -> List[WeekEntry]:
    """Seven entries, oldest first, ending at reference_date inclusive.

    Dates without a record are zero-filled.

    Raises:
        ValueError: If focus_fraction is outside [0, 1].
    """
    if not 0.0 <= focus_fraction <= 1.0:
        raise ValueError(f"focus_fraction must be between 0 and 1, got {focus_fraction}")

    entries = []
    for offset in range(WEEK_LENGTH - 1, -1, -1):
        day = reference_date - timedelta(days=offset)
        key = date_key(day)
        record = records.get(key)
        minutes = record.screen_time_minutes if record else 0.0
        entries.append(WeekEntry(
            day=day_label(day.weekday()),
            date=key,
            screen_time=round_minutes(minutes),
            focus_time=round_minutes(minutes * focus_fraction),
            measured_focus_time=round_minutes(record.focus_time_minutes if record else 0.0),
        ))
    return entries


def average_daily(records: Dict[str, "UsageRecord"]) -> float:
    """Mean minutes across all recorded dates, 0 for an empty ledger."""
    if not records:
        return 0.0
    total = sum(r.screen_time_minutes for r in records.values())
    return round_minutes(total / len(records))


def average_focus(records: Dict[str, "UsageRecord"]) -> float:
    """Mean focus minutes across all recorded dates."""
    if not records:
        return 0.0
    total = sum(r.focus_time_minutes for r in records.values())
    return round_minutes(total / len(records))


def focus_percentage(focus_minutes: float, screen_minutes: float) -> int:
    """Focus time as a whole percentage of screen time, 0 without screen time."""
    if screen_minutes <= 0:
        return 0
    return round(focus_minutes / screen_minutes * 100)


def week_total(entries: List[WeekEntry]) -> float:
    return round_minutes(sum(e.screen_time for e in entries))
