"""Natural language date range parser for usage reports.

The ledger is keyed by calendar date, so every expression resolves to an
inclusive (first_day, last_day) pair of dates.

Example:
    >>> parser = TimeParser(date(2025, 12, 10))
    >>> parser.parse("last week")
    (datetime.date(2025, 12, 1), datetime.date(2025, 12, 7))
    >>> parser.describe_range(*parser.parse("last week"))
    'Dec 01 - Dec 07, 2025'
"""

import re
from datetime import date, datetime, timedelta
from typing import Tuple

from dateutil import parser as dateutil_parser
from dateutil.relativedelta import relativedelta

WEEKDAYS = ['monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday']


class TimeParser:
    """Parse natural language date references.

    Supports:
    - Relative: "today", "yesterday", "this week", "last week",
      "this month", "last month"
    - Duration: "last 7 days", "past 3 days" (inclusive of today)
    - Weekdays: "monday", "last friday"
    - Exact dates: "2025-12-09", "2025-12-01 to 2025-12-07"
    - Anything else dateutil can read as a single day

    Attributes:
        today: Reference date for relative expressions.
    """

    def __init__(self, reference: date = None):
        if isinstance(reference, datetime):
            reference = reference.date()
        self.today = reference or date.today()

    def parse(self, text: str) -> Tuple[date, date]:
        """Parse text to an inclusive (start, end) date range.

        Raises:
            ValueError: If the text cannot be parsed or the range is reversed.
        """
        text = text.lower().strip()

        patterns = {
            r'^today$': lambda: (self.today, self.today),
            r'^yesterday$': lambda: (self.today - timedelta(days=1),) * 2,
            r'^this week$': lambda: (self.today - timedelta(days=self.today.weekday()), self.today),
            r'^last week$': self._last_week,
            r'^this month$': lambda: (self.today.replace(day=1), self.today),
            r'^last month$': self._last_month,
            r'^(?:last|past) (\d+) days?$': lambda m: self._last_n_days(int(m.group(1))),
            r'^(monday|tuesday|wednesday|thursday|friday|saturday|sunday)$':
                lambda m: (self._specific_weekday(m.group(1)),) * 2,
            r'^last (monday|tuesday|wednesday|thursday|friday|saturday|sunday)$':
                lambda m: (self._specific_weekday(m.group(1), last=True),) * 2,
            r'^(\d{4}-\d{2}-\d{2})$': lambda m: (self._iso(m.group(1)),) * 2,
            r'^(\d{4}-\d{2}-\d{2}) to (\d{4}-\d{2}-\d{2})$':
                lambda m: (self._iso(m.group(1)), self._iso(m.group(2))),
        }

        for pattern, handler in patterns.items():
            match = re.match(pattern, text)
            if match:
                start, end = handler(match) if match.groups() else handler()
                if start > end:
                    raise ValueError(f"Range starts after it ends: {text}")
                return start, end

        # Try dateutil as fallback
        try:
            parsed = dateutil_parser.parse(text, default=datetime.combine(self.today, datetime.min.time()))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Could not parse time range: {text}") from e
        return parsed.date(), parsed.date()

    def parse_date(self, text: str) -> date:
        """Parse a single reference date ("today", "last friday", "2025-12-09")."""
        start, end = self.parse(text)
        if start != end:
            raise ValueError(f"Expected a single day, got a range: {text}")
        return start

    def _last_n_days(self, n: int) -> Tuple[date, date]:
        if n < 1:
            raise ValueError("Day count must be at least 1")
        try:
            return self.today - timedelta(days=n - 1), self.today
        except OverflowError as e:
            raise ValueError(f"Day count {n} reaches past the earliest supported date") from e

    def _last_week(self) -> Tuple[date, date]:
        """Monday to Sunday of the previous week."""
        last_monday = self.today - timedelta(days=self.today.weekday() + 7)
        return last_monday, last_monday + timedelta(days=6)

    def _last_month(self) -> Tuple[date, date]:
        first_of_prev = self.today.replace(day=1) - relativedelta(months=1)
        return first_of_prev, self.today.replace(day=1) - timedelta(days=1)

    def _specific_weekday(self, day_name: str, last: bool = False) -> date:
        """Most recent date with this weekday (today counts unless last=True)."""
        days_ago = (self.today.weekday() - WEEKDAYS.index(day_name)) % 7
        if last and days_ago == 0:
            days_ago = 7
        return self.today - timedelta(days=days_ago)

    @staticmethod
    def _iso(date_str: str) -> date:
        return datetime.strptime(date_str, '%Y-%m-%d').date()

    def describe_range(self, start: date, end: date) -> str:
        """Human-readable description of a date range."""
        if start == end:
            return start.strftime('%A, %B %d, %Y')
        elif (end - start).days <= 7:
            return f"{start.strftime('%b %d')} - {end.strftime('%b %d, %Y')}"
        else:
            return f"{start.strftime('%B %d')} - {end.strftime('%B %d, %Y')}"
