"""Daily usage ledger.

The ledger is the single owner of accumulated screen time. It maps a date
key (``YYYY-MM-DD``) to a UsageRecord and persists the whole mapping as one
JSON blob after every mutation (write-through). In-memory state is updated
before the flush starts, so readers always see the latest committed value
even while a write is in flight or after it failed.

Persisted layout (one key, default ``screenTimeData``)::

    {
        "2025-12-09": {
            "date": "2025-12-09",
            "screenTime": 42.5,
            "sessions": 3,
            "focusTime": 25.0,
            "focusSessions": [
                {"id": "focus_1765270800000", "category": "reading",
                 "startTime": 1765270800.0, "endTime": 1765272300.0,
                 "duration": 25.0}
            ],
            "lastUpdated": "2025-12-09T18:02:11.120000+00:00"
        }
    }

The loader is tolerant: unknown fields are ignored, missing numeric fields
are zero, ``screenTimeMinutes``/``sessionCount`` are accepted as aliases,
a ``focusSessions`` value that is not a list (older data stored a count)
is read as no sessions, and a blob that cannot be decoded yields an empty
ledger.

Example:
    >>> ledger = DailyLedger(SQLiteKeyValueStore(), Clock())
    >>> ledger.load()
    >>> ledger.apply_delta("2025-12-09", 12.5, 1)
    True
    >>> ledger.get("2025-12-09").screen_time_minutes
    12.5
"""

import json
import logging
import math
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from dateutil import parser as dateutil_parser

from .clock import Clock, canonical_date_key, parse_date_key
from .storage import KeyValueStore, PersistenceReadError, PersistenceWriteError

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_KEY = "screenTimeData"


@dataclass
class FocusSession:
    """A user-started focus period.

    Attributes:
        id: Identifier derived from the start time.
        category: Free-form label chosen when the session started.
        start: Epoch seconds the session started.
        end: Epoch seconds it ended, None while still open.
        minutes: Duration in minutes once ended.
    """
    id: str
    category: str
    start: float
    end: Optional[float] = None
    minutes: float = 0.0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "startTime": self.start,
            "endTime": self.end,
            "duration": self.minutes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Optional["FocusSession"]:
        """Build a session from a persisted entry, None if unusable."""
        try:
            start = float(data["startTime"])
        except (KeyError, TypeError, ValueError):
            return None
        if not math.isfinite(start):
            return None
        end = data.get("endTime")
        try:
            end = float(end) if end is not None else None
        except (TypeError, ValueError):
            end = None
        return cls(
            id=str(data.get("id") or f"focus_{int(start * 1000)}"),
            category=str(data.get("category") or "general"),
            start=start,
            end=end,
            minutes=_non_negative_float(data.get("duration")),
        )


@dataclass
class UsageRecord:
    """Usage accumulated for one calendar date.

    Attributes:
        date: Date key this record belongs to.
        screen_time_minutes: Active-use minutes, never negative.
        session_count: Sessions closed while attributed to this date.
        focus_time_minutes: Minutes of completed focus sessions.
        focus_sessions: Completed focus sessions, oldest first.
        last_updated: Time of the most recent mutation (None for the
            zero-value record returned for unknown dates).
    """
    date: str
    screen_time_minutes: float = 0.0
    session_count: int = 0
    last_updated: Optional[datetime] = None
    focus_time_minutes: float = 0.0
    focus_sessions: List[FocusSession] = field(default_factory=list)

    def copy(self) -> "UsageRecord":
        return replace(self, focus_sessions=[replace(s) for s in self.focus_sessions])

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "screenTime": self.screen_time_minutes,
            "sessions": self.session_count,
            "focusTime": self.focus_time_minutes,
            "focusSessions": [s.to_dict() for s in self.focus_sessions],
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        }

    @classmethod
    def from_dict(cls, key: str, data: dict) -> "UsageRecord":
        """Build a record from a persisted entry, tolerating partial data."""
        minutes = _first_present(data, "screenTime", "screenTimeMinutes")
        sessions = _first_present(data, "sessions", "sessionCount")

        focus_sessions = []
        raw_focus = data.get("focusSessions")
        if isinstance(raw_focus, list):
            for entry in raw_focus:
                session = FocusSession.from_dict(entry) if isinstance(entry, dict) else None
                if session is None:
                    logger.debug(f"Skipping malformed focus session on {key}")
                    continue
                focus_sessions.append(session)

        return cls(
            date=key,
            screen_time_minutes=_non_negative_float(minutes),
            session_count=max(0, int(_non_negative_float(sessions))),
            last_updated=_parse_timestamp(data.get("lastUpdated")),
            focus_time_minutes=_non_negative_float(data.get("focusTime")),
            focus_sessions=focus_sessions,
        )


def _first_present(data: dict, *names):
    for name in names:
        if data.get(name) is not None:
            return data[name]
    return None


def _non_negative_float(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def _parse_timestamp(value) -> Optional[datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return dateutil_parser.isoparse(value)
    except (ValueError, OverflowError):
        return None


def decode_records(blob: str) -> Dict[str, UsageRecord]:
    """Decode a persisted blob into records.

    Raises:
        PersistenceReadError: If the blob is not a JSON object.
    """
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as e:
        raise PersistenceReadError(f"Corrupt ledger blob: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceReadError(f"Ledger blob is {type(data).__name__}, expected object")

    records = {}
    for raw_key, entry in data.items():
        try:
            key = canonical_date_key(raw_key)
        except (TypeError, ValueError):
            logger.debug(f"Skipping ledger entry with invalid date key: {raw_key!r}")
            continue
        if not isinstance(entry, dict):
            logger.debug(f"Skipping malformed ledger entry for {raw_key}")
            continue

        record = UsageRecord.from_dict(key, entry)
        existing = records.get(key)
        if existing is None:
            records[key] = record
            continue
        # Unpadded and padded spellings of the same date: merge them
        existing.screen_time_minutes += record.screen_time_minutes
        existing.session_count += record.session_count
        existing.focus_time_minutes += record.focus_time_minutes
        existing.focus_sessions.extend(record.focus_sessions)
        if record.last_updated and (
                existing.last_updated is None or _later(record.last_updated, existing.last_updated)):
            existing.last_updated = record.last_updated
    return records


def _later(a: datetime, b: datetime) -> bool:
    if (a.tzinfo is None) != (b.tzinfo is None):
        a, b = a.replace(tzinfo=None), b.replace(tzinfo=None)
    return a > b


def encode_records(records: Dict[str, UsageRecord]) -> str:
    return json.dumps(
        {key: record.to_dict() for key, record in records.items()},
        sort_keys=True,
    )


class DailyLedger:
    """Authoritative date key -> UsageRecord mapping with write-through flush.

    Attributes:
        store: Persistence gateway, owned exclusively by this ledger.
        clock: Clock used for lastUpdated stamps and today's key.
        storage_key: Key the serialized mapping is stored under.
    """

    def __init__(self, store: KeyValueStore, clock: Clock = None,
                 storage_key: str = DEFAULT_STORAGE_KEY):
        self.store = store
        self.clock = clock or Clock()
        self.storage_key = storage_key

        self._records: Dict[str, UsageRecord] = {}
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._needs_flush = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._records

    @property
    def needs_flush(self) -> bool:
        """True when the last flush failed and memory is ahead of storage."""
        with self._lock:
            return self._needs_flush

    def load(self) -> None:
        """Replace in-memory state with the persisted mapping.

        Missing or corrupt data leaves the ledger empty instead of raising.
        """
        records = {}
        try:
            blob = self.store.get(self.storage_key)
            if blob is None:
                logger.info("No saved usage ledger, starting empty")
            else:
                records = decode_records(blob)
                logger.info(f"Loaded usage ledger with {len(records)} day(s)")
        except PersistenceReadError as e:
            logger.warning(f"Could not load usage ledger, starting empty: {e}")

        with self._lock:
            self._records = records
            self._needs_flush = False

    def flush(self) -> bool:
        """Write the full mapping to the store.

        Returns:
            True if the write succeeded. On failure the in-memory state is
            kept and needs_flush stays set so a later flush can heal it.
        """
        with self._flush_lock:
            with self._lock:
                blob = encode_records(self._records)
            try:
                self.store.set(self.storage_key, blob)
            except PersistenceWriteError as e:
                logger.warning(f"Usage ledger flush failed, keeping in-memory state: {e}")
                with self._lock:
                    self._needs_flush = True
                return False

            with self._lock:
                self._needs_flush = False
            return True

    def _stamp(self, previous: Optional[datetime]) -> datetime:
        """Timestamp for a mutation, strictly after the previous one."""
        now = self.clock.now_datetime()
        if previous is None:
            return now
        if previous.tzinfo is None and now.tzinfo is not None:
            previous = previous.replace(tzinfo=now.tzinfo)
        elif previous.tzinfo is not None and now.tzinfo is None:
            previous = previous.astimezone().replace(tzinfo=None)
        if now <= previous:
            return previous + timedelta(microseconds=1)
        return now

    def apply_delta(self, date_key: str, minutes: float, session_increment: int = 1) -> bool:
        """Add minutes and sessions to a date's record, then flush.

        Args:
            date_key: YYYY-MM-DD key the delta is attributed to.
            minutes: Minutes to add; negative or non-finite values add zero.
            session_increment: Sessions to add; negative values add zero.

        Returns:
            True if the mutation was persisted, False if only held in memory.

        Raises:
            ValueError: If date_key is not a valid date key.
        """
        parse_date_key(date_key)
        minutes = _non_negative_float(minutes)
        session_increment = max(0, int(session_increment))

        with self._lock:
            record = self._records.get(date_key)
            if record is None:
                record = UsageRecord(date=date_key)
                self._records[date_key] = record
            record.screen_time_minutes += minutes
            record.session_count += session_increment
            record.last_updated = self._stamp(record.last_updated)

        logger.debug(
            f"Applied {minutes:.2f}m / {session_increment} session(s) to {date_key}"
        )
        return self.flush()

    def apply_focus(self, date_key: str, session: FocusSession) -> bool:
        """Record a completed focus session on a date, then flush.

        Returns:
            True if the mutation was persisted, False if only held in memory.

        Raises:
            ValueError: If date_key is not a valid date key.
        """
        parse_date_key(date_key)
        session = replace(session, minutes=_non_negative_float(session.minutes))

        with self._lock:
            record = self._records.get(date_key)
            if record is None:
                record = UsageRecord(date=date_key)
                self._records[date_key] = record
            record.focus_time_minutes += session.minutes
            record.focus_sessions.append(session)
            record.last_updated = self._stamp(record.last_updated)

        logger.debug(f"Applied {session.minutes:.2f}m focus ({session.category}) to {date_key}")
        return self.flush()

    def get(self, date_key: str) -> UsageRecord:
        """Return a copy of the record, or a zero record if absent."""
        with self._lock:
            record = self._records.get(date_key)
            if record is None:
                return UsageRecord(date=date_key)
            return record.copy()

    def reset_today(self) -> bool:
        """Zero today's minutes, sessions and focus time, keeping the key.

        Other dates are untouched. A date with no record stays absent.

        Returns:
            True if the state is persisted.
        """
        key = self.clock.today_key()
        with self._lock:
            record = self._records.get(key)
            if record is not None:
                record.screen_time_minutes = 0.0
                record.session_count = 0
                record.focus_time_minutes = 0.0
                record.focus_sessions = []
                record.last_updated = self._stamp(record.last_updated)
        logger.info(f"Reset usage for {key}")
        return self.flush()

    def snapshot(self) -> Dict[str, UsageRecord]:
        """Copy of the full mapping for read-only projections."""
        with self._lock:
            return {key: r.copy() for key, r in self._records.items()}
