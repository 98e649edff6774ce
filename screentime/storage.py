"""Key-value persistence gateways for the screen time ledger.

The ledger persists its whole date-keyed mapping as one serialized blob
under a single key, so the storage layer only needs get/set/remove of
opaque strings. Two backends are provided:

- SQLiteKeyValueStore: durable storage in a single-table SQLite database
- MemoryKeyValueStore: in-process dict, with switches to simulate failures

Database Schema:
    kv_store table:
        - key: Storage key (primary key)
        - value: Serialized blob
        - updated_at: Unix timestamp of the last write

Example:
    >>> store = SQLiteKeyValueStore()
    >>> store.set("screenTimeData", '{"2025-12-09": {...}}')
    >>> store.get("screenTimeData")
    '{"2025-12-09": {...}}'
"""

import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / "screentime-data"


class PersistenceError(Exception):
    """Base class for storage gateway failures."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class PersistenceReadError(PersistenceError):
    """A stored blob could not be read or decoded."""


class PersistenceWriteError(PersistenceError):
    """A blob could not be written."""


class KeyValueStore:
    """Interface for durable string blob storage.

    Implementations raise PersistenceReadError from get() and
    PersistenceWriteError from set()/remove() instead of leaking
    backend-specific exceptions.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed key-value store.

    Opens a short-lived connection per operation, so a single instance can
    be shared between the engine worker thread and the web server thread.

    Attributes:
        db_path (str): Absolute path to the SQLite database file
    """

    def __init__(self, db_path: str = None):
        """Initialize the store and make sure the schema exists.

        Args:
            db_path: Path to SQLite database file. If None, uses
                ~/screentime-data/screentime.db

        Raises:
            RuntimeError: If the data directory cannot be created
        """
        if db_path is None:
            try:
                DEFAULT_DATA_DIR.mkdir(parents=True, exist_ok=True)
            except PermissionError as e:
                raise RuntimeError(f"Permission denied creating data directory {DEFAULT_DATA_DIR}: {e}") from e
            db_path = DEFAULT_DATA_DIR / "screentime.db"

        self.db_path = str(db_path)
        self.init_db()

    @contextmanager
    def get_connection(self):
        """Context manager for SQLite connections.

        Yields:
            sqlite3.Connection: Connection with Row factory enabled

        Raises:
            RuntimeError: If the database file cannot be opened
        """
        try:
            conn = sqlite3.connect(self.db_path)
        except (sqlite3.OperationalError, PermissionError) as e:
            raise RuntimeError(f"Database access error for {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Create the kv_store table if it doesn't exist."""
        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        try:
            with self.get_connection() as conn:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (key,)
                ).fetchone()
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceReadError(f"Failed to read {key}: {e}", key) from e
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            with self.get_connection() as conn:
                conn.execute("""
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, (key, value, time.time()))
                conn.commit()
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceWriteError(f"Failed to write {key}: {e}", key) from e

    def remove(self, key: str) -> None:
        try:
            with self.get_connection() as conn:
                conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
                conn.commit()
        except (sqlite3.Error, RuntimeError) as e:
            raise PersistenceWriteError(f"Failed to remove {key}: {e}", key) from e


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and ephemeral runs.

    Attributes:
        fail_reads: When True, get() raises PersistenceReadError.
        fail_writes: When True, set()/remove() raise PersistenceWriteError.
        write_count: Number of successful set() calls.
    """

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()
        self.fail_reads = False
        self.fail_writes = False
        self.write_count = 0

    def get(self, key: str) -> Optional[str]:
        if self.fail_reads:
            raise PersistenceReadError(f"Simulated read failure for {key}", key)
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise PersistenceWriteError(f"Simulated write failure for {key}", key)
        with self._lock:
            self._data[key] = value
            self.write_count += 1

    def remove(self, key: str) -> None:
        if self.fail_writes:
            raise PersistenceWriteError(f"Simulated write failure for {key}", key)
        with self._lock:
            self._data.pop(key, None)
