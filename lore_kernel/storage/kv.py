"""
Key-Value Store adapter — the only persistence primitive the engine relies on.

Behavioral Contract:
- Scalar operations only: get, set (with optional TTL), delete, expire, incr_by.
- No list, set, range or multi-key transaction primitives are assumed.
- Three atomic conditional writes close the engine's race windows:
  set_if_absent (dedup, achievement claims, leases),
  compare_and_set (versioned single-record writes),
  compare_and_delete (lease release by the holder only).
- Backend failures surface as StoreUnavailableError (retryable).
"""

import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional, Protocol, Tuple

from loguru import logger

from lore_kernel.errors import CorruptedRecordError, StoreUnavailableError


class KeyValueStore(Protocol):
    """Protocol for the remote key-value store. Backends are pluggable."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def expire(self, key: str, seconds: int) -> bool: ...

    def incr_by(self, key: str, delta: int = 1) -> int: ...

    def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool: ...

    def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool: ...

    def compare_and_delete(self, key: str, expected: str) -> bool: ...


def parse_counter(key: str, raw: Optional[str]) -> int:
    if raw is None:
        return 0
    try:
        return int(raw)
    except ValueError:
        raise CorruptedRecordError(
            f"Counter at {key} holds a non-integer value", key=key
        ) from None


class InMemoryKeyValueStore:
    """
    Process-local store for tests and single-process deployments.
    A single lock makes every operation, including the conditional writes, atomic.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str) -> Optional[str]:
        """Return the live value for key, evicting it if expired. Lock must be held."""
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (value, self._expiry(ttl_seconds))

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live(key) is not None
            self._data.pop(key, None)
            return existed

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            value = self._live(key)
            if value is None:
                return False
            self._data[key] = (value, self._clock() + seconds)
            return True

    def incr_by(self, key: str, delta: int = 1) -> int:
        with self._lock:
            raw = self._live(key)
            value = parse_counter(key, raw) + delta
            expires_at = self._data[key][1] if raw is not None else None
            self._data[key] = (str(value), expires_at)
            return value

    def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            self._data[key] = (value, self._expiry(ttl_seconds))
            return True

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._lock:
            if self._live(key) != expected:
                return False
            del self._data[key]
            return True

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._data) if self._live(key) is not None)


class SQLiteKeyValueStore:
    """
    Durable key-value store on SQLite.
    Prototype: SQLite. Production: any store offering the same conditional writes.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        timeout_seconds: float = 2.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.db_path = db_path
        self._clock = clock or time.time
        self._lock = threading.RLock()
        try:
            self._conn = sqlite3.connect(
                db_path,
                timeout=timeout_seconds,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open key-value store at {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the kv table if it doesn't exist."""
        with self._guard():
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                )
            """)
            self._conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_kv_expires_at ON kv(expires_at)
            """)

    @contextmanager
    def _guard(self) -> Iterator[None]:
        """Serialize access and translate driver errors."""
        with self._lock:
            try:
                yield
            except sqlite3.Error as exc:
                logger.error("Key-value store operation failed: {}", exc)
                raise StoreUnavailableError(f"Key-value store unavailable: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._guard():
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def _select_live(self, conn: sqlite3.Connection, key: str) -> Optional[sqlite3.Row]:
        row = conn.execute(
            "SELECT value, expires_at FROM kv WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        if row["expires_at"] is not None and self._clock() >= row["expires_at"]:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return None
        return row

    def get(self, key: str) -> Optional[str]:
        with self._transaction() as conn:
            row = self._select_live(conn, key)
            return row["value"] if row else None

    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._guard():
            self._conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )

    def delete(self, key: str) -> bool:
        with self._transaction() as conn:
            existed = self._select_live(conn, key) is not None
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return existed

    def expire(self, key: str, seconds: int) -> bool:
        with self._transaction() as conn:
            if self._select_live(conn, key) is None:
                return False
            conn.execute(
                "UPDATE kv SET expires_at = ? WHERE key = ?",
                (self._clock() + seconds, key),
            )
            return True

    def incr_by(self, key: str, delta: int = 1) -> int:
        with self._transaction() as conn:
            row = self._select_live(conn, key)
            value = parse_counter(key, row["value"] if row else None) + delta
            if row is None:
                conn.execute(
                    "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, NULL)",
                    (key, str(value)),
                )
            else:
                conn.execute("UPDATE kv SET value = ? WHERE key = ?", (str(value), key))
            return value

    def set_if_absent(
        self, key: str, value: str, ttl_seconds: Optional[int] = None
    ) -> bool:
        with self._transaction() as conn:
            if self._select_live(conn, key) is not None:
                return False
            conn.execute(
                "INSERT INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )
            return True

    def compare_and_set(
        self,
        key: str,
        expected: Optional[str],
        value: str,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        with self._transaction() as conn:
            row = self._select_live(conn, key)
            current = row["value"] if row else None
            if current != expected:
                return False
            conn.execute(
                "INSERT OR REPLACE INTO kv (key, value, expires_at) VALUES (?, ?, ?)",
                (key, value, self._expiry(ttl_seconds)),
            )
            return True

    def compare_and_delete(self, key: str, expected: str) -> bool:
        with self._transaction() as conn:
            row = self._select_live(conn, key)
            if row is None or row["value"] != expected:
                return False
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            return True

    def purge_expired(self) -> int:
        """Delete every expired row. Returns the number of rows removed."""
        with self._guard():
            cursor = self._conn.execute(
                "DELETE FROM kv WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (self._clock(),),
            )
            return cursor.rowcount

    def count(self) -> int:
        """Total number of stored keys, expired rows included."""
        with self._guard():
            row = self._conn.execute("SELECT COUNT(*) AS cnt FROM kv").fetchone()
            return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
