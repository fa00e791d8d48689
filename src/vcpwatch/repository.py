"""
VCP Watch - Result Store

Persists scanned instruments and the signals fired for them:
- ResultStore protocol defines the interface
- SQLiteResultStore implements SQLite storage
- InMemoryResultStore for tests and one-off scans
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional, Protocol

from .errors import PersistenceFailure
from .models import EntrySignal, WatchedInstrument


class ResultStore(Protocol):
    """
    Protocol defining the result store interface.

    Implementations raise PersistenceFailure when the backend fails.
    """

    def save_instrument(self, record: WatchedInstrument) -> None:
        """Insert or replace an instrument record."""
        ...

    def get_instrument(self, instrument_id: str) -> Optional[WatchedInstrument]:
        """Get an instrument record by ID."""
        ...

    def record_signal(self, instrument_id: str, signal: EntrySignal) -> Optional[WatchedInstrument]:
        """Mark an entry signal as fired. Returns the updated record, if any."""
        ...

    def list_instruments(
        self,
        has_pattern: Optional[bool] = None,
        symbol: Optional[str] = None,
    ) -> List[WatchedInstrument]:
        """List records, newest first."""
        ...

    def delete_instrument(self, instrument_id: str) -> None:
        """Delete a record by ID."""
        ...


class SQLiteResultStore:
    """
    SQLite implementation of ResultStore.

    Pattern snapshots and fired signals are stored as JSON text.
    """

    def __init__(self, db_path: str = "data/vcpwatch.db"):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise PersistenceFailure(f"Cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailure(f"Database operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS watched_instruments (
                    id VARCHAR(36) PRIMARY KEY,
                    symbol VARCHAR(20) NOT NULL,
                    name VARCHAR(200) NOT NULL DEFAULT '',
                    scan_name VARCHAR(200) NOT NULL DEFAULT '',

                    -- Pattern data
                    has_pattern INTEGER NOT NULL,
                    pattern_score DECIMAL(5,2) NOT NULL,
                    pattern_snapshot TEXT,

                    -- Signal state
                    last_price DECIMAL(12,4),
                    entry_signal INTEGER NOT NULL DEFAULT 0,
                    last_signal TEXT,

                    -- Timestamps
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_watched_instruments_symbol
                ON watched_instruments(symbol)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_watched_instruments_pattern
                ON watched_instruments(has_pattern)
            """)

    def _row_to_record(self, row: sqlite3.Row) -> WatchedInstrument:
        """Convert a database row to a WatchedInstrument."""
        record = WatchedInstrument(
            id=row["id"],
            symbol=row["symbol"],
            name=row["name"],
            scan_name=row["scan_name"],
            has_pattern=bool(row["has_pattern"]),
            pattern_score=row["pattern_score"],
            pattern_snapshot=json.loads(row["pattern_snapshot"]) if row["pattern_snapshot"] else {},
            last_price=row["last_price"],
            entry_signal=bool(row["entry_signal"]),
            last_signal=json.loads(row["last_signal"]) if row["last_signal"] else None,
        )
        record.created_at = datetime.fromisoformat(row["created_at"])
        record.updated_at = datetime.fromisoformat(row["updated_at"])
        return record

    def save_instrument(self, record: WatchedInstrument) -> None:
        """Insert or replace an instrument record."""
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO watched_instruments (
                    id, symbol, name, scan_name,
                    has_pattern, pattern_score, pattern_snapshot,
                    last_price, entry_signal, last_signal,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.symbol,
                    record.name,
                    record.scan_name,
                    int(record.has_pattern),
                    record.pattern_score,
                    json.dumps(record.pattern_snapshot) if record.pattern_snapshot else None,
                    record.last_price,
                    int(record.entry_signal),
                    json.dumps(record.last_signal) if record.last_signal else None,
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                ),
            )

    def get_instrument(self, instrument_id: str) -> Optional[WatchedInstrument]:
        """Get an instrument record by ID."""
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM watched_instruments WHERE id = ?",
                (instrument_id,)
            )
            row = cursor.fetchone()
            if row:
                return self._row_to_record(row)
            return None

    def record_signal(self, instrument_id: str, signal: EntrySignal) -> Optional[WatchedInstrument]:
        """Mark an entry signal as fired for an instrument."""
        record = self.get_instrument(instrument_id)
        if record is None:
            return None

        record.mark_signal(signal)
        with self._get_connection() as conn:
            conn.execute(
                """
                UPDATE watched_instruments SET
                    last_price = ?,
                    entry_signal = ?,
                    last_signal = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    record.last_price,
                    int(record.entry_signal),
                    json.dumps(record.last_signal),
                    record.updated_at.isoformat(),
                    record.id,
                ),
            )
        return record

    def list_instruments(
        self,
        has_pattern: Optional[bool] = None,
        symbol: Optional[str] = None,
    ) -> List[WatchedInstrument]:
        """List records, newest first."""
        conditions = []
        params = []

        if has_pattern is not None:
            conditions.append("has_pattern = ?")
            params.append(int(has_pattern))

        if symbol:
            conditions.append("symbol = ?")
            params.append(symbol)

        query = "SELECT * FROM watched_instruments"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC"

        with self._get_connection() as conn:
            cursor = conn.execute(query, params)
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def delete_instrument(self, instrument_id: str) -> None:
        """Delete a record by ID."""
        with self._get_connection() as conn:
            conn.execute("DELETE FROM watched_instruments WHERE id = ?", (instrument_id,))


class InMemoryResultStore:
    """
    In-memory implementation of ResultStore.

    Stores records in a dictionary - no persistence. Records are copied on
    the way in and out so callers never share state with the store.
    """

    def __init__(self):
        self._records: dict[str, WatchedInstrument] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _copy(record: WatchedInstrument) -> WatchedInstrument:
        return WatchedInstrument.from_dict(record.to_dict())

    def save_instrument(self, record: WatchedInstrument) -> None:
        """Insert or replace a record."""
        with self._lock:
            self._records[record.id] = self._copy(record)

    def get_instrument(self, instrument_id: str) -> Optional[WatchedInstrument]:
        """Get a record by ID."""
        with self._lock:
            record = self._records.get(instrument_id)
            return self._copy(record) if record else None

    def record_signal(self, instrument_id: str, signal: EntrySignal) -> Optional[WatchedInstrument]:
        """Mark an entry signal as fired."""
        with self._lock:
            record = self._records.get(instrument_id)
            if record is None:
                return None
            record.mark_signal(signal)
            return self._copy(record)

    def list_instruments(
        self,
        has_pattern: Optional[bool] = None,
        symbol: Optional[str] = None,
    ) -> List[WatchedInstrument]:
        """List records, newest first."""
        with self._lock:
            results = [self._copy(r) for r in self._records.values()]

        if has_pattern is not None:
            results = [r for r in results if r.has_pattern == has_pattern]
        if symbol:
            results = [r for r in results if r.symbol == symbol]

        return sorted(results, key=lambda r: r.created_at, reverse=True)

    def delete_instrument(self, instrument_id: str) -> None:
        """Delete a record by ID."""
        with self._lock:
            self._records.pop(instrument_id, None)

    def clear_all(self) -> int:
        """Clear all records."""
        with self._lock:
            count = len(self._records)
            self._records.clear()
            return count
