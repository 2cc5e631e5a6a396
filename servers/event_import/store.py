"""
Event store backends.

The importer needs two bulk operations from a store:
- existing_external_ids(source, ids) -> set of ids already stored
- bulk_insert(events) -> None, raising StoreError on failure

Both must be safe against concurrent writers; the SQLite backend relies on a
UNIQUE (external_source, external_id) constraint for that.
"""

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Protocol

import structlog

from .errors import StoreError
from .models import StoredEvent

logger = structlog.get_logger()


class EventStore(Protocol):
    """Bulk persistence interface used by the dedup importer."""

    async def existing_external_ids(self, source: str, external_ids: Iterable[str]) -> set[str]:
        ...

    async def bulk_insert(self, events: list[StoredEvent]) -> None:
        ...


class InMemoryEventStore:
    """Dict-backed store, used for dry runs and tests."""

    def __init__(self):
        self.events: dict[tuple[str, str], StoredEvent] = {}

    async def existing_external_ids(self, source: str, external_ids: Iterable[str]) -> set[str]:
        return {eid for eid in external_ids if (source, eid) in self.events}

    async def bulk_insert(self, events: list[StoredEvent]) -> None:
        keys = [(e.external_source, e.external_id) for e in events]
        if len(set(keys)) != len(keys) or any(key in self.events for key in keys):
            raise StoreError("duplicate external_id in bulk insert")
        for key, event in zip(keys, events):
            self.events[key] = event

    def __len__(self) -> int:
        return len(self.events)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    category TEXT,
    location TEXT,
    latitude REAL,
    longitude REAL,
    start_date TEXT NOT NULL,
    start_time TEXT,
    end_date TEXT,
    end_time TEXT,
    image_url TEXT,
    ticket_url TEXT,
    external_url TEXT,
    is_published INTEGER NOT NULL DEFAULT 1,
    is_free INTEGER NOT NULL DEFAULT 0,
    UNIQUE(external_source, external_id)
)
"""

_COLUMNS = [
    "external_source",
    "external_id",
    "title",
    "description",
    "category",
    "location",
    "latitude",
    "longitude",
    "start_date",
    "start_time",
    "end_date",
    "end_time",
    "image_url",
    "ticket_url",
    "external_url",
    "is_published",
    "is_free",
]

# SQLite's default limit on bound parameters per statement
_MAX_VARIABLES = 999


class SqliteEventStore:
    """SQLite-backed event store.

    Each bulk insert runs in one transaction, so a failed batch leaves no
    partial rows behind. Statements run in a worker thread, one at a time,
    so a slow disk does not stall the event loop.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(_SCHEMA)
        self._conn.commit()

    async def existing_external_ids(self, source: str, external_ids: Iterable[str]) -> set[str]:
        ids = list(dict.fromkeys(external_ids))
        try:
            return await asyncio.to_thread(self._select_existing, source, ids)
        except sqlite3.Error as e:
            raise StoreError(f"existence check failed: {e}") from e

    async def bulk_insert(self, events: list[StoredEvent]) -> None:
        if not events:
            return
        rows = [
            tuple(getattr(event, column) for column in _COLUMNS)
            for event in events
        ]
        try:
            await asyncio.to_thread(self._insert_rows, rows)
        except sqlite3.Error as e:
            logger.error("bulk_insert_failed", count=len(events), error=str(e))
            raise StoreError(f"bulk insert failed: {e}") from e

    def _select_existing(self, source: str, ids: list[str]) -> set[str]:
        found: set[str] = set()
        with self._lock:
            for i in range(0, len(ids), _MAX_VARIABLES - 1):
                chunk = ids[i:i + _MAX_VARIABLES - 1]
                placeholders = ",".join("?" for _ in chunk)
                rows = self._conn.execute(
                    f"SELECT external_id FROM events "
                    f"WHERE external_source = ? AND external_id IN ({placeholders})",
                    [source, *chunk],
                ).fetchall()
                found.update(row["external_id"] for row in rows)
        return found

    def _insert_rows(self, rows: list[tuple]) -> None:
        placeholders = ",".join("?" for _ in _COLUMNS)
        with self._lock, self._conn:
            self._conn.executemany(
                f"INSERT INTO events ({','.join(_COLUMNS)}) VALUES ({placeholders})",
                rows,
            )

    def count(self, source: str | None = None) -> int:
        with self._lock:
            if source is None:
                row = self._conn.execute("SELECT COUNT(*) FROM events").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM events WHERE external_source = ?", (source,)
                ).fetchone()
        return row[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
