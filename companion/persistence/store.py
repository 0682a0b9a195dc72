"""
Key-Value Store - SQLite persistence for Code Companion

Holds JSON-serialized values under string keys. The orchestrator keeps its
task history here under a single key, overwritten on every push.

Thread Safety:
- One connection per store, created with check_same_thread=False
- All reads and writes are serialized through a lock
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from companion.exceptions import StorageError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


class KeyValueStore:
    """
    SQLite-backed key-value store.

    Usage:
        with KeyValueStore(path) as store:
            store.set("companion.taskHistory", [...])
            history = store.get("companion.taskHistory", [])

    Pass ":memory:" as the path for a throwaway store.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path if db_path == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> KeyValueStore:
        self.initialize()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get database connection, initializing if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn  # type: ignore

    def initialize(self) -> None:
        """Open the connection and apply the schema. Idempotent."""
        if self._conn is not None:
            return

        try:
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            if isinstance(self.db_path, Path):
                self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Cannot open store at {self.db_path}", {"error": str(e)})

        logger.debug(f"Initialized key-value store at {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def get(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a value.

        Raises:
            StorageError: If the stored value is not valid JSON
        """
        with self._lock:
            row = self.conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            raise StorageError(f"Corrupt value for key '{key}'", {"error": str(e)})

    def set(self, key: str, value: Any) -> None:
        """Encode and overwrite a value."""
        payload = json.dumps(value, default=str)
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, payload, datetime.now().isoformat()),
                )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot write key '{key}'", {"error": str(e)})

    def delete(self, key: str) -> bool:
        """Remove a key; returns True if it existed."""
        with self._lock:
            cursor = self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        return cursor.rowcount > 0

    def keys(self) -> list[str]:
        with self._lock:
            rows = self.conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row[0] for row in rows]
