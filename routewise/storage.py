"""Key-value storage backends for the budget ledger."""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from typing import Any, Dict, Optional, Protocol


class PersistenceError(Exception):
    """Raised when a storage backend cannot read or write a value."""
    def __init__(self, message: str, key: Optional[str] = None):
        self.key = key
        super().__init__(message)


class KeyValueStore(Protocol):
    """Storage backend interface."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def update(self, key: str, value: Any) -> None:
        ...


class InMemoryStore:
    """In-memory storage backend (default). Nothing survives a restart."""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        value = self._data.get(key)
        return copy.deepcopy(value)

    def update(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        return list(self._data.keys())


class SQLiteStore:
    """SQLite-backed storage backend. Values are stored as JSON."""

    def __init__(self, db_path: str = "routewise.db"):
        self.db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._init_schema()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open budget store {db_path}: {e}") from e

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.commit()

    def get(self, key: str) -> Optional[Any]:
        try:
            with self._lock:
                row = self._conn.execute(
                    "SELECT value FROM kv WHERE key = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key}: {e}", key) from e
        if not row:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupted value for {key}: {e}", key) from e

    def update(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Value for {key} is not serializable: {e}", key) from e
        try:
            with self._lock:
                self._conn.execute(
                    """
                    INSERT INTO kv (key, value, updated_at)
                    VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET
                        value=excluded.value,
                        updated_at=excluded.updated_at
                    """,
                    (key, payload),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key}: {e}", key) from e

    def close(self) -> None:
        self._conn.close()
