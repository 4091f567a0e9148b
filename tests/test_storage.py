"""Tests for key-value storage backends."""

import sqlite3

import pytest

from routewise.storage import InMemoryStore, PersistenceError, SQLiteStore


class TestInMemoryStore:
    """Test the in-memory backend."""

    def test_get_missing(self):
        assert InMemoryStore().get("nothing") is None

    def test_values_are_copied(self):
        """Mutating a returned value does not change the stored one."""
        store = InMemoryStore()
        store.update("k", {"items": [1]})

        value = store.get("k")
        value["items"].append(2)

        assert store.get("k") == {"items": [1]}
        assert store.keys() == ["k"]


class TestSQLiteStore:
    """Test the SQLite backend."""

    def setup_method(self):
        self.store = SQLiteStore(":memory:")

    def teardown_method(self):
        self.store.close()

    def test_round_trip_and_overwrite(self):
        self.store.update("budget", {"daily_spent": 0.5})
        self.store.update("budget", {"daily_spent": 0.75})

        assert self.store.get("budget") == {"daily_spent": 0.75}
        assert self.store.get("other") is None

    def test_unserializable_value(self):
        with pytest.raises(PersistenceError) as exc_info:
            self.store.update("k", {"bad": object()})
        assert exc_info.value.key == "k"

    def test_corrupted_value(self):
        self.store._conn.execute("INSERT INTO kv (key, value) VALUES (?, ?)", ("k", "{not json"))

        with pytest.raises(PersistenceError, match="Corrupted"):
            self.store.get("k")

    def test_closed_connection(self):
        self.store.close()
        with pytest.raises(PersistenceError):
            self.store.get("k")
        self.store = SQLiteStore(":memory:")

    def test_file_persistence(self, tmp_path):
        path = str(tmp_path / "kv.db")
        first = SQLiteStore(path)
        first.update("k", [1, 2, 3])
        first.close()

        second = SQLiteStore(path)
        assert second.get("k") == [1, 2, 3]
        second.close()

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(PersistenceError):
            SQLiteStore(str(tmp_path / "missing-dir" / "kv.db"))

    def test_wal_mode(self, tmp_path):
        store = SQLiteStore(str(tmp_path / "kv.db"))
        store.close()

        conn = sqlite3.connect(str(tmp_path / "kv.db"))
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode == "wal"
