"""Tests for key-value storage backends."""

from pathlib import Path

import pytest

from memoria.storage import InMemoryKeyValueStore, SQLiteKeyValueStore


@pytest.fixture
def sqlite_kv(tmp_path: Path) -> SQLiteKeyValueStore:
    """Create a SQLiteKeyValueStore with a temporary database."""
    kv = SQLiteKeyValueStore(tmp_path / "nested" / "test.db")
    kv.init_db()
    yield kv
    kv.close()


class TestInMemoryKeyValueStore:
    """Tests for the dict-backed store."""

    def test_get_missing_returns_default(self):
        """Missing keys return the default."""
        assert InMemoryKeyValueStore().get("nope", 7) == 7

    def test_values_are_copied(self):
        """Mutating a returned value doesn't change the store."""
        kv = InMemoryKeyValueStore()
        kv.set("items", [1, 2])
        kv.get("items").append(3)
        assert kv.get("items") == [1, 2]

    def test_delete(self):
        """delete reports whether the key existed."""
        kv = InMemoryKeyValueStore({"a": None})
        assert kv.delete("a") is True
        assert kv.delete("a") is False
        assert kv.keys() == []


class TestSQLiteKeyValueStore:
    """Tests for the SQLite-backed store."""

    def test_creates_parent_directory(self, sqlite_kv: SQLiteKeyValueStore):
        """init_db creates missing parent directories."""
        assert sqlite_kv.db_path.exists()

    def test_set_and_get(self, sqlite_kv: SQLiteKeyValueStore):
        """Values survive a JSON round trip."""
        sqlite_kv.set("settings", {"enabled": True, "name": "café"})
        assert sqlite_kv.get("settings") == {"enabled": True, "name": "café"}

    def test_set_overwrites(self, sqlite_kv: SQLiteKeyValueStore):
        """A second set replaces the value."""
        sqlite_kv.set("k", 1)
        sqlite_kv.set("k", 2)
        assert sqlite_kv.get("k") == 2

    def test_set_many(self, sqlite_kv: SQLiteKeyValueStore):
        """set_many writes every item."""
        sqlite_kv.set_many({"a": [1], "b": {"x": 2}})
        assert sqlite_kv.get("a") == [1]
        assert sqlite_kv.get("b") == {"x": 2}

    def test_delete(self, sqlite_kv: SQLiteKeyValueStore):
        """delete removes the key."""
        sqlite_kv.set("k", "v")
        assert sqlite_kv.delete("k") is True
        assert sqlite_kv.get("k") is None
        assert sqlite_kv.delete("k") is False

    def test_persists_across_connections(self, tmp_path: Path):
        """Data is still there after reopening the database."""
        path = tmp_path / "persist.db"
        first = SQLiteKeyValueStore(path)
        first.init_db()
        first.set("memories", [{"id": "a"}])
        first.close()

        second = SQLiteKeyValueStore(path)
        second.init_db()
        assert second.get("memories") == [{"id": "a"}]
        second.close()
