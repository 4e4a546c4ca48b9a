"""Key-value persistence backends.

The memory core persists coarse-grained records: the whole memory
collection under one key and the whole settings record under another.
"""

import copy
import json
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class KeyValueStore(ABC):
    """Abstract key-value store holding JSON-serializable values."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store value under key, replacing any previous value."""
        ...

    def set_many(self, items: dict[str, Any]) -> None:
        """Store several values at once."""
        for key, value in items.items():
            self.set(key, value)

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        ...

    def close(self) -> None:
        """Release any held resources."""


class InMemoryKeyValueStore(KeyValueStore):
    """Dict-backed store that keeps deep copies of its values."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        return True

    def keys(self) -> list[str]:
        return list(self._data)


class SQLiteKeyValueStore(KeyValueStore):
    """Persistent key-value store using SQLite.

    Values are stored as JSON text in a single ``kv`` table.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def init_db(self) -> None:
        """Create the kv table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key         TEXT PRIMARY KEY,
                value       TEXT NOT NULL,
                updated_at  TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        conn.commit()

    def get(self, key: str, default: Any = None) -> Any:
        conn = self._get_connection()
        row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return json.loads(row["value"])

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, items: dict[str, Any]) -> None:
        """Write all items in a single transaction."""
        conn = self._get_connection()
        with conn:
            conn.executemany(
                """
                INSERT INTO kv (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = datetime('now')
                """,
                [
                    (key, json.dumps(value, ensure_ascii=False))
                    for key, value in items.items()
                ],
            )

    def delete(self, key: str) -> bool:
        conn = self._get_connection()
        cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
