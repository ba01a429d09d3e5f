"""
Local key-value persistence.

Backs the local cache and the offline sync queue. Values are serialized
strings (JSON arrays of records); the storage never interprets them.

Database location: ~/.hanzi_review/local.db
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path

from loguru import logger


class StorageError(Exception):
    """Raised when the local storage cannot be read or written."""


class KeyValueStorage(ABC):
    """Durable string key-value storage."""

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Value for a key, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete a key (no-op if absent)."""


class MemoryStorage(KeyValueStorage):
    """Process-local storage, for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SqliteKeyValueStorage(KeyValueStorage):
    """
    SQLite-backed key-value storage.

    Survives process restarts; each write is committed before returning.
    """

    DEFAULT_DB_PATH = Path.home() / ".hanzi_review" / "local.db"

    def __init__(self, db_path: Path | None = None):
        """
        Initialize the storage.

        Args:
            db_path: Custom database path (defaults to ~/.hanzi_review/local.db)
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug(f"Local storage initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.conn.commit()

    def get(self, key: str) -> str | None:
        try:
            cursor = self.conn.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
        except sqlite3.Error as exc:
            raise StorageError(f"Read failed for {key}: {exc}") from exc
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """,
                (key, value),
            )
            self.conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Write failed for {key}: {exc}") from exc

    def remove(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as exc:
            raise StorageError(f"Delete failed for {key}: {exc}") from exc

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
