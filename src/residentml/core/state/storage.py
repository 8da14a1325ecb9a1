"""
Durable key/value storage for persisted variables.

Entries are keyed by ``(scope, name)`` where ``scope`` identifies the template
instance, and hold JSON text. Two backends:

- MemoryStorage: process-local dict, used for previews and tests
- SqliteStorage: one table, connection-per-call (":memory:" keeps one open)
"""

from __future__ import annotations

import logging
import sqlite3
import time
from pathlib import Path
from typing import Protocol, runtime_checkable

from residentml.core.manifest import PersistenceConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStorage(Protocol):
    """Storage used by the variable store for persist=true variables."""

    def get(self, scope: str, name: str) -> str | None: ...

    def set(self, scope: str, name: str, value: str) -> None: ...

    def delete(self, scope: str, name: str) -> None: ...

    def keys(self, scope: str) -> list[str]: ...


class MemoryStorage:
    """In-process storage."""

    def __init__(self) -> None:
        self._data: dict[tuple[str, str], str] = {}

    def get(self, scope: str, name: str) -> str | None:
        return self._data.get((scope, name))

    def set(self, scope: str, name: str, value: str) -> None:
        self._data[(scope, name)] = value

    def delete(self, scope: str, name: str) -> None:
        self._data.pop((scope, name), None)

    def keys(self, scope: str) -> list[str]:
        return sorted(name for s, name in self._data if s == scope)

    def __len__(self) -> int:
        return len(self._data)


class SqliteStorage:
    """
    SQLite-backed storage.

    Schema:
    - template_state: scope, name (primary key), value (JSON text), updated_at
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self._db_path = str(db_path)
        self._is_memory = self._db_path == ":memory:"
        self._persistent_conn: sqlite3.Connection | None = None
        if not self._is_memory:
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        else:
            self._persistent_conn = self._create_connection()
        self._init_schema()

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        if not self._is_memory:
            conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        if self._is_memory and self._persistent_conn:
            return self._persistent_conn
        return self._create_connection()

    def _close_connection(self, conn: sqlite3.Connection) -> None:
        if not self._is_memory:
            conn.close()

    def _init_schema(self) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS template_state (
                    scope TEXT NOT NULL,
                    name TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL,
                    PRIMARY KEY (scope, name)
                )
                """
            )
            conn.commit()
        finally:
            self._close_connection(conn)

    def get(self, scope: str, name: str) -> str | None:
        conn = self._get_connection()
        try:
            row = conn.execute(
                "SELECT value FROM template_state WHERE scope = ? AND name = ?",
                (scope, name),
            ).fetchone()
        finally:
            self._close_connection(conn)
        return row[0] if row else None

    def set(self, scope: str, name: str, value: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                """
                INSERT INTO template_state (scope, name, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(scope, name) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (scope, name, value, time.time()),
            )
            conn.commit()
        finally:
            self._close_connection(conn)

    def delete(self, scope: str, name: str) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                "DELETE FROM template_state WHERE scope = ? AND name = ?",
                (scope, name),
            )
            conn.commit()
        finally:
            self._close_connection(conn)

    def keys(self, scope: str) -> list[str]:
        conn = self._get_connection()
        try:
            rows = conn.execute(
                "SELECT name FROM template_state WHERE scope = ? ORDER BY name",
                (scope,),
            ).fetchall()
        finally:
            self._close_connection(conn)
        return [row[0] for row in rows]


def open_storage(config: PersistenceConfig) -> KeyValueStorage:
    """Build the storage backend named in the manifest."""
    if config.backend == "sqlite":
        logger.debug("Opening sqlite state storage at %s", config.path)
        return SqliteStorage(config.path)
    return MemoryStorage()
