"""Key-value persistence for gate and skip state.

The engine persists a handful of small values: the time of the last
presented prompt and the set of engagements the user declined. Hosts
supply any ``KeyValueStore``; an in-memory store and an SQLite-backed
store are provided.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ember_kv (
    key TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

_KIND_DATE = "date"
_KIND_STRING_SET = "string_set"
_KIND_BOOL = "bool"


class PersistenceError(Exception):
    """Raised when a value cannot be read from or written to the store."""


class KeyValueStore(Protocol):
    """Generic persistence used by the gate and the skip registry.

    Implementations raise ``PersistenceError`` on backend failures.
    String sets are returned as lists in insertion order.
    """

    def get_date(self, key: str) -> datetime | None: ...

    def set_date(self, key: str, value: datetime) -> None: ...

    def get_string_set(self, key: str) -> list[str]: ...

    def set_string_set(self, key: str, values: Iterable[str]) -> None: ...

    def get_bool(self, key: str) -> bool | None: ...

    def set_bool(self, key: str, value: bool) -> None: ...

    def remove(self, key: str) -> None: ...


def _dedupe(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


class InMemoryKeyValueStore:
    """Process-local store; nothing survives a restart."""

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def get_date(self, key: str) -> datetime | None:
        value = self._values.get(key)
        return value if isinstance(value, datetime) else None

    def set_date(self, key: str, value: datetime) -> None:
        self._values[key] = value

    def get_string_set(self, key: str) -> list[str]:
        value = self._values.get(key)
        return list(value) if isinstance(value, list) else []

    def set_string_set(self, key: str, values: Iterable[str]) -> None:
        self._values[key] = _dedupe(values)

    def get_bool(self, key: str) -> bool | None:
        value = self._values.get(key)
        return value if isinstance(value, bool) else None

    def set_bool(self, key: str, value: bool) -> None:
        self._values[key] = bool(value)

    def remove(self, key: str) -> None:
        self._values.pop(key, None)

    def keys(self) -> list[str]:
        """Return all stored keys."""
        return list(self._values)


class SqliteKeyValueStore:
    """SQLite-backed key-value store.

    Values are stored as text with a type tag: dates as ISO-8601,
    string sets as JSON arrays, booleans as ``"1"`` / ``"0"``. Reading a
    key stored under a different type returns the empty value.

    Args:
        db_path: Path to SQLite database file, or ':memory:' for in-memory.

    Example::

        with SqliteKeyValueStore("ember.db") as store:
            store.initialize_schema()
            store.set_bool("onboarded", True)
    """

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self._db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open key-value store: {exc}") from exc
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> SqliteKeyValueStore:
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Close the database connection."""
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def initialize_schema(self) -> None:
        """Create the key-value table if it doesn't exist."""
        with self._lock:
            try:
                self._conn.executescript(_SCHEMA_SQL)
                self._conn.commit()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot initialize schema: {exc}") from exc

    # ---------------------------------------------------------------
    # Typed accessors
    # ---------------------------------------------------------------

    def get_date(self, key: str) -> datetime | None:
        raw = self._read(key, _KIND_DATE)
        if raw is None:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError as exc:
            raise PersistenceError(f"Corrupt date stored under '{key}'") from exc

    def set_date(self, key: str, value: datetime) -> None:
        self._write(key, _KIND_DATE, value.isoformat())

    def get_string_set(self, key: str) -> list[str]:
        raw = self._read(key, _KIND_STRING_SET)
        if raw is None:
            return []
        try:
            values = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt string set stored under '{key}'") from exc
        return [str(v) for v in values]

    def set_string_set(self, key: str, values: Iterable[str]) -> None:
        self._write(key, _KIND_STRING_SET, json.dumps(_dedupe(values)))

    def get_bool(self, key: str) -> bool | None:
        raw = self._read(key, _KIND_BOOL)
        if raw is None:
            return None
        return raw == "1"

    def set_bool(self, key: str, value: bool) -> None:
        self._write(key, _KIND_BOOL, "1" if value else "0")

    def remove(self, key: str) -> None:
        """Delete a key; missing keys are ignored."""
        with self._lock:
            try:
                self._conn.execute("DELETE FROM ember_kv WHERE key = ?", (key,))
                self._conn.commit()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot remove '{key}': {exc}") from exc

    # ---------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------

    def _read(self, key: str, kind: str) -> str | None:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT kind, value FROM ember_kv WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot read '{key}': {exc}") from exc
        if row is None or row["kind"] != kind:
            return None
        return row["value"]

    def _write(self, key: str, kind: str, value: str) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO ember_kv (key, kind, value, updated_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET "
                    "kind = excluded.kind, value = excluded.value, "
                    "updated_at = excluded.updated_at",
                    (key, kind, value, datetime.now(timezone.utc).isoformat()),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot write '{key}': {exc}") from exc
