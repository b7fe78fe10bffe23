"""Tests for the in-memory and SQLite key-value stores."""

from __future__ import annotations

import pytest

from ember.src.storage import InMemoryKeyValueStore, PersistenceError, SqliteKeyValueStore


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    """Each test runs against both store implementations."""
    if request.param == "memory":
        yield InMemoryKeyValueStore()
        return
    sqlite_store = SqliteKeyValueStore(tmp_path / "ember.db")
    sqlite_store.initialize_schema()
    yield sqlite_store
    sqlite_store.close()


class TestTypedValues:
    """Behaviour shared by all KeyValueStore implementations."""

    def test_missing_keys_return_empty_values(self, store) -> None:
        assert store.get_date("nope") is None
        assert store.get_string_set("nope") == []
        assert store.get_bool("nope") is None

    def test_date_round_trip_keeps_timezone(self, store, now) -> None:
        store.set_date("last", now)
        assert store.get_date("last") == now
        assert store.get_date("last").tzinfo is not None

    def test_string_set_deduplicates_in_order(self, store) -> None:
        store.set_string_set("ids", ["b", "a", "b", "c"])
        assert store.get_string_set("ids") == ["b", "a", "c"]

    def test_bool_values(self, store) -> None:
        store.set_bool("flag", False)
        assert store.get_bool("flag") is False
        store.set_bool("flag", True)
        assert store.get_bool("flag") is True

    def test_overwrite_replaces_value(self, store, now) -> None:
        store.set_string_set("ids", ["a"])
        store.set_string_set("ids", ["x", "y"])
        assert store.get_string_set("ids") == ["x", "y"]

    def test_wrong_type_reads_as_empty(self, store, now) -> None:
        store.set_date("key", now)
        assert store.get_string_set("key") == []
        assert store.get_bool("key") is None

    def test_remove(self, store) -> None:
        store.set_bool("flag", True)
        store.remove("flag")
        store.remove("never_set")
        assert store.get_bool("flag") is None


class TestSqliteKeyValueStore:
    """SQLite-specific behaviour."""

    def test_values_survive_reopen(self, tmp_path, now) -> None:
        path = tmp_path / "ember.db"
        with SqliteKeyValueStore(path) as first:
            first.initialize_schema()
            first.set_date("last", now)
            first.set_string_set("ids", ["s1"])
        with SqliteKeyValueStore(path) as second:
            second.initialize_schema()
            assert second.get_date("last") == now
            assert second.get_string_set("ids") == ["s1"]

    def test_idempotent_schema_init(self) -> None:
        store = SqliteKeyValueStore(":memory:")
        store.initialize_schema()
        store.initialize_schema()
        store.close()

    def test_missing_schema_raises_persistence_error(self) -> None:
        store = SqliteKeyValueStore(":memory:")
        with pytest.raises(PersistenceError):
            store.get_bool("flag")
        store.close()

    def test_corrupt_date_raises_persistence_error(self) -> None:
        store = SqliteKeyValueStore(":memory:")
        store.initialize_schema()
        store._write("last", "date", "not-a-date")
        with pytest.raises(PersistenceError):
            store.get_date("last")
        store.close()

    def test_closed_store_raises_persistence_error(self) -> None:
        store = SqliteKeyValueStore(":memory:")
        store.initialize_schema()
        store.close()
        with pytest.raises(PersistenceError):
            store.set_bool("flag", True)
