"""
Unit tests for the SQLite connection layer.

Tests cover:
- Schema and index creation
- Re-entrant transactions and rollback
- Timestamp formatting and normalization
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from graphledger.store import GraphStore
from graphledger.store.database import Database, format_timestamp, normalize_timestamp


class TestDatabase:
    """Tests for Database."""

    @pytest.fixture
    def database(self, db_path, clock):
        db = Database(db_path, clock=clock)
        yield db
        db.close()

    def test_creates_schema(self, database):
        rows = database.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
        tables = {row["name"] for row in rows}
        assert {"nodes", "edges", "audit_log", "node_status"} <= tables

    def test_creates_indexes(self, database):
        rows = database.connection.execute(
            "SELECT name FROM sqlite_master WHERE type = 'index' AND name LIKE 'idx_%'"
        ).fetchall()
        assert {row["name"] for row in rows} == {
            "idx_edges_source",
            "idx_edges_target",
            "idx_audit_entity",
            "idx_audit_created",
            "idx_node_status_node_id",
            "idx_node_status_created",
        }

    def test_foreign_keys_enforced(self, database):
        assert database.connection.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_creates_parent_directory(self, data_dir, clock):
        db = Database(data_dir / "nested" / "dir" / "graph.db", clock=clock)
        try:
            db.connection
            assert (data_dir / "nested" / "dir" / "graph.db").exists()
        finally:
            db.close()

    def test_wal_mode(self, db_path, clock):
        db = Database(db_path, wal_mode=True, clock=clock)
        try:
            mode = db.connection.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode.lower() == "wal"
        finally:
            db.close()

    def test_close_and_reopen(self, database):
        first = database.connection
        database.close()
        assert database.connection is not first

    def test_transaction_commits(self, database):
        now = database.now()
        with database.transaction() as conn:
            conn.execute(
                "INSERT INTO nodes (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                ("n1", "{}", now, now),
            )
        assert database.connection.execute("SELECT COUNT(*) FROM nodes").fetchone()[0] == 1

    def test_transaction_rolls_back(self, database):
        now = database.now()
        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                conn.execute(
                    "INSERT INTO nodes (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    ("n1", "{}", now, now),
                )
                raise RuntimeError("boom")

        assert database.connection.execute("SELECT COUNT(*) FROM nodes").fetchone()[0] == 0
        assert not database.connection.in_transaction

    def test_nested_transaction_joins_outer(self, database):
        """The inner block shares the outer transaction and is rolled back with it."""
        now = database.now()
        with pytest.raises(RuntimeError):
            with database.transaction() as outer:
                outer.execute(
                    "INSERT INTO nodes (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    ("n1", "{}", now, now),
                )
                with database.transaction() as inner:
                    assert inner is outer
                    inner.execute(
                        "INSERT INTO nodes (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                        ("n2", "{}", now, now),
                    )
                raise RuntimeError("boom")

        assert database.connection.execute("SELECT COUNT(*) FROM nodes").fetchone()[0] == 0

    def test_now_uses_clock(self, database, clock):
        stamp = database.now()
        assert stamp == format_timestamp(clock.current)


class TestCommitFailure:
    """A COMMIT that cannot take its lock must not leave the transaction open."""

    @pytest.fixture
    def graph(self, db_path, clock):
        graph = GraphStore(db_path, busy_timeout_ms=100, clock=clock)
        graph.add_node("seed", {})
        yield graph
        graph.close()

    @pytest.fixture
    def reader(self, db_path):
        conn = sqlite3.connect(db_path, timeout=0.1, isolation_level=None)
        yield conn
        conn.close()

    def test_busy_commit_rolls_back(self, graph, reader):
        reader.execute("BEGIN")
        reader.execute("SELECT * FROM nodes").fetchall()

        assert graph.add_node("n1", {}) is False
        assert not graph.database.connection.in_transaction

        reader.execute("COMMIT")
        assert graph.node_exists("n1") is False

    def test_next_write_persists(self, graph, reader, db_path, clock):
        reader.execute("BEGIN")
        reader.execute("SELECT * FROM nodes").fetchall()
        graph.add_node("n1", {})
        reader.execute("COMMIT")

        assert graph.add_node("n2", {}) is True
        assert not graph.database.connection.in_transaction
        graph.close()

        reopened = GraphStore(db_path, clock=clock)
        try:
            assert reopened.node_exists("n2")
            assert not reopened.node_exists("n1")
            assert [e.entity_id for e in reopened.get_audit_history("node")] == ["n2", "seed"]
        finally:
            reopened.close()


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_format(self):
        value = datetime(2024, 1, 31, 12, 5, 9, 123, tzinfo=timezone.utc)
        assert format_timestamp(value) == "2024-01-31 12:05:09.000123"

    def test_format_converts_to_utc(self):
        value = datetime(2024, 1, 31, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-01-31 12:00:00.000000"

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-01-31 12:00:00", "2024-01-31 12:00:00.000000"),
            ("2024-01-31T12:00:00", "2024-01-31 12:00:00.000000"),
            ("2024-01-31T12:00:00Z", "2024-01-31 12:00:00.000000"),
            ("2024-01-31T13:00:00+01:00", "2024-01-31 12:00:00.000000"),
            ("2024-01-31", "2024-01-31 00:00:00.000000"),
            ("  2024-01-31 12:00:00.500  ", "2024-01-31 12:00:00.500000"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_timestamp(raw) == expected

    def test_normalize_datetime(self):
        value = datetime(2024, 1, 31, 12, tzinfo=timezone.utc)
        assert normalize_timestamp(value) == "2024-01-31 12:00:00.000000"

    @pytest.mark.parametrize("raw", ["", "yesterday", "2024-13-01 00:00:00"])
    def test_normalize_rejects_garbage(self, raw):
        with pytest.raises(ValueError):
            normalize_timestamp(raw)

    def test_storage_format_sorts_after_plain_seconds(self):
        """A stored value at the same second sorts after the bare-seconds form."""
        assert format_timestamp(datetime(2024, 1, 31, 12, 0, 0)) > "2024-01-31 12:00:00"
