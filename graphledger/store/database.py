"""
SQLite connection and schema management for graphledger.

This module owns the single storage connection used by one GraphStore:
- Lazily opens (and re-opens after a backup) the SQLite file
- Creates the schema and indexes on first connect
- Provides a re-entrant transaction context
- Generates storage timestamps from an injectable clock

Invariants:
    - One connection per Database instance, never shared across files
    - Foreign keys are always enforced (PRAGMA foreign_keys = ON)
    - Nested ``transaction()`` blocks join the outermost transaction
    - Timestamps are UTC text that sorts lexicographically

How to change safely:
    - Schema changes must be additive (CREATE ... IF NOT EXISTS)
    - Keep ``(created_at, id)`` as the ordering key for audit and status rows
    - Never hold the connection across a backup; ``close()`` first

Table schema:
    nodes:
        - id TEXT PRIMARY KEY
        - data TEXT (JSON, includes id)
        - created_at TEXT
        - updated_at TEXT

    edges:
        - id TEXT PRIMARY KEY
        - source TEXT -> nodes.id ON DELETE CASCADE
        - target TEXT -> nodes.id ON DELETE CASCADE
        - data TEXT (JSON, includes id/source/target)
        - created_at TEXT
        - updated_at TEXT

    audit_log:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - entity_type, entity_id, action TEXT
        - old_data, new_data TEXT (JSON, nullable)
        - user_id, ip_address TEXT (nullable)
        - created_at TEXT

    node_status:
        - id INTEGER PRIMARY KEY AUTOINCREMENT
        - node_id TEXT -> nodes.id ON DELETE CASCADE
        - status TEXT
        - created_at TEXT
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

MEMORY_DB = ":memory:"

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the storage format (naive values are taken as UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: str | datetime) -> str:
    """Normalize a caller-supplied point in time to the storage format.

    Accepts a datetime or any ISO-8601 string (``2024-01-31 12:00:00``,
    ``2024-01-31T12:00:00Z``, ...).

    Raises:
        ValueError: If the string is not a valid timestamp
    """
    if isinstance(value, datetime):
        return format_timestamp(value)
    text = value.strip()
    if not text:
        raise ValueError("Timestamp must not be empty")
    return format_timestamp(datetime.fromisoformat(text.replace("Z", "+00:00")))


class Database:
    """Single-connection SQLite handle with schema and transaction support.

    Thread safety:
        The connection is opened with ``check_same_thread=False`` but is not
        guarded by a lock. Callers serialize writes against one instance.

    Example:
        >>> db = Database("/var/lib/graphledger/graph.db")
        >>> with db.transaction() as conn:
        ...     conn.execute("DELETE FROM edges WHERE id = ?", ("e1",))
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = False,
        busy_timeout_ms: int = 5000,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the database handle.

        Args:
            db_path: SQLite file path, or ``:memory:``
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            clock: Source of "now" for row timestamps (defaults to UTC wall clock)
        """
        self.db_path = str(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.clock = clock or utc_now
        self._conn: sqlite3.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY_DB

    @property
    def storage_dir(self) -> Path:
        """Directory holding the storage file (backups live beneath it)."""
        return Path(self.db_path).resolve().parent

    @property
    def connection(self) -> sqlite3.Connection:
        """The open connection, connecting on first use."""
        if self._conn is None:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
            self._create_schema(conn)
        except sqlite3.Error:
            conn.close()
            raise

        logger.debug("Opened storage connection", extra={"db_path": self.db_path})
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create tables and indexes if missing."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS nodes (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS edges (
                id TEXT PRIMARY KEY,
                source TEXT NOT NULL,
                target TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                FOREIGN KEY (source) REFERENCES nodes(id) ON DELETE CASCADE,
                FOREIGN KEY (target) REFERENCES nodes(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_edges_source ON edges(source);
            CREATE INDEX IF NOT EXISTS idx_edges_target ON edges(target);

            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                action TEXT NOT NULL,
                old_data TEXT,
                new_data TEXT,
                user_id TEXT,
                ip_address TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id);
            CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_log(created_at);

            CREATE TABLE IF NOT EXISTS node_status (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                node_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                FOREIGN KEY (node_id) REFERENCES nodes(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_node_status_node_id ON node_status(node_id);
            CREATE INDEX IF NOT EXISTS idx_node_status_created ON node_status(created_at);
        """)

    def close(self) -> None:
        """Close the connection; the next access re-opens it."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Closed storage connection", extra={"db_path": self.db_path})

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one IMMEDIATE transaction.

        If a transaction is already open on this connection the block joins
        it, and commit/rollback is left to the outermost block.
        """
        conn = self.connection
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            # A failed COMMIT (e.g. SQLITE_BUSY) leaves the transaction open
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise

    def now(self) -> str:
        """Current time in the storage format."""
        return format_timestamp(self.clock())
