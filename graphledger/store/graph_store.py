"""
Audit-logged graph store over SQLite.

This module is the write path for nodes and edges:
- CRUD for nodes and edges with referential integrity
- Cascade delete of incident edges when a node is removed
- One audit entry per changed entity, written in the same transaction
- File backups, audited as ``system/graph/backup``

Invariants:
    - Node ids are immutable; node data always contains ``id``
    - Edge data always contains ``id``, ``source`` and ``target``
    - An edge never references a missing node
    - Every committed mutation has its audit entry committed with it
    - Public methods never raise; failures are logged and reported as
      False/None/empty

How to change safely:
    - Keep each public mutation inside exactly one ``transaction()``
    - The ``*_row`` primitives do not audit; callers must record entries
    - Payload dicts from callers are copied before ids are injected

Usage:
    >>> store = GraphStore("/var/lib/graphledger/graph.db")
    >>> store.add_node("n1", {"name": "api", "category": "application"})
    True
    >>> store.get()["nodes"]
    [{'data': {'name': 'api', 'category': 'application', 'id': 'n1'}}]
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..context import Actor, resolve_actor
from ..errors import DuplicateEntityError, EntityNotFoundError, GraphLedgerError
from ..snapshot.backup import BackupManager, BackupResult
from .audit_log import AuditLog
from .database import Clock, Database
from .status_tracker import StatusTracker
from .types import (
    SYSTEM_ENTITY_ID,
    AuditAction,
    AuditEntry,
    Edge,
    EntityType,
    Node,
    decode_json,
    encode_json,
)

if TYPE_CHECKING:
    from ..config import AppConfig

logger = logging.getLogger(__name__)


class GraphStore:
    """Nodes, edges, audit log, status history and backups for one storage file.

    Thread safety:
        One connection per store. Callers serialize writes (the HTTP gateway
        does so by running handlers on the event loop).

    Attributes:
        database: Connection and transaction owner
        audit_log: Append-only ledger
        statuses: Node status history
        backups: Backup manager for the storage file
    """

    def __init__(
        self,
        db_path: str | Path,
        wal_mode: bool = False,
        busy_timeout_ms: int = 5000,
        clock: Clock | None = None,
        backup_dir_name: str = "backups",
    ) -> None:
        """Initialize the graph store.

        Args:
            db_path: SQLite file path (``:memory:`` works, but cannot be backed up)
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            clock: Source of "now" for timestamps
            backup_dir_name: Backup directory name under the storage directory
        """
        self.database = Database(db_path, wal_mode, busy_timeout_ms, clock)
        self.audit_log = AuditLog(self.database)
        self.statuses = StatusTracker(self.database, self.audit_log)
        self.backups = BackupManager(self.database, backup_dir_name)

        logger.info("Graph store initialized", extra={"db_path": self.database.db_path})

    @classmethod
    def from_config(cls, config: AppConfig, clock: Clock | None = None) -> GraphStore:
        storage = config.storage
        return cls(
            storage.db_path,
            wal_mode=storage.wal_mode,
            busy_timeout_ms=storage.busy_timeout_ms,
            clock=clock,
            backup_dir_name=storage.backup_dir_name,
        )

    @property
    def db_path(self) -> str:
        return self.database.db_path

    def close(self) -> None:
        self.database.close()

    # =========================================================================
    # Row primitives (no audit; run on an open transaction)
    # =========================================================================

    def fetch_node_data(self, conn: sqlite3.Connection, node_id: str) -> dict[str, Any] | None:
        row = conn.execute("SELECT data FROM nodes WHERE id = ?", (node_id,)).fetchone()
        return _load(row["data"]) if row else None

    def fetch_edge_data(self, conn: sqlite3.Connection, edge_id: str) -> dict[str, Any] | None:
        row = conn.execute("SELECT data FROM edges WHERE id = ?", (edge_id,)).fetchone()
        return _load(row["data"]) if row else None

    def node_row_exists(self, conn: sqlite3.Connection, node_id: str) -> bool:
        return conn.execute("SELECT 1 FROM nodes WHERE id = ?", (node_id,)).fetchone() is not None

    def insert_node_row(
        self,
        conn: sqlite3.Connection,
        node_id: str,
        data: dict[str, Any],
        or_ignore: bool = False,
    ) -> bool:
        """Insert a node row; returns whether a row was written."""
        now = self.database.now()
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        cursor = conn.execute(
            f"{verb} INTO nodes (id, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (node_id, encode_json(data), now, now),
        )
        return cursor.rowcount > 0

    def update_node_row(self, conn: sqlite3.Connection, node_id: str, data: dict[str, Any]) -> bool:
        cursor = conn.execute(
            "UPDATE nodes SET data = ?, updated_at = ? WHERE id = ?",
            (encode_json(data), self.database.now(), node_id),
        )
        return cursor.rowcount > 0

    def delete_node_row(self, conn: sqlite3.Connection, node_id: str) -> bool:
        cursor = conn.execute("DELETE FROM nodes WHERE id = ?", (node_id,))
        return cursor.rowcount > 0

    def insert_edge_row(
        self,
        conn: sqlite3.Connection,
        edge_id: str,
        source: str,
        target: str,
        data: dict[str, Any],
        or_ignore: bool = False,
    ) -> bool:
        """Insert an edge row; returns whether a row was written."""
        now = self.database.now()
        verb = "INSERT OR IGNORE" if or_ignore else "INSERT"
        cursor = conn.execute(
            f"{verb} INTO edges (id, source, target, data, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (edge_id, source, target, encode_json(data), now, now),
        )
        return cursor.rowcount > 0

    def update_edge_row(
        self,
        conn: sqlite3.Connection,
        edge_id: str,
        source: str,
        target: str,
        data: dict[str, Any],
    ) -> bool:
        cursor = conn.execute(
            "UPDATE edges SET source = ?, target = ?, data = ?, updated_at = ? WHERE id = ?",
            (source, target, encode_json(data), self.database.now(), edge_id),
        )
        return cursor.rowcount > 0

    def delete_edge_row(self, conn: sqlite3.Connection, edge_id: str) -> bool:
        cursor = conn.execute("DELETE FROM edges WHERE id = ?", (edge_id,))
        return cursor.rowcount > 0

    def detach_edges(
        self,
        conn: sqlite3.Connection,
        node_id: str,
        action: AuditAction,
        actor: Actor | None = None,
    ) -> list[str]:
        """Delete every edge touching a node, auditing each with ``action``.

        Returns:
            Ids of the removed edges, in creation order
        """
        rows = conn.execute(
            "SELECT id, data FROM edges WHERE source = ? OR target = ? ORDER BY created_at, rowid",
            (node_id, node_id),
        ).fetchall()
        removed = []
        for row in rows:
            self.delete_edge_row(conn, row["id"])
            self.audit_log.record(
                conn, EntityType.EDGE, row["id"], action, old_data=_load(row["data"]), actor=actor
            )
            removed.append(row["id"])
        return removed

    # =========================================================================
    # Nodes
    # =========================================================================

    def node_exists(self, node_id: str) -> bool:
        """Check whether a node exists."""
        try:
            return self.node_row_exists(self.database.connection, node_id)
        except sqlite3.Error:
            logger.error("Failed to check node", extra={"node_id": node_id}, exc_info=True)
            return False

    def get_node(self, node_id: str) -> dict[str, Any] | None:
        """Stored data of a node, or None."""
        try:
            return self.fetch_node_data(self.database.connection, node_id)
        except sqlite3.Error:
            logger.error("Failed to read node", extra={"node_id": node_id}, exc_info=True)
            return None

    def add_node(self, node_id: str, data: dict[str, Any], actor: Actor | None = None) -> bool:
        """Create a node.

        Args:
            node_id: New node id (must not exist)
            data: Node payload; ``id`` is injected
            actor: Who is making the change

        Returns:
            True if created, False if the id is taken or the write failed
        """
        payload = {**data, "id": node_id}

        def apply(conn: sqlite3.Connection) -> None:
            if self.node_row_exists(conn, node_id):
                raise DuplicateEntityError(EntityType.NODE.value, node_id)
            self.insert_node_row(conn, node_id, payload)
            self.audit_log.record(
                conn, EntityType.NODE, node_id, AuditAction.CREATE, new_data=payload, actor=actor
            )

        return self._mutate("add_node", {"node_id": node_id}, apply)

    def update_node(self, node_id: str, data: dict[str, Any], actor: Actor | None = None) -> bool:
        """Replace a node's data, keeping its id.

        Returns:
            True if updated, False if the node does not exist or the write failed
        """
        payload = {**data, "id": node_id}

        def apply(conn: sqlite3.Connection) -> None:
            old = self.fetch_node_data(conn, node_id)
            if old is None:
                raise EntityNotFoundError(EntityType.NODE.value, node_id)
            self.update_node_row(conn, node_id, payload)
            self.audit_log.record(
                conn,
                EntityType.NODE,
                node_id,
                AuditAction.UPDATE,
                old_data=old,
                new_data=payload,
                actor=actor,
            )

        return self._mutate("update_node", {"node_id": node_id}, apply)

    def remove_node(self, node_id: str, actor: Actor | None = None) -> bool:
        """Delete a node and every edge touching it, atomically.

        Each removed edge gets its own ``delete`` entry, followed by one
        ``delete`` entry for the node.

        Returns:
            True if removed, False if the node does not exist or the write failed
        """

        def apply(conn: sqlite3.Connection) -> None:
            old = self.fetch_node_data(conn, node_id)
            if old is None:
                raise EntityNotFoundError(EntityType.NODE.value, node_id)
            self.detach_edges(conn, node_id, AuditAction.DELETE, actor)
            self.delete_node_row(conn, node_id)
            self.audit_log.record(
                conn, EntityType.NODE, node_id, AuditAction.DELETE, old_data=old, actor=actor
            )

        return self._mutate("remove_node", {"node_id": node_id}, apply)

    # =========================================================================
    # Edges
    # =========================================================================

    def edge_exists_by_id(self, edge_id: str) -> bool:
        try:
            row = self.database.connection.execute(
                "SELECT 1 FROM edges WHERE id = ?", (edge_id,)
            ).fetchone()
        except sqlite3.Error:
            logger.error("Failed to check edge", extra={"edge_id": edge_id}, exc_info=True)
            return False
        return row is not None

    def edge_exists(self, a: str, b: str) -> bool:
        """Whether an edge connects two nodes, in either direction."""
        try:
            row = self.database.connection.execute(
                """
                SELECT 1 FROM edges
                WHERE (source = ? AND target = ?) OR (source = ? AND target = ?)
                LIMIT 1
                """,
                (a, b, b, a),
            ).fetchone()
        except sqlite3.Error:
            logger.error("Failed to check edge", extra={"source": a, "target": b}, exc_info=True)
            return False
        return row is not None

    def get_edge(self, edge_id: str) -> dict[str, Any] | None:
        """Stored data of an edge, or None."""
        try:
            return self.fetch_edge_data(self.database.connection, edge_id)
        except sqlite3.Error:
            logger.error("Failed to read edge", extra={"edge_id": edge_id}, exc_info=True)
            return None

    def add_edge(
        self,
        edge_id: str,
        source: str,
        target: str,
        data: dict[str, Any] | None = None,
        actor: Actor | None = None,
    ) -> bool:
        """Create an edge between two existing nodes.

        Args:
            edge_id: New edge id (must not exist)
            source: Source node id
            target: Target node id
            data: Edge payload; ``id``, ``source`` and ``target`` are injected
            actor: Who is making the change

        Returns:
            True if created, False on a taken id, a missing endpoint or a
            failed write
        """
        payload = {**(data or {}), "id": edge_id, "source": source, "target": target}

        def apply(conn: sqlite3.Connection) -> None:
            if conn.execute("SELECT 1 FROM edges WHERE id = ?", (edge_id,)).fetchone():
                raise DuplicateEntityError(EntityType.EDGE.value, edge_id)
            for endpoint in (source, target):
                if not self.node_row_exists(conn, endpoint):
                    raise EntityNotFoundError(EntityType.NODE.value, endpoint)
            self.insert_edge_row(conn, edge_id, source, target, payload)
            self.audit_log.record(
                conn, EntityType.EDGE, edge_id, AuditAction.CREATE, new_data=payload, actor=actor
            )

        return self._mutate(
            "add_edge", {"edge_id": edge_id, "source": source, "target": target}, apply
        )

    def remove_edge(self, edge_id: str, actor: Actor | None = None) -> bool:
        """Delete one edge.

        Returns:
            True if removed, False if it does not exist or the write failed
        """

        def apply(conn: sqlite3.Connection) -> None:
            old = self.fetch_edge_data(conn, edge_id)
            if old is None:
                raise EntityNotFoundError(EntityType.EDGE.value, edge_id)
            self.delete_edge_row(conn, edge_id)
            self.audit_log.record(
                conn, EntityType.EDGE, edge_id, AuditAction.DELETE, old_data=old, actor=actor
            )

        return self._mutate("remove_edge", {"edge_id": edge_id}, apply)

    def remove_edges_from(self, source: str, actor: Actor | None = None) -> bool:
        """Delete every edge leaving ``source``.

        Returns:
            True, including when no edge matched; False only if the write failed
        """

        def apply(conn: sqlite3.Connection) -> None:
            rows = conn.execute(
                "SELECT id, data FROM edges WHERE source = ? ORDER BY created_at, rowid",
                (source,),
            ).fetchall()
            for row in rows:
                self.delete_edge_row(conn, row["id"])
                self.audit_log.record(
                    conn,
                    EntityType.EDGE,
                    row["id"],
                    AuditAction.DELETE,
                    old_data=_load(row["data"]),
                    actor=actor,
                )

        return self._mutate("remove_edges_from", {"source": source}, apply)

    # =========================================================================
    # Snapshots, history, backups
    # =========================================================================

    def get(self) -> dict[str, list[dict[str, Any]]]:
        """The whole graph, nodes and edges in creation order.

        Returns:
            ``{"nodes": [{"data": {...}}, ...], "edges": [{"data": {...}}, ...]}``
        """
        try:
            conn = self.database.connection
            nodes = [
                Node.from_row(row)
                for row in conn.execute("SELECT * FROM nodes ORDER BY created_at, rowid")
            ]
            edges = [
                Edge.from_row(row)
                for row in conn.execute("SELECT * FROM edges ORDER BY created_at, rowid")
            ]
        except sqlite3.Error:
            logger.error("Failed to read graph", exc_info=True)
            return {"nodes": [], "edges": []}
        return {
            "nodes": [{"data": node.data} for node in nodes],
            "edges": [{"data": edge.data} for edge in edges],
        }

    def get_audit_history(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[AuditEntry]:
        """Audit entries newest first, optionally filtered by entity."""
        return self.audit_log.history(entity_type, entity_id)

    def create_backup(self, name: str | None = None, actor: Actor | None = None) -> BackupResult:
        """Back up the storage file and audit it as ``system/graph/backup``.

        Args:
            name: Backup name; a time-stamped default is used when omitted
            actor: Who requested the backup

        Returns:
            BackupResult from the backup manager
        """
        result = self.backups.create_backup(name)
        if result.success:
            who = resolve_actor(actor)
            self.audit_log.append(
                EntityType.SYSTEM,
                SYSTEM_ENTITY_ID,
                AuditAction.BACKUP,
                new_data={
                    "backup_file": result.file,
                    "backup_name": result.backup_name,
                    "file_size": result.file_size,
                },
                user_id=who.user_id,
                ip_address=who.ip_address,
            )
        return result

    def _mutate(self, operation: str, context: dict[str, Any], apply) -> bool:
        """Run ``apply(conn)`` in one transaction; map failures to False."""
        try:
            with self.database.transaction() as conn:
                apply(conn)
        except GraphLedgerError as e:
            logger.warning(
                f"{operation} rejected: {e.message}",
                extra={"operation": operation, "code": e.code, **context},
            )
            return False
        except sqlite3.Error:
            logger.error(
                f"{operation} failed", extra={"operation": operation, **context}, exc_info=True
            )
            return False

        logger.debug(f"{operation} committed", extra={"operation": operation, **context})
        return True


def _load(raw: str) -> dict[str, Any]:
    return decode_json(raw) or {}
