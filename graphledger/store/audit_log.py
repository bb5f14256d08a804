"""
Append-only audit ledger.

Every mutation of the graph writes one row here, in the same transaction as
the mutation itself (see ``record``). Rows are never updated or deleted.

Invariants:
    - Entry ids are monotonic; ``(created_at, id)`` orders the ledger
    - ``old_data``/``new_data`` are JSON snapshots, NULL when not applicable
    - Actor attribution comes from the explicit actor, else the bound context

How to change safely:
    - Keep ``record`` raising so the enclosing transaction rolls back
    - Keep ``append`` non-raising; callers rely on a boolean result
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..context import Actor, resolve_actor
from .database import Database
from .types import AuditEntry, encode_json, value_of

logger = logging.getLogger(__name__)

_ORDER = "ORDER BY created_at DESC, id DESC"


class AuditLog:
    """Reader and writer for the ``audit_log`` table."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def record(
        self,
        conn: sqlite3.Connection,
        entity_type: str,
        entity_id: str,
        action: str,
        old_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
        actor: Actor | None = None,
    ) -> int:
        """Insert an entry on an open transaction.

        Args:
            conn: Connection with a transaction in progress
            entity_type: node, edge, node_status or system
            entity_id: Affected entity id
            action: Audit action
            old_data: Snapshot before the change
            new_data: Snapshot after the change
            actor: Who made the change (defaults to the bound context)

        Returns:
            The new entry id

        Raises:
            sqlite3.Error: If the insert fails
        """
        who = resolve_actor(actor)
        cursor = conn.execute(
            """
            INSERT INTO audit_log (
                entity_type, entity_id, action, old_data, new_data,
                user_id, ip_address, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                value_of(entity_type),
                entity_id,
                value_of(action),
                encode_json(old_data),
                encode_json(new_data),
                who.user_id,
                who.ip_address,
                self.database.now(),
            ),
        )
        entry_id = cursor.lastrowid
        logger.debug(
            "Audit entry recorded",
            extra={
                "audit_id": entry_id,
                "entity_type": value_of(entity_type),
                "entity_id": entity_id,
                "action": value_of(action),
            },
        )
        return entry_id

    def append(
        self,
        entity_type: str,
        entity_id: str,
        action: str,
        old_data: dict[str, Any] | None = None,
        new_data: dict[str, Any] | None = None,
        user_id: str | None = None,
        ip_address: str | None = None,
    ) -> bool:
        """Insert a standalone entry in its own transaction.

        Explicit ``user_id``/``ip_address`` win over the bound actor.
        Failures are logged and reported as ``False``.
        """
        actor = None
        if user_id is not None or ip_address is not None:
            bound = resolve_actor(None)
            actor = Actor(
                user_id=user_id if user_id is not None else bound.user_id,
                ip_address=ip_address if ip_address is not None else bound.ip_address,
            )
        try:
            with self.database.transaction() as conn:
                self.record(conn, entity_type, entity_id, action, old_data, new_data, actor)
            return True
        except sqlite3.Error:
            logger.error(
                "Failed to append audit entry",
                extra={"entity_type": value_of(entity_type), "entity_id": entity_id},
                exc_info=True,
            )
            return False

    # Raising queries, for use by the restore engine inside transactions.

    def fetch_after(self, conn: sqlite3.Connection, timestamp: str) -> list[AuditEntry]:
        rows = conn.execute(
            f"SELECT * FROM audit_log WHERE created_at > ? {_ORDER}", (timestamp,)
        ).fetchall()
        return [AuditEntry.from_row(row) for row in rows]

    def fetch_entry(
        self,
        conn: sqlite3.Connection,
        audit_log_id: int,
        entity_type: str,
        entity_id: str,
    ) -> AuditEntry | None:
        row = conn.execute(
            "SELECT * FROM audit_log WHERE id = ? AND entity_type = ? AND entity_id = ?",
            (audit_log_id, value_of(entity_type), entity_id),
        ).fetchone()
        return AuditEntry.from_row(row) if row else None

    # Public queries; failures yield empty results.

    def history(
        self,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[AuditEntry]:
        """Return entries newest first, optionally filtered.

        Args:
            entity_type: Only entries for this entity type
            entity_id: Only entries for this entity id

        Returns:
            Matching entries, ``(created_at DESC, id DESC)``
        """
        clauses = []
        params: list[Any] = []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(value_of(entity_type))
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        try:
            rows = self.database.connection.execute(
                f"SELECT * FROM audit_log {where} {_ORDER}", params
            ).fetchall()
        except sqlite3.Error:
            logger.error("Failed to read audit history", exc_info=True)
            return []
        return [AuditEntry.from_row(row) for row in rows]

    def entries_after(self, timestamp: str) -> list[AuditEntry]:
        """Return entries strictly newer than ``timestamp``, newest first."""
        try:
            return self.fetch_after(self.database.connection, timestamp)
        except sqlite3.Error:
            logger.error(
                "Failed to read audit entries", extra={"after": timestamp}, exc_info=True
            )
            return []

    def entry_by_id(
        self,
        audit_log_id: int,
        entity_type: str,
        entity_id: str,
    ) -> AuditEntry | None:
        """Return one entry if it exists and belongs to the given entity."""
        try:
            return self.fetch_entry(
                self.database.connection, audit_log_id, entity_type, entity_id
            )
        except sqlite3.Error:
            logger.error(
                "Failed to read audit entry", extra={"audit_id": audit_log_id}, exc_info=True
            )
            return None
