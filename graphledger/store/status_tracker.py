"""Append-only per-node status history."""

from __future__ import annotations

import logging
import sqlite3

from ..context import Actor
from ..errors import EntityNotFoundError, GraphLedgerError
from .audit_log import AuditLog
from .database import Database
from .types import AuditAction, EntityType, NodeStatus, Status

logger = logging.getLogger(__name__)


class StatusTracker:
    """Records node health states as a time series.

    The current status of a node is its newest row by ``(created_at, id)``.
    Rows are removed only by the cascade when their node is deleted.
    """

    def __init__(self, database: Database, audit_log: AuditLog) -> None:
        self.database = database
        self.audit_log = audit_log

    def set_status(self, node_id: str, status: str, actor: Actor | None = None) -> bool:
        """Append a status row for an existing node and audit it.

        Returns:
            True on success, False if the status is not allowed, the node
            does not exist, or the write fails
        """
        try:
            value = Status(status).value
        except ValueError:
            logger.warning("Rejected unknown status", extra={"node_id": node_id, "status": status})
            return False

        try:
            with self.database.transaction() as conn:
                exists = conn.execute("SELECT 1 FROM nodes WHERE id = ?", (node_id,)).fetchone()
                if not exists:
                    raise EntityNotFoundError(EntityType.NODE.value, node_id)
                conn.execute(
                    "INSERT INTO node_status (node_id, status, created_at) VALUES (?, ?, ?)",
                    (node_id, value, self.database.now()),
                )
                self.audit_log.record(
                    conn,
                    EntityType.NODE_STATUS,
                    node_id,
                    AuditAction.CREATE,
                    new_data={"status": value},
                    actor=actor,
                )
        except GraphLedgerError as e:
            logger.warning("Status not set", extra={"node_id": node_id, "reason": e.message})
            return False
        except sqlite3.Error:
            logger.error("Failed to set status", extra={"node_id": node_id}, exc_info=True)
            return False

        logger.info("Node status set", extra={"node_id": node_id, "status": value})
        return True

    def current(self, node_id: str) -> NodeStatus | None:
        """Latest status of a node, or None if it has none."""
        try:
            row = self.database.connection.execute(
                """
                SELECT node_id, status, created_at FROM node_status
                WHERE node_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1
                """,
                (node_id,),
            ).fetchone()
        except sqlite3.Error:
            logger.error("Failed to read status", extra={"node_id": node_id}, exc_info=True)
            return None
        return NodeStatus.from_row(row) if row else None

    def history(self, node_id: str) -> list[NodeStatus]:
        """All status rows of a node, newest first."""
        try:
            rows = self.database.connection.execute(
                """
                SELECT node_id, status, created_at FROM node_status
                WHERE node_id = ?
                ORDER BY created_at DESC, id DESC
                """,
                (node_id,),
            ).fetchall()
        except sqlite3.Error:
            logger.error("Failed to read status history", extra={"node_id": node_id}, exc_info=True)
            return []
        return [NodeStatus.from_row(row) for row in rows]

    def all_current(self) -> list[NodeStatus]:
        """Latest status of every existing node that has one, ordered by node id."""
        try:
            rows = self.database.connection.execute(
                """
                SELECT ns.node_id, ns.status, ns.created_at
                FROM node_status ns
                INNER JOIN nodes n ON n.id = ns.node_id
                WHERE ns.id = (
                    SELECT latest.id FROM node_status latest
                    WHERE latest.node_id = ns.node_id
                    ORDER BY latest.created_at DESC, latest.id DESC
                    LIMIT 1
                )
                ORDER BY ns.node_id
                """
            ).fetchall()
        except sqlite3.Error:
            logger.error("Failed to read current statuses", exc_info=True)
            return []
        return [NodeStatus.from_row(row) for row in rows]
