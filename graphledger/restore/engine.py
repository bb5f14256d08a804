"""
Restore engine: reverses audited mutations.

Two operations are provided:
1. Entity restore: reverse one historical audit entry of one node or edge
2. Timestamp restore: reverse every node/edge entry newer than a point in time

Both operations:
- Take a backup of the storage file first and abort if it fails
- Run all reads and writes in one transaction
- Write new audit entries tagged ``restore`` / ``restore_delete``, which a
  timestamp restore never reverses

Inverse mapping (node and edge alike):
    delete  -> re-insert ``old_data``          (audited as ``restore``)
    create  -> delete the entity               (audited as ``restore_delete``)
    update  -> overwrite with ``old_data``     (audited as ``restore``)

Invariants:
    - A restore never leaves an edge pointing at a missing node
    - A failed restore leaves the graph exactly as it was
    - The pre-restore backup stays on disk whatever the outcome
    - Timestamp restores are idempotent in outcome (re-inserts ignore
      existing ids)

How to change safely:
    - Keep REVERSAL_ACTIONS excluded from timestamp walks
    - Keep entity restore strict (a non-applicable inverse aborts) and
      timestamp restore lenient (it skips what cannot apply)
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import TYPE_CHECKING

from ..context import Actor
from ..errors import (
    DanglingEdgeError,
    DuplicateEntityError,
    EntityNotFoundError,
    GraphLedgerError,
    RestoreError,
)
from ..store.database import normalize_timestamp
from ..store.types import (
    REVERSAL_ACTIONS,
    SYSTEM_ENTITY_ID,
    AuditAction,
    AuditEntry,
    EntityType,
    value_of,
)

if TYPE_CHECKING:
    from ..store.graph_store import GraphStore

logger = logging.getLogger(__name__)

_REVERSIBLE_TYPES = frozenset({EntityType.NODE.value, EntityType.EDGE.value})


class RestoreEngine:
    """Reverses audit entries against a GraphStore.

    Example:
        >>> engine = RestoreEngine(store)
        >>> entry = store.get_audit_history("node", "n1")[0]
        >>> engine.restore_entity("node", "n1", entry.id)
        True
    """

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    @property
    def audit_log(self):
        return self.store.audit_log

    # =========================================================================
    # Entity restore
    # =========================================================================

    def restore_entity(
        self,
        entity_type: str,
        entity_id: str,
        audit_log_id: int,
        actor: Actor | None = None,
    ) -> bool:
        """Reverse a single audit entry of one node or edge.

        Args:
            entity_type: ``node`` or ``edge``
            entity_id: Id of the entity the entry belongs to
            audit_log_id: Id of the entry to reverse
            actor: Who requested the restore

        Returns:
            True if the inverse was applied, False otherwise (nothing changed)
        """
        context = {
            "entity_type": value_of(entity_type),
            "entity_id": entity_id,
            "audit_id": audit_log_id,
        }

        prefix = f"pre_restore_entity_{context['entity_type']}_{entity_id}"
        backup = self.store.create_backup(self.store.backups.default_name(prefix), actor=actor)
        if not backup.success:
            logger.error(
                "Entity restore aborted: backup failed",
                extra={**context, "reason": backup.error},
            )
            return False

        try:
            with self.store.database.transaction() as conn:
                entry = self.audit_log.fetch_entry(
                    conn, audit_log_id, context["entity_type"], entity_id
                )
                if entry is None:
                    raise RestoreError(
                        f"No audit entry {audit_log_id} for "
                        f"{context['entity_type']} {entity_id}",
                        audit_log_id,
                    )
                self._reverse_strict(conn, entry, actor)
        except GraphLedgerError as e:
            logger.warning(
                f"Entity restore failed: {e.message}",
                extra={**context, "code": e.code, "backup_name": backup.backup_name},
            )
            return False
        except sqlite3.Error:
            logger.error(
                "Entity restore failed",
                extra={**context, "backup_name": backup.backup_name},
                exc_info=True,
            )
            return False

        logger.info("Entity restored", extra={**context, "backup_name": backup.backup_name})
        return True

    def _reverse_strict(
        self, conn: sqlite3.Connection, entry: AuditEntry, actor: Actor | None
    ) -> None:
        if entry.entity_type not in _REVERSIBLE_TYPES:
            raise RestoreError(
                f"Entries of type {entry.entity_type} cannot be restored", entry.id
            )

        is_node = entry.entity_type == EntityType.NODE.value
        action = entry.action

        if action == AuditAction.DELETE.value:
            data = self._snapshot(entry)
            if is_node:
                if not self.store.insert_node_row(conn, entry.entity_id, data, or_ignore=True):
                    raise DuplicateEntityError(entry.entity_type, entry.entity_id)
            else:
                source, target = self._endpoints(conn, entry, data, strict=True)
                if not self.store.insert_edge_row(
                    conn, entry.entity_id, source, target, data, or_ignore=True
                ):
                    raise DuplicateEntityError(entry.entity_type, entry.entity_id)
            self._record(conn, entry, AuditAction.RESTORE, None, data, actor)

        elif action == AuditAction.CREATE.value:
            current = self._current(conn, entry)
            if current is None:
                raise EntityNotFoundError(entry.entity_type, entry.entity_id)
            self._remove(conn, entry, current, actor)

        elif action == AuditAction.UPDATE.value:
            data = self._snapshot(entry)
            current = self._current(conn, entry)
            if current is None:
                raise EntityNotFoundError(entry.entity_type, entry.entity_id)
            self._overwrite(conn, entry, current, data, actor, strict=True)

        else:
            raise RestoreError(f"Action {action} cannot be restored", entry.id)

    # =========================================================================
    # Timestamp restore
    # =========================================================================

    def restore_to_timestamp(self, timestamp: str | datetime, actor: Actor | None = None) -> bool:
        """Reverse every node and edge mutation made after ``timestamp``.

        Entries are walked newest first. Reversal entries are skipped, edges
        are only recreated when both endpoints exist, and re-inserts ignore
        ids that are already present. One ``system/graph/restore_to_timestamp``
        entry summarizes the run.

        Args:
            timestamp: Point in time (datetime or ISO-8601 string, UTC)
            actor: Who requested the restore

        Returns:
            True if the walk committed, False otherwise (nothing changed)
        """
        try:
            since = normalize_timestamp(timestamp)
        except (TypeError, ValueError):
            logger.warning(
                "Timestamp restore rejected: invalid timestamp", extra={"after": str(timestamp)}
            )
            return False

        prefix = "pre_restore_timestamp_" + since.split(".")[0].replace(" ", "_").replace(":", "-")
        backup = self.store.create_backup(self.store.backups.default_name(prefix), actor=actor)
        if not backup.success:
            logger.error(
                "Timestamp restore aborted: backup failed",
                extra={"after": since, "reason": backup.error},
            )
            return False

        try:
            with self.store.database.transaction() as conn:
                reversed_count = 0
                for entry in self.audit_log.fetch_after(conn, since):
                    if entry.action in REVERSAL_ACTIONS:
                        continue
                    if entry.entity_type not in _REVERSIBLE_TYPES:
                        continue
                    if self._reverse_lenient(conn, entry, actor):
                        reversed_count += 1

                self.audit_log.record(
                    conn,
                    EntityType.SYSTEM,
                    SYSTEM_ENTITY_ID,
                    AuditAction.RESTORE_TO_TIMESTAMP,
                    new_data={
                        "timestamp": since,
                        "operations_reversed": reversed_count,
                        "backup_name": backup.backup_name,
                    },
                    actor=actor,
                )
        except GraphLedgerError as e:
            logger.warning(
                f"Timestamp restore failed: {e.message}",
                extra={"after": since, "code": e.code, "backup_name": backup.backup_name},
            )
            return False
        except sqlite3.Error:
            logger.error(
                "Timestamp restore failed",
                extra={"after": since, "backup_name": backup.backup_name},
                exc_info=True,
            )
            return False

        logger.info(
            "Restored to timestamp",
            extra={
                "after": since,
                "operations_reversed": reversed_count,
                "backup_name": backup.backup_name,
            },
        )
        return True

    def _reverse_lenient(
        self, conn: sqlite3.Connection, entry: AuditEntry, actor: Actor | None
    ) -> bool:
        """Apply the inverse if it still applies; returns whether anything changed."""
        is_node = entry.entity_type == EntityType.NODE.value
        action = entry.action

        if action == AuditAction.DELETE.value:
            if entry.old_data is None:
                return False
            data = entry.old_data
            if is_node:
                inserted = self.store.insert_node_row(conn, entry.entity_id, data, or_ignore=True)
            else:
                endpoints = self._endpoints(conn, entry, data, strict=False)
                if endpoints is None:
                    logger.debug(
                        "Skipped edge with missing endpoint", extra={"edge_id": entry.entity_id}
                    )
                    return False
                inserted = self.store.insert_edge_row(
                    conn, entry.entity_id, *endpoints, data, or_ignore=True
                )
            if inserted:
                self._record(conn, entry, AuditAction.RESTORE, None, data, actor)
            return inserted

        if action == AuditAction.CREATE.value:
            current = self._current(conn, entry)
            if current is None:
                return False
            self._remove(conn, entry, current, actor)
            return True

        if action == AuditAction.UPDATE.value:
            current = self._current(conn, entry)
            if current is None or entry.old_data is None:
                return False
            return self._overwrite(conn, entry, current, entry.old_data, actor, strict=False)

        return False

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def _snapshot(self, entry: AuditEntry) -> dict:
        if entry.old_data is None:
            raise RestoreError(
                f"Audit entry {entry.id} has no prior snapshot to restore", entry.id
            )
        return entry.old_data

    def _current(self, conn: sqlite3.Connection, entry: AuditEntry) -> dict | None:
        if entry.entity_type == EntityType.NODE.value:
            return self.store.fetch_node_data(conn, entry.entity_id)
        return self.store.fetch_edge_data(conn, entry.entity_id)

    def _endpoints(
        self,
        conn: sqlite3.Connection,
        entry: AuditEntry,
        data: dict,
        strict: bool,
    ) -> tuple[str, str] | None:
        """Source/target from an edge snapshot, if both nodes exist.

        Raises:
            RestoreError: (strict) The snapshot lacks source or target
            DanglingEdgeError: (strict) An endpoint node is missing
        """
        source, target = data.get("source"), data.get("target")
        if not source or not target:
            if strict:
                raise RestoreError(
                    f"Edge snapshot in entry {entry.id} lacks source/target", entry.id
                )
            return None

        missing = [n for n in (source, target) if not self.store.node_row_exists(conn, n)]
        if missing:
            if strict:
                raise DanglingEdgeError(entry.entity_id, missing)
            return None
        return source, target

    def _remove(
        self, conn: sqlite3.Connection, entry: AuditEntry, current: dict, actor: Actor | None
    ) -> None:
        if entry.entity_type == EntityType.NODE.value:
            self.store.detach_edges(conn, entry.entity_id, AuditAction.RESTORE_DELETE, actor)
            self.store.delete_node_row(conn, entry.entity_id)
        else:
            self.store.delete_edge_row(conn, entry.entity_id)
        self._record(conn, entry, AuditAction.RESTORE_DELETE, current, None, actor)

    def _overwrite(
        self,
        conn: sqlite3.Connection,
        entry: AuditEntry,
        current: dict,
        data: dict,
        actor: Actor | None,
        strict: bool,
    ) -> bool:
        if entry.entity_type == EntityType.NODE.value:
            self.store.update_node_row(conn, entry.entity_id, data)
        else:
            endpoints = self._endpoints(conn, entry, data, strict)
            if endpoints is None:
                return False
            self.store.update_edge_row(conn, entry.entity_id, *endpoints, data)
        self._record(conn, entry, AuditAction.RESTORE, current, data, actor)
        return True

    def _record(
        self,
        conn: sqlite3.Connection,
        entry: AuditEntry,
        action: AuditAction,
        old_data: dict | None,
        new_data: dict | None,
        actor: Actor | None,
    ) -> None:
        self.audit_log.record(
            conn, entry.entity_type, entry.entity_id, action, old_data, new_data, actor
        )
