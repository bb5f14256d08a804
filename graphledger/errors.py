"""
Error types for graphledger.

This module defines the exceptions raised inside the store and restore layers:
- GraphLedgerError: Base exception
- EntityNotFoundError: Node or edge does not exist
- DuplicateEntityError: Node or edge id already taken
- DanglingEdgeError: Edge endpoint is missing
- BackupError: Backup could not be taken
- RestoreError: An audit entry cannot be reversed

Invariants:
    - All errors inherit from GraphLedgerError
    - Public store methods convert these to False/None/[] at their boundary
    - Errors carry a machine-readable code and context details
"""

from __future__ import annotations

from typing import Any


class GraphLedgerError(Exception):
    """Base exception for all graphledger errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "GRAPHLEDGER_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class EntityNotFoundError(GraphLedgerError):
    """Node or edge does not exist."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            code="NOT_FOUND",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateEntityError(GraphLedgerError):
    """Node or edge id is already in use."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(
            f"{entity_type} already exists: {entity_id}",
            code="CONFLICT",
            details={"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class DanglingEdgeError(GraphLedgerError):
    """Edge would reference a node that does not exist.

    Raised when:
    - Restoring a deleted edge whose source or target is gone
    """

    def __init__(self, edge_id: str, missing: list[str]) -> None:
        super().__init__(
            f"Edge {edge_id} references missing node(s): {', '.join(missing)}",
            code="DANGLING_EDGE",
            details={"edge_id": edge_id, "missing_nodes": missing},
        )
        self.edge_id = edge_id
        self.missing = missing


class BackupError(GraphLedgerError):
    """Backup of the storage file failed."""

    def __init__(self, message: str, backup_name: str | None = None) -> None:
        super().__init__(message, code="BACKUP_FAILED", details={"backup_name": backup_name})
        self.backup_name = backup_name


class RestoreError(GraphLedgerError):
    """Audit entry cannot be reversed.

    Raised when:
    - The audit entry does not exist for the given entity
    - The action has no inverse (restore, backup, ...)
    - The entry lacks the snapshot needed to reverse it
    """

    def __init__(self, message: str, audit_log_id: int | None = None) -> None:
        super().__init__(message, code="RESTORE_FAILED", details={"audit_log_id": audit_log_id})
        self.audit_log_id = audit_log_id
