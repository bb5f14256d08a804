"""Audit-logged graph storage."""

from .audit_log import AuditLog
from .database import Database, normalize_timestamp
from .graph_store import GraphStore
from .status_tracker import StatusTracker
from .types import (
    ALLOWED_STATUSES,
    AuditAction,
    AuditEntry,
    Edge,
    EntityType,
    Node,
    NodeStatus,
    Status,
)

__all__ = [
    "ALLOWED_STATUSES",
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "Database",
    "Edge",
    "EntityType",
    "GraphStore",
    "Node",
    "NodeStatus",
    "Status",
    "StatusTracker",
    "normalize_timestamp",
]
