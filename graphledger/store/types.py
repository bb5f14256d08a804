"""
Record types shared by the graph store, audit log and status tracker.

Invariants:
    - ``data`` payloads are opaque JSON objects, stored and returned verbatim
    - Node data always contains ``id``; edge data always contains
      ``id``, ``source`` and ``target``
    - Timestamps are UTC text ``YYYY-MM-DD HH:MM:SS.ffffff``
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


class EntityType(str, Enum):
    """Kinds of entity an audit entry can describe."""

    NODE = "node"
    EDGE = "edge"
    NODE_STATUS = "node_status"
    SYSTEM = "system"


class AuditAction(str, Enum):
    """Actions recorded in the audit log."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RESTORE = "restore"
    RESTORE_DELETE = "restore_delete"
    BACKUP = "backup"
    RESTORE_TO_TIMESTAMP = "restore_to_timestamp"


# Entries written by a restore; a timestamp restore never reverses these.
REVERSAL_ACTIONS = frozenset({AuditAction.RESTORE.value, AuditAction.RESTORE_DELETE.value})

# Entity id used for graph-wide system entries (backups, timestamp restores).
SYSTEM_ENTITY_ID = "graph"


class Status(str, Enum):
    """Allowed node health states."""

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    MAINTENANCE = "maintenance"


ALLOWED_STATUSES: tuple[str, ...] = tuple(s.value for s in Status)


def value_of(member: str | Enum) -> str:
    """Plain string value of an enum member or string."""
    return member.value if isinstance(member, Enum) else member


def encode_json(data: dict[str, Any] | None) -> str | None:
    """Serialize a payload for a TEXT column, keeping unicode unescaped."""
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False)


def decode_json(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    return json.loads(raw)


@dataclass
class Node:
    """A node in the graph.

    Attributes:
        id: Unique node identifier
        data: JSON payload (always includes ``id``)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    data: dict[str, Any]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Node:
        return cls(
            id=row["id"],
            data=json.loads(row["data"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Edge:
    """A directed edge between two nodes.

    Attributes:
        id: Unique edge identifier
        source: Source node id
        target: Target node id
        data: JSON payload (always includes ``id``, ``source``, ``target``)
        created_at: Creation timestamp
        updated_at: Last update timestamp
    """

    id: str
    source: str
    target: str
    data: dict[str, Any]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Edge:
        return cls(
            id=row["id"],
            source=row["source"],
            target=row["target"],
            data=json.loads(row["data"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class AuditEntry:
    """One immutable record of a single mutation.

    Attributes:
        id: Monotonic entry id (tie-break for equal timestamps)
        entity_type: node, edge, node_status or system
        entity_id: Id of the affected entity
        action: What happened
        old_data: Snapshot before the change, if any
        new_data: Snapshot after the change, if any
        user_id: Acting user, if known
        ip_address: Source address, if known
        created_at: When the entry was written
    """

    id: int
    entity_type: str
    entity_id: str
    action: str
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    user_id: str | None
    ip_address: str | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AuditEntry:
        return cls(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            action=row["action"],
            old_data=decode_json(row["old_data"]),
            new_data=decode_json(row["new_data"]),
            user_id=row["user_id"],
            ip_address=row["ip_address"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class NodeStatus:
    """One row of a node's status history."""

    node_id: str
    status: str
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> NodeStatus:
        return cls(node_id=row["node_id"], status=row["status"], created_at=row["created_at"])

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
