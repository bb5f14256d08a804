"""
graphledger - Audit-logged graph storage with point-in-time restore.

This package implements a small graph database built on:
- Nodes and directed Edges carrying arbitrary JSON payloads
- A single SQLite file as the store of record
- An append-only audit log that captures every mutation reversibly
- File-level backups taken before every destructive reversal

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  HTTP / CLI │────▶│ GraphStore  │────▶│    AuditLog     │
    │  (gateway)  │     │StatusTracker│     │ (append-only)   │
    └──────┬──────┘     └──────┬──────┘     └────────┬────────┘
           │                   │                     │
           ▼                   ▼                     ▼
    ┌─────────────┐     ┌─────────────────────────────────────┐
    │RestoreEngine│────▶│      SQLite (nodes, edges,          │
    └──────┬──────┘     │      audit_log, node_status)        │
           │            └─────────────────────────────────────┘
           ▼
    ┌─────────────┐
    │BackupManager│──▶ <storage_dir>/backups/<name>.db
    └─────────────┘

Invariants:
    - Every mutation and its audit entry commit in the same transaction
    - Audit entries are never updated or deleted
    - Edges always reference existing nodes
    - Restores never reverse entries that are themselves reversals

How to change safely:
    - Keep snapshots in audit entries complete enough to reverse the change
    - New audit actions must declare whether they are reversible
    - Test restore paths against both entity and timestamp restore
"""

from ._version import __version__
from .context import Actor
from .errors import GraphLedgerError
from .restore import RestoreEngine
from .store import GraphStore, StatusTracker

__all__ = [
    "__version__",
    "Actor",
    "GraphLedgerError",
    "GraphStore",
    "RestoreEngine",
    "StatusTracker",
]
