"""
Admin CLI for graphledger.

Operates directly on the storage file, without the HTTP gateway:
- backup: take a named or time-stamped backup
- list-backups: show existing backups, newest first
- history: print audit entries as JSON lines
- restore-entity: reverse one audit entry
- restore-timestamp: reverse everything after a point in time

Usage:
    graphledger-admin [--db-path PATH] [-v] <command> [options]

Invariants:
    - Exit code is 0 on success, 1 on failure
    - Restores always take a backup first (see RestoreEngine)
    - Actions are attributed to the ``--user`` given, if any

How to change safely:
    - Add new subcommands additively; keep existing flags stable
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from ..config import AppConfig
from ..context import Actor
from ..main import setup_logging
from ..restore import RestoreEngine
from ..store import GraphStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graphledger-admin",
        description="Back up, inspect and restore a graphledger database",
    )
    parser.add_argument("--db-path", help="SQLite file (default: $GRAPHLEDGER_DB_PATH)")
    parser.add_argument("--user", help="User id recorded in audit entries")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Take a backup of the storage file")
    backup.add_argument("--name", help="Backup name (generated when omitted)")

    sub.add_parser("list-backups", help="List existing backups, newest first")

    history = sub.add_parser("history", help="Print audit entries, newest first")
    history.add_argument("--entity-type", help="Filter by entity type")
    history.add_argument("--entity-id", help="Filter by entity id")

    entity = sub.add_parser("restore-entity", help="Reverse one audit entry")
    entity.add_argument("entity_type", choices=["node", "edge"], help="Entity type")
    entity.add_argument("entity_id", help="Entity id")
    entity.add_argument("audit_log_id", type=int, help="Audit entry to reverse")

    timestamp = sub.add_parser(
        "restore-timestamp", help="Reverse every node/edge change after a timestamp"
    )
    timestamp.add_argument("timestamp", help="UTC timestamp, e.g. '2024-01-31 12:00:00'")

    return parser


def run(args: argparse.Namespace, store: GraphStore) -> int:
    """Execute one parsed command against a store; returns the exit code."""
    actor = Actor(user_id=args.user) if args.user else None

    if args.command == "backup":
        result = store.create_backup(args.name, actor=actor)
        if not result.success:
            print(f"Backup failed: {result.error}")
            return 1
        print("Backup created successfully")
        print(f"  Name: {result.backup_name}")
        print(f"  File: {result.file}")
        print(f"  Size: {result.file_size} bytes")
        print(f"  Checksum: {result.checksum}")
        return 0

    if args.command == "list-backups":
        for info in store.backups.list_backups():
            print(f"{info.backup_name}\t{info.file_size}\t{info.modified_at}")
        return 0

    if args.command == "history":
        for entry in store.get_audit_history(args.entity_type, args.entity_id):
            print(json.dumps(entry.to_dict(), ensure_ascii=False))
        return 0

    restorer = RestoreEngine(store)

    if args.command == "restore-entity":
        if restorer.restore_entity(args.entity_type, args.entity_id, args.audit_log_id, actor):
            print("Entity restored successfully")
            return 0
        print("Restore failed")
        return 1

    if args.command == "restore-timestamp":
        if restorer.restore_to_timestamp(args.timestamp, actor):
            print("Graph restored to timestamp successfully")
            return 0
        print("Restore failed")
        return 1

    print(f"Unknown command: {args.command}")
    return 1


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the admin tool."""
    args = build_parser().parse_args(argv)

    try:
        config = AppConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        sys.exit(1)

    if args.db_path:
        config = replace(config, storage=replace(config.storage, db_path=args.db_path))
    setup_logging(replace(config.observability, log_format="text"), verbose=args.verbose)

    store = GraphStore.from_config(config)
    try:
        code = run(args, store)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
