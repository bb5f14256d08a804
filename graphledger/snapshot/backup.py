"""
File-level backups of the graph storage.

A backup is a byte copy of the whole SQLite file, taken after the store's
connection is closed so the file on disk is complete and quiescent. Backups
are the safety net that every restore takes before it modifies anything.

Backup layout:
    <storage_dir>/
        graph.db
        backups/
            backup_2024-01-31_12-00-00_4821.db
            pre_restore_entity_node_n1_2024-01-31_12-05-00_1234.db

Invariants:
    - An existing backup file is never overwritten
    - Backup names contain only [A-Za-z0-9._-]
    - The store connection is closed before the copy; it re-opens lazily

How to change safely:
    - Keep the copy byte-for-byte; restores from backup are manual file swaps
    - Keep the default name format sortable by time
"""

from __future__ import annotations

import hashlib
import logging
import random
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..errors import BackupError
from ..store.database import Database

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".db"

NAME_TIME_FORMAT = "%Y-%m-%d_%H-%M-%S"


@dataclass
class BackupResult:
    """Outcome of one backup attempt.

    Attributes:
        success: Whether the backup file was written
        backup_name: Name of the backup (file stem)
        file: Full path of the backup file
        file_size: Size in bytes
        checksum: SHA-256 of the backup file
        error: Failure reason when unsuccessful
    """

    success: bool
    backup_name: str | None = None
    file: str | None = None
    file_size: int | None = None
    checksum: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class BackupInfo:
    """An existing backup file."""

    backup_name: str
    file: str
    file_size: int
    modified_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def sanitize_name(name: str) -> str:
    """Reduce a backup name to file-safe characters."""
    return "".join(c for c in name if c.isascii() and (c.isalnum() or c in "._-"))


class BackupManager:
    """Creates and lists backups of one storage file.

    Example:
        >>> manager = BackupManager(database)
        >>> result = manager.create_backup("before_migration")
        >>> result.file
        '/var/lib/graphledger/backups/before_migration.db'
    """

    def __init__(self, database: Database, dir_name: str = "backups") -> None:
        """Initialize the backup manager.

        Args:
            database: Database whose file is backed up
            dir_name: Backup directory name, relative to the storage directory
        """
        self.database = database
        self.dir_name = dir_name

    @property
    def backup_dir(self) -> Path:
        return self.database.storage_dir / self.dir_name

    def default_name(self, prefix: str = "backup") -> str:
        """Time-stamped name with a random suffix, e.g. ``backup_2024-01-31_12-00-00_4821``."""
        stamp = self.database.clock().strftime(NAME_TIME_FORMAT)
        return f"{prefix}_{stamp}_{random.randint(1000, 9999)}"

    def create_backup(self, name: str | None = None) -> BackupResult:
        """Copy the storage file to ``backups/<name>.db``.

        Args:
            name: Backup name; a time-stamped default is used when omitted

        Returns:
            BackupResult describing the written file, or the failure
        """
        backup_name = sanitize_name(name) if name is not None else self.default_name()
        try:
            path = self._write_backup(backup_name)
        except BackupError as e:
            logger.warning("Backup failed", extra={"backup_name": backup_name, "reason": e.message})
            return BackupResult(success=False, backup_name=backup_name or None, error=e.message)
        except OSError as e:
            logger.error("Backup failed", extra={"backup_name": backup_name}, exc_info=True)
            return BackupResult(success=False, backup_name=backup_name, error=str(e))

        result = BackupResult(
            success=True,
            backup_name=backup_name,
            file=str(path),
            file_size=path.stat().st_size,
            checksum=self._compute_checksum(path),
        )
        logger.info(
            "Backup created",
            extra={"backup_name": backup_name, "file": result.file, "size_bytes": result.file_size},
        )
        return result

    def _write_backup(self, backup_name: str) -> Path:
        if not backup_name:
            raise BackupError("Backup name is empty after sanitizing")
        if self.database.is_memory:
            raise BackupError("In-memory databases cannot be backed up", backup_name)

        # Connecting creates the file and schema on a store that was never used.
        # The file is then released before copying; the next access re-opens it.
        self.database.connection
        self.database.close()

        source = Path(self.database.db_path)
        if not source.exists():
            raise BackupError(f"Storage file does not exist: {source}", backup_name)

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        dest = self.backup_dir / f"{backup_name}{BACKUP_SUFFIX}"
        if dest.exists():
            raise BackupError(f"Backup already exists: {dest.name}", backup_name)

        shutil.copyfile(source, dest)
        return dest

    def list_backups(self) -> list[BackupInfo]:
        """Existing backups, newest first."""
        if not self.backup_dir.is_dir():
            return []

        backups = []
        for path in self.backup_dir.glob(f"*{BACKUP_SUFFIX}"):
            stat = path.stat()
            backups.append(
                (
                    stat.st_mtime,
                    BackupInfo(
                        backup_name=path.stem,
                        file=str(path),
                        file_size=stat.st_size,
                        modified_at=datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
                    ),
                )
            )
        backups.sort(key=lambda item: (item[0], item[1].backup_name), reverse=True)
        return [info for _, info in backups]

    def _compute_checksum(self, file_path: Path) -> str:
        """Compute SHA-256 checksum of file."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                sha256.update(chunk)
        return f"sha256:{sha256.hexdigest()}"
