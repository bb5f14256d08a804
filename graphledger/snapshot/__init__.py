"""Backups of the graph storage file."""

from .backup import BackupInfo, BackupManager, BackupResult

__all__ = ["BackupInfo", "BackupManager", "BackupResult"]
