"""
Configuration management for graphledger.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Configuration objects are immutable once loaded

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; the admin CLI and the gateway share them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")


@dataclass(frozen=True)
class StorageConfig:
    """Graph storage configuration.

    Attributes:
        db_path: SQLite file holding the graph
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        backup_dir_name: Backup directory, relative to the storage directory
    """

    db_path: str = "./data/graph.db"
    wal_mode: bool = False
    busy_timeout_ms: int = 5000
    backup_dir_name: str = "backups"

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("GRAPHLEDGER_DB_PATH", "./data/graph.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "false").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            backup_dir_name=os.getenv("BACKUP_DIR_NAME", "backups"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_format=os.getenv("LOG_FORMAT", "json").lower(),
        )


@dataclass
class AppConfig:
    """Complete configuration.

    Attributes:
        storage: Graph storage configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.storage.db_path:
            raise ValueError("GRAPHLEDGER_DB_PATH must not be empty")
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("SQLITE_BUSY_TIMEOUT_MS must be non-negative")
        if not self.storage.backup_dir_name or "/" in self.storage.backup_dir_name:
            raise ValueError("BACKUP_DIR_NAME must be a plain directory name")
        if self.observability.log_level not in LOG_LEVELS:
            raise ValueError(
                f"Invalid LOG_LEVEL '{self.observability.log_level}'. "
                f"Must be one of: {', '.join(LOG_LEVELS)}"
            )
        if self.observability.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        db_dir = os.path.dirname(os.path.abspath(self.storage.db_path))
        if self.storage.db_path != ":memory:" and not os.path.exists(db_dir):
            logger.warning(
                f"Storage directory does not exist: {db_dir}. It will be created on first write."
            )

    def log_config(self) -> None:
        logger.info(
            "Configuration loaded",
            extra={
                "db_path": self.storage.db_path,
                "wal_mode": self.storage.wal_mode,
                "backup_dir_name": self.storage.backup_dir_name,
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
            },
        )
