"""
graphledger server entry point.

Loads configuration from the environment, configures logging and serves the
HTTP gateway with uvicorn.

Usage:
    graphledger-server
    GRAPHLEDGER_DB_PATH=/var/lib/graphledger/graph.db LOG_FORMAT=text graphledger-server
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import AppConfig, ObservabilityConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig, verbose: bool = False) -> None:
    """Configure root logging from the observability section.

    Args:
        config: Observability configuration (level and format)
        verbose: Force DEBUG regardless of the configured level
    """
    level = logging.DEBUG if verbose else getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Run the HTTP gateway."""
    try:
        config = AppConfig.from_env()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.observability)
    settings = Settings()
    logger.info(
        "Starting graphledger gateway", extra={"host": settings.host, "port": settings.port}
    )

    uvicorn.run(
        create_app(settings=settings), host=settings.host, port=settings.port, log_config=None
    )


if __name__ == "__main__":
    main()
