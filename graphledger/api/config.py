"""
Configuration for the graphledger HTTP gateway.

Uses pydantic-settings for environment variable loading. Storage settings
(database path, WAL, backups) come from ``graphledger.config``.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")

    # Overrides GRAPHLEDGER_DB_PATH when set
    db_path: str | None = Field(default=None, description="SQLite file holding the graph")

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    user_header: str = Field(default="X-User-Id", description="Header naming the acting user")

    model_config = {"env_prefix": "GRAPHLEDGER_API_"}
