"""Database connection management."""

import os
from typing import Any, Dict

from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool


class DatabaseConfig:
    """Database configuration."""

    def __init__(self, config: Dict[str, Any]) -> None:
        """Initialize database config from dict."""
        self.dsn = config.get("dsn")
        self.host = config.get("host", "localhost")
        self.port = config.get("port", 5432)
        self.database = config.get("database", "contentcrawl")
        self.user = config.get("user", "contentcrawl")
        self.max_connections = config.get("max_connections", 10)

        # Handle password from environment variable if specified
        password_env = config.get("password_env")
        if password_env:
            self.password = os.environ.get(password_env, "")
        else:
            self.password = config.get("password", "")

    @property
    def connection_string(self) -> str:
        """Get psycopg connection string."""
        if self.dsn:
            return self.dsn
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


def create_pool(config: Dict[str, Any]) -> ConnectionPool:
    """Create a new connection pool returning dict rows."""
    db_config = DatabaseConfig(config)
    return ConnectionPool(
        db_config.connection_string,
        min_size=1,
        max_size=db_config.max_connections,
        kwargs={"row_factory": dict_row},
        open=True,
    )
