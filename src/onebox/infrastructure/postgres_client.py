"""PostgreSQL client backing the account registry."""

from typing import Any

import psycopg
from loguru import logger

from onebox.infrastructure.settings import Settings, get_settings


class PostgresClientWrapper:
    """Wrapper for the PostgreSQL connection and schema."""

    def __init__(self, settings: Settings | None = None):
        """Initialize PostgreSQL client wrapper."""
        self.settings = settings or get_settings()
        self._connection: psycopg.Connection | None = None

    def connect(self) -> psycopg.Connection:
        """Establish connection to PostgreSQL."""
        if self._connection is None or self._connection.closed:
            logger.info(f"Connecting to PostgreSQL at {self.settings.postgres_host}:{self.settings.postgres_port}")
            self._connection = psycopg.connect(self.settings.postgres_dsn)
            logger.info("PostgreSQL connection established")
        return self._connection

    def disconnect(self) -> None:
        """Close PostgreSQL connection."""
        if self._connection is not None and not self._connection.closed:
            self._connection.close()
            self._connection = None
            logger.info("PostgreSQL connection closed")

    @property
    def connection(self) -> psycopg.Connection:
        """Get or create PostgreSQL connection."""
        if self._connection is None or self._connection.closed:
            return self.connect()
        return self._connection

    def health_check(self) -> dict[str, Any]:
        """Check PostgreSQL connection health."""
        try:
            conn = self.connect()
            with conn.cursor() as cur:
                cur.execute("SELECT version()")
                version = cur.fetchone()[0]
            return {
                "status": "healthy",
                "host": self.settings.postgres_host,
                "port": self.settings.postgres_port,
                "database": self.settings.postgres_db,
                "version": version,
            }
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return {
                "status": "unhealthy",
                "host": self.settings.postgres_host,
                "port": self.settings.postgres_port,
                "database": self.settings.postgres_db,
                "error": str(e),
            }

    def setup_schema(self) -> None:
        """Create the account table if missing."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS email_accounts (
                    id VARCHAR(64) PRIMARY KEY,
                    email VARCHAR(320) NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    imap_host VARCHAR(255) NOT NULL,
                    imap_port INTEGER NOT NULL DEFAULT 993,
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    last_sync TIMESTAMP WITH TIME ZONE,
                    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
                );

                CREATE INDEX IF NOT EXISTS idx_email_accounts_active ON email_accounts(is_active);
            """)
            conn.commit()
            logger.info("Database schema setup complete")
