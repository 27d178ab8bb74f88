"""
MySQL server handler for database operations.

Statements are built with SQLAlchemy Core by the SQL services and executed
here through an async engine on top of the aiomysql driver.
"""

import logging
import os
from typing import Any

from sqlalchemy import text
from sqlalchemy.dialects import mysql
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from voicegate.server.db_models import SQL_DATABASE_MODELS
from voicegate.server.sql_models import Base

from ..services import SQLDatabase

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# MySQL Server Handler
# -------------------------------------------------------------- #


class MySQLServer(SQLDatabase):
    """Handler for MySQL / MariaDB database server operations."""

    def __init__(
        self,
        name: str = "mysql",
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
        pool_size: int = 10,
    ):
        """
        Initialize MySQL server handler.

        Args:
            name: Name of the server handler
            host: MySQL server host
            port: MySQL server port (default: 3306)
            user: Database user
            password: Database password
            database: Database name
            pool_size: Maximum number of pooled connections
        """
        self.host = host or os.getenv("MYSQL_HOST", "localhost")
        self.port = port or int(os.getenv("MYSQL_PORT", "3306"))
        self.user = user or os.getenv("MYSQL_USER", "root")
        self.password = password or os.getenv("MYSQL_PASSWORD", "")
        self.database = database or os.getenv("MYSQL_DB", "voicegate")
        self.pool_size = pool_size

        conn_str = (
            f"mysql+aiomysql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"
            "?charset=utf8mb4"
        )
        super().__init__(name, conn_str)

        self._engine: AsyncEngine | None = None

    # -------------------------------------------------------------- #
    # Connection Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the connection pool and verify it with a round trip."""
        try:
            self._engine = create_async_engine(
                self.connection_string,
                pool_size=self.pool_size,
                pool_recycle=3600,
                pool_pre_ping=True,
            )
            async with self._engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            self._connected = True
            logger.info(f"[{self.name}] Connected to MySQL at {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"[{self.name}] Failed to connect: {e}")
            self._connected = False
            raise

    async def disconnect(self) -> None:
        """Close connection pool to MySQL server."""
        if self._engine:
            try:
                await self._engine.dispose()
                self._engine = None
                self._connected = False
                logger.info(f"[{self.name}] Disconnected from MySQL")
            except Exception as e:
                logger.error(f"[{self.name}] Failed to disconnect: {e}")
                raise

    async def health_check(self) -> bool:
        """Check if the MySQL server is healthy and responding."""
        if not self._engine:
            return False

        try:
            async with self._engine.connect() as connection:
                result = await connection.execute(text("SELECT 1"))
                is_healthy = result.scalar() == 1
                if not is_healthy:
                    logger.warning(f"[{self.name}] Health check failed")
                return is_healthy
        except Exception as e:
            logger.error(f"[{self.name}] Health check error: {e}")
            return False

    # -------------------------------------------------------------- #
    # Database Operations
    # -------------------------------------------------------------- #

    async def create_tables(self) -> None:
        """Create all database tables from the defined models if they are missing."""
        if not self._engine:
            raise RuntimeError(f"[{self.name}] Engine not initialized")

        try:
            tables = [model.__table__ for model in SQL_DATABASE_MODELS]
            async with self._engine.begin() as connection:
                await connection.run_sync(
                    lambda sync_conn: Base.metadata.create_all(
                        sync_conn, tables=tables, checkfirst=True
                    )
                )
            logger.info(f"[{self.name}] Ensured {len(tables)} tables exist")
        except Exception as e:
            logger.error(f"[{self.name}] Failed to create tables: {e}")
            raise

    def compile_query_object(self, stmt) -> str:
        """
        Compile a SQLAlchemy statement to a MySQL query string.

        Args:
            stmt: SQLAlchemy statement object
        Returns:
            Compiled query string
        """
        compiled = stmt.compile(dialect=mysql.dialect())
        return str(compiled)

    async def execute(self, stmt) -> list[dict[str, Any]]:
        """
        Execute a SQLAlchemy statement and return results.

        Args:
            stmt: SQLAlchemy statement object (select, insert, update, delete)

        Returns:
            List of result rows as dictionaries (empty list for non-SELECT queries)
        """
        if not self._engine:
            raise RuntimeError(f"[{self.name}] Engine not initialized")

        try:
            logger.debug(f"[{self.name}] Executing: {self.compile_query_object(stmt)}")
            async with self._engine.begin() as connection:
                result = await connection.execute(stmt)
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except Exception as e:
            table_name = getattr(getattr(stmt, "table", None), "name", "unknown")
            logger.error(
                f"[{self.name}] {type(stmt).__name__} on '{table_name}' failed: {e}"
            )
            raise
