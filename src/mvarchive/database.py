"""Database connection and query management using asyncpg."""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
from structlog import BoundLogger

from mvarchive.config import StoreConfig
from mvarchive.exceptions import DatabaseConnectionError, DatabaseError
from utils.logging import get_logger
from utils.retry import RetryConfig, retry_async

# Errors that mean the server could not be reached at all
CONNECT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
)


class DatabaseManager:
    """Manages one PostgreSQL store: its connection pool and raw queries."""

    def __init__(
        self,
        config: StoreConfig,
        role: str,
        pool_size: int = 2,
        read_only: bool = False,
        retry_config: Optional[RetryConfig] = None,
        logger: Optional[BoundLogger] = None,
    ) -> None:
        """Initialize database manager.

        Args:
            config: Store configuration
            role: 'source' or 'destination', used in logs and errors
            pool_size: Connection pool size
            read_only: Open every session with default_transaction_read_only
            retry_config: Retry policy for establishing the pool
            logger: Optional logger instance
        """
        self.config = config
        self.role = role
        self.pool_size = pool_size
        self.read_only = read_only
        self.retry_config = retry_config or RetryConfig(
            max_attempts=config.connect_attempts,
            initial_delay=config.connect_retry_delay,
            retryable_exceptions=CONNECT_ERRORS,
        )
        self.logger = logger or get_logger("database")
        self.pool: Optional[asyncpg.Pool] = None

    @property
    def dsn(self) -> str:
        """Get database connection DSN."""
        try:
            password = self.config.get_password()
        except ValueError as e:
            raise DatabaseError(
                str(e),
                context={"store": self.role, "database": self.config.database},
            ) from e
        return (
            f"postgresql://{self.config.user}:{password}@"
            f"{self.config.host}:{self.config.port}/{self.config.database}"
        )

    def _context(self, **extra: Any) -> dict[str, Any]:
        return {"store": self.role, "database": self.config.database, **extra}

    async def connect(self) -> None:
        """Create the connection pool, retrying transient connect failures."""
        server_settings = {"application_name": "mvarchive"}
        if self.read_only:
            server_settings["default_transaction_read_only"] = "on"

        self.logger.debug(
            "Creating connection pool",
            store=self.role,
            target=self.config.describe(),
            read_only=self.read_only,
        )
        try:
            dsn = self.dsn
            self.pool = await retry_async(
                f"connect {self.role}",
                lambda: asyncpg.create_pool(
                    dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    timeout=self.config.connect_timeout,
                    command_timeout=self.config.command_timeout,
                    server_settings=server_settings,
                ),
                config=self.retry_config,
                logger=self.logger,
            )
        except DatabaseError:
            raise
        except Exception as e:
            raise DatabaseConnectionError(
                f"Failed to connect to {self.role} database: {e}",
                context=self._context(host=self.config.host),
            ) from e

        self.logger.debug("Connection pool ready", store=self.role)

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self.pool:
            self.logger.debug("Closing connection pool", store=self.role)
            await self.pool.close()
            self.pool = None

    async def health_check(self) -> bool:
        """Return True when a trivial query succeeds."""
        if not self.pool:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception as e:
            self.logger.warning("Health check failed", store=self.role, error=str(e))
            return False

    @asynccontextmanager
    async def acquire_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Acquire a connection from the pool.

        Raises:
            DatabaseError: If the pool is not initialized
        """
        if not self.pool:
            raise DatabaseError(
                "Connection pool not initialized. Call connect() first.",
                context=self._context(),
            )
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """Yield a connection inside a transaction."""
        async with self.acquire_connection() as conn:
            async with conn.transaction():
                yield conn

    def _wrap(self, e: Exception, query: str) -> DatabaseError:
        connection_lost = isinstance(
            e, CONNECT_ERRORS + (asyncpg.ConnectionDoesNotExistError, asyncpg.InterfaceError)
        )
        error_cls = DatabaseConnectionError if connection_lost else DatabaseError
        return error_cls(
            f"Query execution failed: {e}",
            context=self._context(
                query=" ".join(query.split())[:120],
                sqlstate=getattr(e, "sqlstate", None),
            ),
        )

    async def execute(self, query: str, *args: Any) -> str:
        """Execute a statement and return its command status."""
        try:
            async with self.acquire_connection() as conn:
                return await conn.execute(query, *args)
        except DatabaseError:
            raise
        except Exception as e:
            raise self._wrap(e, query) from e

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        """Execute a query and return all rows."""
        try:
            async with self.acquire_connection() as conn:
                return await conn.fetch(query, *args)
        except DatabaseError:
            raise
        except Exception as e:
            raise self._wrap(e, query) from e

    async def fetchval(self, query: str, *args: Any) -> Any:
        """Execute a query and return a single value."""
        try:
            async with self.acquire_connection() as conn:
                return await conn.fetchval(query, *args)
        except DatabaseError:
            raise
        except Exception as e:
            raise self._wrap(e, query) from e

    async def copy_records(
        self,
        table_name: str,
        columns: Sequence[str],
        records: Sequence[Sequence[Any]],
    ) -> str:
        """Bulk load rows into a table with COPY.

        Args:
            table_name: Unquoted table name in the configured schema
            columns: Column names, in the order of each record's values
            records: Row values

        Returns:
            COPY command status (e.g. 'COPY 1000')
        """
        try:
            async with self.acquire_connection() as conn:
                return await conn.copy_records_to_table(
                    table_name,
                    records=records,
                    columns=list(columns),
                    schema_name=self.config.schema_name,
                )
        except DatabaseError:
            raise
        except Exception as e:
            raise self._wrap(e, f"COPY {table_name}") from e

