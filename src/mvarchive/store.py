"""SQL access to one project store (source or destination).

``ProjectStore`` owns every statement the archive engine issues. The
components above it deal in table names, keys and rows, never in SQL.
"""

from collections.abc import Sequence
from typing import Any, Optional

import asyncpg
import structlog

from mvarchive.database import DatabaseManager
from mvarchive.exceptions import DatabaseConnectionError, DatabaseError, DeletionError
from mvarchive.tables import PROJECT_KEY_COLUMN, PROJECT_TABLE, TableSpec
from utils import qualified_table, quote_identifier, safe_identifier
from utils.logging import get_logger


class ProjectStore:
    """Table-level operations against one PostgreSQL store."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the store.

        Args:
            db_manager: Connected database manager for this store
            logger: Optional logger instance
        """
        self.db = db_manager
        self.schema_name = db_manager.config.schema_name
        self.role = db_manager.role
        self.logger = logger or get_logger("store")

    def _table(self, table_name: str) -> str:
        return qualified_table(self.schema_name, table_name)

    async def connect(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.db.disconnect()

    async def ping(self) -> bool:
        """True when the store answers a trivial query."""
        return await self.db.health_check()

    # Catalog

    async def table_exists(self, table_name: str) -> bool:
        """Check ``information_schema.tables`` for the table."""
        query = """
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = $1
              AND table_name = $2
        """
        count = await self.db.fetchval(query, self.schema_name, table_name)
        return bool(count)

    async def get_columns(self, table_name: str) -> list[dict[str, Any]]:
        """Column metadata ordered by ordinal position."""
        query = """
            SELECT
                c.column_name,
                c.data_type,
                c.udt_name,
                c.character_maximum_length,
                c.numeric_precision,
                c.numeric_scale,
                c.is_nullable,
                c.column_default,
                c.ordinal_position
            FROM information_schema.columns c
            WHERE c.table_schema = $1
              AND c.table_name = $2
            ORDER BY c.ordinal_position
        """
        rows = await self.db.fetch(query, self.schema_name, table_name)
        return [
            {
                "name": row["column_name"],
                "data_type": row["data_type"],
                "udt_name": row["udt_name"],
                "character_maximum_length": row["character_maximum_length"],
                "numeric_precision": row["numeric_precision"],
                "numeric_scale": row["numeric_scale"],
                "is_nullable": row["is_nullable"] == "YES",
                "default": row["column_default"],
                "ordinal_position": row["ordinal_position"],
            }
            for row in rows
        ]

    async def get_primary_key(self, table_name: str) -> list[str]:
        """Primary key columns in key order (empty if the table has none)."""
        query = """
            SELECT kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
                AND tc.table_name = kcu.table_name
            WHERE tc.table_schema = $1
              AND tc.table_name = $2
              AND tc.constraint_type = 'PRIMARY KEY'
            ORDER BY kcu.ordinal_position
        """
        rows = await self.db.fetch(query, self.schema_name, table_name)
        return [row["column_name"] for row in rows]

    async def execute_ddl(self, statement: str) -> None:
        await self.db.execute(statement)

    # Data

    async def count_rows(self, table: TableSpec, key: str) -> int:
        """Count rows of ``table`` belonging to project ``key``."""
        query = (
            f"SELECT COUNT(*) FROM {self._table(table.name)} "
            f"WHERE {safe_identifier(table.key_column)} = $1"
        )
        count = await self.db.fetchval(query, key)
        return int(count or 0)

    async def fetch_page(
        self,
        table: TableSpec,
        key: str,
        order_by: Sequence[str],
        offset: int,
        limit: int,
    ) -> list[asyncpg.Record]:
        """Fetch one ordered page of a project's rows."""
        order = ", ".join(quote_identifier(col) for col in order_by)
        query = (
            f"SELECT * FROM {self._table(table.name)} "
            f"WHERE {safe_identifier(table.key_column)} = $1 "
            f"ORDER BY {order} "
            f"OFFSET $2 LIMIT $3"
        )
        return await self.db.fetch(query, key, offset, limit)

    async def insert_rows(
        self,
        table_name: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> int:
        """Bulk insert rows with COPY and return the number written."""
        if not rows:
            return 0
        status = await self.db.copy_records(table_name, columns, rows)
        try:
            return int(status.split()[-1])
        except (AttributeError, ValueError, IndexError):
            return len(rows)

    # Projects

    async def project_exists(self, key: str) -> bool:
        """True when a ``Projects`` row with this LinkID exists in this store."""
        if not await self.table_exists(PROJECT_TABLE):
            return False
        query = (
            f"SELECT COUNT(*) FROM {self._table(PROJECT_TABLE)} "
            f"WHERE {safe_identifier(PROJECT_KEY_COLUMN)} = $1"
        )
        return bool(await self.db.fetchval(query, key))

    async def list_project_keys(self) -> list[str]:
        """All project LinkIDs, in a stable order."""
        key = safe_identifier(PROJECT_KEY_COLUMN)
        query = (
            f"SELECT {key} FROM {self._table(PROJECT_TABLE)} "
            f"WHERE {key} IS NOT NULL ORDER BY {key}"
        )
        rows = await self.db.fetch(query)
        return [str(row[PROJECT_KEY_COLUMN]) for row in rows]

    async def count_projects(self) -> int:
        """Projects with a LinkID, matching what ``list_project_keys`` returns."""
        key = safe_identifier(PROJECT_KEY_COLUMN)
        count = await self.db.fetchval(
            f"SELECT COUNT(*) FROM {self._table(PROJECT_TABLE)} WHERE {key} IS NOT NULL"
        )
        return int(count or 0)

    async def delete_project_rows(
        self,
        plan: Sequence[TableSpec],
        key: str,
    ) -> dict[str, int]:
        """Delete a project's rows table by table inside one transaction.

        Args:
            plan: Tables in deletion order
            key: Project LinkID

        Returns:
            Rows deleted per table

        Raises:
            DeletionError: If any statement fails; the transaction is rolled back
        """
        deleted: dict[str, int] = {}
        current = ""
        try:
            async with self.db.transaction() as conn:
                for table in plan:
                    current = table.name
                    status = await conn.execute(
                        f"DELETE FROM {self._table(table.name)} "
                        f"WHERE {safe_identifier(table.key_column)} = $1",
                        key,
                    )
                    deleted[table.name] = _affected(status)
        except (DatabaseError, asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            connection_lost = isinstance(
                e, (DatabaseConnectionError, asyncpg.InterfaceError, OSError)
            )
            raise DeletionError(
                f"Failed to delete {current} rows from {self.role}: {e}",
                context={
                    "table": current,
                    "project_key": key,
                    "rolled_back": list(deleted),
                    "connection_lost": connection_lost,
                },
            ) from e
        return deleted


def _affected(status: str) -> int:
    """Row count from a command status such as 'DELETE 12'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, ValueError, IndexError):
        return 0
