"""Copy one page of a project's rows from the source to the destination."""

import math
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Optional

import structlog

from mvarchive.exceptions import (
    ArchiverError,
    CopyError,
    DatabaseConnectionError,
    DatabaseError,
    describe_error,
)
from mvarchive.store import ProjectStore
from mvarchive.tables import BATCH_SIZE, FALLBACK_ORDER_COLUMN, TableSpec, get_table
from utils.logging import get_logger


@dataclass(frozen=True)
class BatchWindow:
    """One page of a table scan."""

    offset: int
    size: int = BATCH_SIZE

    @property
    def end(self) -> int:
        return self.offset + self.size

    @classmethod
    def pages(cls, total: int, size: int = BATCH_SIZE) -> Iterator["BatchWindow"]:
        """Windows covering ``total`` rows: offsets 0, size, 2*size, ... while < total."""
        offset = 0
        while offset < total:
            yield cls(offset, size)
            offset += size

    @staticmethod
    def page_count(total: int, size: int = BATCH_SIZE) -> int:
        return math.ceil(total / size) if total > 0 else 0


class BatchCopier:
    """Streams filtered, ordered pages from source into destination via COPY."""

    def __init__(
        self,
        source: ProjectStore,
        destination: ProjectStore,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.logger = logger or get_logger("batch_copier")
        self._order_columns: dict[str, list[str]] = {}

    async def _order_by(self, table_name: str) -> list[str]:
        """Primary key columns of the source table, cached per table."""
        if table_name not in self._order_columns:
            primary_key = await self.source.get_primary_key(table_name)
            self._order_columns[table_name] = primary_key or [FALLBACK_ORDER_COLUMN]
        return self._order_columns[table_name]

    async def copy_batch(
        self,
        table_name: str,
        filter_key: str,
        offset: int,
        size: int = BATCH_SIZE,
    ) -> int:
        """Copy the page ``[offset, offset + size)`` of a project's rows.

        Args:
            table_name: Registered project table
            filter_key: Project LinkID
            offset: Rows to skip in primary key order
            size: Page size

        Returns:
            Rows copied; 0 once the window is past the end of the rows

        Raises:
            CopyError: On connectivity loss, destination constraint violation
                or a column mismatch between source and destination
        """
        table: TableSpec = get_table(table_name)
        context = {"table": table_name, "project_key": filter_key, "offset": offset, "size": size}

        try:
            order_by = await self._order_by(table_name)
            records = await self.source.fetch_page(table, filter_key, order_by, offset, size)
            if not records:
                return 0

            columns = list(records[0].keys())
            rows = [tuple(record.values()) for record in records]
            copied = await self.destination.insert_rows(table_name, columns, rows)
        except DatabaseError as e:
            raise self._copy_error(e, context) from e
        except ArchiverError:
            raise
        except Exception as e:
            raise CopyError(
                f"Failed to copy {table_name} batch: {describe_error(e)}",
                context=context,
            ) from e

        self.logger.debug(
            "Batch copied",
            table=table_name,
            offset=offset,
            rows=copied,
            binary_payload=table.binary_payload,
        )
        return copied

    @staticmethod
    def _copy_error(e: DatabaseError, context: dict) -> CopyError:
        table = context["table"]
        if e.is_unique_violation:
            message = (
                f"Duplicate key copying {table} at offset {context['offset']}; "
                "destination already holds rows from an earlier attempt"
            )
            context = {**context, "duplicate_key": True}
        elif e.is_column_mismatch:
            message = f"Column mismatch between source and destination {table}: {e.message}"
            context = {**context, "schema_drift": True}
        elif isinstance(e, DatabaseConnectionError):
            message = f"Connection lost copying {table}: {e.message}"
        else:
            message = f"Failed to copy {table} batch: {e.message}"
        return CopyError(message, context={**context, "store": e.context.get("store")})
