"""Create destination tables on demand from source catalog metadata."""

from collections.abc import Sequence
from typing import Any, Optional

import structlog

from mvarchive.exceptions import DatabaseError, SchemaError
from mvarchive.store import ProjectStore
from utils import qualified_table, quote_identifier
from utils.logging import get_logger

# Types rendered with a length modifier when the catalog reports one
_LENGTH_TYPES = {
    "character varying": "varchar",
    "character": "char",
    "bit": "bit",
    "bit varying": "varbit",
}


def render_column_type(column: dict[str, Any]) -> str:
    """Render the SQL type of one ``information_schema.columns`` entry."""
    data_type = column["data_type"]
    udt_name = column.get("udt_name") or data_type

    if data_type in _LENGTH_TYPES:
        length = column.get("character_maximum_length")
        base = _LENGTH_TYPES[data_type]
        return f"{base}({length})" if length else base
    if data_type == "numeric":
        precision = column.get("numeric_precision")
        scale = column.get("numeric_scale")
        if precision is not None:
            return f"numeric({precision},{scale or 0})"
        return "numeric"
    if data_type == "ARRAY":
        # element udt names carry a leading underscore, e.g. _int4
        return f"{udt_name.lstrip('_')}[]"
    if data_type == "USER-DEFINED":
        return quote_identifier(udt_name)
    return data_type


def _is_sequence_default(default: Optional[str]) -> bool:
    return bool(default) and "nextval(" in default.lower()


def build_create_table(
    schema_name: str,
    table_name: str,
    columns: Sequence[dict[str, Any]],
    primary_key: Sequence[str] = (),
) -> str:
    """Build one CREATE TABLE statement from column metadata.

    Args:
        schema_name: Destination schema
        table_name: Table to create
        columns: Column metadata as returned by ``ProjectStore.get_columns``
        primary_key: Primary key columns, if the source table has one

    Returns:
        The DDL statement

    Raises:
        SchemaError: If ``columns`` is empty
    """
    if not columns:
        raise SchemaError(
            f"No column metadata for table {table_name}",
            context={"table": table_name},
        )

    ordered = sorted(columns, key=lambda c: c.get("ordinal_position") or 0)
    definitions = []
    for column in ordered:
        parts = [quote_identifier(column["name"]), render_column_type(column)]
        if not column.get("is_nullable", True):
            parts.append("NOT NULL")
        default = column.get("default")
        # sequences are not replicated, so nextval() defaults would dangle
        if default is not None and not _is_sequence_default(default):
            parts.append(f"DEFAULT {default}")
        definitions.append(" ".join(parts))

    if primary_key:
        key_cols = ", ".join(quote_identifier(col) for col in primary_key)
        definitions.append(f"PRIMARY KEY ({key_cols})")

    body = ",\n    ".join(definitions)
    return f"CREATE TABLE {qualified_table(schema_name, table_name)} (\n    {body}\n)"


class SchemaReplicator:
    """Ensures a source table exists in the destination store."""

    def __init__(
        self,
        source: ProjectStore,
        destination: ProjectStore,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.logger = logger or get_logger("schema_replicator")

    async def ensure_table(self, table_name: str) -> None:
        """Create ``table_name`` in the destination if it is missing.

        Raises:
            SchemaError: If the source has no such table, or the destination
                rejects the generated statement
        """
        try:
            if await self.destination.table_exists(table_name):
                self.logger.debug("Table already exists", table=table_name)
                return
            columns = await self.source.get_columns(table_name)
            primary_key = await self.source.get_primary_key(table_name)
        except DatabaseError as e:
            raise SchemaError(
                f"Catalog lookup failed for table {table_name}: {e.message}",
                context={"table": table_name, **e.context},
            ) from e

        if not columns:
            raise SchemaError(
                f"Table {table_name} not found in source catalog",
                context={"table": table_name, "schema": self.source.schema_name},
            )

        try:
            statement = build_create_table(
                self.destination.schema_name, table_name, columns, primary_key
            )
        except (KeyError, ValueError) as e:
            raise SchemaError(
                f"Cannot build DDL for table {table_name}: {e}",
                context={"table": table_name},
            ) from e
        self.logger.info(
            "Creating destination table",
            table=table_name,
            columns=len(columns),
            primary_key=list(primary_key),
        )
        try:
            await self.destination.execute_ddl(statement)
        except DatabaseError as e:
            raise SchemaError(
                f"Failed to create table {table_name} in destination: {e.message}",
                context={"table": table_name, **e.context},
            ) from e
