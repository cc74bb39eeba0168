"""Shared utilities for mvarchive: SQL identifier quoting, logging, retries, output."""

import re

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def safe_identifier(name: str) -> str:
    """Validate and quote a PostgreSQL identifier.

    Table and column names in the project schema are mixed case
    (``LinkIDProject``), so every identifier is double-quoted to keep its
    case. Schema-qualified names (``public.Locations``) are quoted per part.

    Args:
        name: SQL identifier (table name, column name, schema name)

    Returns:
        Quoted identifier (e.g., '"public"."Locations"')

    Raises:
        ValueError: If the identifier contains invalid characters
    """
    if "." in name:
        schema, table = name.split(".", 1)
        return f"{safe_identifier(schema)}.{safe_identifier(table)}"

    if not _IDENTIFIER.match(name):
        raise ValueError(
            f"Invalid SQL identifier: {name!r}. "
            "Only letters, digits, and underscores are allowed."
        )

    return f'"{name}"'


def qualified_table(schema_name: str, table_name: str) -> str:
    """Return the quoted ``schema.table`` reference for a table."""
    return f"{safe_identifier(schema_name)}.{safe_identifier(table_name)}"


def quote_identifier(name: str) -> str:
    """Quote a column or type name read from the source catalog.

    Catalog names may legally hold spaces, punctuation or double quotes
    (``Unit Price``, ``Qty#``), so they are quoted with embedded quotes
    doubled instead of being validated like the fixed table names.

    Raises:
        ValueError: If the name is empty or contains a NUL character
    """
    if not name or "\x00" in name:
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return '"' + name.replace('"', '""') + '"'
