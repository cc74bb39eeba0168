"""Exception hierarchy for the project archiver.

Every error carries a ``context`` dict with the store, table and offset it
concerns, and the archivers attach the last progress snapshot before raising.
"""

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from mvarchive.progress import ArchiveProgress

# PostgreSQL SQLSTATE codes the archivers react to
UNIQUE_VIOLATION = "23505"
UNDEFINED_COLUMN = "42703"
DATATYPE_MISMATCH = "42804"


class ArchiverError(Exception):
    """Base exception for all archiver errors."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        """Initialize archiver error.

        Args:
            message: Error message
            correlation_id: Optional correlation ID for tracing
            context: Optional context dictionary with additional details
        """
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.context = context or {}
        # Last progress snapshot at the point of failure, set by the archivers
        self.progress: Optional["ArchiveProgress"] = None

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.correlation_id:
            parts.append(f"[correlation_id={self.correlation_id}]")
        if self.context:
            parts.append(f"[context={self.context}]")
        return " ".join(parts)


class ConfigurationError(ArchiverError):
    """Configuration-related errors."""

    pass


class InvalidArgumentError(ArchiverError):
    """Missing or empty project key, or a key unknown to the source."""

    pass


class DatabaseError(ArchiverError):
    """A query or connection failure reported by one of the two stores."""

    @property
    def sqlstate(self) -> Optional[str]:
        return self.context.get("sqlstate")

    @property
    def is_unique_violation(self) -> bool:
        return self.sqlstate == UNIQUE_VIOLATION

    @property
    def is_column_mismatch(self) -> bool:
        """The destination table no longer matches the source columns."""
        return self.sqlstate in (UNDEFINED_COLUMN, DATATYPE_MISMATCH)


class DatabaseConnectionError(DatabaseError):
    """Source or destination store unreachable."""

    pass


class SchemaError(ArchiverError):
    """Catalog lookup or destination table creation failed."""

    pass


class CopyError(ArchiverError):
    """Batch copy failed, including duplicate keys from an unsafe retry."""

    @property
    def duplicate_key(self) -> bool:
        return bool(self.context.get("duplicate_key"))

    @property
    def schema_drift(self) -> bool:
        return bool(self.context.get("schema_drift"))


class DeletionError(ArchiverError):
    """Source cleanup failed after a successful copy.

    Data for the project exists in both stores when this is raised.
    """

    pass


class ArchiveCancelledError(ArchiverError):
    """The run was cancelled between two units of work."""

    pass


def describe_error(error: BaseException) -> str:
    """Message for progress snapshots and failure lists, whatever raised."""
    if isinstance(error, ArchiverError):
        return error.message
    return f"{type(error).__name__}: {error}"
