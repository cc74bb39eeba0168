"""Delete archived project rows from the source store.

Only the engine constructs a ``SourceCleaner``, and only when the run is not a
dry run. A project archiver without a cleaner has no code path that deletes.
"""

import time
from typing import Optional

import structlog

from mvarchive.metrics import ArchiveMetrics
from mvarchive.store import ProjectStore
from mvarchive.tables import deletion_order
from utils.logging import get_logger


class SourceCleaner:
    """Removes a project's rows from the source in dependency-safe order."""

    def __init__(
        self,
        source: ProjectStore,
        metrics: Optional[ArchiveMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.source = source
        self.metrics = metrics
        self.logger = logger or get_logger("source_cleaner")

    async def delete_project(self, project_key: str) -> dict[str, int]:
        """Delete dependent rows in reverse copy order, then the project row.

        Returns:
            Rows deleted per table, in deletion order

        Raises:
            DeletionError: If any delete fails; nothing is removed in that case
        """
        plan = deletion_order()
        self.logger.warning(
            "Deleting project from source",
            project_key=project_key,
            tables=len(plan),
        )
        started = time.monotonic()
        deleted = await self.source.delete_project_rows(plan, project_key)
        duration = time.monotonic() - started

        if self.metrics:
            self.metrics.record_deletion(deleted, duration)
        self.logger.info(
            "Source cleanup completed",
            project_key=project_key,
            rows_deleted=sum(deleted.values()),
            duration=round(duration, 2),
        )
        return deleted
