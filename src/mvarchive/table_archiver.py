"""Archive one project's rows of one table."""

import time
from typing import Optional

import structlog

from mvarchive.batch_copier import BatchCopier, BatchWindow
from mvarchive.exceptions import (
    ArchiveCancelledError,
    ArchiverError,
    DatabaseConnectionError,
    DatabaseError,
    SchemaError,
    describe_error,
)
from mvarchive.metrics import ArchiveMetrics
from mvarchive.progress import ArchiveProgress, CancellationToken, ProgressSink, null_sink
from mvarchive.schema_replicator import SchemaReplicator
from mvarchive.store import ProjectStore
from mvarchive.tables import BATCH_SIZE, get_table
from utils.logging import get_logger


class TableArchiver:
    """Counts, replicates and pages one table for one project."""

    def __init__(
        self,
        source: ProjectStore,
        replicator: SchemaReplicator,
        copier: BatchCopier,
        cancellation: Optional[CancellationToken] = None,
        metrics: Optional[ArchiveMetrics] = None,
        batch_size: int = BATCH_SIZE,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the table archiver.

        Args:
            source: Source store, used for row counts
            replicator: Creates missing destination tables
            copier: Copies pages
            cancellation: Checked before every page
            metrics: Optional metrics collector
            batch_size: Rows per page
            logger: Optional logger instance
        """
        self.source = source
        self.replicator = replicator
        self.copier = copier
        self.cancellation = cancellation or CancellationToken()
        self.metrics = metrics
        self.batch_size = batch_size
        self.logger = logger or get_logger("table_archiver")

    async def archive_table(
        self,
        table_name: str,
        project_key: str,
        progress: ArchiveProgress,
        sink: ProgressSink = null_sink,
    ) -> ArchiveProgress:
        """Copy every row of ``table_name`` belonging to ``project_key``.

        A snapshot is pushed to ``sink`` when the table starts and after
        every page.

        Returns:
            The snapshot after the last page (``total_records == 0`` when the
            table holds nothing for the project)

        Raises:
            SchemaError: Destination table could not be ensured
            CopyError: A page failed to copy
            ArchiveCancelledError: Cancellation requested between pages
        """
        table = get_table(table_name)
        log = self.logger.bind(table=table_name, project_key=project_key)
        started = time.monotonic()
        progress = progress.evolve(
            current_table=table_name,
            current_record=0,
            total_records=0,
            status=f"Archiving {table_name} for project {project_key}",
        )
        sink(progress)

        try:
            try:
                total = await self.source.count_rows(table, project_key)
            except DatabaseConnectionError:
                raise
            except DatabaseError as e:
                raise SchemaError(
                    f"Could not count {table_name} rows: {e.message}",
                    context={"table": table_name, **e.context},
                ) from e

            if total == 0:
                log.debug("No records for project")
                return progress

            log.info(
                "Found records to archive",
                records=total,
                batches=BatchWindow.page_count(total, self.batch_size),
                binary_payload=table.binary_payload,
            )
            progress = progress.evolve(total_records=total)

            await self.replicator.ensure_table(table_name)

            copied = 0
            for window in BatchWindow.pages(total, self.batch_size):
                self.cancellation.raise_if_cancelled(f"{table_name}@{window.offset}")
                batch_started = time.monotonic()
                rows = await self.copier.copy_batch(
                    table_name, project_key, window.offset, window.size
                )
                copied += rows
                if self.metrics:
                    self.metrics.record_batch(table_name, rows, time.monotonic() - batch_started)
                # reported even for empty pages so sparse ranges still advance
                progress = progress.evolve(current_record=min(window.end, total))
                sink(progress)

            if copied != total:
                log.warning("Copied row count differs from initial count", copied=copied, expected=total)
            log.info("Table archived", records=copied, duration=round(time.monotonic() - started, 2))
            if self.metrics:
                self.metrics.record_table(time.monotonic() - started)
            return progress

        except ArchiveCancelledError as e:
            e.progress = progress
            raise
        except ArchiverError as e:
            progress = progress.evolve(status=f"Error archiving {table_name}: {e.message}")
            sink(progress)
            e.progress = progress
            if self.metrics:
                self.metrics.record_error(type(e).__name__, table_name)
            log.error("Table archive failed", error=str(e))
            raise
        except Exception as e:
            progress = progress.evolve(status=f"Error archiving {table_name}: {describe_error(e)}")
            sink(progress)
            if self.metrics:
                self.metrics.record_error(type(e).__name__, table_name)
            log.exception("Unexpected error archiving table")
            raise
