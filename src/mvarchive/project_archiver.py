"""Archive one project: root record, dependent tables, optional cleanup."""

import time
from typing import Optional

import structlog

from mvarchive.batch_copier import BatchCopier
from mvarchive.exceptions import (
    ArchiveCancelledError,
    ArchiverError,
    InvalidArgumentError,
    describe_error,
)
from mvarchive.metrics import ArchiveMetrics
from mvarchive.progress import ArchiveProgress, CancellationToken, ProgressSink, null_sink
from mvarchive.schema_replicator import SchemaReplicator
from mvarchive.source_cleaner import SourceCleaner
from mvarchive.store import ProjectStore
from mvarchive.table_archiver import TableArchiver
from mvarchive.tables import PROJECT_TABLE, ROOT_TABLE, copy_order
from utils.logging import get_logger, project_context

STATUS_ALREADY_ARCHIVED = "Project already archived"
STATUS_COMPLETED = "Archive completed successfully"
STATUS_CANCELLED = "Archive cancelled"


class ProjectArchiver:
    """Runs the full archive sequence for a single project key."""

    def __init__(
        self,
        source: ProjectStore,
        destination: ProjectStore,
        replicator: SchemaReplicator,
        copier: BatchCopier,
        table_archiver: TableArchiver,
        cleaner: Optional[SourceCleaner] = None,
        cancellation: Optional[CancellationToken] = None,
        metrics: Optional[ArchiveMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the project archiver.

        Args:
            source: Source store
            destination: Destination store
            replicator: Schema replicator shared with the table archiver
            copier: Batch copier shared with the table archiver
            table_archiver: Archives each dependent table
            cleaner: Source cleaner; None for a dry run
            cancellation: Checked between tables
            metrics: Optional metrics collector
            logger: Optional logger instance
        """
        self.source = source
        self.destination = destination
        self.replicator = replicator
        self.copier = copier
        self.table_archiver = table_archiver
        self.cleaner = cleaner
        self.cancellation = cancellation or CancellationToken()
        self.metrics = metrics
        self.logger = logger or get_logger("project_archiver")

    @property
    def dry_run(self) -> bool:
        return self.cleaner is None

    async def archive_project(
        self,
        project_key: str,
        progress_sink: ProgressSink = null_sink,
    ) -> ArchiveProgress:
        """Archive one project and return the final snapshot.

        Raises:
            InvalidArgumentError: Empty key, or a key the source does not know
            SchemaError, CopyError, DeletionError: Propagated after the final
                snapshot (attached as ``error.progress``) has been pushed
            ArchiveCancelledError: Cancellation requested between tables
        """
        if project_key is None or not str(project_key).strip():
            raise InvalidArgumentError("Project key must not be empty")

        key = str(project_key)
        with project_context(key):
            return await self._archive(key, progress_sink)

    async def _archive(self, key: str, sink: ProgressSink) -> ArchiveProgress:
        log = self.logger
        started = time.monotonic()
        progress = ArchiveProgress(
            current_project=key,
            total_projects=1,
            total_tables=len(copy_order()) + 1,
            status=f"Checking archive for project {key}",
        )
        sink(progress)
        log.info("Starting project archive", dry_run=self.dry_run)

        try:
            if await self.destination.project_exists(key):
                log.warning("Project already exists in destination")
                progress = progress.finish(STATUS_ALREADY_ARCHIVED, projects_processed=1)
                sink(progress)
                if self.metrics:
                    self.metrics.record_project("skipped")
                return progress

            progress = await self._copy_project_record(key, progress, sink)

            for table in copy_order():
                self.cancellation.raise_if_cancelled(table.name)
                progress = await self.table_archiver.archive_table(table.name, key, progress, sink)
                progress = progress.evolve(tables_processed=progress.tables_processed + 1)
                sink(progress)

            if self.cleaner is not None:
                self.cancellation.raise_if_cancelled("source cleanup")
                progress = progress.evolve(
                    current_table="",
                    status="Cleaning source database (not dry run)",
                )
                sink(progress)
                await self.cleaner.delete_project(key)
            else:
                log.info("Dry run completed - no source cleanup")

            progress = progress.finish(STATUS_COMPLETED, projects_processed=1)
            sink(progress)
            duration = time.monotonic() - started
            if self.metrics:
                self.metrics.record_project("archived", duration)
            log.info("Project archive completed", duration=round(duration, 2))
            return progress

        except ArchiveCancelledError as e:
            progress = (e.progress or progress).finish(STATUS_CANCELLED, is_cancelled=True)
            e.progress = progress
            sink(progress)
            if self.metrics:
                self.metrics.record_project("cancelled")
            log.warning("Project archive cancelled", at=e.context.get("at"))
            raise
        except ArchiverError as e:
            progress = (e.progress or progress).finish(
                f"Archive failed: {e.message}",
                error=e.message,
            )
            e.progress = progress
            sink(progress)
            if self.metrics:
                self.metrics.record_project("failed", time.monotonic() - started)
            log.error(
                "Project archive failed",
                error_type=type(e).__name__,
                error=str(e),
                duration=round(time.monotonic() - started, 2),
            )
            raise
        except Exception as e:
            message = describe_error(e)
            progress = progress.finish(f"Archive failed: {message}", error=message)
            sink(progress)
            if self.metrics:
                self.metrics.record_project("failed", time.monotonic() - started)
            log.exception("Project archive failed unexpectedly", error_type=type(e).__name__)
            raise

    async def _copy_project_record(
        self,
        key: str,
        progress: ArchiveProgress,
        sink: ProgressSink,
    ) -> ArchiveProgress:
        progress = progress.evolve(
            current_table=PROJECT_TABLE,
            status=f"Archiving project {key}",
        )
        sink(progress)

        rows = await self.source.count_rows(ROOT_TABLE, key)
        if rows == 0:
            raise InvalidArgumentError(
                f"Project {key} not found in source",
                context={"project_key": key},
            )
        if rows > 1:
            self.logger.warning("Several project rows share one key", rows=rows)

        await self.replicator.ensure_table(PROJECT_TABLE)
        copied = await self.copier.copy_batch(PROJECT_TABLE, key, 0, rows)
        self.logger.info("Project record copied", rows=copied)

        progress = progress.evolve(
            current_record=copied,
            total_records=rows,
            tables_processed=progress.tables_processed + 1,
        )
        sink(progress)
        return progress
