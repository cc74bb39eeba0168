"""Archive engine: wires stores and components for one archive run."""

from types import TracebackType
from typing import Optional

import structlog

from mvarchive.batch_copier import BatchCopier
from mvarchive.bulk_archiver import BulkArchiver
from mvarchive.config import ArchiveConfig
from mvarchive.database import DatabaseManager
from mvarchive.exceptions import DatabaseError
from mvarchive.metrics import ArchiveMetrics
from mvarchive.progress import ArchiveProgress, CancellationToken, ProgressSink, null_sink
from mvarchive.project_archiver import ProjectArchiver
from mvarchive.schema_replicator import SchemaReplicator
from mvarchive.source_cleaner import SourceCleaner
from mvarchive.store import ProjectStore
from mvarchive.table_archiver import TableArchiver
from utils.logging import get_logger


class ArchiveEngine:
    """Entry point used by the CLI or any other front end.

    In a dry run the engine never builds a :class:`SourceCleaner` and the
    source pool is opened with ``default_transaction_read_only``, so no code
    path can remove source rows.

    Usage::

        async with ArchiveEngine(config) as engine:
            result = await engine.archive_project("P-100", sink)
    """

    def __init__(
        self,
        config: ArchiveConfig,
        *,
        metrics: Optional[ArchiveMetrics] = None,
        fail_fast: bool = False,
        source: Optional[ProjectStore] = None,
        destination: Optional[ProjectStore] = None,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Settings for this run
            metrics: Optional metrics collector
            fail_fast: Stop a bulk run at the first failed project
            source: Store override for the source (defaults to asyncpg)
            destination: Store override for the destination
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or get_logger("engine")
        self.metrics = metrics
        self.cancellation = CancellationToken()

        self.source = source or ProjectStore(
            DatabaseManager(config.source, role="source", read_only=config.dry_run),
            logger=self.logger,
        )
        self.destination = destination or ProjectStore(
            DatabaseManager(config.destination, role="destination"),
            logger=self.logger,
        )

        self.replicator = SchemaReplicator(self.source, self.destination)
        self.copier = BatchCopier(self.source, self.destination)
        self.table_archiver = TableArchiver(
            self.source,
            self.replicator,
            self.copier,
            cancellation=self.cancellation,
            metrics=metrics,
        )
        cleaner = None if config.dry_run else SourceCleaner(self.source, metrics=metrics)
        self.project_archiver = ProjectArchiver(
            self.source,
            self.destination,
            self.replicator,
            self.copier,
            self.table_archiver,
            cleaner=cleaner,
            cancellation=self.cancellation,
            metrics=metrics,
        )
        self.bulk_archiver = BulkArchiver(
            self.source,
            self.project_archiver,
            cancellation=self.cancellation,
            fail_fast=fail_fast,
        )

        self.logger.info(
            "Archive engine initialized",
            source=config.source.describe(),
            destination=config.destination.describe(),
            dry_run=config.dry_run,
        )

    @property
    def dry_run(self) -> bool:
        return self.project_archiver.dry_run

    async def connect(self) -> None:
        """Open both stores."""
        await self.source.connect()
        try:
            await self.destination.connect()
        except BaseException:
            await self.source.close()
            raise

    async def close(self) -> None:
        await self.source.close()
        await self.destination.close()

    async def __aenter__(self) -> "ArchiveEngine":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    def cancel(self) -> None:
        """Request cancellation; honored at the next batch or table boundary."""
        self.logger.warning("Cancellation requested")
        self.cancellation.cancel()

    async def archive_project(
        self, project_key: str, progress_sink: ProgressSink = null_sink
    ) -> ArchiveProgress:
        return await self.project_archiver.archive_project(project_key, progress_sink)

    async def archive_all(self, progress_sink: ProgressSink = null_sink) -> ArchiveProgress:
        return await self.bulk_archiver.archive_all(progress_sink)

    async def count_projects(self) -> int:
        """Number of projects currently in the source store."""
        return await self.source.count_projects()

    async def test_connections(self) -> dict[str, bool]:
        """Open and ping each store independently.

        Returns:
            ``{"source": bool, "destination": bool}``
        """
        results: dict[str, bool] = {}
        for role, store, settings in (
            ("source", self.source, self.config.source),
            ("destination", self.destination, self.config.destination),
        ):
            try:
                await store.connect()
                results[role] = await store.ping()
            except DatabaseError as e:
                self.logger.error("Connection test failed", store=role, error=str(e))
                results[role] = False
            else:
                self.logger.info(
                    "Connection test completed",
                    store=role,
                    target=settings.describe(),
                    ok=results[role],
                )
            finally:
                await store.close()
        return results
