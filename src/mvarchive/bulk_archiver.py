"""Archive every project of the source store."""

import time
from typing import Optional

import structlog

from mvarchive.exceptions import ArchiveCancelledError, ArchiverError, describe_error
from mvarchive.progress import ArchiveProgress, CancellationToken, ProgressSink, null_sink
from mvarchive.project_archiver import STATUS_CANCELLED, ProjectArchiver
from mvarchive.store import ProjectStore
from mvarchive.tables import copy_order
from utils.logging import get_logger


class BulkArchiver:
    """Drives the project archiver over a snapshot of all project keys.

    Failure policy: by default a failed project is logged, recorded in the
    aggregate's ``failed_projects`` and the run moves on to the next key.
    With ``fail_fast`` the first failure ends the run and is re-raised.
    Cancellation always ends the run.
    """

    def __init__(
        self,
        source: ProjectStore,
        project_archiver: ProjectArchiver,
        cancellation: Optional[CancellationToken] = None,
        fail_fast: bool = False,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        self.source = source
        self.project_archiver = project_archiver
        self.cancellation = cancellation or CancellationToken()
        self.fail_fast = fail_fast
        self.logger = logger or get_logger("bulk_archiver")

    async def archive_all(self, progress_sink: ProgressSink = null_sink) -> ArchiveProgress:
        """Archive all projects known to the source at the start of the run.

        Returns:
            The aggregate snapshot; ``failed_projects`` lists every project
            that raised, with its error message

        Raises:
            ArchiveCancelledError: Cancellation requested between projects or
                inside one
            ArchiverError: Project enumeration failed
            Exception: Whatever a project raised while ``fail_fast`` is set
        """
        sink = progress_sink
        started = time.monotonic()
        progress = ArchiveProgress(
            total_tables=len(copy_order()) + 1,
            status="Enumerating projects",
        )
        failures: list[tuple[str, str]] = []

        try:
            keys = await self.source.list_project_keys()
            total = len(keys)
            self.logger.info("Starting bulk archive", projects=total, fail_fast=self.fail_fast)
            progress = progress.evolve(total_projects=total, status=f"Found {total} projects to archive")
            sink(progress)

            for index, key in enumerate(keys, start=1):
                self.cancellation.raise_if_cancelled(key)
                progress = progress.evolve(
                    current_project=key,
                    projects_processed=index,
                    current_table="",
                    current_record=0,
                    total_records=0,
                    status=f"Processing project {index} of {total}",
                )
                sink(progress)
                self.logger.info("Processing project", index=index, total=total, project_key=key)

                try:
                    await self.project_archiver.archive_project(key, self._overlay(progress, sink))
                except ArchiveCancelledError:
                    raise
                except Exception as e:
                    message = describe_error(e)
                    failures.append((key, message))
                    progress = progress.evolve(failed_projects=tuple(failures))
                    self.logger.error(
                        "Project failed during bulk archive",
                        project_key=key,
                        error_type=type(e).__name__,
                        error=message,
                    )
                    if self.fail_fast:
                        raise

        except ArchiveCancelledError as e:
            progress = progress.finish(STATUS_CANCELLED, is_cancelled=True)
            e.progress = progress
            sink(progress)
            self.logger.warning("Bulk archive cancelled", projects_processed=progress.projects_processed)
            raise
        except ArchiverError as e:
            progress = progress.finish(f"Archive failed: {e.message}", error=e.message)
            e.progress = progress
            sink(progress)
            self.logger.error("Bulk archive aborted", error=str(e))
            raise
        except Exception as e:
            message = describe_error(e)
            progress = progress.finish(f"Archive failed: {message}", error=message)
            sink(progress)
            self.logger.exception("Bulk archive aborted unexpectedly")
            raise

        progress = progress.finish(self._final_status(progress.total_projects, failures))
        if failures:
            progress = progress.evolve(error=f"{len(failures)} project(s) failed")
        sink(progress)
        self.logger.info(
            "Bulk archive completed",
            projects=progress.total_projects,
            failed=len(failures),
            duration=round(time.monotonic() - started, 2),
            status=progress.status,
        )
        return progress

    def _final_status(self, total: int, failures: list[tuple[str, str]]) -> str:
        if failures:
            return f"{total - len(failures)} of {total} projects archived, {len(failures)} failed"
        if self.project_archiver.dry_run:
            return "All projects archived (Dry Run)"
        return "All projects archived and source cleaned"

    @staticmethod
    def _overlay(aggregate: ArchiveProgress, sink: ProgressSink) -> ProgressSink:
        """Sink that reports a project's snapshots in terms of the whole run."""

        def forward(inner: ArchiveProgress) -> None:
            sink(
                inner.evolve(
                    current_project=aggregate.current_project,
                    projects_processed=aggregate.projects_processed,
                    total_projects=aggregate.total_projects,
                    failed_projects=aggregate.failed_projects,
                    start_time=aggregate.start_time,
                    is_complete=False,
                    end_time=None,
                )
            )

        return forward
