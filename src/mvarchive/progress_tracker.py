"""Progress sink that logs snapshots with rate and ETA."""

import time
from datetime import timedelta
from typing import Optional

import structlog

from mvarchive.progress import ArchiveProgress
from utils.logging import get_logger


class ProgressLogger:
    """Logs archive snapshots, throttled to one line per ``update_interval``.

    Table changes and completion are always logged; per-batch snapshots are
    only logged when the interval has elapsed.
    """

    def __init__(
        self,
        quiet: bool = False,
        update_interval: float = 2.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize the progress logger.

        Args:
            quiet: If True, suppress progress output (for cron)
            update_interval: Minimum seconds between batch progress lines
            logger: Optional logger instance
        """
        self.quiet = quiet
        self.update_interval = update_interval
        self.logger = logger or get_logger("progress")

        self.last: Optional[ArchiveProgress] = None
        self.snapshots_seen = 0
        self.records_per_second = 0.0
        self._last_emit: Optional[float] = None
        self._rate_mark: Optional[tuple[float, int]] = None

    def __call__(self, progress: ArchiveProgress) -> None:
        previous = self.last
        self.last = progress
        self.snapshots_seen += 1
        now = time.monotonic()
        table_changed = previous is None or previous.current_table != progress.current_table

        self._update_rate(progress, now, table_changed)

        if self.quiet:
            return
        if progress.is_complete:
            self._display_finish(progress)
        elif table_changed or progress.error:
            self._display(progress)
            self._last_emit = now
        elif self._last_emit is None or now - self._last_emit >= self.update_interval:
            self._display(progress)
            self._last_emit = now

    def _update_rate(self, progress: ArchiveProgress, now: float, table_changed: bool) -> None:
        if table_changed or self._rate_mark is None:
            self._rate_mark = (now, progress.current_record)
            return
        mark_time, mark_records = self._rate_mark
        elapsed = now - mark_time
        if elapsed > 0 and progress.current_record > mark_records:
            self.records_per_second = (progress.current_record - mark_records) / elapsed

    def get_eta(self) -> Optional[timedelta]:
        """Estimated time left for the current table, if it can be computed."""
        progress = self.last
        if progress is None or self.records_per_second <= 0:
            return None
        remaining = progress.total_records - progress.current_record
        if remaining <= 0:
            return None
        return timedelta(seconds=int(remaining / self.records_per_second))

    def _display(self, progress: ArchiveProgress) -> None:
        parts = []
        if progress.total_projects > 1:
            parts.append(f"Project: {progress.projects_processed}/{progress.total_projects}")
        if progress.current_project:
            parts.append(f"Key: {progress.current_project}")
        if progress.current_table:
            parts.append(f"Table: {progress.current_table}")
        if progress.total_records:
            parts.append(
                f"Records: {progress.current_record:,}/{progress.total_records:,} "
                f"({progress.percent_records:.1f}%)"
            )
        parts.append(f"Tables: {progress.tables_processed}/{progress.total_tables}")
        if self.records_per_second > 0:
            parts.append(f"Rate: {self.records_per_second:.0f} rec/s")
        eta = self.get_eta()
        if eta is not None:
            parts.append(f"ETA: {eta}")

        log = self.logger.error if progress.error else self.logger.info
        log(progress.status or "Progress", progress=" | ".join(parts))

    def _display_finish(self, progress: ArchiveProgress) -> None:
        elapsed = str(progress.elapsed).split(".")[0]
        fields = {
            "project": progress.current_project or None,
            "projects_processed": progress.projects_processed,
            "total_projects": progress.total_projects,
            "elapsed": elapsed,
        }
        if progress.failed_projects:
            fields["failed_projects"] = dict(progress.failed_projects)

        if progress.is_cancelled:
            self.logger.warning(progress.status, **fields)
        elif progress.error:
            self.logger.error(progress.status, error=progress.error, **fields)
        else:
            self.logger.info(progress.status, **fields)
