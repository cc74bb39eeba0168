"""Prometheus metrics for archive runs."""

from typing import Optional

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

from utils.logging import get_logger


class ArchiveMetrics:
    """Prometheus metrics for the archive engine."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.rows_copied_total = Counter(
            "mvarchive_rows_copied_total",
            "Rows copied to the archive database",
            ["table"],
            registry=self.registry,
        )
        self.batches_copied_total = Counter(
            "mvarchive_batches_copied_total",
            "Pages copied to the archive database",
            ["table"],
            registry=self.registry,
        )
        self.rows_deleted_total = Counter(
            "mvarchive_rows_deleted_total",
            "Rows deleted from the source database",
            ["table"],
            registry=self.registry,
        )
        self.projects_total = Counter(
            "mvarchive_projects_total",
            "Projects processed, by outcome",
            ["outcome"],  # archived, skipped, failed, cancelled
            registry=self.registry,
        )
        self.errors_total = Counter(
            "mvarchive_errors_total",
            "Errors by type",
            ["type", "table"],
            registry=self.registry,
        )
        self.duration_seconds = Histogram(
            "mvarchive_duration_seconds",
            "Duration of archive phases in seconds",
            ["phase"],  # batch, table, delete, project
            buckets=[0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0],
            registry=self.registry,
        )

    def record_batch(self, table: str, rows: int, duration: float) -> None:
        self.batches_copied_total.labels(table=table).inc()
        self.rows_copied_total.labels(table=table).inc(rows)
        self.duration_seconds.labels(phase="batch").observe(duration)

    def record_table(self, duration: float) -> None:
        self.duration_seconds.labels(phase="table").observe(duration)

    def record_deletion(self, deleted: dict[str, int], duration: float) -> None:
        for table, rows in deleted.items():
            self.rows_deleted_total.labels(table=table).inc(rows)
        self.duration_seconds.labels(phase="delete").observe(duration)

    def record_project(self, outcome: str, duration: Optional[float] = None) -> None:
        self.projects_total.labels(outcome=outcome).inc()
        if duration is not None:
            self.duration_seconds.labels(phase="project").observe(duration)

    def record_error(self, error_type: str, table: str = "") -> None:
        self.errors_total.labels(type=error_type, table=table).inc()

    def start_metrics_server(self, port: int = 8000) -> None:
        """Expose the registry over HTTP for scraping."""
        start_http_server(port, registry=self.registry)
        self.logger.info("Metrics server started", port=port)
