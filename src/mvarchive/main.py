"""Main entry point for the archiver CLI."""

import asyncio
import signal
import sys
import uuid
from pathlib import Path
from typing import Optional

import click

from mvarchive.config import ArchiveConfig, load_config
from mvarchive.engine import ArchiveEngine
from mvarchive.exceptions import ArchiveCancelledError, ArchiverError, ConfigurationError
from mvarchive.metrics import ArchiveMetrics
from mvarchive.progress import ArchiveProgress
from mvarchive.progress_tracker import ProgressLogger
from utils.logging import configure_logging
from utils.output import print_error, print_header, print_key_value, print_success, print_warning


def _print_summary(result: ArchiveProgress, dry_run: bool) -> None:
    print_header("Archive Summary")
    print_key_value("Status", result.status)
    print_key_value("Mode", "dry run (source untouched)" if dry_run else "archive and delete")
    if result.total_projects > 1:
        print_key_value("Projects", f"{result.projects_processed}/{result.total_projects}")
    elif result.current_project:
        print_key_value("Project", result.current_project)
    print_key_value("Tables", f"{result.tables_processed}/{result.total_tables}")
    print_key_value("Elapsed", str(result.elapsed).split(".")[0])
    for key, message in result.failed_projects:
        print_error(f"{key}: {message}")
    if result.succeeded:
        print_success("Done")


async def _run(
    engine: ArchiveEngine,
    projects: tuple[str, ...],
    archive_all: bool,
    progress: ProgressLogger,
) -> list[ArchiveProgress]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.cancel)
        loop.add_signal_handler(signal.SIGTERM, engine.cancel)
    except (NotImplementedError, RuntimeError):
        pass

    results = []
    async with engine:
        if archive_all:
            results.append(await engine.archive_all(progress))
        else:
            for key in projects:
                results.append(await engine.archive_project(key, progress))
    return results


async def _count(engine: ArchiveEngine) -> int:
    async with engine:
        return await engine.count_projects()


@click.command()
@click.option(
    "--config",
    "-c",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option(
    "--project",
    "-p",
    "projects",
    multiple=True,
    help="LinkID of a project to archive (repeatable)",
)
@click.option(
    "--all",
    "archive_all",
    is_flag=True,
    default=False,
    help="Archive every project in the source database",
)
@click.option(
    "--dry-run/--no-dry-run",
    default=None,
    help="Override the configured dry-run setting",
)
@click.option(
    "--test-connections",
    is_flag=True,
    default=False,
    help="Only check that both databases are reachable",
)
@click.option(
    "--count",
    "count_only",
    is_flag=True,
    default=False,
    help="Only print the number of projects in the source database",
)
@click.option(
    "--fail-fast",
    is_flag=True,
    default=False,
    help="With --all, stop at the first project that fails",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARN", "ERROR", "CRITICAL"]),
    help="Log level",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs",
)
@click.option(
    "--metrics-port",
    type=int,
    default=None,
    help="Expose Prometheus metrics on this port (overrides the config file)",
)
def main(
    config: Path,
    projects: tuple[str, ...],
    archive_all: bool,
    dry_run: Optional[bool],
    test_connections: bool,
    count_only: bool,
    fail_fast: bool,
    verbose: bool,
    log_level: str,
    log_format: str,
    metrics_port: Optional[int],
) -> None:
    """Move projects from the live database into the archive database.

    Every dependent table of a project is copied in batches of 1000 rows.
    Unless running in dry-run mode, the project is then deleted from the
    source, children first and the project row last.
    """
    effective_log_level = "DEBUG" if verbose else log_level
    logger = configure_logging(
        log_level=effective_log_level,
        log_format=log_format,
        correlation_id=uuid.uuid4().hex[:12],
    ).bind(component="main")

    if not (test_connections or count_only or archive_all or projects):
        raise click.UsageError("Specify --project LINKID, --all, --count or --test-connections")
    if archive_all and projects:
        raise click.UsageError("--all cannot be combined with --project")

    try:
        settings = load_config(config)
    except ConfigurationError as e:
        logger.error("Configuration error", error=str(e))
        sys.exit(2)

    archive_config: ArchiveConfig = settings.archive
    if dry_run is not None:
        archive_config = archive_config.model_copy(update={"dry_run": dry_run})

    monitoring = settings.monitoring
    metrics = None
    port = metrics_port or (monitoring.metrics_port if monitoring.metrics_enabled else None)
    if port:
        metrics = ArchiveMetrics(logger=logger)
        try:
            metrics.start_metrics_server(port=port)
        except OSError as e:
            logger.warning("Failed to start metrics server (non-critical)", port=port, error=str(e))

    engine = ArchiveEngine(archive_config, metrics=metrics, fail_fast=fail_fast, logger=logger)

    if test_connections:
        results = asyncio.run(engine.test_connections())
        for role, ok in results.items():
            (print_success if ok else print_error)(f"{role} database {'reachable' if ok else 'unreachable'}")
        sys.exit(0 if all(results.values()) else 1)

    if count_only:
        try:
            total = asyncio.run(_count(engine))
        except ArchiverError as e:
            print_error(f"Could not count projects: {e.message}")
            sys.exit(1)
        print_key_value("Projects in source", total)
        sys.exit(0)

    if archive_config.dry_run:
        logger.info("DRY RUN MODE - source data will not be deleted")
    else:
        logger.warning("Source data WILL be deleted after archiving")

    progress = ProgressLogger(
        quiet=monitoring.quiet_mode,
        update_interval=monitoring.progress_update_interval,
        logger=logger,
    )

    try:
        results = asyncio.run(_run(engine, projects, archive_all, progress))
    except ArchiveCancelledError as e:
        print_warning("Archive cancelled")
        if e.progress:
            _print_summary(e.progress, archive_config.dry_run)
        sys.exit(130)
    except ArchiverError as e:
        logger.error("Archive failed", error_type=type(e).__name__, error=str(e))
        if e.progress:
            _print_summary(e.progress, archive_config.dry_run)
        sys.exit(1)

    for result in results:
        _print_summary(result, archive_config.dry_run)
    sys.exit(0 if all(r.succeeded for r in results) else 1)


if __name__ == "__main__":
    main()
