"""Unit tests for main CLI entry point."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from mvarchive.exceptions import ArchiveCancelledError, SchemaError
from mvarchive.main import main
from mvarchive.progress import ArchiveProgress


@pytest.fixture
def mock_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        """
version: "1.0"
archive:
  dry_run: true
  source:
    host: live-db
    database: mv_live
    user: archiver
    password: secret
  destination:
    host: archive-db
    database: mv_archive
    user: archiver
    password: secret
monitoring:
  quiet_mode: true
"""
    )
    return config_file


@pytest.fixture
def runner() -> CliRunner:
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def mock_engine():
    with patch("mvarchive.main.ArchiveEngine") as engine_class:
        engine = MagicMock()
        engine_class.return_value = engine
        yield engine_class, engine


def completed(status: str = "Archive completed successfully", **changes) -> ArchiveProgress:
    return ArchiveProgress(current_project="P-100", total_projects=1, total_tables=29).finish(
        status, **changes
    )


def test_main_requires_target(runner: CliRunner, mock_config_file: Path) -> None:
    result = runner.invoke(main, ["--config", str(mock_config_file)])
    assert result.exit_code == 2
    assert "--project" in result.output


def test_main_rejects_all_with_project(runner: CliRunner, mock_config_file: Path) -> None:
    result = runner.invoke(main, ["-c", str(mock_config_file), "--all", "-p", "P-1"])
    assert result.exit_code == 2


def test_main_configuration_error(runner: CliRunner, tmp_path: Path) -> None:
    config_file = tmp_path / "bad.yaml"
    config_file.write_text('version: "9.9"\n')

    result = runner.invoke(main, ["-c", str(config_file), "-p", "P-100"])

    assert result.exit_code == 2


def test_main_archive_project(runner: CliRunner, mock_config_file: Path, mock_engine) -> None:
    """Test successful archive of one project."""
    engine_class, engine = mock_engine
    engine.archive_project = AsyncMock(return_value=completed(projects_processed=1))

    result = runner.invoke(main, ["-c", str(mock_config_file), "-p", "P-100"])

    assert result.exit_code == 0, result.output
    assert "Archive completed successfully" in result.output
    assert engine.archive_project.await_args.args[0] == "P-100"
    assert engine_class.call_args.args[0].dry_run is True


def test_main_no_dry_run_overrides_config(
    runner: CliRunner, mock_config_file: Path, mock_engine
) -> None:
    engine_class, engine = mock_engine
    engine.archive_project = AsyncMock(return_value=completed())

    result = runner.invoke(main, ["-c", str(mock_config_file), "-p", "P-100", "--no-dry-run"])

    assert result.exit_code == 0, result.output
    assert engine_class.call_args.args[0].dry_run is False
    assert "archive and delete" in result.output


def test_main_archive_failure(runner: CliRunner, mock_config_file: Path, mock_engine) -> None:
    _, engine = mock_engine
    error = SchemaError("Failed to create table Parts in destination: permission denied")
    error.progress = completed("Archive failed: permission denied", error="permission denied")
    engine.archive_project = AsyncMock(side_effect=error)

    result = runner.invoke(main, ["-c", str(mock_config_file), "-p", "P-100"])

    assert result.exit_code == 1
    assert "Archive failed: permission denied" in result.output


def test_main_cancelled(runner: CliRunner, mock_config_file: Path, mock_engine) -> None:
    _, engine = mock_engine
    engine.archive_project = AsyncMock(side_effect=ArchiveCancelledError("Archive cancelled"))

    result = runner.invoke(main, ["-c", str(mock_config_file), "-p", "P-100"])

    assert result.exit_code == 130
    assert "Archive cancelled" in result.output


def test_main_archive_all_with_failures(
    runner: CliRunner, mock_config_file: Path, mock_engine
) -> None:
    engine_class, engine = mock_engine
    engine.archive_all = AsyncMock(
        return_value=ArchiveProgress(total_projects=3, projects_processed=3)
        .evolve(failed_projects=(("P-2", "Duplicate key copying Locations"),))
        .finish("2 of 3 projects archived, 1 failed", error="1 project(s) failed")
    )

    result = runner.invoke(main, ["-c", str(mock_config_file), "--all", "--fail-fast"])

    assert result.exit_code == 1
    assert "P-2: Duplicate key copying Locations" in result.output
    assert engine_class.call_args.kwargs["fail_fast"] is True


def test_main_test_connections(runner: CliRunner, mock_config_file: Path, mock_engine) -> None:
    _, engine = mock_engine
    engine.test_connections = AsyncMock(return_value={"source": True, "destination": False})

    result = runner.invoke(main, ["-c", str(mock_config_file), "--test-connections"])

    assert result.exit_code == 1
    assert "source database reachable" in result.output
    assert "destination database unreachable" in result.output


def test_main_count(runner: CliRunner, mock_config_file: Path, mock_engine) -> None:
    _, engine = mock_engine
    engine.count_projects = AsyncMock(return_value=42)

    result = runner.invoke(main, ["-c", str(mock_config_file), "--count"])

    assert result.exit_code == 0, result.output
    assert "Projects in source" in result.output
    assert "42" in result.output
