"""Bulk archive runs over several projects."""

import pytest

from fakes import DEPENDENT_COLUMNS, FakeStore, seed_project
from mvarchive.config import ArchiveConfig
from mvarchive.engine import ArchiveEngine
from mvarchive.exceptions import ArchiveCancelledError, CopyError
from mvarchive.progress import ArchiveProgress
from mvarchive.tables import LINK_COLUMN, PROJECT_TABLE


def _seed_three(source: FakeStore) -> None:
    for index, key in enumerate(["P-1", "P-2", "P-3"], start=1):
        seed_project(source, key, {"Locations": 2, "Parts": 1200}, id_start=index)


def _block_p2(destination: FakeStore) -> None:
    """Leave one P-2 row behind in the destination so its copy collides."""
    destination.add_table(
        "Locations",
        rows=[{"ID": 200_000, LINK_COLUMN: "P-2", "Name": "Locations-0"}],
    )


@pytest.mark.asyncio
async def test_archive_all_dry_run(
    dry_run_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    _seed_three(fake_source)
    snapshots: list[ArchiveProgress] = []

    async with ArchiveEngine(dry_run_config, source=fake_source, destination=fake_destination) as engine:
        result = await engine.archive_all(snapshots.append)

    assert result.status == "All projects archived (Dry Run)"
    assert result.succeeded is True
    assert result.total_projects == 3
    assert result.projects_processed == 3
    assert result.failed_projects == ()

    for key in ["P-1", "P-2", "P-3"]:
        assert len(fake_destination.rows_for(PROJECT_TABLE, key)) == 1
        assert len(fake_destination.rows_for("Parts", key)) == 1200
        assert len(fake_source.rows_for("Parts", key)) == 1200

    completed = [s for s in snapshots if s.is_complete]
    assert completed == [result]
    assert all(s.total_projects == 3 for s in snapshots)
    processed = [s.projects_processed for s in snapshots]
    assert processed == sorted(processed)


@pytest.mark.asyncio
async def test_archive_all_cleans_source(
    archive_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    _seed_three(fake_source)

    async with ArchiveEngine(archive_config, source=fake_source, destination=fake_destination) as engine:
        result = await engine.archive_all()

    assert result.status == "All projects archived and source cleaned"
    assert fake_source.tables[PROJECT_TABLE] == []
    assert fake_source.tables["Parts"] == []


@pytest.mark.asyncio
async def test_archive_all_continues_after_failure(
    archive_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    """A failed project is reported and the remaining projects are archived."""
    _seed_three(fake_source)
    _block_p2(fake_destination)

    async with ArchiveEngine(archive_config, source=fake_source, destination=fake_destination) as engine:
        result = await engine.archive_all()

    assert result.status == "2 of 3 projects archived, 1 failed"
    assert result.is_complete is True
    assert result.succeeded is False
    assert result.error == "1 project(s) failed"
    assert [key for key, _ in result.failed_projects] == ["P-2"]
    assert "Duplicate key" in dict(result.failed_projects)["P-2"]

    assert fake_source.rows_for(PROJECT_TABLE, "P-1") == []
    assert len(fake_source.rows_for(PROJECT_TABLE, "P-2")) == 1
    assert len(fake_source.rows_for("Parts", "P-2")) == 1200
    assert fake_source.rows_for(PROJECT_TABLE, "P-3") == []
    assert len(fake_destination.rows_for("Parts", "P-3")) == 1200


@pytest.mark.asyncio
async def test_archive_all_fail_fast(
    archive_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    _seed_three(fake_source)
    _block_p2(fake_destination)

    engine = ArchiveEngine(
        archive_config,
        fail_fast=True,
        source=fake_source,
        destination=fake_destination,
    )
    async with engine:
        with pytest.raises(CopyError) as exc_info:
            await engine.archive_all()

    progress = exc_info.value.progress
    assert progress.is_complete is True
    assert progress.status.startswith("Archive failed:")
    assert progress.current_project == "P-2"
    assert [key for key, _ in progress.failed_projects] == ["P-2"]
    assert fake_destination.rows_for(PROJECT_TABLE, "P-3") == []
    assert len(fake_source.rows_for(PROJECT_TABLE, "P-3")) == 1


@pytest.mark.asyncio
async def test_archive_all_cancel_stops_run(
    dry_run_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    _seed_three(fake_source)
    engine = ArchiveEngine(dry_run_config, source=fake_source, destination=fake_destination)

    def cancel_on_second_project(progress: ArchiveProgress) -> None:
        if progress.current_project == "P-2":
            engine.cancel()

    async with engine:
        with pytest.raises(ArchiveCancelledError) as exc_info:
            await engine.archive_all(cancel_on_second_project)

    progress = exc_info.value.progress
    assert progress.is_cancelled is True
    assert progress.status == "Archive cancelled"
    assert progress.projects_processed == 2
    assert len(fake_destination.rows_for(PROJECT_TABLE, "P-1")) == 1
    assert fake_destination.rows_for(PROJECT_TABLE, "P-3") == []


@pytest.mark.asyncio
async def test_archive_all_with_no_projects(
    dry_run_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    fake_source.add_table(PROJECT_TABLE)

    async with ArchiveEngine(dry_run_config, source=fake_source, destination=fake_destination) as engine:
        result = await engine.archive_all()

    assert result.total_projects == 0
    assert result.succeeded is True
    assert fake_destination.writes == []


class BrokenLookupStore(FakeStore):
    """Destination whose existence check fails outright for one project."""

    def __init__(self, role: str, broken_key: str) -> None:
        super().__init__(role)
        self.broken_key = broken_key

    async def project_exists(self, key: str) -> bool:
        if key == self.broken_key:
            raise RuntimeError("lookup exploded")
        return await super().project_exists(key)


@pytest.mark.asyncio
async def test_archive_all_copies_columns_with_spaces_and_punctuation(
    dry_run_config: ArchiveConfig,
    fake_source: FakeStore,
    fake_destination: FakeStore,
) -> None:
    """Legal but unusual column names in the source catalog do not stop the run."""
    seed_project(fake_source, "P-1", {"Locations": 2}, id_start=1)
    seed_project(fake_source, "P-2", {"Locations": 1}, id_start=2)
    extra = [
        {**DEPENDENT_COLUMNS[2], "name": "Unit Price", "ordinal_position": 4},
        {**DEPENDENT_COLUMNS[2], "name": "Qty#", "ordinal_position": 5},
    ]
    fake_source.columns["Locations"] = DEPENDENT_COLUMNS + extra

    async with ArchiveEngine(dry_run_config, source=fake_source, destination=fake_destination) as engine:
        result = await engine.archive_all()

    assert result.failed_projects == ()
    assert result.succeeded is True
    assert len(fake_destination.rows_for("Locations", "P-1")) == 2
    assert len(fake_destination.rows_for("Locations", "P-2")) == 1
    ddl = next(s for s in fake_destination.ddl_statements if '"Locations"' in s)
    assert '"Unit Price" text' in ddl
    assert '"Qty#" text' in ddl


@pytest.mark.asyncio
async def test_archive_all_records_unexpected_errors_and_continues(
    dry_run_config: ArchiveConfig,
    fake_source: FakeStore,
) -> None:
    """A non-archiver exception fails only its own project."""
    seed_project(fake_source, "P-1", {"Locations": 1}, id_start=1)
    seed_project(fake_source, "P-2", {"Locations": 1}, id_start=2)
    destination = BrokenLookupStore("destination", broken_key="P-1")
    snapshots: list[ArchiveProgress] = []

    async with ArchiveEngine(dry_run_config, source=fake_source, destination=destination) as engine:
        result = await engine.archive_all(snapshots.append)

    assert dict(result.failed_projects) == {"P-1": "RuntimeError: lookup exploded"}
    assert result.status == "1 of 2 projects archived, 1 failed"
    assert len(destination.rows_for(PROJECT_TABLE, "P-2")) == 1
    failed = [s for s in snapshots if s.current_project == "P-1" and s.error]
    assert failed and failed[-1].status == "Archive failed: RuntimeError: lookup exploded"


@pytest.mark.asyncio
async def test_archive_project_unexpected_error_pushes_final_snapshot(
    archive_config: ArchiveConfig,
    fake_source: FakeStore,
) -> None:
    seed_project(fake_source, "P-1", {"Locations": 1})
    destination = BrokenLookupStore("destination", broken_key="P-1")
    snapshots: list[ArchiveProgress] = []

    async with ArchiveEngine(archive_config, source=fake_source, destination=destination) as engine:
        with pytest.raises(RuntimeError, match="lookup exploded"):
            await engine.archive_project("P-1", snapshots.append)

    assert snapshots[-1].is_complete is True
    assert snapshots[-1].error == "RuntimeError: lookup exploded"
    assert len(fake_source.rows_for(PROJECT_TABLE, "P-1")) == 1
