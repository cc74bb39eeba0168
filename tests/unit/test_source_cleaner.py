"""Unit tests for source cleanup."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from mvarchive.exceptions import DeletionError
from mvarchive.metrics import ArchiveMetrics
from mvarchive.source_cleaner import SourceCleaner
from mvarchive.store import ProjectStore
from mvarchive.tables import deletion_order


@pytest.fixture
def source() -> MagicMock:
    store = MagicMock(spec=ProjectStore)
    store.delete_project_rows = AsyncMock(return_value={"Attachment": 2, "Projects": 1})
    return store


@pytest.mark.asyncio
async def test_delete_project_uses_deletion_order(source: MagicMock) -> None:
    registry = CollectorRegistry()
    cleaner = SourceCleaner(source, metrics=ArchiveMetrics(registry=registry))

    deleted = await cleaner.delete_project("P-1")

    assert deleted == {"Attachment": 2, "Projects": 1}
    source.delete_project_rows.assert_awaited_once_with(deletion_order(), "P-1")
    assert registry.get_sample_value("mvarchive_rows_deleted_total", {"table": "Attachment"}) == 2


@pytest.mark.asyncio
async def test_delete_project_failure_propagates(source: MagicMock) -> None:
    source.delete_project_rows.side_effect = DeletionError("Failed to delete Parts rows from source")
    cleaner = SourceCleaner(source)

    with pytest.raises(DeletionError):
        await cleaner.delete_project("P-1")
