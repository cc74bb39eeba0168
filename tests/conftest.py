"""Pytest configuration and shared fixtures."""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

from fakes import FakeStore
from mvarchive.config import ArchiveConfig, StoreConfig
from mvarchive.database import DatabaseManager


@pytest.fixture
def source_config() -> StoreConfig:
    """Live database settings."""
    os.environ["TEST_SOURCE_PASSWORD"] = "source_password"
    return StoreConfig(
        host="live-db",
        port=5432,
        database="mv_live",
        user="archiver",
        password_env="TEST_SOURCE_PASSWORD",
    )


@pytest.fixture
def destination_config() -> StoreConfig:
    """Archive database settings."""
    return StoreConfig(
        host="archive-db",
        port=5432,
        database="mv_archive",
        user="archiver",
        password="archive_password",
    )


@pytest.fixture
def archive_config(source_config: StoreConfig, destination_config: StoreConfig) -> ArchiveConfig:
    """Settings for a run that deletes from the source."""
    return ArchiveConfig(source=source_config, destination=destination_config, dry_run=False)


@pytest.fixture
def dry_run_config(source_config: StoreConfig, destination_config: StoreConfig) -> ArchiveConfig:
    """Settings for a copy-only run."""
    return ArchiveConfig(source=source_config, destination=destination_config, dry_run=True)


@pytest.fixture
def fake_source() -> FakeStore:
    return FakeStore("source")


@pytest.fixture
def fake_destination() -> FakeStore:
    return FakeStore("destination")


@pytest.fixture
def mock_db(source_config: StoreConfig) -> MagicMock:
    """DatabaseManager double with awaitable query methods."""
    db = MagicMock(spec=DatabaseManager)
    db.config = source_config
    db.role = "source"
    db.execute = AsyncMock(return_value="OK")
    db.fetch = AsyncMock(return_value=[])
    db.fetchval = AsyncMock(return_value=0)
    db.copy_records = AsyncMock(return_value="COPY 0")
    db.connect = AsyncMock()
    db.disconnect = AsyncMock()
    db.health_check = AsyncMock(return_value=True)
    return db
