"""MV Archive - Move projects from the live database into an archive database."""

__version__ = "0.1.0"

__all__ = [
    "engine",
    "config",
    "progress",
    "project_archiver",
    "bulk_archiver",
    "table_archiver",
    "batch_copier",
    "schema_replicator",
    "source_cleaner",
    "store",
    "tables",
]
