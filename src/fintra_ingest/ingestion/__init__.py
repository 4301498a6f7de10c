"""Provider ingestion: FMP client, bulk snapshot, normalizer, and storage."""

from fintra_ingest.ingestion.bulk import (
    BulkSnapshot,
    BulkSnapshotLoader,
    download_bulk_files,
    is_mutable_period,
    read_bulk_csv,
    write_atomic,
)
from fintra_ingest.ingestion.client import FmpClient
from fintra_ingest.ingestion.normalizer import normalize, to_float
from fintra_ingest.ingestion.store import SqliteStore, StorageProtocol, create_store

__all__ = [
    "BulkSnapshot",
    "BulkSnapshotLoader",
    "FmpClient",
    "SqliteStore",
    "StorageProtocol",
    "create_store",
    "download_bulk_files",
    "is_mutable_period",
    "read_bulk_csv",
    "write_atomic",
    "normalize",
    "to_float",
]
