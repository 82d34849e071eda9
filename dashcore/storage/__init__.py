"""
Data storage layer.

Raw events, aggregated metrics and KPI snapshots all live in DuckDB.
"""

from functools import lru_cache

from dashcore.config import get_settings

from .base import EventStore, KPISnapshotStore, MetricStore, StorageBackend
from .duckdb_storage import DuckDBStorage


@lru_cache
def get_storage() -> StorageBackend:
    """
    Get cached storage backend instance (singleton).

    Returns:
        StorageBackend implementation instance
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


__all__ = [
    "EventStore",
    "MetricStore",
    "KPISnapshotStore",
    "StorageBackend",
    "DuckDBStorage",
    "get_storage",
]
