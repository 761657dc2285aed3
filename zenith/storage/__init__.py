"""
Relational storage for analytics rows, billing state and webhook bookkeeping.

All storage uses DuckDB; the StorageBackend ABC keeps callers independent
of the concrete engine.
"""

from functools import lru_cache

from zenith.config import get_settings

from .base import StorageBackend
from .duckdb_storage import DuckDBStorage, StorageError


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
    "StorageBackend",
    "DuckDBStorage",
    "StorageError",
    "get_storage",
]
