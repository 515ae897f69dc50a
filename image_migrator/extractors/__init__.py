"""
Access to the record store and the source object store.

* :mod:`image_migrator.extractors.base` – store interfaces and errors
* :mod:`image_migrator.extractors.supabase_client` – Supabase REST client
* :mod:`image_migrator.extractors.duckdb_store` – local DuckDB copy

``duckdb_store`` is not imported here so the Supabase path does not require
DuckDB or pandas to be installed.
"""

from .base import (
    ObjectStorage,
    PersistenceError,
    RecordStore,
    StorageError,
    StorageInventoryEntry,
)
from .supabase_client import SupabaseClient

__all__ = [
    "ObjectStorage",
    "PersistenceError",
    "RecordStore",
    "StorageError",
    "StorageInventoryEntry",
    "SupabaseClient",
]
