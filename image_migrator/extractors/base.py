"""Interfaces for the record store and the source object store."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List


class PersistenceError(Exception):
    """A record update was rejected by the store."""
    pass


class StorageError(Exception):
    """Listing or deleting objects in the source store failed."""
    pass


@dataclass(frozen=True)
class StorageInventoryEntry:
    object_path: str
    size_bytes: int = 0


class RecordStore(ABC):
    """
    Opaque content database consumed by the migration jobs.

    Records are plain dicts keyed by column name; JSON columns come back
    already decoded.
    """

    @abstractmethod
    def fetch_records(self, table: str, fields: Iterable[str]) -> List[Dict[str, Any]]:
        """Return every record of ``table`` with the requested columns."""
        pass

    @abstractmethod
    def update_record(self, table: str, record_id: Any, changes: Dict[str, Any], *, id_field: str = "id") -> None:
        """
        Write ``changes`` to one record.

        Raises:
            PersistenceError: If the store rejects the update.
        """
        pass


class ObjectStorage(ABC):
    """The source object store whose files are being migrated away."""

    @abstractmethod
    def list_objects(self, bucket: str) -> List[StorageInventoryEntry]:
        """List every object physically present in ``bucket``."""
        pass

    @abstractmethod
    def remove_objects(self, bucket: str, paths: List[str]) -> List[str]:
        """Delete ``paths`` and return the ones the store confirmed."""
        pass

    @abstractmethod
    def public_url_prefix(self, bucket: str) -> str:
        """The URL prefix under which objects of ``bucket`` are served."""
        pass
