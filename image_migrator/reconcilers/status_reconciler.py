"""Migrated vs pending counts per collection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable

from image_migrator.extractors.base import RecordStore
from image_migrator.parsers.reference_locator import (
    ArrayField,
    Collection,
    EmbeddedText,
    FlatField,
    SourceMatcher,
)


@dataclass
class CollectionStatus:
    """
    Aggregate migration state of one collection.

    Flat collections count records (``unit == "records"``); collections with
    slide arrays or embedded HTML count individual assets summed over all
    records (``unit == "assets"``).
    """

    collection: str
    unit: str
    records: int = 0
    total: int = 0
    migrated: int = 0
    pending: int = 0

    def to_dict(self) -> Dict[str, Any]:
        if self.unit == "records":
            return {
                "total": self.total,
                "sourceCount": self.pending,
                "targetCount": self.migrated,
                "migrated": self.migrated,
                "pending": self.pending,
            }
        return {
            "total": self.records,
            "totalAssets": self.total,
            "migratedAssets": self.migrated,
            "pendingAssets": self.pending,
            "pending": self.pending,
        }


def _count_value(status: CollectionStatus, value: Any, matcher: SourceMatcher) -> None:
    if matcher.is_source(value):
        status.pending += 1
    elif matcher.is_target(value):
        status.migrated += 1


def collection_status(store: RecordStore, collection: Collection, matcher: SourceMatcher) -> CollectionStatus:
    """Count source vs target references of ``collection`` with a fresh read."""
    records = store.fetch_records(collection.table, collection.fields)

    if collection.is_flat:
        status = CollectionStatus(collection.name, "records", records=len(records))
        for record in records:
            values = [record.get(s.field) for s in collection.schemas]
            if not any(values):
                continue
            status.total += 1
            if any(matcher.is_source(v) for v in values):
                status.pending += 1
            elif any(matcher.is_target(v) for v in values):
                status.migrated += 1
        return status

    status = CollectionStatus(collection.name, "assets", records=len(records))
    for record in records:
        for schema in collection.schemas:
            value = record.get(schema.field)
            if isinstance(schema, FlatField):
                _count_value(status, value, matcher)
            elif isinstance(schema, ArrayField) and isinstance(value, list):
                for item in value:
                    if isinstance(item, dict):
                        _count_value(status, item.get(schema.sub_field), matcher)
            elif isinstance(schema, EmbeddedText) and isinstance(value, str):
                status.pending += len(set(matcher.find_sources(value)))
                status.migrated += len(set(matcher.find_targets(value)))
    status.total = status.pending + status.migrated
    return status


def pending_assets(statuses: Iterable[CollectionStatus]) -> int:
    """Total still-pending references; cleanup must not delete while this is non-zero."""
    return sum(s.pending for s in statuses)
