"""
Detection and deletion of unreferenced objects in the source bucket.

The reclaimer lists every object physically present in the bucket and every
source reference still live in every record of every collection (through
:func:`~image_migrator.parsers.reference_locator.locate`), and treats an
object with zero references as an orphan.  Both sides are read fresh on
each call; nothing is cached between invocations.

Deletion cannot be undone.  :meth:`OrphanReclaimer.delete_orphans` is a dry
run unless ``dry_run=False`` is passed explicitly, and the caller is
expected to refuse real deletion while any collection still reports pending
references (see :func:`~image_migrator.reconcilers.status_reconciler.pending_assets`).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set
from urllib.parse import unquote

from image_migrator.extractors.base import ObjectStorage, RecordStore, StorageError, StorageInventoryEntry
from image_migrator.parsers.reference_locator import Collection, SourceMatcher, locate, prefix_pattern
from image_migrator.utils.deadline import Deadline
from image_migrator.utils.errors import report_error, report_ok

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def _object_url_re(public_prefix: str) -> "re.Pattern[str]":
    return re.compile(prefix_pattern(public_prefix) + r"([^\"'\s<>)]*)")


def _paths(tail: str) -> Set[str]:
    path = tail.split("?", 1)[0].split("#", 1)[0]
    if not path:
        return set()
    return {path, unquote(path)}


def object_paths_for(url: str, public_prefix: str) -> Set[str]:
    """
    Bucket object paths a public URL may point at.

    Query strings and fragments are dropped and the percent-decoded form is
    included as well, so a reference is never missed because of encoding.
    The scheme and host of the prefix match case-insensitively.
    """
    match = _object_url_re(public_prefix).match(url)
    if not match:
        return set()
    return _paths(match.group(1))


def _field_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _mb(size: int) -> str:
    return f"{size / _MB:.2f}"


class OrphanReclaimer:

    def __init__(
        self,
        store: RecordStore,
        storage: ObjectStorage,
        collections: Iterable[Collection],
        matcher: Optional[SourceMatcher] = None,
        *,
        bucket: str = "article-images",
    ) -> None:
        self.store = store
        self.storage = storage
        self.collections = list(collections)
        self.matcher = matcher or SourceMatcher()
        self.bucket = bucket

    def referenced_paths(self) -> Set[str]:
        """
        Object paths referenced by any record of any collection.

        Besides the located source references, every occurrence of the
        bucket's public prefix in any scanned column protects its object,
        whether or not the source URL pattern recognizes it.
        """
        prefix = self.storage.public_url_prefix(self.bucket)
        url_re = _object_url_re(prefix)
        referenced: Set[str] = set()
        for collection in self.collections:
            fields = {schema.field for schema in collection.schemas}
            for record in self.store.fetch_records(collection.table, collection.fields):
                for ref in locate(record, collection, self.matcher):
                    referenced |= object_paths_for(ref.source_url, prefix)
                for field in fields:
                    text = _field_text(record.get(field))
                    if not text:
                        continue
                    for match in url_re.finditer(text):
                        referenced |= _paths(match.group(1))
        return referenced

    def classify(self) -> Dict[str, Any]:
        inventory = self.storage.list_objects(self.bucket)
        referenced = self.referenced_paths()
        orphans = [e for e in inventory if e.object_path not in referenced]
        return {"inventory": inventory, "referenced": referenced, "orphans": orphans}

    def list_orphans(self) -> List[StorageInventoryEntry]:
        return self.classify()["orphans"]

    def report(self, sample_size: int = 10) -> Dict[str, Any]:
        """Storage usage and what a cleanup would remove; nothing is deleted."""
        classified = self.classify()
        inventory: List[StorageInventoryEntry] = classified["inventory"]
        orphans: List[StorageInventoryEntry] = classified["orphans"]
        present = {e.object_path for e in inventory}

        total_size = sum(e.size_bytes for e in inventory)
        orphan_size = sum(e.size_bytes for e in orphans)
        return {
            "success": True,
            "bucket": self.bucket,
            "totalFiles": len(inventory),
            "totalSizeMB": _mb(total_size),
            "referencedFiles": len(present & classified["referenced"]),
            "unreferencedFiles": len(orphans),
            "unreferencedSizeMB": _mb(orphan_size),
            "potentialSavingsMB": _mb(orphan_size),
            "sampleUnreferencedFiles": [e.object_path for e in orphans[: max(0, sample_size)]],
        }

    def delete_orphans(
        self,
        *,
        dry_run: bool = True,
        batch_size: int = 50,
        deadline: Optional[Deadline] = None,
        sample_size: int = 10,
        chunk_size: int = 10,
    ) -> Dict[str, Any]:
        """
        Delete up to ``batch_size`` orphans, in sub-batches.

        With ``dry_run`` (the default) the full classification is returned
        together with ``wouldDelete`` and nothing is removed.  Otherwise the
        budget is checked before each sub-batch, failures of one sub-batch
        are recorded and do not stop the next, and the bucket is re-listed at
        the end to compute ``remainingUnreferenced``.
        """
        deadline = deadline or Deadline(40.0)

        if dry_run:
            report = self.report(sample_size)
            report["dryRun"] = True
            report["wouldDelete"] = min(report["unreferencedFiles"], max(0, batch_size))
            report["message"] = "Set dryRun=false to actually delete files"
            return report

        classified = self.classify()
        referenced: Set[str] = classified["referenced"]
        candidates = [e.object_path for e in classified["orphans"]][: max(0, batch_size)]
        logger.info("Cleaning up %s: %d candidates", self.bucket, len(candidates))

        chunk = max(1, min(batch_size, chunk_size))
        deleted = 0
        errors: List[str] = []
        for start in range(0, len(candidates), chunk):
            if deadline.expired():
                logger.info("Timeout approaching, stopping deletion")
                break
            paths = candidates[start: start + chunk]
            try:
                removed = self.storage.remove_objects(self.bucket, paths)
            except StorageError as e:
                errors.extend(paths)
                for path in paths:
                    report_error("ORPHAN_DELETE_FAILED", {"id": path}, e)
                continue
            removed_set = set(removed)
            for path in paths:
                if path in removed_set:
                    deleted += 1
                    report_ok("ORPHAN_DELETED", {"id": path})
                else:
                    errors.append(path)
                    report_error("ORPHAN_DELETE_FAILED", {"id": path})

        remaining = [e for e in self.storage.list_objects(self.bucket) if e.object_path not in referenced]
        response: Dict[str, Any] = {
            "success": True,
            "deletedCount": deleted,
            "remainingUnreferenced": len(remaining),
            "elapsedTime": deadline.elapsed_ms,
        }
        if errors:
            response["errors"] = errors
        return response
