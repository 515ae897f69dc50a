"""
Batch migration of one record collection from Supabase Storage to Cloudinary.

:func:`migrate_batch` is one resumable step of the migration.  It re-reads
the collection, keeps the records that still reference the source store,
takes up to ``batch_size`` of them starting at ``offset`` and, record by
record, transfers each referenced image and rewrites that reference.  Each
record is written back as soon as it is done so that an invocation killed
by the platform never leaves a half-written record behind, and the wall
clock :class:`~image_migrator.utils.deadline.Deadline` is checked before
every record and every asset so the step returns partial results instead.

Per item the flow is ``pending -> transferring -> (rewriting -> persisted)
| failed``.  Transfer and persistence failures are isolated to the item.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from image_migrator.extractors.base import PersistenceError, RecordStore
from image_migrator.migrators.cloudinary_migrator import (
    FetchFailed,
    RetryPolicy,
    TransferFailed,
    with_retries,
)
from image_migrator.parsers.reference_locator import (
    FLAT_FIELD,
    Collection,
    SourceMatcher,
    apply_rewrite,
    locate,
)
from image_migrator.utils.deadline import Deadline
from image_migrator.utils.errors import report_error, report_ok
from image_migrator.utils.url_map import append_url_map_csv

logger = logging.getLogger(__name__)

# (source_url, folder) -> target_url
Transfer = Callable[[str, str], str]


@dataclass
class PerItemResult:
    record_id: Any
    title: Optional[str]
    status: str
    new_url: Optional[str] = None
    error_message: Optional[str] = None
    assets_updated_count: Optional[int] = None
    # set when the budget ran out before every asset of the record was tried
    interrupted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.record_id, "title": self.title, "status": self.status}
        if self.new_url is not None:
            data["newUrl"] = self.new_url
        if self.assets_updated_count is not None:
            data["imagesUpdated"] = self.assets_updated_count
        if self.error_message is not None:
            data["error"] = self.error_message
        return data


@dataclass
class MigrationBatchResult:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    remaining: int = 0
    next_offset: int = 0
    results: List[PerItemResult] = field(default_factory=list)
    elapsed_ms: int = 0
    budget_exhausted: bool = False

    def to_response(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {
            "success": True,
            "migrated": self.succeeded,
            "errors": self.failed,
            "remaining": self.remaining,
            "nextOffset": self.next_offset,
            "results": [r.to_dict() for r in self.results],
            "elapsedTime": self.elapsed_ms,
        }
        if self.budget_exhausted:
            response["partial"] = True
        if self.attempted == 0 and self.remaining == 0:
            response["message"] = "No more records to migrate"
        return response


def records_with_source_references(
    store: RecordStore, collection: Collection, matcher: SourceMatcher
) -> List[Dict[str, Any]]:
    """Fresh read of the records that still hold at least one source URL."""
    records = store.fetch_records(collection.table, collection.fields)
    return [r for r in records if locate(r, collection, matcher)]


def migrate_record(
    store: RecordStore,
    collection: Collection,
    record: Dict[str, Any],
    transfer: Transfer,
    matcher: SourceMatcher,
    *,
    deadline: Deadline,
    retry_policy: Optional[RetryPolicy] = None,
    url_map_path: Optional[str] = None,
) -> Optional[PerItemResult]:
    """
    Migrate every source reference of one record and persist it.

    :return: The item's outcome, or ``None`` when the budget ran out before
        the first asset was started (the record counts as not attempted).
    """
    record_id = record.get(collection.id_field)
    title = record.get(collection.label_field)
    subject = {"id": record_id, "title": title}

    refs = locate(record, collection, matcher)
    working = copy.deepcopy(record)
    updated = 0
    started = False
    errors: List[str] = []
    mapped: List[Dict[str, str]] = []
    single_new_url: Optional[str] = None
    interrupted = False

    for ref in refs:
        if deadline.expired():
            logger.info("Budget exhausted inside '%s', saving partial progress", title)
            interrupted = True
            break
        started = True
        try:
            new_url = with_retries(
                lambda: transfer(ref.source_url, collection.folder), retry_policy, deadline=deadline
            )
        except FetchFailed as e:
            errors.append(str(e))
            report_error("FETCH_FAILED", subject, e)
            continue
        except TransferFailed as e:
            errors.append(str(e))
            report_error("TRANSFER_FAILED", subject, e)
            continue

        if apply_rewrite(working, ref, new_url, matcher):
            updated += 1
            if ref.location_kind == FLAT_FIELD:
                single_new_url = new_url
            mapped.append(
                {"OldURL": ref.source_url, "NewURL": new_url, "Collection": collection.name, "RecordId": str(record_id)}
            )
            report_ok("ASSET_MIGRATED", subject, {"path": list(ref.path), "url": new_url})

    if not started:
        return None

    if updated == 0:
        message = errors[0] if errors else "No asset could be rewritten"
        report_error("NO_ASSETS_MIGRATED", subject)
        return PerItemResult(
            record_id, title, "error", error_message=message, assets_updated_count=0, interrupted=interrupted
        )

    changed_fields = {schema.field for schema in collection.schemas}
    changes = {f: working.get(f) for f in changed_fields if working.get(f) != record.get(f)}
    try:
        store.update_record(collection.table, record_id, changes, id_field=collection.id_field)
    except PersistenceError as e:
        report_error("PERSIST_FAILED", subject, e)
        return PerItemResult(
            record_id, title, "error", error_message=str(e), assets_updated_count=0, interrupted=interrupted
        )

    if url_map_path:
        append_url_map_csv(mapped, out_path=url_map_path)
    report_ok("RECORD_MIGRATED", subject, {"assets": updated, "failedAssets": len(errors)})

    result = PerItemResult(
        record_id,
        title,
        "success",
        new_url=single_new_url if len(refs) == 1 else None,
        assets_updated_count=updated,
        interrupted=interrupted,
    )
    if errors:
        result.error_message = "; ".join(errors)
    return result


def migrate_batch(
    store: RecordStore,
    collection: Collection,
    transfer: Transfer,
    matcher: Optional[SourceMatcher] = None,
    *,
    batch_size: int = 2,
    offset: int = 0,
    deadline: Optional[Deadline] = None,
    retry_policy: Optional[RetryPolicy] = None,
    url_map_path: Optional[str] = None,
) -> MigrationBatchResult:
    """
    Run one bounded migration step over ``collection``.

    The "still has a source reference" predicate is derived from the record
    contents, so the candidate list is recomputed on every call and
    ``offset`` pages over that fresh list.  ``remaining`` is recounted with a
    full scan after the batch.  ``next_offset`` skips the records of this
    batch that still hold source references (failed assets), so a caller
    looping on it does not keep hitting the same permanently failing items.  A
    record cut short by the budget is not skipped; ``offset`` is clamped at 0.

    :param transfer: ``(source_url, folder) -> target_url``; usually a
        partial of :func:`~image_migrator.migrators.cloudinary_migrator.transfer_asset`.
    :param deadline: Execution budget; defaults to 35 seconds from now.
    """
    matcher = matcher or SourceMatcher()
    deadline = deadline or Deadline(35.0)
    offset = max(0, offset)
    result = MigrationBatchResult(next_offset=offset)

    candidates = records_with_source_references(store, collection, matcher)
    batch = candidates[offset: offset + max(0, batch_size)]
    logger.info(
        "Migrating %s batch: offset=%d, size=%d, candidates=%d", collection.name, offset, batch_size, len(candidates)
    )

    for record in batch:
        if deadline.expired():
            logger.info("Approaching timeout (%dms), stopping early with partial results", deadline.elapsed_ms)
            result.budget_exhausted = True
            break

        item = migrate_record(
            store,
            collection,
            record,
            transfer,
            matcher,
            deadline=deadline,
            retry_policy=retry_policy,
            url_map_path=url_map_path,
        )
        if item is None:
            result.budget_exhausted = True
            break

        result.attempted += 1
        result.results.append(item)
        if item.status == "success":
            result.succeeded += 1
        else:
            result.failed += 1
        if item.interrupted:
            result.budget_exhausted = True
            break

    still_pending = records_with_source_references(store, collection, matcher)
    pending_ids = {r.get(collection.id_field) for r in still_pending}
    # records cut short by the budget are resumed, not skipped
    retained = sum(1 for item in result.results if item.record_id in pending_ids and not item.interrupted)
    result.remaining = len(still_pending)
    result.next_offset = offset + retained
    result.elapsed_ms = deadline.elapsed_ms
    logger.info(
        "Batch done: %d migrated, %d errors, %d remaining", result.succeeded, result.failed, result.remaining
    )
    return result
