"""
Structured logging helpers for migration errors and successes.

The :mod:`image_migrator.utils.errors` module centralizes the writing of log
entries for both failed and successful operations during a migration or
cleanup run.  Each entry is appended to a JSON Lines file under
``reports/migration`` so that the information can be reviewed or parsed
after a run.

Two public functions are provided:

``report_error``
    Record an error that occurred for a record or a storage object.  An
    optional exception can be supplied and will be serialized to the log.

``report_ok``
    Record a successful step.  Additional key/value information can be
    attached to the entry via the ``extra`` parameter.

The ``ERRORS`` dictionary maps error or event codes to human readable
messages.  Codes not present in the dictionary fall back to the code itself.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Mapping of event codes used throughout the migration to descriptive messages.
# The keys include both error and success codes as the same lookup is used by
# :func:`report_error` and :func:`report_ok`.
ERRORS: Dict[str, str] = {
    "FETCH_FAILED": "Failed to download asset from the source store",
    "TRANSFER_FAILED": "Failed to upload asset to Cloudinary",
    "PERSIST_FAILED": "Failed to write migrated record back to the store",
    "NO_ASSETS_MIGRATED": "No asset of the record could be transferred",
    "ASSET_MIGRATED": "Asset transferred to Cloudinary",
    "RECORD_MIGRATED": "Record updated with Cloudinary URLs",
    "ORPHAN_DELETED": "Unreferenced storage object deleted",
    "ORPHAN_DELETE_FAILED": "Failed to delete unreferenced storage object",
}

_REPORT_DIR = os.path.join("reports", "migration")


def set_report_dir(path: str) -> None:
    """Redirect the JSON Lines reports to ``path``."""
    global _REPORT_DIR
    _REPORT_DIR = path


def get_report_dir() -> str:
    return _REPORT_DIR


def _write_jsonl(name: str, data: Dict[str, Any]) -> None:
    """Append ``data`` as a JSON object followed by a newline to ``name``."""
    os.makedirs(_REPORT_DIR, exist_ok=True)
    with open(os.path.join(_REPORT_DIR, name), "a", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, default=str)
        f.write("\n")


def _entry(code: str, subject: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "code": code,
        "message": ERRORS.get(code, code),
        "id": subject.get("id"),
        "title": subject.get("title"),
    }


def report_error(code: str, subject: Dict[str, Any], exc: Optional[BaseException] = None) -> None:
    """Log an error event for ``subject``.

    Parameters
    ----------
    code:
        A key identifying the type of error.  If ``code`` is present in
        :data:`ERRORS` its value will be used as the message.
    subject:
        The record (or storage entry) associated with the error.  Only the
        ``id`` and ``title`` keys are referenced if present.
    exc:
        Optional exception instance that triggered the error.  The string
        representation of the exception will be included in the log entry.
    """
    entry = _entry(code, subject)
    if exc is not None:
        entry["error"] = str(exc)
    logger.error("%s - %s", entry["message"], subject.get("title") or subject.get("id") or "")
    _write_jsonl("errors.jsonl", entry)


def report_ok(code: str, subject: Dict[str, Any], extra: Optional[Dict[str, Any]] = None) -> None:
    """Log a successful event for ``subject``.

    Parameters
    ----------
    code:
        A key identifying the type of event.
    subject:
        The record (or storage entry) associated with the event.
    extra:
        Optional dictionary of additional fields to merge into the log entry.
    """
    entry = _entry(code, subject)
    if extra:
        entry.update(extra)
    logger.info("%s - %s", entry["message"], subject.get("title") or subject.get("id") or "")
    _write_jsonl("success.jsonl", entry)
