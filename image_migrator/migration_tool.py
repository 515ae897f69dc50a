"""
High-level orchestration of the Supabase Storage → Cloudinary migration.

This module defines an :class:`ImageMigrationTool` class that ties together
the record store, the reference locator, the Cloudinary transfer, the batch
migrator and the reconcilers behind a single request handler.  A request is
a dictionary with a ``mode`` of ``status``, ``migrate`` or ``cleanup`` (plus
``type``, ``batchSize``, ``offset`` and ``dryRun`` where they apply) and the
response is always a dictionary carrying a ``success`` flag: failures are
reported in the body, never raised, so a polling caller only has to look at
that flag.

Configuration is supplied via a JSON file path or directly as a dictionary,
with environment variables filling anything missing.  The ``cloudinary``
section holds ``api_key``, ``api_secret`` and ``cloud_name`` (or a
``CLOUDINARY_URL``); the ``supabase`` section holds ``url``,
``service_role_key`` and ``bucket``; tuning lives under ``migration``.

At most one migration or cleanup job may run per collection at a time; the
tool does not lock.
"""

from __future__ import annotations

import json
import logging
import os
import time
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from image_migrator.extractors.base import ObjectStorage, RecordStore
from image_migrator.extractors.supabase_client import SupabaseClient
from image_migrator.migrators.batch_migrator import migrate_batch
from image_migrator.migrators.cloudinary_migrator import RateLimiter, RetryPolicy, transfer_asset
from image_migrator.parsers.reference_locator import (
    COLLECTIONS,
    DEFAULT_SOURCE_URL_PATTERN,
    DEFAULT_TARGET_URL_PATTERN,
    SourceMatcher,
    source_pattern_for,
)
from image_migrator.reconcilers.orphan_reclaimer import OrphanReclaimer
from image_migrator.reconcilers.status_reconciler import collection_status, pending_assets
from image_migrator.utils.deadline import Deadline
from image_migrator.utils.errors import set_report_dir
from image_migrator.utils.pre_flight_checks import ConfigurationError, parse_cloudinary_url, run_pre_flight_checks

logger = logging.getLogger(__name__)

MODES = ("status", "migrate", "cleanup")
DEFAULT_BATCH_SIZES = {"migrate": 2, "cleanup": 50}


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _fill(section: Dict[str, Any], key: str, env_name: str) -> None:
    # Empty values in the config file fall back to the environment
    if not section.get(key):
        section[key] = _env(env_name)


class ImageMigrationTool:
    """
    Encapsulates the configuration and collaborators needed to answer
    migration requests.  Stores and the transfer function can be injected;
    otherwise a :class:`SupabaseClient` and a Cloudinary
    :func:`transfer_asset` partial are built from the configuration.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        *,
        config_file: Optional[str] = None,
        store: Optional[RecordStore] = None,
        storage: Optional[ObjectStorage] = None,
        transfer: Optional[Callable[[str, str], str]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config_file and os.path.exists(config_file):
            with open(config_file, "r", encoding="utf-8") as f:
                config = json.load(f)
        elif config is None:
            # Default configuration
            config = {}

        # Ensure essential keys exist to prevent KeyErrors
        cloudinary = config.setdefault("cloudinary", {})
        _fill(cloudinary, "api_key", "CLOUDINARY_API_KEY")
        _fill(cloudinary, "api_secret", "CLOUDINARY_API_SECRET")
        _fill(cloudinary, "cloud_name", "CLOUDINARY_CLOUD_NAME")
        if not all(cloudinary.get(k) for k in ("api_key", "api_secret", "cloud_name")):
            parsed = parse_cloudinary_url(cloudinary.get("url") or _env("CLOUDINARY_URL"))
            if parsed:
                cloudinary["api_key"], cloudinary["api_secret"], cloudinary["cloud_name"] = parsed

        supabase = config.setdefault("supabase", {})
        _fill(supabase, "url", "SUPABASE_URL")
        _fill(supabase, "service_role_key", "SUPABASE_SERVICE_ROLE_KEY")
        _fill(supabase, "bucket", "SUPABASE_BUCKET")
        supabase["bucket"] = supabase["bucket"] or "article-images"

        migration = config.setdefault("migration", {})
        migration.setdefault("max_execution_seconds", 35)
        migration.setdefault("cleanup_max_execution_seconds", 40)
        migration.setdefault("request_timeout", 10)
        migration.setdefault("rate_limit_rpm", 180)
        migration.setdefault("sample_size", 10)
        migration.setdefault("poll_interval_seconds", 1.0)
        # References are recognized under the configured project URL when one is set
        migration.setdefault(
            "source_url_pattern",
            source_pattern_for(supabase["url"]) if supabase["url"] else DEFAULT_SOURCE_URL_PATTERN,
        )
        migration.setdefault("target_url_pattern", DEFAULT_TARGET_URL_PATTERN)
        migration.setdefault("reports_dir", os.path.join("reports", "migration"))
        migration.setdefault("url_map_file", os.path.join("reports", "url_map.csv"))
        retry = migration.setdefault("retry", {})
        retry.setdefault("max_attempts", 3)
        retry.setdefault("base_delay", 0.7)

        self.config = config
        self.clock = clock
        self.matcher = SourceMatcher(migration["source_url_pattern"], migration["target_url_pattern"])
        self.retry_policy = RetryPolicy(max_attempts=int(retry["max_attempts"]), base_delay=float(retry["base_delay"]))
        self._store = store
        self._storage = storage
        # A record store injected without its bucket is an offline copy
        self._offline_records = store is not None and storage is None and not isinstance(store, ObjectStorage)
        self._transfer = transfer
        set_report_dir(migration["reports_dir"])

    def log_message(self, message: str, level: str = "INFO") -> None:
        logger.log(logging.getLevelName(level), message)
        # Append to log file
        reports_dir = self.config["migration"]["reports_dir"]
        os.makedirs(reports_dir, exist_ok=True)
        with open(os.path.join(reports_dir, "migration.log"), "a", encoding="utf-8") as f:
            f.write(f"{level}: {message}\n")

    ###########################################################################
    # Collaborators
    ###########################################################################

    def _supabase(self) -> SupabaseClient:
        supabase = self.config["supabase"]
        return SupabaseClient(
            supabase["url"],
            supabase["service_role_key"],
            timeout=float(self.config["migration"]["request_timeout"]),
            retry_policy=self.retry_policy,
        )

    @property
    def store(self) -> RecordStore:
        if self._store is None:
            self._store = self._supabase()
        return self._store

    @property
    def storage(self) -> ObjectStorage:
        if self._storage is None:
            store = self.store
            self._storage = store if isinstance(store, ObjectStorage) else self._supabase()
        return self._storage

    @property
    def transfer(self) -> Callable[[str, str], str]:
        if self._transfer is None:
            migration = self.config["migration"]
            self._transfer = partial(
                transfer_asset,
                self.config["cloudinary"],
                limiter=RateLimiter(int(migration["rate_limit_rpm"])),
                timeout=float(migration["request_timeout"]),
            )
        return self._transfer

    def reclaimer(self) -> OrphanReclaimer:
        return OrphanReclaimer(
            self.store,
            self.storage,
            COLLECTIONS.values(),
            self.matcher,
            bucket=self.config["supabase"]["bucket"],
        )

    ###########################################################################
    # Request handling
    ###########################################################################

    def handle(self, request: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Answer one invocation.  Never raises: configuration errors and any
        unexpected exception become ``{"success": False, "error": ...}``.
        """
        request = request or {}
        mode = request.get("mode", "status")
        budget_key = "cleanup_max_execution_seconds" if mode == "cleanup" else "max_execution_seconds"
        deadline = Deadline(float(self.config["migration"][budget_key]), clock=self.clock)

        try:
            if mode not in MODES:
                return {"success": False, "error": f"Invalid mode '{mode}'. Use one of: {', '.join(MODES)}"}
            run_pre_flight_checks(self.config, require_cloudinary=mode != "cleanup")

            if mode == "status":
                return self.status()
            if mode == "migrate":
                return self.migrate(
                    request.get("type", "articles"),
                    batch_size=int(request.get("batchSize", DEFAULT_BATCH_SIZES["migrate"])),
                    offset=int(request.get("offset", 0)),
                    deadline=deadline,
                )
            return self.cleanup(
                dry_run=bool(request.get("dryRun", True)),
                batch_size=int(request.get("batchSize", DEFAULT_BATCH_SIZES["cleanup"])),
                deadline=deadline,
            )

        except ConfigurationError as e:
            self.log_message(f"Configuration error: {e}", "ERROR")
            return {"success": False, "error": str(e), "elapsedTime": deadline.elapsed_ms}
        except Exception as e:
            self.log_message(f"Migration error: {e}", "ERROR")
            logger.debug("Unhandled error in %s mode", mode, exc_info=True)
            return {"success": False, "error": str(e), "elapsedTime": deadline.elapsed_ms}

    def status(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {"success": True}
        statuses = []
        for name, collection in COLLECTIONS.items():
            status = collection_status(self.store, collection, self.matcher)
            statuses.append(status)
            response[name] = status.to_dict()
        response["pendingTotal"] = pending_assets(statuses)
        return response

    def migrate(self, type_: str, *, batch_size: int, offset: int, deadline: Deadline) -> Dict[str, Any]:
        collection = COLLECTIONS.get(type_)
        if collection is None:
            return {"success": False, "error": f"Invalid type '{type_}'. Use one of: {', '.join(COLLECTIONS)}"}

        self.log_message(f"Migrating {collection.name} batch: offset={offset}, size={batch_size}")
        result = migrate_batch(
            self.store,
            collection,
            self.transfer,
            self.matcher,
            batch_size=batch_size,
            offset=offset,
            deadline=deadline,
            retry_policy=self.retry_policy,
            url_map_path=self.config["migration"]["url_map_file"],
        )
        return result.to_response()

    def cleanup(self, *, dry_run: bool, batch_size: int, deadline: Deadline) -> Dict[str, Any]:
        if self._offline_records:
            return {
                "success": False,
                "error": "Cleanup needs the live record store; references from an offline copy may be stale",
                "elapsedTime": deadline.elapsed_ms,
            }
        reclaimer = self.reclaimer()
        sample_size = int(self.config["migration"]["sample_size"])
        if dry_run:
            return reclaimer.delete_orphans(dry_run=True, batch_size=batch_size, sample_size=sample_size)

        # A pending record still points at its source object; deleting now
        # would break it.
        pending = pending_assets(collection_status(self.store, c, self.matcher) for c in COLLECTIONS.values())
        if pending > 0:
            return {
                "success": False,
                "error": f"Refusing to delete: {pending} references are still pending migration",
                "elapsedTime": deadline.elapsed_ms,
            }

        self.log_message(f"Starting cleanup of {self.config['supabase']['bucket']} bucket")
        return reclaimer.delete_orphans(dry_run=False, batch_size=batch_size, deadline=deadline)

    def run_until_done(
        self,
        type_: str,
        *,
        batch_size: int = DEFAULT_BATCH_SIZES["migrate"],
        max_calls: Optional[int] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Poll ``migrate`` until the collection is done.

        Stops when ``remaining`` reaches zero, when two consecutive calls
        migrate nothing (permanently failing assets), on a failed call, or
        after ``max_calls`` invocations.  Each call starts at the
        ``nextOffset`` of the previous one so failing records are skipped.
        """
        offset = 0
        calls = 0
        idle = 0
        migrated = 0
        failed = 0
        results: List[Dict[str, Any]] = []
        last: Dict[str, Any] = {}
        pause = float(self.config["migration"]["poll_interval_seconds"])

        while max_calls is None or calls < max_calls:
            last = self.handle({"mode": "migrate", "type": type_, "batchSize": batch_size, "offset": offset})
            calls += 1
            if not last.get("success"):
                break
            migrated += last.get("migrated", 0)
            failed += last.get("errors", 0)
            results.extend(last.get("results", []))
            if on_progress:
                on_progress({"current": migrated, "remaining": last.get("remaining", 0), "call": calls})
            if last.get("remaining", 0) == 0:
                break
            idle = idle + 1 if last.get("migrated", 0) == 0 else 0
            if idle >= 2:
                break
            offset = last.get("nextOffset", offset)
            sleep_fn(pause)

        return {
            "success": bool(last.get("success")),
            "calls": calls,
            "migrated": migrated,
            "errors": failed,
            "remaining": last.get("remaining"),
            "results": results,
            "error": last.get("error"),
        }
