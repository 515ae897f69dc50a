"""
Supabase REST helpers for the image migration.

This module talks to the two Supabase HTTP surfaces the migration needs:
PostgREST (``/rest/v1``) to read and update content records, and the
Storage API (``/storage/v1``) to list and delete objects in the source
bucket.  Every call authenticates with the service role key, carries a
per-request timeout and goes through :func:`with_retries` so that 429 and
5xx answers are retried with exponential backoff.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import requests

from image_migrator.extractors.base import (
    ObjectStorage,
    PersistenceError,
    RecordStore,
    StorageError,
    StorageInventoryEntry,
)
from image_migrator.migrators.cloudinary_migrator import RetryPolicy, with_retries

logger = logging.getLogger(__name__)


class SupabaseClient(RecordStore, ObjectStorage):
    """
    Record store and object storage backed by one Supabase project.

    :param url: Project URL, e.g. ``https://abc.supabase.co``.
    :param service_role_key: Service role key (bypasses row level security).
    :param session: Optional :class:`requests.Session` (or compatible).
    :param timeout: Per-request timeout in seconds.
    :param page_size: Rows per PostgREST page and objects per storage list
        call.  Supabase caps both at 1000.
    """

    def __init__(
        self,
        url: str,
        service_role_key: str,
        *,
        session: Any = None,
        timeout: float = 10.0,
        page_size: int = 1000,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.service_role_key = service_role_key
        self.session = session or requests.Session()
        self.timeout = timeout
        self.page_size = page_size
        self.retry_policy = retry_policy or RetryPolicy()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        headers = self._headers(kwargs.pop("headers", None))

        def do_request() -> requests.Response:
            resp = self.session.request(
                method, f"{self.url}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
            resp.raise_for_status()
            return resp

        return with_retries(do_request, self.retry_policy)

    ###########################################################################
    # Records (PostgREST)
    ###########################################################################

    def fetch_records(self, table: str, fields: Iterable[str]) -> List[Dict[str, Any]]:
        fields = list(fields)
        records: List[Dict[str, Any]] = []
        offset = 0
        while True:
            resp = self._request(
                "GET",
                f"/rest/v1/{table}",
                params={
                    "select": ",".join(fields),
                    "order": f"{fields[0]}.asc",
                    "offset": offset,
                    "limit": self.page_size,
                },
            )
            page = resp.json() or []
            records.extend(page)
            if len(page) < self.page_size:
                break
            offset += self.page_size
        logger.debug("Fetched %d records from %s", len(records), table)
        return records

    def update_record(self, table: str, record_id: Any, changes: Dict[str, Any], *, id_field: str = "id") -> None:
        try:
            self._request(
                "PATCH",
                f"/rest/v1/{table}",
                params={id_field: f"eq.{record_id}"},
                json=changes,
                headers={"Content-Type": "application/json", "Prefer": "return=minimal"},
            )
        except requests.HTTPError as e:
            detail = e.response.text if e.response is not None else str(e)
            raise PersistenceError(f"Update of {table}/{record_id} rejected: {detail}") from e
        except requests.RequestException as e:
            raise PersistenceError(f"Update of {table}/{record_id} failed: {e}") from e

    ###########################################################################
    # Storage
    ###########################################################################

    def public_url_prefix(self, bucket: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/"

    def list_objects(self, bucket: str, prefix: str = "") -> List[StorageInventoryEntry]:
        """
        List every object under ``prefix``, descending into folders.

        The Storage API returns folders as entries without an ``id``; their
        contents are listed with a nested prefix.
        """
        entries: List[StorageInventoryEntry] = []
        offset = 0
        while True:
            try:
                resp = self._request(
                    "POST",
                    f"/storage/v1/object/list/{bucket}",
                    json={
                        "prefix": prefix,
                        "limit": self.page_size,
                        "offset": offset,
                        "sortBy": {"column": "name", "order": "asc"},
                    },
                    headers={"Content-Type": "application/json"},
                )
            except requests.RequestException as e:
                raise StorageError(f"Failed to list bucket '{bucket}' at '{prefix}': {e}") from e

            page = resp.json() or []
            for item in page:
                name = item.get("name")
                if not name:
                    continue
                path = f"{prefix}/{name}" if prefix else name
                if item.get("id") is None:
                    entries.extend(self.list_objects(bucket, path))
                    continue
                size = (item.get("metadata") or {}).get("size") or 0
                entries.append(StorageInventoryEntry(object_path=path, size_bytes=int(size)))
            if len(page) < self.page_size:
                break
            offset += self.page_size
        return entries

    def remove_objects(self, bucket: str, paths: List[str]) -> List[str]:
        if not paths:
            return []
        try:
            resp = self._request(
                "DELETE",
                f"/storage/v1/object/{bucket}",
                json={"prefixes": list(paths)},
                headers={"Content-Type": "application/json"},
            )
        except requests.RequestException as e:
            raise StorageError(f"Failed to delete {len(paths)} objects from '{bucket}': {e}") from e
        removed = resp.json() or []
        return [item.get("name") for item in removed if item.get("name")]
