"""In-memory stand-ins for the record store, the bucket and the network."""

import copy
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import requests

from image_migrator.extractors.base import (
    ObjectStorage,
    PersistenceError,
    RecordStore,
    StorageError,
    StorageInventoryEntry,
)

SUPABASE_URL = "https://proj.supabase.co"
BUCKET = "article-images"
PREFIX = f"{SUPABASE_URL}/storage/v1/object/public/{BUCKET}/"


def src(name):
    return PREFIX + name


def cdn(name):
    return f"https://res.cloudinary.com/demo/image/upload/v1/{name}"


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class MemoryStore(RecordStore):
    def __init__(self, tables, fail_ids=()):
        self.tables = copy.deepcopy(tables)
        self.fail_ids = set(fail_ids)
        self.updates = []

    def fetch_records(self, table, fields):
        return [{f: copy.deepcopy(r.get(f)) for f in fields} for r in self.tables.get(table, [])]

    def update_record(self, table, record_id, changes, *, id_field="id"):
        if record_id in self.fail_ids:
            raise PersistenceError(f"row {record_id} is locked")
        for row in self.tables.get(table, []):
            if row.get(id_field) == record_id:
                row.update(copy.deepcopy(changes))
        self.updates.append((table, record_id, changes))

    def row(self, table, record_id):
        return next(r for r in self.tables[table] if r["id"] == record_id)


class FakeStorage(ObjectStorage):
    def __init__(self, objects, fail_paths=(), base_url=SUPABASE_URL):
        self.objects = dict(objects)
        self.base_url = base_url
        self.fail_paths = set(fail_paths)
        self.remove_calls = []

    def list_objects(self, bucket):
        return [StorageInventoryEntry(path, size) for path, size in sorted(self.objects.items())]

    def remove_objects(self, bucket, paths):
        self.remove_calls.append(list(paths))
        if self.fail_paths & set(paths):
            raise StorageError("bucket is read-only")
        removed = [p for p in paths if p in self.objects]
        for path in removed:
            del self.objects[path]
        return removed

    def public_url_prefix(self, bucket):
        return f"{self.base_url}/storage/v1/object/public/{bucket}/"


class FakeTransfer:
    """``(source_url, folder) -> cdn url``; optional per-URL failures and clock ticks."""

    def __init__(self, failures=None, clock=None, seconds_per_call=0.0):
        self.failures = failures or {}
        self.clock = clock
        self.seconds_per_call = seconds_per_call
        self.calls = []

    def __call__(self, source_url, folder):
        self.calls.append((source_url, folder))
        if self.clock is not None:
            self.clock.advance(self.seconds_per_call)
        failure = self.failures.get(source_url)
        if failure is not None:
            raise failure
        return cdn(source_url.rsplit("/", 1)[-1])


class FakeResponse:
    def __init__(self, status_code=200, *, json_data=None, content=b"", headers=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeHttp:
    """Mimics ``requests.get``/``requests.post``/``Session.request``, answering from queues."""

    def __init__(self, get=None, post=None, responses=None):
        self.get_responses = list(get or [])
        self.post_responses = list(post or [])
        self.responses = list(responses or [])
        self.calls = []

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        return self._next(self.get_responses)

    def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        return self._next(self.post_responses)

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self._next(self.responses)
