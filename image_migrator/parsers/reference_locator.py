"""
Discovery and rewriting of source-store image references inside records.

A record collection is described by a :class:`Collection` holding one or
more schemas, each a variant of ``CollectionSchema``:

* :class:`FlatField` – a single column that holds zero or one URL
  (``articles.image_url``).
* :class:`ArrayField` – a JSON array column whose elements may hold a URL in
  a named sub-field (``web_stories.slides[i].image``).
* :class:`EmbeddedText` – a freeform HTML/text column that may contain any
  number of URLs (``articles.content``).

:func:`locate` turns a record into a list of :class:`AssetReference` values
without mutating it, and :func:`apply_rewrite` swaps exactly one reference
for its new URL on a working copy.  The batch migrator, the status
reconciler and the orphan reclaimer all consume these two functions, so a
new record shape means a new schema variant here and nothing else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

FLAT_FIELD = "flat-field"
ARRAY_ELEMENT_FIELD = "array-element-field"
EMBEDDED_IN_TEXT = "embedded-in-text"

DEFAULT_SOURCE_URL_PATTERN = r"(?i:https?)://[^\"'\s<>]+supabase\.co/storage/v1/object/public/[^\"'\s<>)]+"
DEFAULT_TARGET_URL_PATTERN = r"https://res\.cloudinary\.com/[^\"'\s<>)]+"

_URL_CHARS = r"[^\"'\s<>)]"


def prefix_pattern(url_prefix: str) -> str:
    """
    Regex for ``url_prefix`` itself.

    Scheme (``http`` or ``https``) and host match case-insensitively; the
    path part of the prefix must match exactly.
    """
    _, sep, rest = url_prefix.partition("://")
    if not sep:
        rest = url_prefix
    host, slash, path = rest.partition("/")
    return r"(?i:https?://" + re.escape(host) + ")" + re.escape(slash + path)


def source_pattern_for(supabase_url: str) -> str:
    """Source URL pattern for the public objects of one Supabase project."""
    return prefix_pattern(supabase_url.rstrip("/") + "/storage/v1/object/public/") + _URL_CHARS + "+"


@dataclass(frozen=True)
class FlatField:
    field: str


@dataclass(frozen=True)
class ArrayField:
    field: str
    sub_field: str


@dataclass(frozen=True)
class EmbeddedText:
    field: str


CollectionSchema = Union[FlatField, ArrayField, EmbeddedText]


@dataclass(frozen=True)
class Collection:
    """A migration type: which table to read, which shapes to scan, where to upload."""

    name: str
    table: str
    folder: str
    schemas: Tuple[CollectionSchema, ...]
    id_field: str = "id"
    label_field: str = "title"

    @property
    def fields(self) -> List[str]:
        """Columns to select from the store, in a stable order."""
        cols = [self.id_field, self.label_field]
        for schema in self.schemas:
            if schema.field not in cols:
                cols.append(schema.field)
        return cols

    @property
    def is_flat(self) -> bool:
        return all(isinstance(s, FlatField) for s in self.schemas)


COLLECTIONS: Dict[str, Collection] = {
    "articles": Collection("articles", "articles", "articles", (FlatField("image_url"),)),
    "webstories": Collection(
        "webstories",
        "web_stories",
        "web-stories",
        (FlatField("featured_image"), ArrayField("slides", "image")),
    ),
    "content": Collection("content", "articles", "content", (EmbeddedText("content"),)),
}


@dataclass(frozen=True)
class AssetReference:
    record_id: Any
    collection: str
    location_kind: str
    source_url: str
    path: Tuple[Any, ...]


class SourceMatcher:
    """Recognizes source-store and target-store URLs."""

    def __init__(
        self,
        source_pattern: str = DEFAULT_SOURCE_URL_PATTERN,
        target_pattern: str = DEFAULT_TARGET_URL_PATTERN,
    ) -> None:
        self.source_re = re.compile(source_pattern)
        self.target_re = re.compile(target_pattern)

    def is_source(self, value: Any) -> bool:
        return isinstance(value, str) and self.source_re.search(value) is not None

    def is_target(self, value: Any) -> bool:
        return isinstance(value, str) and self.target_re.search(value) is not None

    def find_sources(self, text: str) -> List[str]:
        """Every literal source URL occurrence in ``text``, in order."""
        return [m.group(0) for m in self.source_re.finditer(text)]

    def find_targets(self, text: str) -> List[str]:
        return [m.group(0) for m in self.target_re.finditer(text)]


def locate(record: Dict[str, Any], collection: Collection, matcher: SourceMatcher) -> List[AssetReference]:
    """
    Find every source-store reference in ``record``.

    Embedded text yields one reference per distinct literal match: identical
    occurrences collapse into one, while occurrences that differ in any
    character (a query string, say) are reported separately.  The literal is
    kept verbatim so it can serve as the exact find-target of the rewrite.
    """
    refs: List[AssetReference] = []
    record_id = record.get(collection.id_field)

    for schema in collection.schemas:
        if isinstance(schema, FlatField):
            value = record.get(schema.field)
            if matcher.is_source(value):
                refs.append(AssetReference(record_id, collection.name, FLAT_FIELD, value, (schema.field,)))

        elif isinstance(schema, ArrayField):
            items = record.get(schema.field)
            if not isinstance(items, list):
                continue
            for index, item in enumerate(items):
                if isinstance(item, dict) and matcher.is_source(item.get(schema.sub_field)):
                    refs.append(
                        AssetReference(
                            record_id,
                            collection.name,
                            ARRAY_ELEMENT_FIELD,
                            item[schema.sub_field],
                            (schema.field, index, schema.sub_field),
                        )
                    )

        elif isinstance(schema, EmbeddedText):
            text = record.get(schema.field)
            if not isinstance(text, str):
                continue
            seen = set()
            for literal in matcher.find_sources(text):
                if literal in seen:
                    continue
                seen.add(literal)
                refs.append(AssetReference(record_id, collection.name, EMBEDDED_IN_TEXT, literal, (schema.field,)))

        else:
            raise TypeError(f"Unknown collection schema: {schema!r}")

    return refs


def apply_rewrite(
    record: Dict[str, Any], ref: AssetReference, new_url: str, matcher: Optional[SourceMatcher] = None
) -> bool:
    """
    Replace the single reference ``ref`` with ``new_url`` inside ``record``.

    ``record`` is modified in place and is expected to be the caller's
    working copy.  Array elements are replaced by a new dict so sibling
    elements and the array order are left untouched.  For embedded text only
    whole matches equal to the literal are replaced, never a prefix of a
    longer URL.

    :return: ``True`` if the reference was found and rewritten.
    """
    field = ref.path[0]

    if ref.location_kind == FLAT_FIELD:
        if record.get(field) != ref.source_url:
            return False
        record[field] = new_url
        return True

    if ref.location_kind == ARRAY_ELEMENT_FIELD:
        _, index, sub_field = ref.path
        items = record.get(field)
        if not isinstance(items, list) or index >= len(items):
            return False
        item = items[index]
        if not isinstance(item, dict) or item.get(sub_field) != ref.source_url:
            return False
        items[index] = {**item, sub_field: new_url}
        return True

    if ref.location_kind == EMBEDDED_IN_TEXT:
        text = record.get(field)
        if not isinstance(text, str):
            return False
        matcher = matcher or SourceMatcher()
        updated, count = matcher.source_re.subn(
            lambda m: new_url if m.group(0) == ref.source_url else m.group(0), text
        )
        if updated == text:
            return False
        record[field] = updated
        return count > 0

    raise ValueError(f"Unknown location kind: {ref.location_kind}")
