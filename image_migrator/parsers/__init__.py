"""
Record parsers.

This subpackage finds source-store image references inside content records
(flat columns, JSON slide arrays and HTML bodies) and rewrites them.
"""

from .reference_locator import (
    COLLECTIONS,
    ArrayField,
    AssetReference,
    Collection,
    EmbeddedText,
    FlatField,
    SourceMatcher,
    apply_rewrite,
    locate,
)

__all__ = [
    "COLLECTIONS",
    "ArrayField",
    "AssetReference",
    "Collection",
    "EmbeddedText",
    "FlatField",
    "SourceMatcher",
    "apply_rewrite",
    "locate",
]
