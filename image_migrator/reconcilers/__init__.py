"""
Reconciliation between the record store and the source bucket.

* :mod:`image_migrator.reconcilers.status_reconciler` – migrated vs pending
  counts per collection
* :mod:`image_migrator.reconcilers.orphan_reclaimer` – unreferenced object
  detection and deletion
"""

from .orphan_reclaimer import OrphanReclaimer, object_paths_for
from .status_reconciler import CollectionStatus, collection_status, pending_assets

__all__ = [
    "OrphanReclaimer",
    "object_paths_for",
    "CollectionStatus",
    "collection_status",
    "pending_assets",
]
