"""
Top-level package for the Supabase Storage → Cloudinary image migration.

This package bundles the components required to move content images from
the source object store to the target CDN, rewrite every reference to them
inside content records, report progress, and reclaim source objects that
nothing references any more.  Modules are split into subpackages:

* :mod:`image_migrator.extractors` – record store and bucket access
* :mod:`image_migrator.parsers` – reference discovery and rewriting
* :mod:`image_migrator.migrators` – Cloudinary transfer and batch migration
* :mod:`image_migrator.reconcilers` – status counts and orphan cleanup
* :mod:`image_migrator.utils` – budget, credential checks, reports

Each layer has no direct knowledge of configuration or execution strategy;
orchestration is handled in :mod:`image_migrator.migration_tool`.
"""

__version__ = "0.1.0"
