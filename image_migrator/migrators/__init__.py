"""
Cloudinary migrators and helpers.

This subpackage provides the signed Cloudinary upload used to move one image
(:mod:`~image_migrator.migrators.cloudinary_migrator`, which also carries the
rate limiter and the retry wrapper) and the resumable batch step that
rewrites records (:mod:`~image_migrator.migrators.batch_migrator`).
"""

from .cloudinary_migrator import (
    FetchFailed,
    RateLimiter,
    RetryPolicy,
    TransferFailed,
    sign_params,
    transfer_asset,
    with_retries,
)
from .batch_migrator import MigrationBatchResult, PerItemResult, migrate_batch

__all__ = [
    "FetchFailed",
    "RateLimiter",
    "RetryPolicy",
    "TransferFailed",
    "sign_params",
    "transfer_asset",
    "with_retries",
    "MigrationBatchResult",
    "PerItemResult",
    "migrate_batch",
]
