"""
Cloudinary helper functions for the Supabase Storage → Cloudinary migration.

This module implements the low-level network side of moving one image.
:func:`transfer_asset` downloads an object from its public source URL,
re-encodes it as a base64 data URL and uploads it with a signed request to
the Cloudinary ``image/upload`` endpoint, returning the new ``secure_url``.
Signatures are produced by :func:`sign_params`.  A simple rate limiter is
included to stay under the account's upload throughput, and a generic retry
wrapper (:func:`with_retries`) handles transient network errors and
server-side rate limiting responses (429 or 5xx).

The transfer itself is retry-oblivious: it performs exactly one download and
one upload per call and has nothing to roll back, so callers decide whether
to wrap it.

Usage example::

    from image_migrator.migrators.cloudinary_migrator import (
        RetryPolicy, transfer_asset, with_retries
    )

    cfg = {"api_key": ..., "api_secret": ..., "cloud_name": ...}
    new_url = with_retries(
        lambda: transfer_asset(cfg, "https://x.supabase.co/storage/v1/object/public/b/a.jpg", "articles"),
        RetryPolicy(max_attempts=3),
    )

"""

from __future__ import annotations

import base64
import hashlib
import logging
import mimetypes
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, TypeVar

import requests

from image_migrator.utils.deadline import Deadline

logger = logging.getLogger(__name__)

T = TypeVar("T")

CLOUDINARY_API_BASE = "https://api.cloudinary.com/v1_1"
DEFAULT_MIME_TYPE = "image/jpeg"
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class FetchFailed(Exception):
    """The source store answered the download with a non-success status."""

    def __init__(self, url: str, status: int, *, retry_after: Optional[str] = None) -> None:
        super().__init__(f"Failed to download: {status}")
        self.url = url
        self.status = status
        self.retry_after = retry_after


class TransferFailed(Exception):
    """The download or the upload failed for a reason other than a fetch status."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.status = status
        self.retry_after: Optional[str] = None


###############################################################################
# Rate limiting and retry utilities
###############################################################################

class RateLimiter:
    """
    Simple time-based rate limiter.  Ensures that no more than ``rpm``
    requests are dispatched per minute.  One limiter is shared by all
    uploads of an invocation to stay under Cloudinary's upload limits.
    """

    def __init__(self, rpm: int = 180) -> None:
        self.rpm = max(1, rpm)
        self.interval = 60.0 / float(self.rpm)
        self._last = 0.0

    def wait(self, time_fn: Callable[[], float] = time.time, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        now = time_fn()
        dt = now - self._last
        if dt < self.interval:
            sleep_fn(self.interval - dt)
        self._last = time_fn()


@dataclass
class RetryPolicy:
    """Exponential backoff settings for :func:`with_retries`."""

    max_attempts: int = 3
    base_delay: float = 0.7
    retry_statuses: tuple = RETRYABLE_STATUSES

    def is_retryable(self, exc: BaseException) -> bool:
        """
        Transient failures are network errors and 429/5xx answers, whether
        they surface as :class:`requests.RequestException` or wrapped in one
        of the transfer errors.
        """
        status = _status_of(exc)
        if status is not None:
            return status in self.retry_statuses
        if isinstance(exc, TransferFailed):
            return isinstance(exc.cause, (requests.ConnectionError, requests.Timeout))
        return isinstance(exc, requests.RequestException)

    def delay_for(self, attempt: int, exc: BaseException) -> float:
        # Use Retry-After header if provided, otherwise exponential backoff
        retry_after = _retry_after_of(exc)
        if retry_after:
            try:
                return float(retry_after)
            except ValueError:
                pass
        return self.base_delay * (2 ** attempt)


def _status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code
    return getattr(exc, "status", None)


def _retry_after_of(exc: BaseException) -> Optional[str]:
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.headers.get("Retry-After")
    return getattr(exc, "retry_after", None)


def with_retries(
    fn: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    *,
    deadline: Optional[Deadline] = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a zero-argument callable, retrying on transient errors.  Backoff
    uses an exponential strategy unless the failure carries a
    ``Retry-After`` value.

    :param fn: A zero-argument callable that performs the operation.
    :param policy: Attempts, base delay and retryable statuses.
    :param deadline: When given, a retry whose backoff would outlast the
        remaining budget is not attempted and the last error is raised.
    :param sleep_fn: Injected for tests.
    :return: Whatever ``fn`` returns.
    :raises Exception: the last error once attempts are exhausted, or any
        non-retryable error immediately.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return fn()
        except Exception as e:
            if not policy.is_retryable(e) or attempt >= policy.max_attempts - 1:
                raise
            wait = policy.delay_for(attempt, e)
            if deadline is not None and wait >= deadline.remaining():
                raise
            logger.warning("Transient error (%s), retrying in %.1fs", e, wait)
            sleep_fn(wait)
            attempt += 1


###############################################################################
# Signed upload helpers
###############################################################################

def sign_params(params: Mapping[str, Any], secret: str) -> str:
    """
    Produce the Cloudinary request signature for ``params``.

    The canonical string is ``key=value`` pairs sorted alphabetically by key
    and joined with ``&``, immediately followed by the API secret.  The
    signature is the SHA-1 hex digest of that string.  Cloudinary rebuilds
    the same string server-side, so the sort order is part of the contract:
    ``{"timestamp": 1315060510, "folder": "articles"}`` signs
    ``folder=articles&timestamp=1315060510<secret>``.
    """
    canonical = "&".join(f"{key}={params[key]}" for key in sorted(params))
    return hashlib.sha1((canonical + secret).encode("utf-8")).hexdigest()


def to_data_url(payload: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


def _guess_mime_type(source_url: str, content_type: Optional[str]) -> str:
    if content_type:
        mime = content_type.split(";")[0].strip()
        if mime and mime != "application/octet-stream":
            return mime
    guessed, _ = mimetypes.guess_type(source_url.split("?")[0])
    return guessed or DEFAULT_MIME_TYPE


def upload_url(cfg: Dict[str, str]) -> str:
    base = cfg.get("api_base") or CLOUDINARY_API_BASE
    return f"{base.rstrip('/')}/{cfg['cloud_name']}/image/upload"


def transfer_asset(
    cfg: Dict[str, str],
    source_url: str,
    folder: str,
    *,
    http: Any = None,
    limiter: Optional[RateLimiter] = None,
    timeout: float = 10.0,
    time_fn: Callable[[], float] = time.time,
) -> str:
    """
    Copy one image from the source store to Cloudinary.

    :param cfg: Cloudinary configuration with ``api_key``, ``api_secret``
        and ``cloud_name``.
    :param source_url: Public URL of the source object.
    :param folder: Destination folder on Cloudinary.
    :param http: Object exposing ``get``/``post`` like the :mod:`requests`
        module or a :class:`requests.Session`.  Defaults to :mod:`requests`.
    :param limiter: Optional shared upload rate limiter.
    :param timeout: Per-request timeout in seconds, applied to both legs.
    :param time_fn: Clock used for the signed timestamp.
    :return: The ``secure_url`` of the uploaded image.
    :raises FetchFailed: if the source answered with a non-2xx status.
    :raises TransferFailed: on network errors or a rejected upload.
    """
    http = http or requests

    try:
        resp = http.get(source_url, timeout=timeout)
    except requests.RequestException as e:
        raise TransferFailed(f"Download failed: {e}", cause=e) from e
    if not 200 <= resp.status_code < 300:
        raise FetchFailed(source_url, resp.status_code, retry_after=resp.headers.get("Retry-After"))

    mime_type = _guess_mime_type(source_url, resp.headers.get("Content-Type"))
    data_url = to_data_url(resp.content, mime_type)

    timestamp = int(time_fn())
    signature = sign_params({"folder": folder, "timestamp": timestamp}, cfg["api_secret"])
    form = {
        "file": data_url,
        "api_key": cfg["api_key"],
        "timestamp": str(timestamp),
        "signature": signature,
        "folder": folder,
    }

    if limiter is not None:
        limiter.wait()
    try:
        upload = http.post(upload_url(cfg), data=form, timeout=timeout)
    except requests.RequestException as e:
        raise TransferFailed(f"Upload failed: {e}", cause=e) from e
    if not 200 <= upload.status_code < 300:
        err = TransferFailed(f"Cloudinary error: {upload.text}", status=upload.status_code)
        err.retry_after = upload.headers.get("Retry-After")
        raise err

    try:
        body = upload.json()
    except ValueError as e:
        raise TransferFailed(f"Cloudinary returned a non-JSON body: {upload.text[:200]}", cause=e) from e
    if not isinstance(body, dict):
        raise TransferFailed(f"Cloudinary returned an unexpected body: {upload.text[:200]}")
    new_url = body.get("secure_url")
    if not new_url:
        raise TransferFailed("Cloudinary response did not include a secure_url")

    logger.debug("Transferred %s -> %s", source_url, new_url)
    return new_url
