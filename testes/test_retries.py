import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
import requests

from image_migrator.migrators.cloudinary_migrator import (
    FetchFailed,
    RateLimiter,
    RetryPolicy,
    TransferFailed,
    with_retries,
)
from image_migrator.utils.deadline import Deadline
from fakes import FakeClock, FakeResponse


class Flaky:
    """Raises the queued errors in order, then returns ``value``."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def test_transient_errors_are_retried_with_exponential_backoff():
    fn = Flaky([TransferFailed("busy", status=503), TransferFailed("busy", status=502)])
    sleeps = []
    assert with_retries(fn, RetryPolicy(max_attempts=3, base_delay=0.7), sleep_fn=sleeps.append) == "ok"
    assert fn.calls == 3
    assert sleeps == pytest.approx([0.7, 1.4])


def test_client_errors_are_not_retried():
    fn = Flaky([FetchFailed("u", 404)])
    with pytest.raises(FetchFailed):
        with_retries(fn, RetryPolicy(), sleep_fn=lambda s: None)
    assert fn.calls == 1


def test_last_error_is_raised_once_attempts_are_exhausted():
    fn = Flaky([TransferFailed("busy", status=500)] * 5)
    with pytest.raises(TransferFailed):
        with_retries(fn, RetryPolicy(max_attempts=3), sleep_fn=lambda s: None)
    assert fn.calls == 3


def test_retry_after_overrides_backoff():
    fn = Flaky([FetchFailed("u", 429, retry_after="2")])
    sleeps = []
    with_retries(fn, RetryPolicy(), sleep_fn=sleeps.append)
    assert sleeps == [2.0]


def test_http_error_status_is_read_from_response():
    error = requests.HTTPError("502 Error", response=FakeResponse(502, headers={"Retry-After": "1"}))
    policy = RetryPolicy()
    assert policy.is_retryable(error)
    assert policy.delay_for(0, error) == 1.0
    assert not policy.is_retryable(requests.HTTPError("400 Error", response=FakeResponse(400)))


def test_backoff_longer_than_remaining_budget_is_not_attempted():
    deadline = Deadline(1.0, clock=FakeClock())
    fn = Flaky([TransferFailed("busy", status=503)])
    sleeps = []
    with pytest.raises(TransferFailed):
        with_retries(fn, RetryPolicy(base_delay=2.0), deadline=deadline, sleep_fn=sleeps.append)
    assert fn.calls == 1
    assert sleeps == []


def test_non_network_errors_propagate_untouched():
    fn = Flaky([KeyError("api_secret")])
    with pytest.raises(KeyError):
        with_retries(fn, sleep_fn=lambda s: None)
    assert fn.calls == 1


def test_rate_limiter_spaces_requests():
    clock = FakeClock(10.0)
    sleeps = []
    limiter = RateLimiter(rpm=60)
    limiter.wait(time_fn=clock, sleep_fn=sleeps.append)
    clock.advance(0.25)
    limiter.wait(time_fn=clock, sleep_fn=sleeps.append)
    assert sleeps == pytest.approx([0.75])


def test_deadline_expires_only_after_the_budget():
    clock = FakeClock()
    deadline = Deadline(1.0, clock=clock)
    clock.advance(1.0)
    assert not deadline.expired()
    clock.advance(0.5)
    assert deadline.expired()
    assert deadline.remaining() == 0.0
    assert deadline.elapsed_ms == 1500
