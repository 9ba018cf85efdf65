"""Tests for the retry policy."""

import pytest

from grocery.config import RetrySettings
from grocery.errors import ConcurrencyConflict, InsufficientStock
from grocery.retry import RetryPolicy


def test_backoff_grows_and_is_capped():
    policy = RetryPolicy(
        RetrySettings(initial_interval_ms=1000, max_interval_ms=5000, multiplier=1.5)
    )
    assert policy.backoff_seconds(1) == pytest.approx(1.0)
    assert policy.backoff_seconds(2) == pytest.approx(1.5)
    assert policy.backoff_seconds(3) == pytest.approx(2.25)
    assert policy.backoff_seconds(10) == pytest.approx(5.0)


def test_default_settings():
    settings = RetrySettings()
    assert settings.max_attempts == 3
    assert settings.retryable == (ConcurrencyConflict,)


async def test_retries_conflict_then_succeeds(retry_settings):
    policy = RetryPolicy(retry_settings)
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrencyConflict("locked")
        return "done"

    assert await policy.call(flaky) == "done"
    assert len(calls) == 3


async def test_exhaustion_reraises_last_conflict(retry_settings):
    policy = RetryPolicy(retry_settings)
    raised = []

    async def always_locked():
        exc = ConcurrencyConflict(f"locked #{len(raised) + 1}")
        raised.append(exc)
        raise exc

    with pytest.raises(ConcurrencyConflict) as exc_info:
        await policy.call(always_locked)
    assert len(raised) == retry_settings.max_attempts
    assert exc_info.value is raised[-1]


async def test_business_errors_are_not_retried(retry_settings):
    policy = RetryPolicy(retry_settings)
    calls = []

    async def short():
        calls.append(1)
        raise InsufficientStock("P1", 1, 5)

    with pytest.raises(InsufficientStock):
        await policy.call(short)
    assert len(calls) == 1
