"""
Grocery Manager — retry policy for contended writes

Only the exception types in RetrySettings.retryable are re-attempted.
The wait before retry n (0-based) is
min(max_interval, initial_interval * multiplier ** n). When attempts run
out the last exception is raised unchanged.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from .config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    def __init__(self, settings: RetrySettings):
        self.settings = settings

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        s = self.settings
        interval_ms = s.initial_interval_ms * (s.multiplier ** (attempt - 1))
        return min(s.max_interval_ms, interval_ms) / 1000

    def _wait(self, retry_state: RetryCallState) -> float:
        return self.backoff_seconds(retry_state.attempt_number)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "Attempt %s/%s failed: %s. Retrying in %.3fs",
            retry_state.attempt_number,
            self.settings.max_attempts,
            exc,
            delay,
        )

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(self.settings.retryable),
            before_sleep=self._before_sleep,
            reraise=True,
        )
        return await retrying(fn)
