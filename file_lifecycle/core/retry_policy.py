"""
Retry Policy - bounded retries with exponential backoff for transient store errors.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from file_lifecycle.config import Settings
from file_lifecycle.core.exceptions import TransientStoreError

T = TypeVar("T")


@dataclass
class RetryStatistics:
    """Counters kept per policy instance, exposed through the status endpoint."""

    operations: int = 0
    retries_performed: int = 0
    exhausted: int = 0


class RetryPolicy:
    """
    Retries an async operation when it raises TransientStoreError (or the
    exception types given as ``retry_on``).

    Delay before attempt n+1 is ``retry_delay_seconds * retry_backoff_factor**(n-1)``.
    After ``max_retry_attempts`` attempts the last error is re-raised so the
    caller can escalate it to a stage failure. Other exceptions pass through
    untouched on the first occurrence.
    """

    def __init__(
        self,
        settings: Settings,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.max_attempts = max(1, settings.max_retry_attempts)
        self.base_delay = settings.retry_delay_seconds
        self.backoff_factor = settings.retry_backoff_factor
        self._sleep = sleep or asyncio.sleep
        self.stats = RetryStatistics()

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str,
        retry_on: Tuple[Type[Exception], ...] = (TransientStoreError,),
    ) -> T:
        self.stats.operations += 1
        attempt = 1
        while True:
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.max_attempts:
                    self.stats.exhausted += 1
                    logging.error(
                        f"{description} failed after {attempt} attempt(s): {e}"
                    )
                    raise
                delay = self.delay_for(attempt)
                logging.warning(
                    f"Transient error during {description} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying in {delay:.1f}s: {e}"
                )
                self.stats.retries_performed += 1
                await self._sleep(delay)
                attempt += 1

    def get_retry_info(self) -> dict:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_seconds": self.base_delay,
            "backoff_factor": self.backoff_factor,
            "operations": self.stats.operations,
            "retries_performed": self.stats.retries_performed,
            "exhausted": self.stats.exhausted,
        }
