"""
Scanner - Retry Policy.

Exponential backoff with jitter for retryable scan errors.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

from core.config import ScanConfig
from core.exceptions import TransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Bounded exponential backoff.

    Delay before retry ``n`` (1-based) is
    ``min(base * factor ** (n - 1), max_delay)``, spread by
    ``+/- jitter`` as a fraction of the delay.
    """

    def __init__(
        self,
        attempts: int = 5,
        base_seconds: float = 1.0,
        factor: float = 2.0,
        max_seconds: float = 60.0,
        jitter: float = 0.1,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        self.attempts = attempts
        self.base_seconds = base_seconds
        self.factor = factor
        self.max_seconds = max_seconds
        self.jitter = jitter
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()

    @classmethod
    def for_transient(cls, config: ScanConfig, sleep: Optional[SleepFunc] = None) -> "RetryPolicy":
        return cls(
            attempts=config.retry_attempts,
            base_seconds=config.retry_base_seconds,
            factor=config.retry_factor,
            max_seconds=config.retry_max_seconds,
            jitter=config.retry_jitter,
            sleep=sleep,
        )

    @classmethod
    def for_store(cls, config: ScanConfig, sleep: Optional[SleepFunc] = None) -> "RetryPolicy":
        return cls(
            attempts=config.store_retry_attempts,
            base_seconds=config.retry_base_seconds,
            factor=config.retry_factor,
            max_seconds=config.retry_max_seconds,
            jitter=config.retry_jitter,
            sleep=sleep,
        )

    def delay(self, retry: int) -> float:
        """Seconds to wait before retry number ``retry`` (1-based)."""
        delay = min(self.base_seconds * (self.factor ** (retry - 1)), self.max_seconds)
        if self.jitter and delay > 0:
            delay += delay * self.jitter * (2 * self._rng.random() - 1)
        return max(delay, 0.0)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: Tuple[Type[BaseException], ...] = (TransientError,),
        describe: str = "operation",
    ) -> T:
        """
        Await ``operation()`` until it succeeds or attempts run out.

        The last error is re-raised unchanged.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except retry_on as e:
                if attempt >= self.attempts:
                    logger.warning(f"{describe} failed after {attempt} attempts: {e}")
                    raise
                wait = self.delay(attempt)
                logger.debug(
                    f"{describe} failed ({e}), retrying in {wait:.2f}s "
                    f"(attempt {attempt + 1}/{self.attempts})"
                )
                attempt += 1
                await self._sleep(wait)
