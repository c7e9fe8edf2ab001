"""
Core Module - Retry / Backoff Driver.

============================================================
RESPONSIBILITY
============================================================
Single retry algorithm shared by balance providers and the
price fetcher.

- Bounded attempts (default 3)
- Exponential backoff: base_delay * 2 ** failed_attempt_index
- Rate-limit aware: honours a provider's retry-after hint
- PERMANENT outcomes abort immediately
- Waits use asyncio.sleep, so cancelling the run aborts them

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from core.outcome import Outcome, OutcomeKind


logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters for one provider class."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def delay_for(self, failed_attempt: int, retry_after: Optional[float] = None) -> float:
        """
        Delay before the next attempt.

        Args:
            failed_attempt: 0-based index of the attempt that just failed
            retry_after: Provider hint (seconds) for rate-limited responses
        """
        delay = self.base_delay * (2 ** failed_attempt)
        if retry_after:
            delay = max(delay, retry_after)
        return min(delay, self.max_delay)


class RetryDriver:
    """
    Runs a provider call under a RetryPolicy.

    Usage:
        driver = RetryDriver(RetryPolicy(max_attempts=3, base_delay=0.5))
        outcome = await driver.run(lambda: provider.query(q), label="eth_getBalance")
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[SleepFunc] = None,
    ) -> None:
        self._policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def run(
        self,
        call: Callable[[], Awaitable[Outcome[T]]],
        label: str = "",
    ) -> Outcome[T]:
        """
        Execute call until it succeeds, fails permanently or attempts run out.

        Returns:
            The successful outcome, the permanent failure, or the last
            retryable failure, each stamped with the number of attempts made.
        """
        outcome: Optional[Outcome[T]] = None

        for attempt in range(self._policy.max_attempts):
            outcome = await call()

            if outcome.is_success:
                return outcome.with_attempts(attempt + 1)

            if outcome.kind == OutcomeKind.PERMANENT:
                logger.debug(f"[retry] {label} permanent failure, not retrying: {outcome.error}")
                return outcome.with_attempts(attempt + 1)

            if attempt + 1 >= self._policy.max_attempts:
                break

            wait_time = self._policy.delay_for(attempt, outcome.retry_after)
            logger.warning(
                f"[retry] {label} {outcome.kind.value} ({outcome.error}), "
                f"retrying in {wait_time:.2f}s (attempt {attempt + 1}/{self._policy.max_attempts})"
            )
            await self._sleep(wait_time)

        return outcome.with_attempts(self._policy.max_attempts)


__all__ = [
    "RetryPolicy",
    "RetryDriver",
    "SleepFunc",
]
