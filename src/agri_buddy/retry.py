"""
Retry policies.

A RetryPolicy bundles the three decisions every retry chain makes: how many
attempts are allowed, how long to wait between them, and which failures are
worth retrying at all. The LLM client and the capture session manager both
use it instead of nesting completion callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def fixed_backoff(seconds: float) -> Callable[[int], float]:
    """Backoff that waits the same amount before every retry."""
    return lambda attempt: seconds


def linear_backoff(step: float, cap: float) -> Callable[[int], float]:
    """Backoff that grows by `step` per attempt, never exceeding `cap`."""
    return lambda attempt: min(cap, step * attempt)


def _always(error: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """
    Explicit retry policy.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff: Maps the 1-based number of the failed attempt to a delay in seconds.
        should_retry: Predicate deciding whether an error may be retried.
    """

    max_attempts: int = 2
    backoff: Callable[[int], float] = field(default=fixed_backoff(1.0))
    should_retry: Callable[[BaseException], bool] = field(default=_always)

    def allows(self, attempt: int, error: BaseException) -> bool:
        """Return True if another attempt may follow failed attempt number `attempt`."""
        return attempt < self.max_attempts and self.should_retry(error)

    def delay_for(self, attempt: int, error: BaseException) -> float:
        """
        Delay before the next attempt.

        A server-supplied delay (an error carrying `retry_after`) wins over
        the backoff function.
        """
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            return max(0.0, float(retry_after))
        return max(0.0, self.backoff(attempt))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        label: str = "operation",
    ) -> T:
        """
        Run `operation` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument coroutine factory.
            sleep: Sleep function (injectable for tests).
            label: Name used in log messages.

        Returns:
            The operation's result.

        Raises:
            The last error once no further attempt is allowed.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.allows(attempt, e):
                    raise
                delay = self.delay_for(attempt, e)
                logger.warning(f"{label} failed (attempt {attempt}/{self.max_attempts}): {e}; retrying in {delay:.1f}s")
                await sleep(delay)
                attempt += 1
