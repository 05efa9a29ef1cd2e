"""Retry strategies for node execution.

A node's generation callback is attempted once and then retried up to
``max_retries`` more times. The delay between attempts is constant by
default; passing a ``backoff_multiplier`` in the execution options
switches to exponential backoff.

Example:
    >>> from blockflow.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=5, base_delay=1.0, max_delay=60.0)
    >>> for retry in range(5):
    ...     print(f"Retry {retry}: wait {strategy.next_delay(retry):.2f}s")
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from blockflow.core.errors import is_retryable


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    max_retries: int = 0

    @abstractmethod
    def next_delay(self, retry: int) -> float:
        """Delay in seconds before retry number ``retry`` (zero-based)."""
        ...

    def should_retry(self, retries_done: int, error: Exception | None = None) -> bool:
        """True when another retry is allowed after ``retries_done`` retries.

        Errors that declare themselves non-retryable stop immediately.
        """
        if retries_done >= self.max_retries:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** retry), max_delay) (+ jitter)
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, retry: int) -> float:
        delay = min(self.base_delay * (self.multiplier**retry), self.max_delay)

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return delay


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, retry: int) -> float:
        return self.delay


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail on the first error."""

    max_retries: int = 0

    def next_delay(self, retry: int) -> float:
        return 0.0


def strategy_for(
    max_retries: int,
    retry_delay: float,
    backoff_multiplier: float | None = None,
) -> RetryStrategy:
    """Build the strategy described by execution options."""
    if max_retries <= 0:
        return NoRetry()
    if backoff_multiplier is not None:
        return ExponentialBackoff(
            max_retries=max_retries,
            base_delay=retry_delay,
            multiplier=backoff_multiplier,
        )
    return ConstantBackoff(max_retries=max_retries, delay=retry_delay)


@dataclass
class RetryContext:
    """Tracks attempts for one retried operation.

    Example:
        >>> ctx = RetryContext(ConstantBackoff(max_retries=2, delay=0.5))
        >>> result = await ctx.run_async(generate, node_id, prompt)
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, Exception, float], Any] | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def retries(self) -> int:
        """Number of retries made (attempts beyond the first)."""
        return max(0, self.attempt - 1)

    @property
    def elapsed_seconds(self) -> float:
        return (utcnow() - self.started_at).total_seconds()

    async def run_async(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Await ``func`` until it succeeds or retries are exhausted.

        ``on_retry(attempt, error, delay)`` is called before each sleep.

        Raises:
            The last exception once no further retry is allowed.
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.retries, e):
                    raise

                delay = self.strategy.next_delay(self.retries)

                if self.on_retry:
                    self.on_retry(self.attempt, e, delay)

                if delay > 0:
                    await asyncio.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ExponentialBackoff",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "strategy_for",
]
