"""Per-node timeout enforcement.

A node callback that runs past its allotted time is cancelled and reported
as :class:`TimeoutExpired`, which the retry policy then treats like any
other node failure. Timeouts never abort the whole run.

Examples:
    >>> from blockflow.execution.timeout import run_with_timeout_async
    >>>
    >>> output = await run_with_timeout_async(
    ...     generator("A01", prompt), 30.0, operation="node A01"
    ... )

Tags:
    timeout, deadline, resilience, execution, blockflow

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import Any


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str | None = None,
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation or "operation"

        msg = f"Operation '{self.operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


async def run_with_timeout_async(
    coro: Awaitable[Any],
    timeout_seconds: float | None,
    operation: str | None = None,
) -> Any:
    """Await ``coro`` with a deadline.

    Args:
        coro: Awaitable to execute
        timeout_seconds: Maximum execution time; None waits forever
        operation: Name for error messages

    Raises:
        TimeoutExpired: If execution exceeds the timeout
        ValueError: If the timeout is not positive
    """
    if timeout_seconds is None:
        return await coro
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation,
        ) from None


__all__ = ["TimeoutExpired", "run_with_timeout_async"]
