"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  The scheduler runs as "beat-as-poller": a backend controls WHEN ticks       │
│  happen, SchedulerService controls WHAT happens on each tick. One ticker     │
│  replaces one timer handle per schedule.                                     │
│                                                                               │
│   ┌─────────────────┐       tick()       ┌─────────────────────────┐         │
│   │  Thread Backend │ ─────────────────► │  SchedulerService       │         │
│   │  (default)      │                    │                         │         │
│   └─────────────────┘                    │  - find due schedules   │         │
│                                          │  - coalesce in-flight   │         │
│   ┌─────────────────┐       tick()       │  - run workflow         │         │
│   │  Asyncio        │ ─────────────────► │  - update bookkeeping   │         │
│   │  Backend        │                    └─────────────────────────┘         │
│   └─────────────────┘                                                        │
│                                                                               │
│  Responsibility Split:                                                        │
│  - Backend: timing (thread wait, event-loop sleep)                           │
│  - Service: logic (due check, execution, next-run computation)               │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[None]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Protocol for pluggable scheduler timing backends.

    A backend is responsible ONLY for timing: calling the tick callback
    at the requested interval. All schedule evaluation lives in
    SchedulerService.

    Implementations:
        - ThreadSchedulerBackend: daemon thread, ``asyncio.run`` per tick (default)
        - AsyncioSchedulerBackend: task on the caller's running event loop
    """

    name: str

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        """Start the ticker.

        Args:
            tick_callback: Async function to call on each tick.
            interval_seconds: How often to tick.
        """
        ...

    def stop(self) -> None:
        """Stop ticking. In-flight work is not interrupted."""
        ...

    def health(self) -> dict[str, Any]:
        """Return backend health status.

        Returns:
            dict with at least healthy, backend, tick_count and last_tick
        """
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }


def seconds_until_next_tick(interval_seconds: float, align: bool, now: float | None = None) -> float:
    """Delay before the next tick.

    With ``align`` the tick lands on a wall-clock multiple of the interval
    (minute boundaries for a 60s interval).
    """
    if not align:
        return interval_seconds
    now = time.time() if now is None else now
    remaining = interval_seconds - (now % interval_seconds)
    return remaining if remaining > 0 else interval_seconds


__all__ = ["BackendHealth", "SchedulerBackend", "TickCallback", "seconds_until_next_tick"]
