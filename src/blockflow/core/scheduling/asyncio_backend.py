"""Asyncio scheduler backend.

Runs the ticker as a task on the caller's event loop, for hosts that are
already async (an async web app, a notebook). ``start`` must be called
from inside a running loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback, seconds_until_next_tick

logger = logging.getLogger(__name__)


class AsyncioSchedulerBackend:
    """Event-loop ticker.

    Example:
        >>> backend = AsyncioSchedulerBackend(align_to_interval=False)
        >>> backend.start(service_tick, interval_seconds=1.0)
        >>> await asyncio.sleep(3)
        >>> backend.stop()
    """

    name = "asyncio"

    def __init__(self, align_to_interval: bool = True) -> None:
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Future] = set()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0
        self._align = align_to_interval

    def start(
        self,
        tick_callback: TickCallback,
        interval_seconds: float = 60.0,
    ) -> None:
        if self.is_running:
            logger.warning("AsyncioSchedulerBackend already started")
            return

        self._interval = interval_seconds
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop(tick_callback, interval_seconds), name="blockflow-scheduler")
        logger.info(f"AsyncioSchedulerBackend started (interval={interval_seconds}s)")

    async def _loop(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(seconds_until_next_tick(interval_seconds, self._align))
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
            tick = asyncio.ensure_future(tick_callback())
            self._in_flight.add(tick)
            tick.add_done_callback(self._in_flight.discard)
            try:
                await asyncio.shield(tick)
            except Exception as e:
                logger.exception(f"Tick failed: {e}")

    def stop(self) -> None:
        """Cancel the ticker task.

        A tick already in progress runs to completion on the loop.
        """
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        self._task = None
        logger.info("AsyncioSchedulerBackend stopped")

    def health(self) -> dict[str, Any]:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval, "aligned": self._align},
        ).to_dict()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count
