"""Threading-based scheduler backend.

The default backend: a CLI or a synchronous host can embed the scheduler
without owning an event loop. A daemon thread wakes on each tick (minute
boundaries when aligned) and drives ``SchedulerService._tick`` on one
private event loop that lives as long as the thread.

Ticks never overlap. A workflow run that outlasts the interval delays the
next tick, and the service's coalescing advances any firing it missed.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from typing import Any

from .protocol import BackendHealth, TickCallback, seconds_until_next_tick

logger = logging.getLogger(__name__)


class ThreadSchedulerBackend:
    """Daemon-thread ticker.

    Example:
        >>> backend = ThreadSchedulerBackend(align_to_interval=False)
        >>> backend.start(service._tick, interval_seconds=5.0)
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, align_to_interval: bool = True, join_timeout: float = 5.0) -> None:
        self._align = align_to_interval
        self._join_timeout = join_timeout
        self._interval = 60.0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._last_error: str | None = None

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self._thread is not None and self._thread.is_alive():
            logger.warning("Thread backend already running; start ignored")
            return

        self._interval = interval_seconds
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run,
            args=(tick_callback,),
            daemon=True,
            name="blockflow-scheduler",
        )
        self._thread.start()

    def _run(self, tick_callback: TickCallback) -> None:
        logger.info(f"Thread backend ticking every {self._interval}s (aligned={self._align})")
        with asyncio.Runner() as runner:
            while not self._stop_event.wait(seconds_until_next_tick(self._interval, self._align)):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = datetime.now(UTC)
                try:
                    runner.run(tick_callback())
                except Exception as e:
                    with self._lock:
                        self._failed_ticks += 1
                        self._last_error = str(e)
                    logger.exception(f"Tick {self._tick_count} raised: {e}")
        logger.info("Thread backend loop exited")

    def stop(self) -> None:
        """Signal the thread and wait up to ``join_timeout`` for the current tick."""
        thread = self._thread
        if thread is None:
            return

        self._stop_event.set()
        thread.join(timeout=self._join_timeout)
        if thread.is_alive():
            logger.warning(f"Scheduler thread still busy after {self._join_timeout}s; leaving it to finish")
        self._thread = None

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        with self._lock:
            return BackendHealth(
                healthy=self.is_running,
                backend=self.name,
                tick_count=self._tick_count,
                last_tick=self._last_tick,
                extra={
                    "interval_seconds": self._interval,
                    "aligned": self._align,
                    "failed_ticks": self._failed_ticks,
                    "last_error": self._last_error,
                },
            )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count
