"""Tests for scheduler timing backends and the backend protocol."""

from __future__ import annotations

import asyncio
import time

import pytest

from blockflow.core.scheduling import create_backend
from blockflow.core.scheduling.asyncio_backend import AsyncioSchedulerBackend
from blockflow.core.scheduling.protocol import (
    BackendHealth,
    SchedulerBackend,
    seconds_until_next_tick,
)
from blockflow.core.scheduling.thread_backend import ThreadSchedulerBackend
from blockflow.core.settings import BlockflowSettings, SchedulerBackendKind


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestProtocol:
    def test_backends_satisfy_protocol(self):
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)
        assert isinstance(AsyncioSchedulerBackend(), SchedulerBackend)

    def test_unaligned_delay_is_interval(self):
        assert seconds_until_next_tick(60.0, align=False, now=125.0) == 60.0

    def test_aligned_delay_lands_on_boundary(self):
        assert seconds_until_next_tick(60.0, align=True, now=125.0) == pytest.approx(55.0)

    def test_aligned_on_exact_boundary_waits_full_interval(self):
        assert seconds_until_next_tick(60.0, align=True, now=120.0) == pytest.approx(60.0)

    def test_health_to_dict_merges_extra(self):
        health = BackendHealth(healthy=True, backend="thread", tick_count=2, extra={"aligned": False})
        assert health.to_dict() == {
            "healthy": True,
            "backend": "thread",
            "tick_count": 2,
            "last_tick": None,
            "aligned": False,
        }

    def test_create_backend_from_settings(self):
        thread = create_backend(BlockflowSettings(scheduler_backend=SchedulerBackendKind.THREAD))
        loop = create_backend(
            BlockflowSettings(scheduler_backend=SchedulerBackendKind.ASYNCIO, align_ticks_to_minute=False)
        )
        assert isinstance(thread, ThreadSchedulerBackend)
        assert isinstance(loop, AsyncioSchedulerBackend)
        assert loop.health()["aligned"] is False


class TestThreadBackend:
    def test_ticks_until_stopped(self):
        ticks = []

        async def tick():
            ticks.append(time.monotonic())

        backend = ThreadSchedulerBackend(align_to_interval=False)
        backend.start(tick, interval_seconds=0.02)
        try:
            assert _wait_for(lambda: len(ticks) >= 3)
            assert backend.is_running is True
            assert backend.health()["healthy"] is True
        finally:
            backend.stop()

        assert backend.is_running is False
        count = len(ticks)
        time.sleep(0.1)
        assert len(ticks) == count

    def test_failing_tick_does_not_stop_loop(self):
        calls = []

        async def tick():
            calls.append(1)
            raise RuntimeError("boom")

        backend = ThreadSchedulerBackend(align_to_interval=False)
        backend.start(tick, interval_seconds=0.02)
        try:
            assert _wait_for(lambda: len(calls) >= 2)
        finally:
            backend.stop()
        assert backend.tick_count >= 2
        health = backend.health()
        assert health["failed_ticks"] >= 2
        assert health["last_error"] == "boom"

    def test_double_start_is_ignored(self):
        async def tick():
            return None

        backend = ThreadSchedulerBackend(align_to_interval=False)
        backend.start(tick, interval_seconds=10.0)
        first_thread = backend._thread
        backend.start(tick, interval_seconds=10.0)
        assert backend._thread is first_thread
        backend.stop()

    def test_stop_without_start_is_noop(self):
        ThreadSchedulerBackend().stop()


class TestAsyncioBackend:
    @pytest.mark.asyncio
    async def test_ticks_on_running_loop(self):
        ticks = []

        async def tick():
            ticks.append(1)

        backend = AsyncioSchedulerBackend(align_to_interval=False)
        backend.start(tick, interval_seconds=0.01)
        await asyncio.sleep(0.1)
        backend.stop()

        assert len(ticks) >= 2
        assert backend.is_running is False
        assert backend.health()["tick_count"] == backend.tick_count

    @pytest.mark.asyncio
    async def test_stop_does_not_interrupt_in_flight_tick(self):
        finished = asyncio.Event()
        started = asyncio.Event()

        async def slow_tick():
            started.set()
            await asyncio.sleep(0.05)
            finished.set()

        backend = AsyncioSchedulerBackend(align_to_interval=False)
        backend.start(slow_tick, interval_seconds=0.01)
        await asyncio.wait_for(started.wait(), timeout=1.0)
        backend.stop()
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_failing_tick_keeps_ticking(self):
        calls = []

        async def tick():
            calls.append(1)
            raise ValueError("bad tick")

        backend = AsyncioSchedulerBackend(align_to_interval=False)
        backend.start(tick, interval_seconds=0.01)
        await asyncio.sleep(0.1)
        backend.stop()
        assert len(calls) >= 2

    def test_start_requires_running_loop(self):
        async def tick():
            return None

        with pytest.raises(RuntimeError):
            AsyncioSchedulerBackend().start(tick, interval_seconds=1.0)
