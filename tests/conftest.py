"""
Shared pytest fixtures for blockflow tests.

This module provides:
- Settings with instant retries and no background checkpoint timer
- In-memory key-value store, state store and executor
- Sample workflow graphs and a scriptable fake node generator
- A controllable clock for scheduler tests

Usage:
    Fixtures are auto-discovered by pytest. Use them as function arguments.

    def test_something(executor, chain_graph, generator):
        ...
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from blockflow.core.scheduling.protocol import BackendHealth
from blockflow.core.scheduling.repository import ScheduleRepository
from blockflow.core.scheduling.service import SchedulerService
from blockflow.core.settings import BlockflowSettings, StorageBackend, reset_settings
from blockflow.core.storage import MemoryKeyValueStore
from blockflow.execution.state import StateStore
from blockflow.orchestration.executor import WorkflowExecutor
from blockflow.orchestration.graph import Edge, Node, WorkflowGraph
from blockflow.orchestration.loader import InMemoryWorkflowLoader


# =============================================================================
# Settings & Storage
# =============================================================================


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Isolate every test from the developer's BLOCKFLOW_* environment."""
    monkeypatch.setenv("BLOCKFLOW_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("BLOCKFLOW_STORAGE_BACKEND", "memory")
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path: Path) -> BlockflowSettings:
    return BlockflowSettings(
        data_dir=tmp_path / "data",
        storage_backend=StorageBackend.MEMORY,
        checkpoint_interval_seconds=0,
        default_retry_delay_seconds=0,
    )


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def state_store(kv, settings) -> StateStore:
    return StateStore(kv, settings)


@pytest.fixture
def executor(state_store, settings) -> WorkflowExecutor:
    return WorkflowExecutor(state_store, settings)


# =============================================================================
# Sample Workflows
# =============================================================================


@pytest.fixture
def chain_graph() -> WorkflowGraph:
    """A -> B -> C, each block referencing its predecessor's output."""
    return WorkflowGraph(
        id="chain",
        name="Chain",
        nodes=[
            Node("A", content="Write a title", number="A01"),
            Node("B", content="Outline for [A01]", number="A02"),
            Node("C", content="Draft from [A02]", number="A03"),
        ],
        edges=[Edge("A", "B"), Edge("B", "C")],
    )


@pytest.fixture
def diamond_graph() -> WorkflowGraph:
    """A fans out to B and C, which both feed D."""
    return WorkflowGraph(
        id="diamond",
        name="Diamond",
        nodes=[Node("A"), Node("B"), Node("C"), Node("D")],
        edges=[Edge("A", "B"), Edge("A", "C"), Edge("B", "D"), Edge("C", "D")],
    )


@pytest.fixture
def cyclic_graph() -> WorkflowGraph:
    return WorkflowGraph(
        id="cyclic",
        nodes=[Node("A"), Node("B"), Node("C")],
        edges=[Edge("A", "B"), Edge("B", "C"), Edge("C", "A")],
    )


class FakeGenerator:
    """Scriptable node generator.

    ``fail_times[node]`` failures are raised before the node succeeds;
    nodes in ``always_fail`` never succeed. Output is ``"out:<node>"``.
    """

    def __init__(
        self,
        fail_times: dict[str, int] | None = None,
        always_fail: set[str] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.fail_times = dict(fail_times or {})
        self.always_fail = set(always_fail or ())
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.running = 0
        self.max_running = 0

    def attempts(self, node_id: str) -> int:
        return sum(1 for nid, _ in self.calls if nid == node_id)

    @property
    def order(self) -> list[str]:
        return [nid for nid, _ in self.calls]

    async def __call__(self, node_id: str, node_input: str) -> str:
        self.calls.append((node_id, node_input))
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if node_id in self.always_fail:
                raise RuntimeError(f"{node_id} generation failed")
            if self.fail_times.get(node_id, 0) > 0:
                self.fail_times[node_id] -= 1
                raise RuntimeError(f"{node_id} transient failure")
            return f"out:{node_id}"
        finally:
            self.running -= 1


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def make_generator() -> type[FakeGenerator]:
    """Factory for generators with scripted failures."""
    return FakeGenerator


@pytest.fixture
def loader(chain_graph, cyclic_graph) -> InMemoryWorkflowLoader:
    workflows = InMemoryWorkflowLoader()
    workflows.register(chain_graph)
    workflows.register(cyclic_graph)
    return workflows


# =============================================================================
# Scheduler
# =============================================================================


class FakeClock:
    """Manually advanced aware-UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class StubBackend:
    """Backend that never ticks on its own; tests call ``service._tick()``."""

    name = "stub"

    def __init__(self) -> None:
        self.started = False
        self.tick_callback = None
        self.interval = None

    def start(self, tick_callback, interval_seconds: float = 60.0) -> None:
        self.started = True
        self.tick_callback = tick_callback
        self.interval = interval_seconds

    def stop(self) -> None:
        self.started = False

    def health(self) -> dict:
        return BackendHealth(healthy=self.started, backend=self.name).to_dict()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 8, 0, tzinfo=UTC))


@pytest.fixture
def repository(kv) -> ScheduleRepository:
    return ScheduleRepository(kv)


@pytest.fixture
def backend() -> StubBackend:
    return StubBackend()


@pytest.fixture
def scheduler(backend, repository, executor, loader, generator, clock) -> SchedulerService:
    return SchedulerService(
        backend=backend,
        repository=repository,
        executor=executor,
        loader=loader,
        node_generator=generator,
        interval_seconds=60.0,
        clock=clock,
    )
