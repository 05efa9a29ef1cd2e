"""Scheduler package for blockflow.

Manifesto:
    Recurring workflow runs need more than ``time.sleep()`` in a loop. They
    need cron evaluation that can be tested without waiting for a wall
    clock, coalescing (so a slow run does not pile up behind itself), and
    bookkeeping that survives a restart. The scheduling package provides
    all three with pluggable timing backends.

┌──────────────────────────────────────────────────────────────────────────────┐
│  BLOCKFLOW SCHEDULER                                                          │
│                                                                               │
│  Quick Start:                                                                 │
│  ┌──────────────────────────────────────────────────────────────────────┐   │
│  │   from blockflow.core.scheduling import ScheduleConfig, create_scheduler │
│  │                                                                      │   │
│  │   scheduler = create_scheduler(loader=loader, node_generator=gen)    │   │
│  │   scheduler.schedule_execution(ScheduleConfig(                       │   │
│  │       workflow_id="storyboard",                                      │   │
│  │       cron_expression="0 9 * * *",                                   │   │
│  │   ))                                                                 │   │
│  │   scheduler.start()                                                  │   │
│  └──────────────────────────────────────────────────────────────────────┘   │
│                                                                               │
│   ┌──────────────┐    tick()    ┌──────────────────────────────┐             │
│   │  Backend     │ ───────────► │   SchedulerService           │             │
│   │ (timing)     │              │   ├── ScheduleRepository     │             │
│   └──────────────┘              │   ├── WorkflowLoader         │             │
│   • thread (default)            │   └── WorkflowExecutor       │             │
│   • asyncio                     └──────────────────────────────┘             │
└──────────────────────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ Constructing scheduler components individually
    ✅ ``create_scheduler(settings, loader, node_generator)`` factory function
    ❌ Firing every missed occurrence after downtime
    ✅ ``start()`` re-arms elapsed schedules to their next future match

Tags:
    blockflow, scheduling, cron, beat-as-poller, pluggable-backends

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from blockflow.core.settings import BlockflowSettings, SchedulerBackendKind, get_settings
from blockflow.core.storage import KeyValueStore, create_store

from . import cron
from .asyncio_backend import AsyncioSchedulerBackend

# Models
from .models import Schedule, ScheduleConfig, ScheduleStatus

# Protocol
from .protocol import BackendHealth, SchedulerBackend

# Repository
from .repository import ScheduleRepository

# Service
from .service import SchedulerHealth, SchedulerService, SchedulerStats

# Backends
from .thread_backend import ThreadSchedulerBackend

if TYPE_CHECKING:
    from blockflow.orchestration.executor import NodeGenerator
    from blockflow.orchestration.loader import WorkflowLoader

__all__ = [
    "cron",
    # Protocol
    "SchedulerBackend",
    "BackendHealth",
    # Backends
    "ThreadSchedulerBackend",
    "AsyncioSchedulerBackend",
    # Models
    "Schedule",
    "ScheduleConfig",
    "ScheduleStatus",
    # Repository
    "ScheduleRepository",
    # Service
    "SchedulerService",
    "SchedulerStats",
    "SchedulerHealth",
    "create_backend",
    "create_scheduler",
]


def create_backend(settings: BlockflowSettings | None = None) -> SchedulerBackend:
    """Build the timing backend named by ``settings.scheduler_backend``."""
    settings = settings or get_settings()
    if settings.scheduler_backend == SchedulerBackendKind.ASYNCIO:
        return AsyncioSchedulerBackend(align_to_interval=settings.align_ticks_to_minute)
    return ThreadSchedulerBackend(align_to_interval=settings.align_ticks_to_minute)


def create_scheduler(
    settings: BlockflowSettings | None = None,
    loader: WorkflowLoader | None = None,
    node_generator: NodeGenerator | None = None,
    backend: SchedulerBackend | None = None,
    store: KeyValueStore | None = None,
) -> SchedulerService:
    """Factory function to create a complete scheduler service.

    This is the recommended way to create a scheduler with all components
    properly wired together. Schedules and execution state share one
    key-value store.

    Args:
        settings: Configuration (default: ``get_settings()``)
        loader: Workflow loader (default: in-memory, empty)
        node_generator: Content-generation callback for every node
        backend: Timing backend (default: from settings)
        store: Key-value store (default: ``create_store(settings)``)

    Returns:
        Configured SchedulerService

    Example:
        >>> scheduler = create_scheduler(loader=loader, node_generator=generate)
        >>> scheduler.start()
    """
    from blockflow.execution.state import StateStore
    from blockflow.orchestration.executor import WorkflowExecutor
    from blockflow.orchestration.loader import InMemoryWorkflowLoader

    settings = settings or get_settings()
    store = store if store is not None else create_store(settings)

    if node_generator is None:

        async def node_generator(node_id: str, node_input: str) -> str:
            raise NotImplementedError(f"No node generator configured for {node_id}")

    return SchedulerService(
        backend=backend or create_backend(settings),
        repository=ScheduleRepository(store, horizon_days=settings.cron_search_horizon_days),
        executor=WorkflowExecutor(StateStore(store, settings), settings),
        loader=loader or InMemoryWorkflowLoader(),
        node_generator=node_generator,
        interval_seconds=settings.tick_interval_seconds,
    )
