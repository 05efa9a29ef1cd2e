"""Scheduler service - binds schedules to workflow runs.

Manifesto:
    The SchedulerService combines a backend (timing), a repository
    (schedule records), a loader (workflow definitions) and the workflow
    executor into one scheduling system. The beat-as-poller pattern
    decouples timing from schedule evaluation, so every behaviour here can
    be tested by calling ``_tick()`` with a fixed clock.

Tags:
    blockflow, scheduling, orchestrator, beat-as-poller, service

Doc-Types:
    api-reference, architecture-diagram


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                            │
│                                                                               │
│   start()                                                                     │
│     ├── recover_interrupted()   orphaned runs → paused (never resumed)        │
│     ├── re-arm: elapsed next_run → next future match, no firing               │
│     └── backend.start(_tick, interval)                                        │
│                                                                               │
│   _tick()                                                                     │
│     ├── get_due_schedules(now)                                                │
│     └── for each due schedule:                                                │
│          ├── in flight?  → skip, advance next_run                             │
│          ├── loader.load(workflow_id)                                         │
│          ├── executor.execute(graph, options, node_generator)                 │
│          └── record run: run_count, last_result, status, next_run             │
│                                                                               │
│   Public API:                                                                 │
│     schedule_execution  cancel_schedule  update_schedule  toggle_schedule     │
│     trigger_schedule    list_schedules   get_schedule     health              │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from blockflow.core.errors import (
    BlockflowError,
    ScheduleBusyError,
    ScheduleCompletedError,
    ScheduleNotFoundError,
    ValidationError,
)
from blockflow.execution.models import ExecutionType

from . import cron
from .models import Schedule, ScheduleConfig, ScheduleStatus, new_schedule_id
from .protocol import SchedulerBackend
from .repository import ScheduleRepository

if TYPE_CHECKING:
    from blockflow.orchestration.executor import NodeGenerator, WorkflowExecutor
    from blockflow.orchestration.loader import WorkflowLoader
    from blockflow.orchestration.models import ExecutionResult

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_UPDATABLE = frozenset(
    {
        "workflow_id",
        "cron_expression",
        "execution_options",
        "enabled",
        "description",
        "max_runs",
        "end_date",
    }
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


@dataclass
class SchedulerStats:
    """Statistics for scheduler service."""

    tick_count: int = 0
    schedules_processed: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "schedules_processed": self.schedules_processed,
            "schedules_skipped": self.schedules_skipped,
            "schedules_failed": self.schedules_failed,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


@dataclass
class SchedulerHealth:
    """Health status for scheduler service."""

    healthy: bool
    backend: dict[str, Any]
    schedules_enabled: int = 0
    in_flight: list[str] = field(default_factory=list)
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "schedules_enabled": self.schedules_enabled,
            "in_flight": self.in_flight,
            "stats": self.stats.to_dict(),
        }


class SchedulerService:
    """Cron scheduler for workflow runs - beat-as-poller.

    Example:
        >>> service = SchedulerService(
        ...     backend=ThreadSchedulerBackend(),
        ...     repository=ScheduleRepository(store),
        ...     executor=WorkflowExecutor(state_store),
        ...     loader=FileWorkflowLoader("workflows/"),
        ...     node_generator=generate,
        ... )
        >>> schedule_id = service.schedule_execution(
        ...     ScheduleConfig(workflow_id="storyboard", cron_expression="0 9 * * *")
        ... )
        >>> service.start()
    """

    def __init__(
        self,
        backend: SchedulerBackend,
        repository: ScheduleRepository,
        executor: WorkflowExecutor,
        loader: WorkflowLoader,
        node_generator: NodeGenerator,
        interval_seconds: float = 60.0,
        clock: Clock | None = None,
    ) -> None:
        """Initialize scheduler service.

        Args:
            backend: Timing backend (thread or asyncio)
            repository: Schedule persistence
            executor: Workflow executor runs are delegated to
            loader: Resolves a schedule's workflow_id to a graph
            node_generator: Content-generation callback for every node
            interval_seconds: Tick interval (default: 60s)
            clock: Returns "now"; defaults to aware UTC
        """
        self.backend = backend
        self.repository = repository
        self.executor = executor
        self.loader = loader
        self.node_generator = node_generator
        self.interval = interval_seconds
        self._clock = clock or _utcnow

        self._stats = SchedulerStats()
        self._running = False
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    def _now(self) -> datetime:
        return self._clock()

    # === Lifecycle ===

    def start(self) -> None:
        """Recover orphaned runs, re-arm schedules, then start ticking."""
        if self._running:
            logger.warning("SchedulerService already running")
            return

        store = self.executor.state_store
        if store is not None:
            recovered = store.recover_interrupted()
            if recovered:
                logger.warning(f"{len(recovered)} interrupted execution(s) marked paused for recovery")

        rearmed = self.rearm()
        logger.info(
            f"Starting SchedulerService with {self.backend.name} backend "
            f"(interval={self.interval}s, armed={rearmed})"
        )
        self.backend.start(self._tick, self.interval)
        self._running = True

    def stop(self) -> None:
        """Stop ticking. Executions already in flight are left alone."""
        if not self._running:
            return

        logger.info("Stopping SchedulerService...")
        self.backend.stop()
        self._running = False
        logger.info("SchedulerService stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def rearm(self) -> int:
        """Recompute ``next_run`` for every schedule without firing anything.

        Elapsed ``next_run`` values move to the next future match; disabled
        or inactive schedules get ``next_run = None``.

        Returns:
            Number of armed schedules.
        """
        now = self._now()
        armed = 0
        for schedule in self.repository.list_all():

            def _apply(s: Schedule) -> None:
                if not s.is_armed:
                    s.next_run = None
                    return
                if s.next_run is not None and _aware(s.next_run) > _aware(now):
                    return
                if s.next_run is not None:
                    logger.info(f"Schedule {s.id} missed {s.next_run.isoformat()}, rescheduling")
                s.next_run = self.repository.compute_next_run(s, now)
                if s.next_run is None:
                    s.status = ScheduleStatus.COMPLETED
                    s.enabled = False

            updated = self.repository.mutate(schedule.id, _apply)
            if updated.is_armed:
                armed += 1
        return armed

    # === Manual surface ===

    def schedule_execution(self, config: ScheduleConfig | dict[str, Any]) -> str:
        """Validate and persist a new schedule.

        Raises:
            CronValidationError: malformed or never-firing expression
            TemplateNotFoundError: unknown workflow id
        """
        if isinstance(config, dict):
            config = ScheduleConfig.from_dict(config)

        now = self._now()
        compiled = cron.validate(config.cron_expression, now, self.repository.horizon_days)
        graph = self.loader.load(config.workflow_id)

        schedule = Schedule(
            id=new_schedule_id(),
            workflow_id=config.workflow_id,
            workflow_name=graph.name,
            cron_expression=compiled.expression,
            execution_options=dict(config.execution_options),
            enabled=config.enabled,
            status=ScheduleStatus.ACTIVE if config.enabled else ScheduleStatus.PAUSED,
            description=config.description,
            max_runs=config.max_runs,
            end_date=config.end_date,
            created_at=now,
        )
        if schedule.is_armed:
            schedule.next_run = self.repository.compute_next_run(schedule, now)

        self.repository.add(schedule)
        logger.info(
            f"Scheduled {schedule.workflow_id} as {schedule.id} "
            f"({schedule.cron_expression}, next={schedule.next_run})"
        )
        return schedule.id

    def cancel_schedule(self, schedule_id: str) -> bool:
        """Delete a schedule. Runs already in flight are not interrupted."""
        deleted = self.repository.delete(schedule_id)
        if deleted:
            logger.info(f"Cancelled schedule {schedule_id}")
        return deleted

    def update_schedule(self, schedule_id: str, changes: dict[str, Any] | None = None, **kwargs: Any) -> Schedule:
        """Apply a partial update.

        Raises:
            ScheduleNotFoundError: unknown id
            ScheduleCompletedError: re-enabling a completed schedule
            CronValidationError: invalid new expression
            ValidationError: unknown field
        """
        updates = {**(changes or {}), **kwargs}
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValidationError(f"Cannot update schedule fields: {sorted(unknown)}")

        now = self._now()
        if "cron_expression" in updates:
            updates["cron_expression"] = cron.validate(
                updates["cron_expression"], now, self.repository.horizon_days
            ).expression
        if "workflow_id" in updates:
            updates["workflow_name"] = self.loader.load(updates["workflow_id"]).name

        current = self.get_schedule(schedule_id)
        if current is None:
            raise ScheduleNotFoundError(schedule_id)
        if updates.get("enabled") and current.is_finished:
            raise ScheduleCompletedError(schedule_id)

        def _apply(s: Schedule) -> None:
            for name, value in updates.items():
                setattr(s, name, value)
            if "enabled" in updates:
                s.status = ScheduleStatus.ACTIVE if s.enabled else ScheduleStatus.PAUSED
            s.next_run = self.repository.compute_next_run(s, now) if s.is_armed else None

        updated = self.repository.mutate(schedule_id, _apply)
        logger.info(f"Updated schedule {schedule_id}: {sorted(updates)}")
        return updated

    def toggle_schedule(self, schedule_id: str, enabled: bool) -> Schedule:
        return self.update_schedule(schedule_id, enabled=enabled)

    def list_schedules(self) -> list[Schedule]:
        """All schedules, newest first. Unreadable storage yields []."""
        return self.repository.list_all()

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self.repository.get(schedule_id)

    async def trigger_schedule(self, schedule_id: str) -> ExecutionResult:
        """Run a schedule now, bypassing the timer.

        Bookkeeping (run_count, last_result, status) is updated as for a
        timed firing; ``next_run`` is left alone.

        Raises:
            ScheduleNotFoundError: unknown id
            ScheduleCompletedError: the schedule has reached a terminal status
            ScheduleBusyError: a previous firing is still in flight
        """
        schedule = self.get_schedule(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(schedule_id)
        if schedule.is_finished:
            raise ScheduleCompletedError(schedule_id)
        if not self._claim(schedule_id):
            raise ScheduleBusyError(schedule_id)

        try:
            return await self._run(schedule, manual=True)
        finally:
            self._release(schedule_id)

    # === Tick Processing ===

    async def _tick(self) -> None:
        """Single scheduler tick - fire every due schedule. Called by the backend."""
        self._stats.tick_count += 1
        self._stats.last_tick = self._now()

        try:
            now = self._now()
            due = self.repository.get_due_schedules(now)
            if not due:
                logger.debug("No schedules due")
                return

            logger.info(f"Found {len(due)} due schedule(s)")
            for schedule in due:
                await self._process_schedule(schedule, now)

        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception(f"Tick failed: {e}")

    async def _process_schedule(self, schedule: Schedule, now: datetime) -> None:
        if not self._claim(schedule.id):
            logger.info(f"Schedule {schedule.id} still running, coalescing firing")
            self._stats.schedules_skipped += 1

            def _advance(s: Schedule) -> None:
                if s.is_armed:
                    s.next_run = self.repository.compute_next_run(s, now)

            try:
                self.repository.mutate(schedule.id, _advance)
            except ScheduleNotFoundError:
                logger.info(f"Schedule {schedule.id} was cancelled while coalescing")
            return

        try:
            result = await self._run(schedule, manual=False)
            if result.succeeded:
                self._stats.schedules_processed += 1
            else:
                self._stats.schedules_failed += 1
        finally:
            self._release(schedule.id)

    def _claim(self, schedule_id: str) -> bool:
        with self._in_flight_lock:
            if schedule_id in self._in_flight:
                return False
            self._in_flight.add(schedule_id)
            return True

    def _release(self, schedule_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(schedule_id)

    async def _run(self, schedule: Schedule, manual: bool) -> ExecutionResult:
        execution_id = self.executor.new_execution_id()
        try:
            graph = self.loader.load(schedule.workflow_id)
            result = await self.executor.execute(
                graph,
                schedule.execution_options,
                self.node_generator,
                execution_id=execution_id,
                execution_type=ExecutionType.MANUAL if manual else ExecutionType.SCHEDULED,
                workflow_ref=schedule.workflow_id,
                metadata={"schedule_id": schedule.id},
            )
        except BlockflowError as e:
            logger.error(f"Schedule {schedule.id} could not run: {e.message}")
            result = self._aborted(execution_id, e.message, e)
        except Exception as e:
            logger.exception(f"Schedule {schedule.id} run aborted: {e}")
            result = self._aborted(execution_id, str(e) or type(e).__name__, e)

        self._record_run(schedule.id, result, manual)
        logger.info(f"Schedule {schedule.id} run {result.execution_id} finished: {result.status}")
        return result

    def _aborted(self, execution_id: str, message: str, error: Exception) -> ExecutionResult:
        """Failed result with a single run-level error entry."""
        from blockflow.orchestration.models import ExecutionErrorEntry, ExecutionResult

        now = self._now()
        return ExecutionResult(
            execution_id=execution_id,
            status="failed",
            errors=[ExecutionErrorEntry(error=message, error_type=type(error).__name__)],
            started_at=now,
            completed_at=now,
        )

    def _record_run(self, schedule_id: str, result: ExecutionResult, manual: bool) -> None:
        now = self._now()

        def _apply(s: Schedule) -> None:
            s.last_run = now
            s.last_result = result.summary()
            s.run_count += 1

            if s.max_runs is not None and s.run_count >= s.max_runs:
                s.status = ScheduleStatus.COMPLETED
                s.enabled = False
            elif s.end_date is not None and _aware(now) >= _aware(s.end_date):
                s.status = ScheduleStatus.COMPLETED
                s.enabled = False
            elif result.status == "failed":
                s.status = ScheduleStatus.FAILED

            if not s.is_armed:
                s.next_run = None
            elif not manual:
                s.next_run = self.repository.compute_next_run(s, now)
                if s.next_run is None:
                    s.status = ScheduleStatus.COMPLETED
                    s.enabled = False

        try:
            self.repository.mutate(schedule_id, _apply)
        except ScheduleNotFoundError:
            logger.info(f"Schedule {schedule_id} was cancelled during its run")

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        with self._in_flight_lock:
            in_flight = sorted(self._in_flight)
        return SchedulerHealth(
            healthy=self._running and backend_health.get("healthy", False),
            backend=backend_health,
            schedules_enabled=self.repository.count_enabled(),
            in_flight=in_flight,
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def reset_stats(self) -> None:
        self._stats = SchedulerStats()


__all__ = ["SchedulerHealth", "SchedulerService", "SchedulerStats"]
