"""
State & checkpoint store.

The sole durable writer of :class:`ExecutionState` records. Every mutation
is a read-modify-write of one record under a per-record lock, followed by
a single atomic write to the :class:`KeyValueStore`. Nothing is cached in
memory, so a second process (or the same process after a restart) sees
exactly what was last written.

Manifesto:
    A ten-minute run that dies at minute nine must not start over.
    Checkpoints are written synchronously so a returned checkpoint id is
    always durable, pause forces a checkpoint before the status flips, and
    recovery only ever *surfaces* candidates; it never resumes on its own.

Architecture:
    ::

        WorkflowExecutor ──begin/update_node/checkpoint/complete──┐
        SchedulerService ──list_recoverable/recover_interrupted──┐│
        CLI ─────────────── list_all/expire/export ─────────────┐││
                                                                ▼▼▼
                                  ┌───────────────────────────────┐
                                  │          StateStore           │
                                  │  record_lock(executions/<id>) │
                                  │  load → mutate → save         │
                                  │  notify listeners             │
                                  └───────────────┬───────────────┘
                                                  │ bytes (JSON)
                                                  ▼
                                           KeyValueStore

Tags:
    state, checkpoint, recovery, persistence, blockflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from blockflow.core.errors import (
    CheckpointNotFoundError,
    ExecutionStateNotFoundError,
    ValidationError,
)
from blockflow.core.logging import get_logger
from blockflow.core.settings import BlockflowSettings, get_settings
from blockflow.core.storage import KeyValueStore, record_lock
from blockflow.execution.models import (
    Checkpoint,
    ExecutionState,
    ExecutionStatus,
    ExecutionType,
    NodeExecutionState,
    utcnow,
)

logger = get_logger(__name__)

KEY_PREFIX = "executions/"

StateListener = Callable[[str, ExecutionState], Any]

_UPDATABLE_FIELDS = frozenset(
    {"status", "current_node_index", "variables", "current_batch_index", "metadata"}
)


def _key(execution_id: str) -> str:
    return f"{KEY_PREFIX}{execution_id}"


class StateStore:
    """Durable execution state with checkpoints.

    Example:
        >>> store = StateStore(MemoryKeyValueStore())
        >>> store.begin("exec_1", ["A", "B"], workflow_ref="tpl_1")
        >>> cp = store.checkpoint("exec_1", {"reason": "manual"})
        >>> store.pause("exec_1")
        True
        >>> [s.execution_id for s in store.list_recoverable()]
        ['exec_1']
    """

    def __init__(
        self,
        kv: KeyValueStore,
        settings: BlockflowSettings | None = None,
    ):
        settings = settings or get_settings()
        self._kv = kv
        self.checkpoint_interval_seconds = settings.checkpoint_interval_seconds
        self.max_checkpoints = settings.max_checkpoints
        self.max_state_age_seconds = settings.max_state_age_seconds
        self._listeners: list[StateListener] = []
        self._timers: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _load(self, execution_id: str) -> ExecutionState | None:
        raw = self._kv.get(_key(execution_id))
        if raw is None:
            return None
        try:
            return ExecutionState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("state.corrupt", execution_id=execution_id, error=str(e))
            return None

    def _require(self, execution_id: str) -> ExecutionState:
        state = self._load(execution_id)
        if state is None:
            raise ExecutionStateNotFoundError(execution_id)
        return state

    def _save(self, state: ExecutionState) -> None:
        state.updated_at = utcnow()
        payload = json.dumps(state.to_dict(), default=str).encode("utf-8")
        self._kv.set(_key(state.execution_id), payload)
        self._notify(state)

    def _notify(self, state: ExecutionState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state.execution_id, state)
            except Exception:
                logger.exception("state.listener_failed", execution_id=state.execution_id)

    def add_listener(self, callback: StateListener) -> None:
        """Register ``callback(execution_id, state)`` for every durable write."""
        self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def begin(
        self,
        execution_id: str,
        node_ids: list[str],
        *,
        workflow_ref: str | None = None,
        workflow_name: str | None = None,
        execution_type: ExecutionType | str = ExecutionType.MANUAL,
        configuration: dict[str, Any] | None = None,
        variables: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        batch_inputs: list[Any] | None = None,
        current_batch_index: int | None = None,
    ) -> ExecutionState:
        """Create and persist a new ``running`` state."""
        state = ExecutionState.create(
            execution_id,
            node_ids,
            workflow_ref=workflow_ref,
            workflow_name=workflow_name,
            execution_type=execution_type,
            variables=variables,
            configuration=configuration,
            metadata=metadata,
            batch_inputs=batch_inputs,
            current_batch_index=current_batch_index,
        )
        state.last_checkpoint_at = state.started_at
        with record_lock(_key(execution_id)):
            self._save(state)
        logger.info(
            "execution.begin",
            execution_id=execution_id,
            workflow_ref=workflow_ref,
            execution_type=state.execution_type.value,
            total_nodes=state.total_nodes,
        )
        return state

    def get(self, execution_id: str) -> ExecutionState | None:
        return self._load(execution_id)

    def update_node(
        self,
        execution_id: str,
        node_state: NodeExecutionState,
        current_node_index: int | None = None,
    ) -> ExecutionState:
        """Record a node transition and keep the id sets consistent."""
        with record_lock(_key(execution_id)):
            state = self._require(execution_id)
            state.node_states[node_state.node_id] = node_state
            state.mark_node(node_state.node_id, node_state.status)
            if current_node_index is not None:
                state.current_node_index = current_node_index
            self._save(state)
        return state

    def update(self, execution_id: str, **changes: Any) -> ExecutionState:
        """Update run-level fields.

        Accepted keys: status, current_node_index, variables,
        current_batch_index, metadata.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Cannot update execution fields: {sorted(unknown)}")

        with record_lock(_key(execution_id)):
            state = self._require(execution_id)
            previous = state.status
            for name, value in changes.items():
                if name == "status":
                    value = ExecutionStatus(value)
                setattr(state, name, value)
            if state.status == ExecutionStatus.PAUSED and previous != ExecutionStatus.PAUSED:
                state.paused_at = utcnow()
            elif state.status == ExecutionStatus.RUNNING and previous == ExecutionStatus.PAUSED:
                state.resumed_at = utcnow()
            self._save(state)
        return state

    def _append_checkpoint(self, state: ExecutionState, metadata: dict[str, Any]) -> Checkpoint:
        checkpoint = Checkpoint.create(
            state.execution_id,
            state.current_node_index,
            state.completed_nodes,
            state.variables,
            batch_index=state.current_batch_index,
            metadata=metadata,
        )
        state.checkpoints.append(checkpoint)
        state.last_checkpoint_at = checkpoint.created_at

        limit = state.configuration.get("max_checkpoints") or self.max_checkpoints
        if len(state.checkpoints) > limit:
            state.checkpoints = state.checkpoints[-limit:]
        return checkpoint

    def checkpoint(self, execution_id: str, metadata: dict[str, Any] | None = None) -> str:
        """Snapshot progress; the returned id is durable when this returns.

        Raises:
            ExecutionStateNotFoundError: unknown execution id
            StorageError: the write failed
        """
        with record_lock(_key(execution_id)):
            state = self._require(execution_id)
            checkpoint = self._append_checkpoint(state, dict(metadata or {}))
            self._save(state)

        logger.debug(
            "checkpoint.created",
            execution_id=execution_id,
            checkpoint_id=checkpoint.id,
            reason=checkpoint.reason,
            completed=len(checkpoint.completed_nodes),
        )
        return checkpoint.id

    def restore(self, execution_id: str, checkpoint_id: str) -> bool:
        """Roll progress back to a checkpoint.

        Every node not completed at the checkpoint goes back to ``pending``
        with its partial output cleared. The run becomes ``running``.
        Returns False when the run or checkpoint is unknown.
        """
        with record_lock(_key(execution_id)):
            state = self._load(execution_id)
            if state is None:
                return False
            checkpoint = state.get_checkpoint(checkpoint_id)
            if checkpoint is None:
                return False

            done = set(checkpoint.completed_nodes)
            state.current_node_index = checkpoint.current_node_index
            state.completed_nodes = set(done)
            state.failed_nodes = set()
            state.skipped_nodes = set()
            state.variables = dict(checkpoint.variables)
            state.current_batch_index = checkpoint.batch_index
            state.status = ExecutionStatus.RUNNING
            state.resumed_at = utcnow()
            state.completed_at = None

            for node_id, node_state in state.node_states.items():
                if node_id not in done:
                    node_state.reset()

            self._save(state)

        logger.info("execution.restored", execution_id=execution_id, checkpoint_id=checkpoint_id)
        return True

    def restore_latest(self, execution_id: str) -> bool:
        """Restore from the newest checkpoint, if any."""
        state = self._load(execution_id)
        if state is None or state.last_checkpoint is None:
            return False
        return self.restore(execution_id, state.last_checkpoint.id)

    def require_checkpoint(self, execution_id: str, checkpoint_id: str) -> Checkpoint:
        state = self._require(execution_id)
        checkpoint = state.get_checkpoint(checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(execution_id, checkpoint_id)
        return checkpoint

    def pause(self, execution_id: str) -> bool:
        """Checkpoint (``reason=pause``) and flip a running run to ``paused``."""
        with record_lock(_key(execution_id)):
            state = self._load(execution_id)
            if state is None or state.status != ExecutionStatus.RUNNING:
                return False
            self._append_checkpoint(state, {"reason": "pause"})
            state.status = ExecutionStatus.PAUSED
            state.paused_at = utcnow()
            self._save(state)

        self.stop_auto_checkpoint(execution_id)
        logger.info("execution.paused", execution_id=execution_id)
        return True

    def resume(self, execution_id: str) -> bool:
        """Flip a paused run back to ``running``."""
        with record_lock(_key(execution_id)):
            state = self._load(execution_id)
            if state is None or state.status != ExecutionStatus.PAUSED:
                return False
            state.status = ExecutionStatus.RUNNING
            state.resumed_at = utcnow()
            self._save(state)

        logger.info("execution.resumed", execution_id=execution_id)
        return True

    def complete(self, execution_id: str, status: ExecutionStatus | str) -> ExecutionState:
        """Finish a run with a final ``reason=completion`` checkpoint."""
        final = ExecutionStatus(status)
        if not final.is_terminal:
            raise ValidationError(f"Cannot complete execution with status {final.value}")

        self.stop_auto_checkpoint(execution_id)
        with record_lock(_key(execution_id)):
            state = self._require(execution_id)
            state.status = final
            state.completed_at = utcnow()
            self._append_checkpoint(state, {"reason": "completion", "final_status": final.value})
            self._save(state)

        logger.info("execution.complete", execution_id=execution_id, status=final.value)
        return state

    def delete(self, execution_id: str) -> bool:
        self.stop_auto_checkpoint(execution_id)
        with record_lock(_key(execution_id)):
            return self._kv.delete(_key(execution_id))

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def list_all(self) -> list[ExecutionState]:
        """Every readable state, newest first. Corrupt records are skipped."""
        states = []
        for key in self._kv.keys(KEY_PREFIX):
            state = self._load(key[len(KEY_PREFIX):])
            if state is not None:
                states.append(state)
        states.sort(key=lambda s: s.created_at, reverse=True)
        return states

    def list_recoverable(self) -> list[ExecutionState]:
        """Runs that are running or paused and have at least one checkpoint."""
        return [
            s
            for s in self.list_all()
            if s.status in (ExecutionStatus.RUNNING, ExecutionStatus.PAUSED) and s.checkpoints
        ]

    def recover_interrupted(self) -> list[ExecutionState]:
        """Mark recoverable ``running`` runs as ``paused`` and return all candidates.

        Nothing is resumed; the caller decides what to do with each run.
        """
        recovered = []
        for candidate in self.list_recoverable():
            if candidate.status == ExecutionStatus.RUNNING:
                with record_lock(_key(candidate.execution_id)):
                    state = self._require(candidate.execution_id)
                    if state.status == ExecutionStatus.RUNNING:
                        state.status = ExecutionStatus.PAUSED
                        state.paused_at = utcnow()
                        self._save(state)
                candidate = state
            recovered.append(candidate)

        if recovered:
            logger.info("execution.recovered", count=len(recovered))
        return recovered

    def expire(self, max_age_seconds: float | None = None) -> int:
        """Delete terminal runs started more than ``max_age_seconds`` ago.

        ``running`` and ``paused`` runs are never deleted.
        """
        age = max_age_seconds if max_age_seconds is not None else self.max_state_age_seconds
        cutoff = utcnow() - timedelta(seconds=age)

        removed = 0
        for state in self.list_all():
            started = state.started_at or state.created_at
            if state.is_terminal and started < cutoff:
                if self.delete(state.execution_id):
                    removed += 1

        if removed:
            logger.info("execution.expired", count=removed, max_age_seconds=age)
        return removed

    # ------------------------------------------------------------------
    # export / import
    # ------------------------------------------------------------------

    def export_states(self) -> str:
        """Serialize every state to a JSON document."""
        states = [s.to_dict() for s in self.list_all()]
        return json.dumps(
            {
                "export_date": utcnow().isoformat(),
                "state_count": len(states),
                "states": states,
            },
            indent=2,
            default=str,
        )

    def import_states(self, data: str, mode: str = "merge") -> int:
        """Load states from :meth:`export_states` output.

        ``merge`` keeps existing records with the same id; ``replace``
        deletes every existing record first.

        Raises:
            ValidationError: malformed document or unknown mode
        """
        if mode not in ("merge", "replace"):
            raise ValidationError(f"Unknown import mode: {mode}")

        try:
            document = json.loads(data)
            states = [ExecutionState.from_dict(s) for s in document["states"]]
        except (ValueError, KeyError, TypeError) as e:
            raise ValidationError(f"Failed to import states: {e}", cause=e) from e

        if mode == "replace":
            for key in self._kv.keys(KEY_PREFIX):
                self.delete(key[len(KEY_PREFIX):])

        imported = 0
        for state in states:
            with record_lock(_key(state.execution_id)):
                if mode == "merge" and self._kv.get(_key(state.execution_id)) is not None:
                    continue
                payload = json.dumps(state.to_dict(), default=str).encode("utf-8")
                self._kv.set(_key(state.execution_id), payload)
            self._notify(state)
            imported += 1

        logger.info("execution.imported", count=imported, mode=mode)
        return imported

    # ------------------------------------------------------------------
    # automatic checkpoints
    # ------------------------------------------------------------------

    def start_auto_checkpoint(self, execution_id: str, interval_seconds: float | None = None) -> None:
        """Create ``reason=automatic`` checkpoints while the run is ``running``.

        Must be called from inside a running event loop.
        """
        interval = interval_seconds if interval_seconds is not None else self.checkpoint_interval_seconds
        if not interval or interval <= 0:
            return

        self.stop_auto_checkpoint(execution_id)
        self._timers[execution_id] = asyncio.get_running_loop().create_task(
            self._auto_checkpoint_loop(execution_id, interval),
            name=f"checkpoint-{execution_id}",
        )

    async def _auto_checkpoint_loop(self, execution_id: str, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            state = self._load(execution_id)
            if state is None or state.status != ExecutionStatus.RUNNING:
                return
            self.checkpoint(execution_id, {"reason": "automatic"})

    def stop_auto_checkpoint(self, execution_id: str) -> None:
        task = self._timers.pop(execution_id, None)
        if task is not None and not task.done():
            task.cancel()

    @property
    def active_timers(self) -> list[str]:
        return [eid for eid, task in self._timers.items() if not task.done()]


__all__ = ["StateStore", "StateListener", "KEY_PREFIX"]
