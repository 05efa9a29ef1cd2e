"""
Workflow executor - drive a node graph to completion.

Manifesto:
    Content generation is slow and flaky; ordering is not allowed to be.
    The executor owns only the in-memory progress of the run it is
    driving. Every node transition is handed to the StateStore so that a
    run can be paused, cancelled or recovered from a checkpoint, and a
    single failing node never aborts its sibling branches.

Architecture:
    ::

        execute(graph, options, on_node_execute, on_progress)
            │
            ├─ execution_order(graph)   cycle / dangling → status=failed,
            │                           nothing executed
            ├─ StateStore.begin()       + automatic checkpoint task
            │
            ▼
        ┌────────────────────────────────────────────────────────────┐
        │ loop                                                       │
        │   ready = pending nodes whose upstream is all finished,    │
        │           in declared order (ties by id)                   │
        │   start up to max_concurrency tasks                        │
        │   await FIRST_COMPLETED                                    │
        │     completed → record output, unlock dependents           │
        │     failed    → record error, mark dependents skipped      │
        │   on_progress(ExecutionProgress) after every transition    │
        │   pause / cancel honoured at node boundaries only          │
        └────────────────────────────────────────────────────────────┘
            │
            ▼
        StateStore.complete() / pause()   → ExecutionResult

    Each node attempt is wrapped as::

        RetryContext(strategy).run_async(
            run_with_timeout_async(on_node_execute(node_id, resolved_input))
        )

Tags:
    orchestration, executor, dag, retry, checkpoint, blockflow

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any

from blockflow.core.errors import (
    ExecutionStateNotFoundError,
    NodeExecutionError,
    StateError,
    ValidationError,
    WorkflowError,
)
from blockflow.core.logging import LogContext, get_logger
from blockflow.core.settings import BlockflowSettings, get_settings
from blockflow.execution.models import (
    ExecutionState,
    ExecutionStatus,
    ExecutionType,
    NodeExecutionState,
    NodeStatus,
    utcnow,
)
from blockflow.execution.retry import RetryContext, strategy_for
from blockflow.execution.state import StateStore
from blockflow.execution.timeout import run_with_timeout_async
from blockflow.orchestration.graph import Node, WorkflowGraph, execution_order
from blockflow.orchestration.models import (
    BatchResult,
    ExecutionErrorEntry,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStatistics,
    NodeResult,
)
from blockflow.orchestration.placeholders import build_node_input

logger = get_logger(__name__)

NodeGenerator = Callable[[str, str], Awaitable[Any]]
ProgressCallback = Callable[[ExecutionProgress], Any]


@dataclass
class _RunControl:
    """Live, in-memory handle on a run being driven."""

    execution_id: str
    started_at: datetime
    statistics: ExecutionStatistics
    segment_start: float = field(default_factory=time.monotonic)
    prior_elapsed: float = 0.0
    current_node_id: str | None = None
    pause_requested: bool = False
    cancel_requested: bool = False

    def elapsed(self) -> float:
        return self.prior_elapsed + (time.monotonic() - self.segment_start)

    def snapshot(self, status: str) -> ExecutionProgress:
        self.statistics.total_execution_time = self.elapsed()
        stats = replace(self.statistics)
        return ExecutionProgress(
            execution_id=self.execution_id,
            status=status,
            current_node_id=self.current_node_id,
            statistics=stats,
            started_at=self.started_at,
            estimated_completion=_estimate(stats),
        )


def _estimate(stats: ExecutionStatistics) -> datetime | None:
    if stats.completed_blocks == 0:
        return None
    remaining = stats.total_blocks - (
        stats.completed_blocks + stats.failed_blocks + stats.skipped_blocks
    )
    return utcnow() + timedelta(seconds=stats.average_block_time * max(0, remaining))


async def _invoke(generator: NodeGenerator, node_id: str, node_input: str) -> Any:
    result = generator(node_id, node_input)
    if inspect.isawaitable(result):
        return await result
    return result


class WorkflowExecutor:
    """Run workflow graphs with retry, timeout, checkpoints and live control.

    Example:
        >>> executor = WorkflowExecutor(state_store)
        >>> result = await executor.execute(graph, {"max_retries": 2}, generate)
        >>> result.statistics.completed_blocks
        3
    """

    def __init__(
        self,
        state_store: StateStore | None = None,
        settings: BlockflowSettings | None = None,
    ):
        self._settings = settings or get_settings()
        self._state_store = state_store
        self._controls: dict[str, _RunControl] = {}
        self._counter = itertools.count(1)

    @property
    def state_store(self) -> StateStore | None:
        return self._state_store

    def new_execution_id(self) -> str:
        return f"exec_{int(time.time() * 1000)}_{next(self._counter)}"

    def _coerce_options(self, options: ExecutionOptions | dict[str, Any] | None) -> ExecutionOptions:
        if isinstance(options, ExecutionOptions):
            return options
        return ExecutionOptions.from_dict(options, self._settings)

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    async def execute(
        self,
        graph: WorkflowGraph,
        options: ExecutionOptions | dict[str, Any] | None = None,
        on_node_execute: NodeGenerator | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        execution_id: str | None = None,
        execution_type: ExecutionType | str = ExecutionType.MANUAL,
        workflow_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
        batch_inputs: list[Any] | None = None,
        batch_index: int | None = None,
    ) -> ExecutionResult:
        """Execute ``graph`` once.

        Args:
            graph: Nodes and edges to run
            options: ExecutionOptions or the raw option bag
            on_node_execute: ``(node_id, resolved_input) -> output``
            on_progress: Called with an ExecutionProgress after every transition
            execution_id: Explicit id (generated when omitted)
            execution_type: manual, scheduled or batch
            workflow_ref: Template/workflow id recorded on the state

        Returns:
            ExecutionResult with status completed, failed, cancelled or paused
        """
        if on_node_execute is None:
            raise ValidationError("on_node_execute is required")

        opts = self._coerce_options(options)
        execution_id = execution_id or self.new_execution_id()
        workflow_ref = workflow_ref or graph.id
        started_at = utcnow()

        async with LogContext(execution_id=execution_id, workflow=workflow_ref):
            logger.info(
                "workflow.start",
                node_count=len(graph.nodes),
                edge_count=len(graph.edges),
                execution_type=ExecutionType(execution_type).value,
                max_concurrency=opts.max_concurrency,
            )

            try:
                order = execution_order(graph)
            except WorkflowError as e:
                return self._structural_failure(
                    graph, opts, e, execution_id, execution_type, workflow_ref, started_at
                )

            if self._state_store is not None:
                self._state_store.begin(
                    execution_id,
                    order,
                    workflow_ref=workflow_ref,
                    workflow_name=graph.name,
                    execution_type=execution_type,
                    configuration=opts.to_dict(),
                    variables=opts.variables,
                    metadata=metadata,
                    batch_inputs=batch_inputs,
                    current_batch_index=batch_index,
                )

            return await self._drive(
                graph,
                order,
                opts,
                on_node_execute,
                on_progress,
                control=_RunControl(
                    execution_id=execution_id,
                    started_at=started_at,
                    statistics=ExecutionStatistics(total_blocks=len(order)),
                ),
                variables=dict(opts.variables),
                prior_outputs={},
            )

    async def resume(
        self,
        execution_id: str,
        graph: WorkflowGraph,
        on_node_execute: NodeGenerator,
        on_progress: ProgressCallback | None = None,
        options: ExecutionOptions | dict[str, Any] | None = None,
        checkpoint_id: str | None = None,
    ) -> ExecutionResult:
        """Continue a paused, restored or interrupted run.

        With ``checkpoint_id`` the run is first rolled back to that
        checkpoint. A paused run without one continues from its latest
        checkpoint. A running run (interrupted, or already rolled back with
        :meth:`StateStore.restore`) continues from its stored node states.
        Completed nodes keep their recorded outputs; everything else is
        attempted again.

        Raises:
            StateError: no state store, or the run is already terminal
            ExecutionStateNotFoundError: unknown execution id
            CheckpointNotFoundError: ``checkpoint_id`` is not a checkpoint of the run
        """
        store = self._require_store()
        state = store.get(execution_id)
        if state is None:
            raise ExecutionStateNotFoundError(execution_id)
        if state.is_terminal:
            raise StateError(
                f"Execution {execution_id} is {state.status.value} and cannot be resumed"
            ).with_context(execution_id=execution_id)
        if execution_id in self._controls:
            raise StateError(f"Execution {execution_id} is already running").with_context(
                execution_id=execution_id
            )

        if checkpoint_id is not None:
            store.restore(execution_id, store.require_checkpoint(execution_id, checkpoint_id).id)
        elif state.status == ExecutionStatus.PAUSED:
            if state.last_checkpoint is not None:
                store.restore(execution_id, state.last_checkpoint.id)
            else:
                store.resume(execution_id)
        state = store.get(execution_id)

        opts = self._coerce_options(options if options is not None else state.configuration)
        order = execution_order(graph)
        prior = {
            nid: state.node_states[nid].output
            for nid in state.completed_nodes
            if nid in state.node_states and state.node_states[nid].status == NodeStatus.COMPLETED
        }

        control = _RunControl(
            execution_id=execution_id,
            started_at=state.started_at or state.created_at,
            statistics=ExecutionStatistics(total_blocks=len(order)),
            prior_elapsed=float(state.metadata.get("elapsed_seconds", 0.0)),
        )

        async with LogContext(execution_id=execution_id, workflow=state.workflow_ref):
            logger.info("workflow.resume", already_completed=len(prior))
            return await self._drive(
                graph,
                order,
                opts,
                on_node_execute,
                on_progress,
                control=control,
                variables=dict(state.variables),
                prior_outputs=prior,
            )

    async def execute_batch(
        self,
        graph: WorkflowGraph,
        inputs: list[Any],
        options: ExecutionOptions | dict[str, Any] | None = None,
        on_node_execute: NodeGenerator | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        workflow_ref: str | None = None,
    ) -> BatchResult:
        """Run ``graph`` once per input with ``{{input}}`` and ``{{batch_index}}`` bound.

        Runs are sequential and share a ``batch_id``. Cancelling one run
        stops the remaining inputs.
        """
        opts = self._coerce_options(options)
        batch_id = f"batch_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        batch = BatchResult(batch_id=batch_id)

        logger.info("batch.start", batch_id=batch_id, input_count=len(inputs))
        for index, value in enumerate(inputs):
            run_options = replace(
                opts, variables={**opts.variables, "input": value, "batch_index": index}
            )
            result = await self.execute(
                graph,
                run_options,
                on_node_execute,
                on_progress,
                execution_type=ExecutionType.BATCH,
                workflow_ref=workflow_ref,
                metadata={"batch_id": batch_id},
                batch_inputs=list(inputs),
                batch_index=index,
            )
            batch.results.append(result)
            if result.status == ExecutionStatus.CANCELLED.value:
                logger.warning("batch.cancelled", batch_id=batch_id, at_index=index)
                break

        logger.info(
            "batch.complete",
            batch_id=batch_id,
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch

    def pause(self, execution_id: str) -> bool:
        """Request a cooperative pause at the next node boundary.

        A run not driven by this executor but still ``running`` in the
        store is paused directly.
        """
        control = self._controls.get(execution_id)
        if control is not None:
            control.pause_requested = True
            logger.info("workflow.pause_requested", execution_id=execution_id)
            return True
        if self._state_store is not None:
            return self._state_store.pause(execution_id)
        return False

    def cancel(self, execution_id: str) -> bool:
        """Request cancellation at the next node boundary.

        A paused run in the store is cancelled immediately.
        """
        control = self._controls.get(execution_id)
        if control is not None:
            control.cancel_requested = True
            logger.info("workflow.cancel_requested", execution_id=execution_id)
            return True

        if self._state_store is None:
            return False
        state = self._state_store.get(execution_id)
        if state is None or state.is_terminal:
            return False
        self._state_store.checkpoint(execution_id, {"reason": "cancel"})
        self._state_store.complete(execution_id, ExecutionStatus.CANCELLED)
        return True

    def get_status(self, execution_id: str) -> ExecutionProgress | None:
        """Live progress for a driven run, else progress rebuilt from the store."""
        control = self._controls.get(execution_id)
        if control is not None:
            return control.snapshot(ExecutionStatus.RUNNING.value)

        if self._state_store is None:
            return None
        state = self._state_store.get(execution_id)
        if state is None:
            return None
        return _progress_from_state(state)

    @property
    def active_executions(self) -> list[str]:
        return list(self._controls)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    def _require_store(self) -> StateStore:
        if self._state_store is None:
            raise StateError("Resuming requires a StateStore")
        return self._state_store

    def _structural_failure(
        self,
        graph: WorkflowGraph,
        opts: ExecutionOptions,
        error: WorkflowError,
        execution_id: str,
        execution_type: ExecutionType | str,
        workflow_ref: str | None,
        started_at: datetime,
    ) -> ExecutionResult:
        logger.error("workflow.invalid", error=error.message, error_type=type(error).__name__)

        if self._state_store is not None:
            self._state_store.begin(
                execution_id,
                list(dict.fromkeys(graph.node_ids)),
                workflow_ref=workflow_ref,
                workflow_name=graph.name,
                execution_type=execution_type,
                configuration=opts.to_dict(),
                metadata={"error": error.to_dict()},
            )
            self._state_store.complete(execution_id, ExecutionStatus.FAILED)

        return ExecutionResult(
            execution_id=execution_id,
            status=ExecutionStatus.FAILED.value,
            statistics=ExecutionStatistics(total_blocks=len(graph.nodes)),
            errors=[ExecutionErrorEntry(error=error.message, error_type=type(error).__name__)],
            started_at=started_at,
            completed_at=utcnow(),
        )

    async def _emit(self, on_progress: ProgressCallback | None, control: _RunControl) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(control.snapshot(ExecutionStatus.RUNNING.value))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("workflow.progress_callback_failed")

    def _record(self, execution_id: str, node_state: NodeExecutionState, index: int) -> None:
        if self._state_store is not None:
            self._state_store.update_node(execution_id, node_state, current_node_index=index)

    async def _run_node(
        self,
        node: Node,
        node_input: str,
        generator: NodeGenerator,
        opts: ExecutionOptions,
    ) -> tuple[NodeResult, Exception | None]:
        def on_retry(attempt: int, error: Exception, delay: float) -> None:
            logger.warning(
                "node.retry",
                node_id=node.id,
                attempt=attempt,
                error=str(error),
                delay_seconds=delay,
            )

        ctx = RetryContext(
            strategy_for(opts.max_retries, opts.retry_delay, opts.backoff_multiplier),
            on_retry=on_retry,
        )

        async def attempt() -> Any:
            return await run_with_timeout_async(
                _invoke(generator, node.id, node_input),
                opts.node_timeout_seconds,
                operation=f"node {node.id}",
            )

        started = utcnow()
        try:
            output = await ctx.run_async(attempt)
        except Exception as e:
            return (
                NodeResult(
                    node_id=node.id,
                    status=NodeStatus.FAILED.value,
                    error=str(e),
                    attempts=ctx.attempts,
                    started_at=started,
                    completed_at=utcnow(),
                ),
                e,
            )

        return (
            NodeResult(
                node_id=node.id,
                status=NodeStatus.COMPLETED.value,
                output=output,
                attempts=ctx.attempts,
                started_at=started,
                completed_at=utcnow(),
            ),
            None,
        )

    async def _drive(
        self,
        graph: WorkflowGraph,
        order: list[str],
        opts: ExecutionOptions,
        generator: NodeGenerator,
        on_progress: ProgressCallback | None,
        *,
        control: _RunControl,
        variables: dict[str, Any],
        prior_outputs: dict[str, Any],
    ) -> ExecutionResult:
        execution_id = control.execution_id
        store = self._state_store
        nodes = graph.node_map()
        position = graph.index_of()
        upstream = {nid: graph.upstream_ids(nid) for nid in order}

        outputs: dict[str, Any] = dict(prior_outputs)
        results: dict[str, NodeResult] = {
            nid: NodeResult(node_id=nid, status=NodeStatus.COMPLETED.value, output=out)
            for nid, out in prior_outputs.items()
        }
        finished: set[str] = set(prior_outputs)
        failed: set[str] = set()
        errors: list[ExecutionErrorEntry] = []
        pending: list[str] = [nid for nid in order if nid not in finished]
        running: dict[asyncio.Task, str] = {}
        stats = control.statistics
        stats.completed_blocks = len(prior_outputs)

        self._controls[execution_id] = control
        if store is not None and opts.checkpoint_enabled:
            store.start_auto_checkpoint(execution_id, opts.checkpoint_interval_seconds)

        status: ExecutionStatus
        try:
            while True:
                if not (control.pause_requested or control.cancel_requested):
                    ready = sorted(
                        (nid for nid in pending if upstream[nid] <= finished),
                        key=lambda n: (position[n], n),
                    )
                    for nid in ready:
                        if len(running) >= opts.max_concurrency:
                            break
                        pending.remove(nid)
                        node = nodes[nid]
                        node_input = build_node_input(node, graph, outputs, variables)
                        control.current_node_id = nid
                        self._record(
                            execution_id,
                            NodeExecutionState(nid, NodeStatus.RUNNING, started_at=utcnow()),
                            len(finished),
                        )
                        logger.debug("node.start", node_id=nid, label=node.label)
                        task = asyncio.create_task(
                            self._run_node(node, node_input, generator, opts),
                            name=f"{execution_id}:{nid}",
                        )
                        running[task] = nid
                        await self._emit(on_progress, control)

                if not running:
                    break

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for task in sorted(done, key=lambda t: position[running[t]]):
                    nid = running.pop(task)
                    node_result, error = task.result()
                    results[nid] = node_result
                    finished.add(nid)

                    if error is None:
                        outputs[nid] = node_result.output
                        stats.completed_blocks += 1
                        self._record(
                            execution_id,
                            NodeExecutionState(
                                nid,
                                NodeStatus.COMPLETED,
                                started_at=node_result.started_at,
                                completed_at=node_result.completed_at,
                                retry_count=node_result.attempts - 1,
                                output=node_result.output,
                            ),
                            len(finished),
                        )
                        logger.info("node.complete", node_id=nid, attempts=node_result.attempts)
                    else:
                        self._on_node_failed(
                            graph, nodes[nid], node_result, error, failed, errors, stats,
                            execution_id, len(finished),
                        )
                        if opts.skip_dependents_on_failure:
                            for dep in sorted(graph.dependents_of(nid), key=lambda n: position[n]):
                                if dep not in pending:
                                    continue
                                pending.remove(dep)
                                finished.add(dep)
                                stats.skipped_blocks += 1
                                results[dep] = NodeResult(node_id=dep, status=NodeStatus.SKIPPED.value)
                                self._record(
                                    execution_id,
                                    NodeExecutionState(dep, NodeStatus.SKIPPED),
                                    len(finished),
                                )
                                logger.info("node.skipped", node_id=dep, reason="dependency_failed")
                                await self._emit(on_progress, control)

                    await self._emit(on_progress, control)

            if control.cancel_requested:
                status = ExecutionStatus.CANCELLED
            elif control.pause_requested and pending:
                status = ExecutionStatus.PAUSED
            elif failed:
                status = ExecutionStatus.FAILED
            else:
                status = ExecutionStatus.COMPLETED

        except Exception as e:
            logger.exception("workflow.aborted", error=str(e))
            for task in running:
                task.cancel()
            errors.append(ExecutionErrorEntry(error=str(e), error_type=type(e).__name__))
            status = ExecutionStatus.FAILED
        finally:
            self._controls.pop(execution_id, None)
            if store is not None:
                store.stop_auto_checkpoint(execution_id)

        stats.total_execution_time = control.elapsed()
        if store is not None:
            self._finish_state(store, execution_id, status, stats.total_execution_time)

        logger.info(
            "workflow.complete",
            status=status.value,
            completed=stats.completed_blocks,
            failed=stats.failed_blocks,
            skipped=stats.skipped_blocks,
            duration_seconds=round(stats.total_execution_time, 3),
        )

        return ExecutionResult(
            execution_id=execution_id,
            status=status.value,
            results=[results[nid] for nid in order if nid in results],
            statistics=stats,
            errors=errors,
            started_at=control.started_at,
            completed_at=utcnow(),
        )

    def _on_node_failed(
        self,
        graph: WorkflowGraph,
        node: Node,
        node_result: NodeResult,
        error: Exception,
        failed: set[str],
        errors: list[ExecutionErrorEntry],
        stats: ExecutionStatistics,
        execution_id: str,
        index: int,
    ) -> None:
        failure = NodeExecutionError(
            node.id,
            f"Node {node.id} failed after {node_result.attempts} attempt(s): {error}",
            attempts=node_result.attempts,
            cause=error,
        )
        failed.add(node.id)
        stats.failed_blocks += 1
        errors.append(
            ExecutionErrorEntry(
                error=str(error),
                node_id=node.id,
                node_label=node.label,
                error_type=type(error).__name__,
                retry_count=max(0, node_result.attempts - 1),
            )
        )
        self._record(
            execution_id,
            NodeExecutionState(
                node.id,
                NodeStatus.FAILED,
                started_at=node_result.started_at,
                completed_at=node_result.completed_at,
                retry_count=max(0, node_result.attempts - 1),
                error=str(error),
            ),
            index,
        )
        logger.warning("node.failed", **failure.to_dict())

    def _finish_state(
        self,
        store: StateStore,
        execution_id: str,
        status: ExecutionStatus,
        elapsed: float,
    ) -> None:
        state = store.get(execution_id)
        if state is None:
            return
        store.update(execution_id, metadata={**state.metadata, "elapsed_seconds": elapsed})

        if status == ExecutionStatus.PAUSED:
            store.pause(execution_id)
            return
        if status == ExecutionStatus.CANCELLED:
            store.checkpoint(execution_id, {"reason": "cancel"})
        store.complete(execution_id, status)


def _progress_from_state(state: ExecutionState) -> ExecutionProgress:
    stats = ExecutionStatistics(
        total_blocks=state.total_nodes,
        completed_blocks=len(state.completed_nodes),
        failed_blocks=len(state.failed_nodes),
        skipped_blocks=len(state.skipped_nodes),
        total_execution_time=float(state.metadata.get("elapsed_seconds", 0.0)),
    )
    current = next(
        (nid for nid, ns in state.node_states.items() if ns.status == NodeStatus.RUNNING),
        None,
    )
    return ExecutionProgress(
        execution_id=state.execution_id,
        status=state.status.value,
        current_node_id=current,
        statistics=stats,
        started_at=state.started_at or state.created_at,
        estimated_completion=None if state.is_terminal else _estimate(stats),
    )


__all__ = ["NodeGenerator", "ProgressCallback", "WorkflowExecutor"]
