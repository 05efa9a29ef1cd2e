"""Execution state domain models.

Defines the durable records written by the state store:
- NodeExecutionState: progress of a single node within a run
- Checkpoint: snapshot of run progress used for pause/resume/recovery
- ExecutionState: full record of one execution run

Sets of completed/failed/skipped node ids are kept mutually exclusive by
:meth:`ExecutionState.mark_node`. ``node_states`` is serialized as a list
of ``[node_id, state]`` pairs rather than a JSON object.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


class ExecutionStatus(str, Enum):
    """Status of an execution run.

    Transition graph::

        RUNNING → PAUSED | COMPLETED | FAILED | CANCELLED
        PAUSED  → RUNNING | CANCELLED
        COMPLETED / FAILED / CANCELLED → (terminal)
    """

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class NodeStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionType(str, Enum):
    """What started the run."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    BATCH = "batch"


@dataclass
class NodeExecutionState:
    """Progress of one node within a run."""

    node_id: str
    status: NodeStatus = NodeStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    retry_count: int = 0
    error: str | None = None
    output: Any = None

    def reset(self) -> None:
        """Return the node to ``pending`` and drop any partial result."""
        self.status = NodeStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.retry_count = 0
        self.error = None
        self.output = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "retry_count": self.retry_count,
            "error": self.error,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NodeExecutionState:
        return cls(
            node_id=data["node_id"],
            status=NodeStatus(data.get("status", NodeStatus.PENDING.value)),
            started_at=_parse_dt(data.get("started_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            retry_count=data.get("retry_count", 0),
            error=data.get("error"),
            output=data.get("output"),
        )


@dataclass
class Checkpoint:
    """Durable snapshot of progress.

    ``metadata`` carries at least ``reason`` (``automatic``, ``pause``,
    ``cancel``, ``completion`` or ``manual``).
    """

    id: str
    execution_id: str
    created_at: datetime
    current_node_index: int
    completed_nodes: list[str]
    variables: dict[str, Any] = field(default_factory=dict)
    batch_index: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        execution_id: str,
        current_node_index: int,
        completed_nodes: set[str] | list[str],
        variables: dict[str, Any],
        batch_index: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Checkpoint:
        now = utcnow()
        return cls(
            id=f"checkpoint_{int(now.timestamp() * 1000)}_{uuid.uuid4().hex[:8]}",
            execution_id=execution_id,
            created_at=now,
            current_node_index=current_node_index,
            completed_nodes=sorted(completed_nodes),
            variables=dict(variables),
            batch_index=batch_index,
            metadata=dict(metadata or {}),
        )

    @property
    def reason(self) -> str | None:
        return self.metadata.get("reason")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "execution_id": self.execution_id,
            "created_at": _iso(self.created_at),
            "current_node_index": self.current_node_index,
            "completed_nodes": list(self.completed_nodes),
            "variables": self.variables,
            "batch_index": self.batch_index,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            id=data["id"],
            execution_id=data["execution_id"],
            created_at=_parse_dt(data["created_at"]),
            current_node_index=data.get("current_node_index", 0),
            completed_nodes=list(data.get("completed_nodes", [])),
            variables=dict(data.get("variables") or {}),
            batch_index=data.get("batch_index"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class ExecutionState:
    """Full durable record of one execution run.

    Example:
        >>> state = ExecutionState.create("exec_1", ["A", "B"], workflow_ref="tpl_1")
        >>> state.mark_node("A", NodeStatus.COMPLETED)
        >>> state.completed_nodes
        {'A'}
    """

    execution_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    workflow_ref: str | None = None
    workflow_name: str | None = None
    execution_type: ExecutionType = ExecutionType.MANUAL
    current_node_index: int = 0
    total_nodes: int = 0
    completed_nodes: set[str] = field(default_factory=set)
    failed_nodes: set[str] = field(default_factory=set)
    skipped_nodes: set[str] = field(default_factory=set)
    node_states: dict[str, NodeExecutionState] = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    checkpoints: list[Checkpoint] = field(default_factory=list)
    configuration: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    batch_inputs: list[Any] | None = None
    current_batch_index: int | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    updated_at: datetime = field(default_factory=utcnow)
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    completed_at: datetime | None = None
    last_checkpoint_at: datetime | None = None

    @classmethod
    def create(
        cls,
        execution_id: str,
        node_ids: list[str],
        *,
        workflow_ref: str | None = None,
        workflow_name: str | None = None,
        execution_type: ExecutionType | str = ExecutionType.MANUAL,
        variables: dict[str, Any] | None = None,
        configuration: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        batch_inputs: list[Any] | None = None,
        current_batch_index: int | None = None,
    ) -> ExecutionState:
        """Create a new ``running`` state with every node ``pending``."""
        now = utcnow()
        return cls(
            execution_id=execution_id,
            workflow_ref=workflow_ref,
            workflow_name=workflow_name,
            execution_type=ExecutionType(execution_type),
            total_nodes=len(node_ids),
            node_states={nid: NodeExecutionState(node_id=nid) for nid in node_ids},
            variables=dict(variables or {}),
            configuration=dict(configuration or {}),
            metadata=dict(metadata or {}),
            batch_inputs=batch_inputs,
            current_batch_index=current_batch_index,
            created_at=now,
            started_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def last_checkpoint(self) -> Checkpoint | None:
        return self.checkpoints[-1] if self.checkpoints else None

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint | None:
        for checkpoint in self.checkpoints:
            if checkpoint.id == checkpoint_id:
                return checkpoint
        return None

    def mark_node(self, node_id: str, status: NodeStatus) -> None:
        """Move ``node_id`` into the id set matching ``status``.

        A node appears in at most one of completed/failed/skipped.
        """
        self.completed_nodes.discard(node_id)
        self.failed_nodes.discard(node_id)
        self.skipped_nodes.discard(node_id)
        if status == NodeStatus.COMPLETED:
            self.completed_nodes.add(node_id)
        elif status == NodeStatus.FAILED:
            self.failed_nodes.add(node_id)
        elif status == NodeStatus.SKIPPED:
            self.skipped_nodes.add(node_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "workflow_ref": self.workflow_ref,
            "workflow_name": self.workflow_name,
            "execution_type": self.execution_type.value,
            "current_node_index": self.current_node_index,
            "total_nodes": self.total_nodes,
            "completed_nodes": sorted(self.completed_nodes),
            "failed_nodes": sorted(self.failed_nodes),
            "skipped_nodes": sorted(self.skipped_nodes),
            "node_states": [[nid, ns.to_dict()] for nid, ns in self.node_states.items()],
            "variables": self.variables,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "configuration": self.configuration,
            "metadata": self.metadata,
            "batch_inputs": self.batch_inputs,
            "current_batch_index": self.current_batch_index,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
            "paused_at": _iso(self.paused_at),
            "resumed_at": _iso(self.resumed_at),
            "completed_at": _iso(self.completed_at),
            "last_checkpoint_at": _iso(self.last_checkpoint_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionState:
        """Rebuild from :meth:`to_dict` output."""
        return cls(
            execution_id=data["execution_id"],
            status=ExecutionStatus(data.get("status", ExecutionStatus.RUNNING.value)),
            workflow_ref=data.get("workflow_ref"),
            workflow_name=data.get("workflow_name"),
            execution_type=ExecutionType(data.get("execution_type", ExecutionType.MANUAL.value)),
            current_node_index=data.get("current_node_index", 0),
            total_nodes=data.get("total_nodes", 0),
            completed_nodes=set(data.get("completed_nodes", [])),
            failed_nodes=set(data.get("failed_nodes", [])),
            skipped_nodes=set(data.get("skipped_nodes", [])),
            node_states={
                nid: NodeExecutionState.from_dict(ns) for nid, ns in data.get("node_states", [])
            },
            variables=dict(data.get("variables") or {}),
            checkpoints=[Checkpoint.from_dict(c) for c in data.get("checkpoints", [])],
            configuration=dict(data.get("configuration") or {}),
            metadata=dict(data.get("metadata") or {}),
            batch_inputs=data.get("batch_inputs"),
            current_batch_index=data.get("current_batch_index"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            started_at=_parse_dt(data.get("started_at")),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            paused_at=_parse_dt(data.get("paused_at")),
            resumed_at=_parse_dt(data.get("resumed_at")),
            completed_at=_parse_dt(data.get("completed_at")),
            last_checkpoint_at=_parse_dt(data.get("last_checkpoint_at")),
        )


__all__ = [
    "Checkpoint",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutionType",
    "NodeExecutionState",
    "NodeStatus",
    "TERMINAL_STATUSES",
    "utcnow",
]
