"""Executor option and result models.

``ExecutionOptions`` is parsed from the opaque option bag a Schedule
carries; unknown keys are kept in ``extra`` and ignored by the executor.
Result objects mirror the run: one ``NodeResult`` per node, aggregate
``ExecutionStatistics`` and a list of ``ExecutionErrorEntry``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import TYPE_CHECKING, Any

from blockflow.execution.models import utcnow

if TYPE_CHECKING:
    from blockflow.core.settings import BlockflowSettings


@dataclass
class ExecutionOptions:
    """Per-run executor configuration.

    Attributes:
        max_concurrency: Eligible nodes run at once (1 = strictly sequential)
        max_retries: Retries after the first failed attempt
        retry_delay: Seconds between attempts (base delay for backoff)
        backoff_multiplier: Switches retries to exponential backoff
        node_timeout_seconds: Per-node deadline; None waits forever
        skip_dependents_on_failure: Mark downstream nodes ``skipped``
        checkpoint_enabled: Run the automatic checkpoint timer
        checkpoint_interval_seconds: Timer period (None = settings default)
        max_checkpoints: Checkpoints retained for this run (None = default)
        variables: ``{{name}}`` substitutions for every node
    """

    max_concurrency: int = 1
    max_retries: int = 3
    retry_delay: float = 1.0
    backoff_multiplier: float | None = None
    node_timeout_seconds: float | None = None
    skip_dependents_on_failure: bool = True
    checkpoint_enabled: bool = True
    checkpoint_interval_seconds: float | None = None
    max_checkpoints: int | None = None
    variables: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        settings: BlockflowSettings | None = None,
    ) -> ExecutionOptions:
        """Parse an option bag.

        A nested ``retry_policy`` dict (``max_retries``, ``retry_delay``,
        ``backoff_multiplier``) is flattened. Unknown keys go to ``extra``.
        """
        data = dict(data or {})
        retry_policy = data.pop("retry_policy", None) or {}
        for key in ("max_retries", "retry_delay", "backoff_multiplier"):
            if key in retry_policy and key not in data:
                data[key] = retry_policy[key]

        if settings is not None:
            data.setdefault("max_retries", settings.default_max_retries)
            data.setdefault("retry_delay", settings.default_retry_delay_seconds)

        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        options = cls(**kwargs, extra=extra)
        if options.max_concurrency < 1:
            options.max_concurrency = 1
        return options

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        extra = result.pop("extra")
        result.update(extra)
        return result


@dataclass
class NodeResult:
    """Outcome of one node."""

    node_id: str
    status: str
    output: Any = None
    error: str | None = None
    attempts: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "attempts": self.attempts,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class ExecutionStatistics:
    """Running totals. ``average_block_time`` is 0 when nothing completed."""

    total_blocks: int = 0
    completed_blocks: int = 0
    failed_blocks: int = 0
    skipped_blocks: int = 0
    total_execution_time: float = 0.0

    @property
    def average_block_time(self) -> float:
        if self.completed_blocks == 0:
            return 0.0
        return self.total_execution_time / self.completed_blocks

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_blocks": self.total_blocks,
            "completed_blocks": self.completed_blocks,
            "failed_blocks": self.failed_blocks,
            "skipped_blocks": self.skipped_blocks,
            "total_execution_time": self.total_execution_time,
            "average_block_time": self.average_block_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionStatistics:
        return cls(
            total_blocks=data.get("total_blocks", 0),
            completed_blocks=data.get("completed_blocks", 0),
            failed_blocks=data.get("failed_blocks", 0),
            skipped_blocks=data.get("skipped_blocks", 0),
            total_execution_time=data.get("total_execution_time", 0.0),
        )


@dataclass
class ExecutionErrorEntry:
    """One entry in a run's error list. ``node_id`` is None for run-level errors."""

    error: str
    node_id: str | None = None
    node_label: str | None = None
    error_type: str | None = None
    retry_count: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "node_label": self.node_label,
            "error": self.error,
            "error_type": self.error_type,
            "retry_count": self.retry_count,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExecutionErrorEntry:
        ts = data.get("timestamp")
        return cls(
            error=data.get("error", ""),
            node_id=data.get("node_id"),
            node_label=data.get("node_label"),
            error_type=data.get("error_type"),
            retry_count=data.get("retry_count", 0),
            timestamp=datetime.fromisoformat(ts) if ts else utcnow(),
        )


@dataclass
class ExecutionResult:
    """Final outcome of one run."""

    execution_id: str
    status: str
    results: list[NodeResult] = field(default_factory=list)
    statistics: ExecutionStatistics = field(default_factory=ExecutionStatistics)
    errors: list[ExecutionErrorEntry] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"

    def result_for(self, node_id: str) -> NodeResult | None:
        for result in self.results:
            if result.node_id == node_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "status": self.status,
            "results": [r.to_dict() for r in self.results],
            "statistics": self.statistics.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def summary(self) -> dict[str, Any]:
        """Compact form stored as a Schedule's ``last_result``."""
        return {
            "execution_id": self.execution_id,
            "status": self.status,
            "statistics": self.statistics.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class ExecutionProgress:
    """Live snapshot handed to ``on_progress`` after every node transition."""

    execution_id: str
    status: str
    current_node_id: str | None
    statistics: ExecutionStatistics
    started_at: datetime
    estimated_completion: datetime | None = None

    @property
    def percent_complete(self) -> float:
        stats = self.statistics
        if stats.total_blocks == 0:
            return 100.0
        done = stats.completed_blocks + stats.failed_blocks + stats.skipped_blocks
        return 100.0 * done / stats.total_blocks

    def to_dict(self) -> dict[str, Any]:
        return {
            "execution_id": self.execution_id,
            "status": self.status,
            "current_node_id": self.current_node_id,
            "statistics": self.statistics.to_dict(),
            "percent_complete": self.percent_complete,
            "started_at": self.started_at.isoformat(),
            "estimated_completion": (
                self.estimated_completion.isoformat() if self.estimated_completion else None
            ),
        }


@dataclass
class BatchResult:
    """One ``ExecutionResult`` per batch input plus aggregate totals."""

    batch_id: str
    results: list[ExecutionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.status == "completed")

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def statistics(self) -> ExecutionStatistics:
        combined = ExecutionStatistics()
        for result in self.results:
            s = result.statistics
            combined.total_blocks += s.total_blocks
            combined.completed_blocks += s.completed_blocks
            combined.failed_blocks += s.failed_blocks
            combined.skipped_blocks += s.skipped_blocks
            combined.total_execution_time += s.total_execution_time
        return combined

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "statistics": self.statistics.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }


__all__ = [
    "BatchResult",
    "ExecutionErrorEntry",
    "ExecutionOptions",
    "ExecutionProgress",
    "ExecutionResult",
    "ExecutionStatistics",
    "NodeResult",
]
