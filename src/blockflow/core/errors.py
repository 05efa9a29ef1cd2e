"""
Structured error types for blockflow.

Every failure the engine can surface belongs to one of five families, and
each family has its own propagation rule:

- **Validation** (malformed cron, unknown template): rejected synchronously,
  nothing persisted.
- **Structural** (cycle, dangling edge): the run is marked failed before any
  node executes.
- **Node execution**: retried per policy, then recorded against the node and
  propagated to dependents as ``skipped``.
- **Persistence**: reads degrade to empty collections, writes raise.
- **Run-level fatal**: anything else aborts the run with a single top-level
  error entry.

Manifesto:
    - **Typed hierarchy:** callers catch a family, not a string
    - **Explicit retry semantics:** every error knows if it is retryable
    - **Rich context:** errors carry execution/node/schedule ids for logging
    - **Error chaining:** the original exception is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                      BlockflowError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │  ValidationError        WorkflowError         StorageError       │
        │   CronValidationError    CycleDetectedError                      │
        │   TemplateNotFoundError  DanglingEdgeError    StateError         │
        │                          DuplicateNodeError    ExecutionState-   │
        │  NodeExecutionError                            NotFoundError     │
        │   (retryable)           ScheduleError          CheckpointNot-    │
        │                          ScheduleNotFound      FoundError        │
        │                          ScheduleCompleted                       │
        │                          ScheduleBusy                            │
        └─────────────────────────────────────────────────────────────────┘

Tags:
    error-handling, exception-hierarchy, retry-logic, blockflow

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"  # Cron syntax, unknown template
    STRUCTURE = "STRUCTURE"  # Cycles, dangling edges
    EXECUTION = "EXECUTION"  # Node generation failures
    TIMEOUT = "TIMEOUT"  # Node exceeded its allotted time
    STORAGE = "STORAGE"  # Persistence backend failures
    SCHEDULE = "SCHEDULE"  # Scheduler bookkeeping
    STATE = "STATE"  # Execution state lookups
    INTERNAL = "INTERNAL"  # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are emitted by :meth:`to_dict`, so the same context
    type serves node failures, schedule failures and storage failures.
    """

    execution_id: str | None = None
    workflow: str | None = None
    node_id: str | None = None
    schedule_id: str | None = None
    checkpoint_id: str | None = None
    key: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for name in ["execution_id", "workflow", "node_id", "schedule_id", "checkpoint_id", "key"]:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BlockflowError(Exception):
    """Base exception for all blockflow errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that the
    common case needs only a message.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BlockflowError:
        """Add context to this error (fluent API).

        Usage:
            raise StorageError("write failed").with_context(key="schedules")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION ERRORS (never retryable)
# =============================================================================


class ValidationError(BlockflowError):
    """Input rejected before anything is persisted."""

    default_category = ErrorCategory.VALIDATION


class CronValidationError(ValidationError):
    """Cron expression failed to parse or can never fire."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid cron expression {expression!r}: {reason}")


class TemplateNotFoundError(ValidationError):
    """Referenced workflow/template id is unknown to the loader."""

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template with ID {template_id} not found")


# =============================================================================
# STRUCTURAL ERRORS
# =============================================================================


class WorkflowError(BlockflowError):
    """Workflow graph cannot be executed as given."""

    default_category = ErrorCategory.STRUCTURE


class CycleDetectedError(WorkflowError):
    """The dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cycle detected in workflow graph: {' -> '.join(cycle)}")


class DanglingEdgeError(WorkflowError):
    """An edge references a node id that is not in the graph."""

    def __init__(self, from_id: str, to_id: str, missing: str):
        self.from_id = from_id
        self.to_id = to_id
        self.missing = missing
        super().__init__(f"Edge {from_id} -> {to_id} references missing node: {missing}")


class DuplicateNodeError(WorkflowError):
    """Two nodes share the same id."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Duplicate node id: {node_id}")


# =============================================================================
# NODE EXECUTION ERRORS
# =============================================================================


class NodeExecutionError(BlockflowError):
    """A node's generation callback failed after exhausting retries."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = True

    def __init__(self, node_id: str, message: str, *, attempts: int = 1, cause: Exception | None = None):
        self.node_id = node_id
        self.attempts = attempts
        super().__init__(message, cause=cause, context=ErrorContext(node_id=node_id))


# =============================================================================
# PERSISTENCE ERRORS
# =============================================================================


class StorageError(BlockflowError):
    """A durable write failed; the caller may retry."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


# =============================================================================
# SCHEDULER ERRORS
# =============================================================================


class ScheduleError(BlockflowError):
    """Scheduler-level failure."""

    default_category = ErrorCategory.SCHEDULE


class ScheduleNotFoundError(ScheduleError):
    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(
            f"Schedule with ID {schedule_id} not found",
            context=ErrorContext(schedule_id=schedule_id),
        )


class ScheduleCompletedError(ScheduleError):
    """Schedule reached a terminal status and can no longer run."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(
            f"Schedule {schedule_id} is completed",
            context=ErrorContext(schedule_id=schedule_id),
        )


class ScheduleBusyError(ScheduleError):
    """A previous firing of the same schedule is still in flight."""

    default_retryable = True

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(
            f"Schedule {schedule_id} already has an execution in flight",
            context=ErrorContext(schedule_id=schedule_id),
        )


# =============================================================================
# EXECUTION STATE ERRORS
# =============================================================================


class StateError(BlockflowError):
    default_category = ErrorCategory.STATE


class ExecutionStateNotFoundError(StateError):
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(
            f"Execution state not found: {execution_id}",
            context=ErrorContext(execution_id=execution_id),
        )


class CheckpointNotFoundError(StateError):
    def __init__(self, execution_id: str, checkpoint_id: str):
        self.execution_id = execution_id
        self.checkpoint_id = checkpoint_id
        super().__init__(
            f"Checkpoint {checkpoint_id} not found for execution {execution_id}",
            context=ErrorContext(execution_id=execution_id, checkpoint_id=checkpoint_id),
        )


# =============================================================================
# HELPERS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check whether an exception should be retried.

    Non-blockflow exceptions raised by a node callback are treated as
    retryable; the retry policy still caps the attempt count.
    """
    if isinstance(error, BlockflowError):
        return error.retryable
    return True


def categorize_error(error: Exception) -> ErrorCategory:
    """Map any exception onto an :class:`ErrorCategory`."""
    if isinstance(error, BlockflowError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (OSError, ValueError)):
        return ErrorCategory.EXECUTION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "BlockflowError",
    "ValidationError",
    "CronValidationError",
    "TemplateNotFoundError",
    "WorkflowError",
    "CycleDetectedError",
    "DanglingEdgeError",
    "DuplicateNodeError",
    "NodeExecutionError",
    "StorageError",
    "ScheduleError",
    "ScheduleNotFoundError",
    "ScheduleCompletedError",
    "ScheduleBusyError",
    "StateError",
    "ExecutionStateNotFoundError",
    "CheckpointNotFoundError",
    "is_retryable",
    "categorize_error",
]
