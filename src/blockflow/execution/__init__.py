"""Blockflow execution -- run state, checkpoints and node resilience.

ARCHITECTURE
────────────
::

    models.py    ExecutionState, NodeExecutionState, Checkpoint
    state.py     StateStore: persist, checkpoint, restore, recover, expire
    retry.py     RetryStrategy (exponential / constant / none) + RetryContext
    timeout.py   run_with_timeout_async, TimeoutExpired
"""

from blockflow.execution.models import (
    Checkpoint,
    ExecutionState,
    ExecutionStatus,
    ExecutionType,
    NodeExecutionState,
    NodeStatus,
)
from blockflow.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    strategy_for,
)
from blockflow.execution.state import StateStore
from blockflow.execution.timeout import TimeoutExpired, run_with_timeout_async

__all__ = [
    "Checkpoint",
    "ConstantBackoff",
    "ExecutionState",
    "ExecutionStatus",
    "ExecutionType",
    "ExponentialBackoff",
    "NoRetry",
    "NodeExecutionState",
    "NodeStatus",
    "RetryContext",
    "RetryStrategy",
    "StateStore",
    "TimeoutExpired",
    "run_with_timeout_async",
    "strategy_for",
]
