"""Blockflow orchestration -- workflow graphs and the executor that runs them.

::

    graph.py         Node, Edge, WorkflowGraph, validation, execution_order
    placeholders.py  [A01] block references and {{variable}} substitution
    loader.py        WorkflowSpec (YAML/JSON) and workflow loaders
    models.py        ExecutionOptions, ExecutionResult, ExecutionProgress
    executor.py      WorkflowExecutor: execute, resume, batch, pause, cancel
"""

from blockflow.orchestration.executor import WorkflowExecutor
from blockflow.orchestration.graph import (
    Edge,
    GraphValidation,
    Node,
    WorkflowGraph,
    execution_order,
    validate_graph,
)
from blockflow.orchestration.loader import (
    FileWorkflowLoader,
    InMemoryWorkflowLoader,
    WorkflowLoader,
    WorkflowSpec,
)
from blockflow.orchestration.models import (
    BatchResult,
    ExecutionOptions,
    ExecutionProgress,
    ExecutionResult,
    ExecutionStatistics,
    NodeResult,
)

__all__ = [
    "BatchResult",
    "Edge",
    "ExecutionOptions",
    "ExecutionProgress",
    "ExecutionResult",
    "ExecutionStatistics",
    "FileWorkflowLoader",
    "GraphValidation",
    "InMemoryWorkflowLoader",
    "Node",
    "NodeResult",
    "WorkflowExecutor",
    "WorkflowGraph",
    "WorkflowLoader",
    "WorkflowSpec",
    "execution_order",
    "validate_graph",
]
