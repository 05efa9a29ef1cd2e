"""
Blockflow - scheduled execution of content-generation workflow graphs.

A workflow is a directed graph of nodes. Blockflow orders the graph,
runs each node through a caller-supplied generator with retry and timeout,
checkpoints progress so runs can pause, resume and recover, and fires
workflows on cron schedules.

Packages:
    blockflow.core           errors, logging, settings, key-value storage
    blockflow.core.scheduling  cron evaluation and the scheduler service
    blockflow.execution      run state, checkpoints, retry and timeout
    blockflow.orchestration  graphs, placeholders, loaders and the executor
    blockflow.cli            ``blockflow`` command-line interface
"""

__version__ = "0.1.0"

from blockflow.core.errors import BlockflowError
from blockflow.core.settings import BlockflowSettings, get_settings
from blockflow.execution.state import StateStore
from blockflow.orchestration.executor import WorkflowExecutor
from blockflow.orchestration.graph import Edge, Node, WorkflowGraph

__all__ = [
    "__version__",
    "BlockflowError",
    "BlockflowSettings",
    "Edge",
    "Node",
    "StateStore",
    "WorkflowExecutor",
    "WorkflowGraph",
    "get_settings",
]
