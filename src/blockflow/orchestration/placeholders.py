"""Placeholder substitution for node inputs.

Two token kinds are resolved before a node's generation callback runs:

- ``[A01]`` block references, replaced by the output of the upstream node
  whose label is ``A01``
- ``{{name}}`` run variables (batch ``input``, caller variables)

Unknown tokens are left untouched.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from blockflow.orchestration.graph import Node, WorkflowGraph

BLOCK_REF = re.compile(r"\[([A-Z]\d{2})\]")
VARIABLE_REF = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def _text(value: Any) -> str:
    return value if isinstance(value, str) else str(value)


def referenced_labels(text: str) -> list[str]:
    """Block labels referenced in ``text``, in order of first appearance."""
    seen: list[str] = []
    for label in BLOCK_REF.findall(text or ""):
        if label not in seen:
            seen.append(label)
    return seen


def resolve(
    text: str,
    outputs: Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
) -> str:
    """Substitute block references and run variables in ``text``.

    Args:
        text: Template text
        outputs: ``label -> output`` for blocks whose output is available
        variables: ``name -> value`` run variables

    Example:
        >>> resolve("Expand [A01] for {{input}}", {"A01": "a cat"}, {"input": "kids"})
        'Expand a cat for kids'
    """
    if not text:
        return ""

    def _block(match: re.Match) -> str:
        label = match.group(1)
        if label in outputs and outputs[label] is not None:
            return _text(outputs[label])
        return match.group(0)

    resolved = BLOCK_REF.sub(_block, text)

    if variables:
        def _variable(match: re.Match) -> str:
            name = match.group(1)
            if name in variables and variables[name] is not None:
                return _text(variables[name])
            return match.group(0)

        resolved = VARIABLE_REF.sub(_variable, resolved)

    return resolved


def build_node_input(
    node: Node,
    graph: WorkflowGraph,
    outputs_by_id: Mapping[str, Any],
    variables: Mapping[str, Any] | None = None,
) -> str:
    """Resolve a node's content plus the instructions on its incoming edges.

    Each incoming edge with a non-empty instruction contributes one
    resolved paragraph after the node's own content.
    """
    nodes = graph.node_map()
    by_label = {
        nodes[nid].label: out for nid, out in outputs_by_id.items() if nid in nodes
    }

    parts = [resolve(node.content, by_label, variables)]
    for edge in graph.incoming(node.id):
        if edge.instruction and edge.instruction.strip():
            parts.append(resolve(edge.instruction, by_label, variables))

    return "\n\n".join(p for p in parts if p)


__all__ = ["BLOCK_REF", "VARIABLE_REF", "build_node_input", "referenced_labels", "resolve"]
