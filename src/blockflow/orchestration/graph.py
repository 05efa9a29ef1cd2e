"""
Workflow graph: nodes, edges, ordering and structural validation.

A node depends on every node with an edge into it. Ordering is Kahn's
algorithm over a ready-set kept as a heap keyed by (declared index,
node id), so eligible nodes are always taken in graph-declared order.

Architecture:
    ::

        WorkflowGraph(nodes, edges)
            │
            ├── validate_graph()    → GraphValidation (all problems at once)
            ├── find_cycle()        → first cycle found by DFS, or None
            ├── execution_order()   → [node ids]  (raises on cycle/dangling)
            └── dependents_of(id)   → transitive downstream ids

Tags:
    orchestration, graph, dag, topological-sort, blockflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import heapq
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from blockflow.core.errors import (
    CycleDetectedError,
    DanglingEdgeError,
    DuplicateNodeError,
    ValidationError,
)


@dataclass
class Node:
    """One content-generation step.

    ``number`` is the display label other nodes use in ``[A01]``-style
    placeholders; it defaults to the node id.
    """

    id: str
    content: str = ""
    type: str = "text"
    number: str | None = None
    status: str = "pending"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.number or self.id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "type": self.type,
            "number": self.number,
            "status": self.status,
            "metadata": self.metadata,
        }


@dataclass
class Edge:
    """Directed dependency ``from_id -> to_id``."""

    from_id: str
    to_id: str
    instruction: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"from_id": self.from_id, "to_id": self.to_id, "instruction": self.instruction}


@dataclass
class WorkflowGraph:
    """Nodes plus directed edges, as supplied by the caller."""

    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)
    id: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowGraph:
        """Build from plain data.

        Edge keys ``from``/``to`` are accepted as aliases for
        ``from_id``/``to_id``.
        """
        try:
            nodes = [Node(**n) for n in data.get("nodes", [])]
            edges = [
                Edge(
                    from_id=e.get("from_id", e.get("from")),
                    to_id=e.get("to_id", e.get("to")),
                    instruction=e.get("instruction") or "",
                )
                for e in data.get("edges", [])
            ]
        except TypeError as e:
            raise ValidationError(f"Invalid workflow graph: {e}", cause=e) from e
        return cls(nodes=nodes, edges=edges, id=data.get("id"), name=data.get("name"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]

    def node_map(self) -> dict[str, Node]:
        return {n.id: n for n in self.nodes}

    def index_of(self) -> dict[str, int]:
        """Declared position of each node (first occurrence wins)."""
        positions: dict[str, int] = {}
        for i, node in enumerate(self.nodes):
            positions.setdefault(node.id, i)
        return positions

    def incoming(self, node_id: str) -> list[Edge]:
        return [e for e in self.edges if e.to_id == node_id]

    def upstream_ids(self, node_id: str) -> set[str]:
        return {e.from_id for e in self.edges if e.to_id == node_id}

    def adjacency(self) -> dict[str, list[str]]:
        """``node id -> [direct dependents]`` over known nodes."""
        known = set(self.node_ids)
        adj: dict[str, list[str]] = {nid: [] for nid in self.node_ids}
        for edge in self.edges:
            if edge.from_id in known and edge.to_id in known:
                adj[edge.from_id].append(edge.to_id)
        return adj

    def dependents_of(self, node_id: str) -> set[str]:
        """Every node reachable from ``node_id`` (excluding itself)."""
        adj = self.adjacency()
        seen: set[str] = set()
        queue = deque(adj.get(node_id, []))
        while queue:
            current = queue.popleft()
            if current in seen or current == node_id:
                continue
            seen.add(current)
            queue.extend(adj.get(current, []))
        return seen


@dataclass
class GraphValidation:
    """All structural problems found in a graph."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"is_valid": self.is_valid, "errors": self.errors, "warnings": self.warnings}


def find_duplicates(graph: WorkflowGraph) -> list[str]:
    seen: set[str] = set()
    duplicates: list[str] = []
    for node in graph.nodes:
        if node.id in seen and node.id not in duplicates:
            duplicates.append(node.id)
        seen.add(node.id)
    return duplicates


def find_dangling(graph: WorkflowGraph) -> list[DanglingEdgeError]:
    known = set(graph.node_ids)
    problems = []
    for edge in graph.edges:
        if edge.from_id not in known:
            problems.append(DanglingEdgeError(edge.from_id, edge.to_id, edge.from_id))
        elif edge.to_id not in known:
            problems.append(DanglingEdgeError(edge.from_id, edge.to_id, edge.to_id))
    return problems


def find_cycle(graph: WorkflowGraph) -> list[str] | None:
    """Return one cycle as ``[a, b, ..., a]`` or None.

    Iterative three-colour DFS, visiting nodes in declared order.
    """
    adj = graph.adjacency()
    white, grey, black = 0, 1, 2
    colour = dict.fromkeys(adj, white)

    for root in graph.node_ids:
        if colour[root] != white:
            continue
        path: list[str] = [root]
        stack = [(root, iter(adj[root]))]
        colour[root] = grey
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                colour[node] = black
                stack.pop()
                path.pop()
                continue
            if colour[child] == grey:
                return path[path.index(child):] + [child]
            if colour[child] == white:
                colour[child] = grey
                path.append(child)
                stack.append((child, iter(adj[child])))
    return None


def execution_order(graph: WorkflowGraph) -> list[str]:
    """Topological order with ties broken by declared index, then id.

    Raises:
        DuplicateNodeError: two nodes share an id
        DanglingEdgeError: an edge references an unknown node
        CycleDetectedError: the graph is not acyclic
    """
    duplicates = find_duplicates(graph)
    if duplicates:
        raise DuplicateNodeError(duplicates[0])
    dangling = find_dangling(graph)
    if dangling:
        raise dangling[0]

    adj = graph.adjacency()
    position = graph.index_of()
    indegree: dict[str, int] = defaultdict(int)
    for targets in adj.values():
        for target in targets:
            indegree[target] += 1

    ready = [(position[nid], nid) for nid in graph.node_ids if indegree[nid] == 0]
    heapq.heapify(ready)

    order: list[str] = []
    while ready:
        _, nid = heapq.heappop(ready)
        order.append(nid)
        for target in adj[nid]:
            indegree[target] -= 1
            if indegree[target] == 0:
                heapq.heappush(ready, (position[target], target))

    if len(order) != len(graph.nodes):
        raise CycleDetectedError(find_cycle(graph) or sorted(set(graph.node_ids) - set(order)))
    return order


def validate_graph(graph: WorkflowGraph) -> GraphValidation:
    """Collect every structural problem instead of stopping at the first.

    Cycles, dangling edges and duplicate ids are errors. Placeholders that
    reference a block which is not a direct upstream node are warnings.
    """
    from blockflow.orchestration.placeholders import referenced_labels

    errors: list[str] = []
    warnings: list[str] = []

    if not graph.nodes:
        warnings.append("Workflow has no nodes")

    for node_id in find_duplicates(graph):
        errors.append(str(DuplicateNodeError(node_id)))
    for problem in find_dangling(graph):
        errors.append(str(problem))

    cycle = find_cycle(graph)
    if cycle:
        errors.append(str(CycleDetectedError(cycle)))

    nodes = graph.node_map()
    for node in graph.nodes:
        upstream_labels = {nodes[u].label for u in graph.upstream_ids(node.id) if u in nodes}
        for label in referenced_labels(node.content):
            if label not in upstream_labels:
                warnings.append(f"Node {node.id} references [{label}] which is not an upstream block")

    return GraphValidation(is_valid=not errors, errors=errors, warnings=warnings)


__all__ = [
    "Edge",
    "GraphValidation",
    "Node",
    "WorkflowGraph",
    "execution_order",
    "find_cycle",
    "find_dangling",
    "find_duplicates",
    "validate_graph",
]
