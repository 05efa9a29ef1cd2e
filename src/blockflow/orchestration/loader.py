"""
Workflow/template loaders.

The scheduler never owns workflow definitions; it asks a loader for them
by id at firing time. Two loaders ship with the package:

- ``InMemoryWorkflowLoader``: a dict of graphs, for tests and embedding
- ``FileWorkflowLoader``: ``*.json`` / ``*.yaml`` / ``*.yml`` files in a
  directory, validated by the pydantic ``WorkflowSpec`` model

File Format (YAML)::

    apiVersion: blockflow/v1
    kind: Workflow
    metadata:
      id: storyboard
      name: Storyboard
    spec:
      nodes:
        - id: a
          number: A01
          content: "Write a one-line story about {{input}}"
        - id: b
          number: B01
          content: "Describe a cover image for [A01]"
      edges:
        - from: a
          to: b
          instruction: "Keep the tone of [A01]"

``metadata.id`` defaults to the file stem.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal, Protocol, runtime_checkable

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from blockflow.core.errors import TemplateNotFoundError, ValidationError
from blockflow.core.logging import get_logger
from blockflow.orchestration.graph import Edge, Node, WorkflowGraph

logger = get_logger(__name__)

WORKFLOW_SUFFIXES = (".json", ".yaml", ".yml")


@runtime_checkable
class WorkflowLoader(Protocol):
    """Collaborator the scheduler uses to fetch workflow definitions."""

    def list(self) -> list[dict[str, str]]:
        """Return ``[{"id": ..., "name": ...}]`` for every known workflow."""
        ...

    def load(self, workflow_id: str) -> WorkflowGraph:
        """Return the graph for ``workflow_id``.

        Raises:
            TemplateNotFoundError: unknown id
        """
        ...


class NodeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    content: str = ""
    type: str = "text"
    number: str | None = Field(default=None, pattern=r"^[A-Z]\d{2}$")
    metadata: dict[str, Any] = Field(default_factory=dict)


class EdgeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    from_id: str = Field(..., alias="from", min_length=1)
    to_id: str = Field(..., alias="to", min_length=1)
    instruction: str = ""


class WorkflowMetadataSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str | None = None
    name: str = Field(..., min_length=1)
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class WorkflowSpecSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nodes: list[NodeSpec] = Field(..., min_length=1)
    edges: list[EdgeSpec] = Field(default_factory=list)

    @field_validator("nodes")
    @classmethod
    def validate_unique_ids(cls, v: list[NodeSpec]) -> list[NodeSpec]:
        ids = [n.id for n in v]
        if len(ids) != len(set(ids)):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"Duplicate node ids: {duplicates}")
        return v


class WorkflowSpec(BaseModel):
    """Root model for workflow definition files.

    Cycles and dangling edges are not rejected here; the executor reports
    them as structural failures when the workflow runs.
    """

    model_config = ConfigDict(extra="forbid")

    apiVersion: Literal["blockflow/v1"] = "blockflow/v1"
    kind: Literal["Workflow"] = "Workflow"
    metadata: WorkflowMetadataSpec
    spec: WorkflowSpecSection

    def to_graph(self, default_id: str | None = None) -> WorkflowGraph:
        return WorkflowGraph(
            id=self.metadata.id or default_id,
            name=self.metadata.name,
            nodes=[
                Node(id=n.id, content=n.content, type=n.type, number=n.number, metadata=n.metadata)
                for n in self.spec.nodes
            ],
            edges=[Edge(from_id=e.from_id, to_id=e.to_id, instruction=e.instruction) for e in self.spec.edges],
        )

    @classmethod
    def from_text(cls, text: str, fmt: str = "yaml") -> WorkflowSpec:
        """Parse JSON or YAML text.

        Raises:
            ValidationError: unparsable text or schema mismatch
        """
        try:
            data = json.loads(text) if fmt == "json" else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValidationError(f"Invalid {fmt.upper()}: {e}", cause=e) from e

        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid workflow definition: {e}", cause=e) from e

    @classmethod
    def from_file(cls, path: str | Path) -> WorkflowSpec:
        path = Path(path)
        fmt = "json" if path.suffix == ".json" else "yaml"
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ValidationError(f"Workflow file {path.name} is not valid UTF-8", cause=e) from e
        return cls.from_text(text, fmt)


class InMemoryWorkflowLoader:
    """Loader backed by a dict of graphs.

    Example:
        >>> loader = InMemoryWorkflowLoader()
        >>> loader.register(WorkflowGraph(id="tpl_1", name="Demo", nodes=[Node("a")]))
        >>> loader.list()
        [{'id': 'tpl_1', 'name': 'Demo'}]
    """

    def __init__(self, graphs: dict[str, WorkflowGraph] | None = None):
        self._graphs: dict[str, WorkflowGraph] = dict(graphs or {})

    def register(self, graph: WorkflowGraph, workflow_id: str | None = None) -> str:
        workflow_id = workflow_id or graph.id
        if not workflow_id:
            raise ValidationError("Workflow graph needs an id to be registered")
        graph.id = workflow_id
        self._graphs[workflow_id] = graph
        return workflow_id

    def unregister(self, workflow_id: str) -> bool:
        return self._graphs.pop(workflow_id, None) is not None

    def list(self) -> list[dict[str, str]]:
        return [{"id": wid, "name": g.name or wid} for wid, g in self._graphs.items()]

    def load(self, workflow_id: str) -> WorkflowGraph:
        try:
            return self._graphs[workflow_id]
        except KeyError:
            raise TemplateNotFoundError(workflow_id) from None


class FileWorkflowLoader:
    """Loader reading workflow definition files from a directory."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _files(self) -> list[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(p for p in self.directory.iterdir() if p.suffix in WORKFLOW_SUFFIXES)

    def _scan(self) -> dict[str, tuple[Path, WorkflowSpec]]:
        found: dict[str, tuple[Path, WorkflowSpec]] = {}
        for path in self._files():
            try:
                spec = WorkflowSpec.from_file(path)
            except (ValidationError, OSError, ValueError) as e:
                logger.warning("loader.invalid_file", path=str(path), error=str(e))
                continue
            found.setdefault(spec.metadata.id or path.stem, (path, spec))
        return found

    def list(self) -> list[dict[str, str]]:
        return [{"id": wid, "name": spec.metadata.name} for wid, (_, spec) in self._scan().items()]

    def load(self, workflow_id: str) -> WorkflowGraph:
        for path in self._files():
            if path.stem == workflow_id:
                return WorkflowSpec.from_file(path).to_graph(default_id=path.stem)

        entry = self._scan().get(workflow_id)
        if entry is None:
            raise TemplateNotFoundError(workflow_id)
        path, spec = entry
        return spec.to_graph(default_id=path.stem)


__all__ = [
    "EdgeSpec",
    "FileWorkflowLoader",
    "InMemoryWorkflowLoader",
    "NodeSpec",
    "WorkflowLoader",
    "WorkflowSpec",
]
