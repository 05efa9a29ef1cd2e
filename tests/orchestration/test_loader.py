"""Tests for workflow loaders and the definition file schema."""

from __future__ import annotations

import json

import pytest

from blockflow.core.errors import TemplateNotFoundError, ValidationError
from blockflow.orchestration.graph import Node, WorkflowGraph
from blockflow.orchestration.loader import (
    FileWorkflowLoader,
    InMemoryWorkflowLoader,
    WorkflowLoader,
    WorkflowSpec,
)

STORYBOARD_YAML = """\
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
"""


@pytest.fixture
def workflow_dir(tmp_path):
    (tmp_path / "storyboard.yaml").write_text(STORYBOARD_YAML)
    (tmp_path / "daily.json").write_text(
        json.dumps(
            {
                "metadata": {"name": "Daily digest"},
                "spec": {"nodes": [{"id": "only", "content": "Summarize today"}]},
            }
        )
    )
    (tmp_path / "broken.yml").write_text("metadata: [unclosed")
    (tmp_path / "notes.txt").write_text("ignored")
    return tmp_path


class TestWorkflowSpec:
    """pydantic schema for definition files."""

    def test_parses_yaml(self):
        spec = WorkflowSpec.from_text(STORYBOARD_YAML)
        graph = spec.to_graph()
        assert graph.id == "storyboard"
        assert graph.name == "Storyboard"
        assert [n.label for n in graph.nodes] == ["A01", "B01"]
        assert graph.edges[0].instruction == "Keep the tone of [A01]"

    def test_default_id(self):
        spec = WorkflowSpec.from_text('{"metadata": {"name": "x"}, "spec": {"nodes": [{"id": "a"}]}}', "json")
        assert spec.to_graph(default_id="from_stem").id == "from_stem"

    @pytest.mark.parametrize(
        "document",
        [
            {"metadata": {"name": "x"}, "spec": {"nodes": []}},
            {"metadata": {"name": "x"}, "spec": {"nodes": [{"id": "a"}, {"id": "a"}]}},
            {"metadata": {"name": "x"}, "spec": {"nodes": [{"id": "a", "number": "a1"}]}},
            {"metadata": {"name": "x"}, "spec": {"nodes": [{"id": "a"}]}, "extra": 1},
            {"kind": "Pipeline", "metadata": {"name": "x"}, "spec": {"nodes": [{"id": "a"}]}},
            {"spec": {"nodes": [{"id": "a"}]}},
        ],
    )
    def test_rejects_invalid_documents(self, document):
        with pytest.raises(ValidationError):
            WorkflowSpec.from_text(json.dumps(document), "json")

    def test_rejects_malformed_text(self):
        with pytest.raises(ValidationError, match="Invalid YAML"):
            WorkflowSpec.from_text("key: [unclosed")

    def test_cycles_are_not_schema_errors(self):
        text = json.dumps(
            {
                "metadata": {"name": "loop"},
                "spec": {
                    "nodes": [{"id": "a"}, {"id": "b"}],
                    "edges": [{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
                },
            }
        )
        assert len(WorkflowSpec.from_text(text, "json").to_graph().edges) == 2


class TestInMemoryLoader:
    def test_register_and_load(self):
        loader = InMemoryWorkflowLoader()
        graph = WorkflowGraph(name="Demo", nodes=[Node("a")])
        assert loader.register(graph, "tpl_1") == "tpl_1"
        assert loader.load("tpl_1") is graph
        assert graph.id == "tpl_1"
        assert loader.list() == [{"id": "tpl_1", "name": "Demo"}]

    def test_register_requires_id(self):
        with pytest.raises(ValidationError):
            InMemoryWorkflowLoader().register(WorkflowGraph())

    def test_unknown_raises(self):
        with pytest.raises(TemplateNotFoundError):
            InMemoryWorkflowLoader().load("missing")

    def test_unregister(self, loader):
        assert loader.unregister("chain") is True
        assert loader.unregister("chain") is False

    def test_satisfies_protocol(self, loader):
        assert isinstance(loader, WorkflowLoader)


class TestFileLoader:
    def test_lists_valid_files_only(self, workflow_dir):
        assert FileWorkflowLoader(workflow_dir).list() == [
            {"id": "daily", "name": "Daily digest"},
            {"id": "storyboard", "name": "Storyboard"},
        ]

    def test_load_by_stem(self, workflow_dir):
        graph = FileWorkflowLoader(workflow_dir).load("daily")
        assert graph.id == "daily"
        assert graph.node_ids == ["only"]

    def test_load_by_metadata_id(self, tmp_path):
        (tmp_path / "file_name.yaml").write_text(STORYBOARD_YAML)
        assert FileWorkflowLoader(tmp_path).load("storyboard").name == "Storyboard"

    def test_unknown_raises(self, workflow_dir):
        with pytest.raises(TemplateNotFoundError):
            FileWorkflowLoader(workflow_dir).load("nope")

    def test_invalid_file_raises_on_direct_load(self, workflow_dir):
        with pytest.raises(ValidationError):
            FileWorkflowLoader(workflow_dir).load("broken")

    def test_missing_directory_is_empty(self, tmp_path):
        assert FileWorkflowLoader(tmp_path / "absent").list() == []

    def test_undecodable_file_skipped_in_listing(self, workflow_dir):
        (workflow_dir / "binary.yaml").write_bytes(b"\xff\xfe\x00metadata")
        loader = FileWorkflowLoader(workflow_dir)
        assert [w["id"] for w in loader.list()] == ["daily", "storyboard"]
        with pytest.raises(ValidationError, match="not valid UTF-8"):
            loader.load("binary")
