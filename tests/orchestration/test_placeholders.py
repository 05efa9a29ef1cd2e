"""Tests for placeholder substitution."""

from blockflow.orchestration.graph import Edge, Node, WorkflowGraph
from blockflow.orchestration.placeholders import build_node_input, referenced_labels, resolve


class TestResolve:
    def test_block_reference(self):
        assert resolve("Expand [A01]", {"A01": "a cat"}) == "Expand a cat"

    def test_unknown_reference_left_untouched(self):
        assert resolve("Expand [A01] and [Z99]", {"A01": "x"}) == "Expand x and [Z99]"

    def test_none_output_left_untouched(self):
        assert resolve("Expand [A01]", {"A01": None}) == "Expand [A01]"

    def test_non_string_output(self):
        assert resolve("Count [A01]", {"A01": 3}) == "Count 3"

    def test_variables(self):
        assert resolve("Story about {{ input }} #{{batch_index}}", {}, {"input": "dogs", "batch_index": 0}) == (
            "Story about dogs #0"
        )

    def test_unknown_variable_left_untouched(self):
        assert resolve("Hi {{name}}", {}, {"other": 1}) == "Hi {{name}}"

    def test_lowercase_brackets_are_not_references(self):
        assert resolve("[a01] [A1]", {"a01": "x", "A1": "y"}) == "[a01] [A1]"

    def test_empty(self):
        assert resolve("", {"A01": "x"}) == ""

    def test_referenced_labels_unique_in_order(self):
        assert referenced_labels("[B02] then [A01] then [B02]") == ["B02", "A01"]


class TestBuildNodeInput:
    def test_chain_input(self, chain_graph):
        node = chain_graph.node_map()["B"]
        assert build_node_input(node, chain_graph, {"A": "My Title"}) == "Outline for My Title"

    def test_edge_instructions_appended(self):
        graph = WorkflowGraph(
            nodes=[Node("A", number="A01"), Node("B", content="Summarize [A01]")],
            edges=[Edge("A", "B", instruction="Keep the tone of [A01]"), Edge("A", "B", instruction="  ")],
        )
        node_input = build_node_input(graph.node_map()["B"], graph, {"A": "calm"})
        assert node_input == "Summarize calm\n\nKeep the tone of calm"

    def test_empty_content_uses_instructions_only(self):
        graph = WorkflowGraph(
            nodes=[Node("A"), Node("B")],
            edges=[Edge("A", "B", instruction="Continue {{input}}")],
        )
        assert build_node_input(graph.node_map()["B"], graph, {}, {"input": "x"}) == "Continue x"
