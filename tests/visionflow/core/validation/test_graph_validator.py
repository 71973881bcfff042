"""Tests for GraphValidator."""

import pytest

from visionflow.core.domain import Connection, FlowGraph, OperatorNode, PortKind
from visionflow.core.validation import FlowValidationResult, GraphValidator, ValidationResult


@pytest.fixture
def validator() -> GraphValidator:
    return GraphValidator()


class TestGraphValidator:
    """Test each structural check."""

    def test_valid_graph(self, validator, diamond_graph):
        result = validator.validate(diamond_graph)
        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_empty_graph_is_structurally_valid(self, validator):
        assert validator.validate(FlowGraph()).valid

    def test_long_chain_added_in_reverse(self, validator, make_node):
        n = 1500
        graph = FlowGraph("long")
        for i in reversed(range(n)):
            graph.add_node(make_node(f"n{i}", "add_one", with_input=i > 0))
        for i in range(1, n):
            graph.connect(f"n{i - 1}", "value", f"n{i}", "value")

        result = validator.validate(graph)

        assert result.valid
        assert result.errors == []

    def test_unknown_node_reference(self, validator, linear_graph):
        linear_graph.connections.append(Connection("A", "p", "ghost", "q"))

        result = validator.validate(linear_graph)

        assert "Connection references unknown target node 'ghost'" in result.errors

    def test_unknown_port_reference(self, validator, linear_graph):
        linear_graph.connections.append(Connection("A", "missing-port", "C", "other"))

        result = validator.validate(linear_graph)

        assert any("unknown output port 'missing-port'" in e for e in result.errors)
        assert any("unknown input port 'other'" in e for e in result.errors)

    def test_fan_in(self, validator, linear_graph):
        linear_graph.connect("A", "value", "C", "value")

        result = validator.validate(linear_graph)

        assert result.errors == ["Input port 'C.value' has 2 incoming connections"]

    def test_incompatible_kinds(self, validator):
        graph = FlowGraph()
        src = OperatorNode("src", "t", id="src")
        src.add_output("text", PortKind.STRING)
        dst = OperatorNode("dst", "t", id="dst")
        dst.add_input("image", PortKind.IMAGE)
        graph.add_node(src)
        graph.add_node(dst)
        graph.connect("src", "text", "dst", "image")

        result = validator.validate(graph)

        assert result.errors == [
            "Incompatible connection 'src.text' (string) -> 'dst.image' (image)"
        ]

    def test_any_port_accepts_every_kind(self, validator):
        graph = FlowGraph()
        src = OperatorNode("src", "t", id="src")
        src.add_output("text", PortKind.STRING)
        dst = OperatorNode("dst", "t", id="dst")
        dst.add_input("value")
        graph.add_node(src)
        graph.add_node(dst)
        graph.connect("src", "text", "dst", "value")

        assert validator.validate(graph).valid

    def test_cycle(self, validator, make_node):
        graph = FlowGraph()
        graph.add_node(make_node("X", "t"))
        graph.add_node(make_node("Y", "t"))
        graph.connect("X", "value", "Y", "value")
        graph.connect("Y", "value", "X", "value")

        result = validator.validate(graph)

        assert result.errors == ["Cycle detected: X -> Y -> X"]

    def test_cycle_through_disabled_node_is_ignored(self, validator, make_node):
        graph = FlowGraph()
        graph.add_node(make_node("X", "t"))
        graph.add_node(make_node("Y", "t", enabled=False))
        graph.connect("X", "value", "Y", "value")
        graph.connect("Y", "value", "X", "value")

        result = validator.validate(graph)

        assert not any("Cycle" in e for e in result.errors)

    def test_unconnected_required_input(self, validator, make_node):
        graph = FlowGraph()
        graph.add_node(make_node("B", "t"))

        result = validator.validate(graph)

        assert result.errors == ["Required input 'B.value' is not connected"]

    @pytest.mark.parametrize("key", ["value", "B.value"])
    def test_provided_input_satisfies_port(self, validator, make_node, key):
        graph = FlowGraph()
        graph.add_node(make_node("B", "t"))
        assert validator.validate(graph, [key]).valid

    def test_optional_and_defaulted_inputs(self, validator):
        graph = FlowGraph()
        node = OperatorNode("n", "t")
        node.add_input("mask", PortKind.IMAGE, required=False)
        node.add_input("level", PortKind.INTEGER, default=3)
        graph.add_node(node)

        assert validator.validate(graph).valid

    def test_input_fed_only_by_disabled_node_warns(self, validator, linear_graph):
        linear_graph.nodes["B"].disable()

        result = validator.validate(linear_graph)

        assert result.valid
        assert result.warnings == [
            "Required input 'C.value' is fed only by disabled node(s): 'B'"
        ]

    def test_disabled_nodes_are_not_checked(self, validator, make_node):
        graph = FlowGraph()
        graph.add_node(make_node("B", "t", enabled=False))
        assert validator.validate(graph).valid

    def test_reports_every_problem(self, validator, make_node):
        graph = FlowGraph()
        graph.add_node(make_node("X", "t"))
        graph.add_node(make_node("Y", "t"))
        graph.add_node(make_node("Z", "t"))
        graph.connect("X", "value", "Y", "value")
        graph.connect("Y", "value", "X", "value")

        result = validator.validate(graph)

        assert len(result.errors) == 2

    def test_validation_does_not_mutate_graph(self, validator, diamond_graph):
        before = list(diamond_graph.connections)
        first = validator.validate(diamond_graph)
        second = validator.validate(diamond_graph)
        assert diamond_graph.connections == before
        assert first == second


class TestValidationResult:
    """Test result accumulation."""

    def test_merge(self):
        result = ValidationResult()
        other = ValidationResult(errors=["e"], warnings=["w"])
        result.merge(other)
        assert not result.valid
        assert result.warnings == ["w"]
        assert bool(result) is False

    def test_node_errors_are_mirrored(self):
        node = OperatorNode("blur", "gaussian_blur", id="n1")
        result = FlowValidationResult()

        result.add_node_error(node, "kernel must be odd")

        assert result.node_errors == {"n1": ["kernel must be odd"]}
        assert result.errors == ["Node 'blur': kernel must be odd"]

    def test_valid_is_serialized(self):
        assert ValidationResult().model_dump()["valid"] is True
