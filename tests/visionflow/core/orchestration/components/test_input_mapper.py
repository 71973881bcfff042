"""Tests for InputMapper."""

import numpy as np
import pytest

from visionflow.core.domain import FlowGraph, OperatorNode, PortKind, PortValue
from visionflow.core.orchestration import NodeExecutionResult, NodeStatus
from visionflow.core.orchestration.components import InputMapper, wrap_value


def result_with(node_id: str, status=NodeStatus.SUCCEEDED, **outputs) -> NodeExecutionResult:
    return NodeExecutionResult(
        node_id,
        node_id,
        "t",
        status,
        outputs={name: PortValue.scalar(v) for name, v in outputs.items()},
    )


@pytest.fixture
def mapper() -> InputMapper:
    return InputMapper()


class TestInputMapper:
    """Test input gathering."""

    def test_connected_input(self, mapper, linear_graph):
        inputs, missing = mapper.gather(
            linear_graph.nodes["B"], linear_graph, {"A": result_with("A", value=7)}
        )
        assert inputs["value"].data == 7
        assert missing == []

    def test_failed_source_leaves_input_missing(self, mapper, linear_graph):
        results = {"A": NodeExecutionResult("A", "A", "t", NodeStatus.FAILED)}
        inputs, missing = mapper.gather(linear_graph.nodes["B"], linear_graph, results)
        assert inputs == {}
        assert missing == ["value"]

    def test_released_value_is_missing(self, mapper, linear_graph):
        result = NodeExecutionResult(
            "A", "A", "t", NodeStatus.SUCCEEDED, outputs={"value": PortValue.released_image((2, 2))}
        )
        _, missing = mapper.gather(linear_graph.nodes["B"], linear_graph, {"A": result})
        assert missing == ["value"]

    def test_disabled_source_falls_back_to_default(self, mapper):
        graph = FlowGraph()
        src = OperatorNode("src", "t", id="src", enabled=False)
        src.add_output("value", PortKind.INTEGER)
        dst = OperatorNode("dst", "t", id="dst")
        dst.add_input("value", PortKind.INTEGER, default=9)
        graph.add_node(src)
        graph.add_node(dst)
        graph.connect("src", "value", "dst", "value")

        inputs, missing = mapper.gather(dst, graph, {"src": result_with("src", value=1)})

        assert inputs["value"].data == 9
        assert missing == []

    def test_initial_input_precedence(self, mapper):
        node = OperatorNode("B", "t", id="B")
        node.add_input("value", PortKind.INTEGER)

        qualified, _ = mapper.gather(node, None, {}, {"value": 1, "B.value": 2})
        bare, _ = mapper.gather(node, None, {}, {"value": 1})

        assert qualified["value"].data == 2
        assert bare["value"].data == 1

    def test_optional_input_is_simply_absent(self, mapper):
        node = OperatorNode("B", "t")
        node.add_input("mask", PortKind.IMAGE, required=False)
        inputs, missing = mapper.gather(node, None, {})
        assert inputs == {}
        assert missing == []

    def test_connection_ignores_initial_inputs(self, mapper, linear_graph):
        inputs, missing = mapper.gather(
            linear_graph.nodes["B"], linear_graph, {}, {"value": 100}
        )
        assert inputs == {}
        assert missing == ["value"]


class TestWrapValue:
    """Test kind inference for values."""

    @pytest.mark.parametrize(
        "data, kind",
        [
            (np.zeros((2, 2)), PortKind.IMAGE),
            (True, PortKind.BOOLEAN),
            (3, PortKind.INTEGER),
            (2.5, PortKind.FLOAT),
            ("x", PortKind.STRING),
            ((1, 2), PortKind.ANY),
        ],
    )
    def test_any_port_infers_kind(self, data, kind):
        assert wrap_value(PortKind.ANY, data).kind == kind

    def test_declared_kind_is_used(self):
        assert wrap_value(PortKind.POINT, (1, 2)).kind == PortKind.POINT

    def test_port_value_passes_through(self):
        value = PortValue.string("x")
        assert wrap_value(PortKind.INTEGER, value) is value
