"""Tests for the flow graph domain model."""

import pytest

from visionflow.core.domain import (
    Connection,
    DuplicateNodeError,
    FlowGraph,
    OperatorNode,
    ParameterSpec,
    Port,
    PortDirection,
    PortKind,
    PortValue,
    kinds_compatible,
)
from visionflow.core.exceptions import ResourceNotFoundError, ValidationError


class TestPorts:
    """Test port kinds and tagged values."""

    def test_any_is_compatible_with_everything(self):
        assert kinds_compatible(PortKind.CONTOUR, PortKind.ANY)
        assert kinds_compatible(PortKind.ANY, PortKind.INTEGER)
        assert not kinds_compatible(PortKind.INTEGER, PortKind.FLOAT)

    def test_output_ports_are_never_required(self):
        port = Port("out", PortKind.IMAGE, PortDirection.OUTPUT, required=True)
        assert port.required is False

    def test_has_default(self):
        assert Port("x", default=0).has_default
        assert not Port("x").has_default

    def test_scalar_kind_follows_type(self):
        assert PortValue.scalar(3).kind == PortKind.INTEGER
        assert PortValue.scalar(3.5).kind == PortKind.FLOAT

    def test_geometry_requires_geometric_kind(self):
        assert PortValue.geometry(PortKind.POINT, (1, 2)).data == (1, 2)
        with pytest.raises(ValueError):
            PortValue.geometry(PortKind.STRING, "x")

    def test_released_marker(self):
        marker = PortValue.released_image((4, 4))
        assert marker.released
        assert marker.data is None
        assert marker.meta == {"shape": (4, 4)}

    def test_of_keeps_existing_value(self):
        value = PortValue.string("a")
        assert PortValue.of(PortKind.ANY, value) is value


class TestOperatorNode:
    """Test node ports and parameters."""

    def test_add_ports(self):
        node = OperatorNode("blur", "gaussian_blur")
        image_in = node.add_input("image", PortKind.IMAGE)
        node.add_output("image", PortKind.IMAGE)

        assert node.input_port("image") is image_in
        assert node.input_port(image_in.id) is image_in
        assert node.output_port("missing") is None

    def test_duplicate_port_names_rejected(self):
        node = OperatorNode("blur", "gaussian_blur")
        node.add_input("image")
        with pytest.raises(ValidationError):
            node.add_input("image")

    def test_ports_checked_on_construction(self):
        with pytest.raises(ValidationError):
            OperatorNode("n", "t", inputs=[Port("x", direction=PortDirection.OUTPUT)])

    def test_parameters(self):
        node = OperatorNode("threshold", "threshold")
        node.add_parameter(ParameterSpec(name="level", data_type="int", default=128, max_value=255))

        assert node.get_parameter("level") == 128
        node.set_parameter("level", 200)
        assert node.get_parameter("level") == 200
        assert node.parameter_values() == {"level": 200}
        assert node.get_parameter("undeclared", "fallback") == "fallback"

    def test_parameter_bounds_enforced(self):
        node = OperatorNode("threshold", "threshold")
        node.add_parameter(ParameterSpec(name="level", data_type="int", min_value=0, max_value=255))
        with pytest.raises(ValidationError):
            node.set_parameter("level", 300)

    def test_unknown_parameter(self):
        with pytest.raises(ResourceNotFoundError):
            OperatorNode("n", "t").set_parameter("nope", 1)

    def test_enable_disable(self):
        node = OperatorNode("n", "t")
        node.disable()
        assert not node.enabled
        node.enable()
        assert node.enabled


class TestFlowGraph:
    """Test graph construction and queries."""

    def test_connect_by_name_stores_port_ids(self, linear_graph):
        a, b = linear_graph.nodes["A"], linear_graph.nodes["B"]
        connection = linear_graph.connections[0]

        assert connection == Connection("A", a.outputs[0].id, "B", b.inputs[0].id)

    def test_connect_with_nodes_and_port_ids(self, make_node):
        graph = FlowGraph()
        a = graph.add_node(make_node("A", "source", with_input=False))
        b = graph.add_node(make_node("B", "add_one"))

        connection = graph.connect(a, a.outputs[0].id, b, b.inputs[0].id)

        assert connection.source_node == "A" and connection.target_node == "B"

    def test_connect_unknown_port(self, linear_graph):
        with pytest.raises(ResourceNotFoundError):
            linear_graph.connect("A", "nope", "C", "value")

    def test_connect_unknown_node(self, linear_graph):
        with pytest.raises(ResourceNotFoundError):
            linear_graph.connect("A", "value", "Z", "value")

    def test_duplicate_node(self, linear_graph, make_node):
        with pytest.raises(DuplicateNodeError):
            linear_graph.add_node(make_node("A", "source"))

    def test_remove_node_drops_its_connections(self, linear_graph):
        linear_graph.remove_node("B")
        assert "B" not in linear_graph
        assert linear_graph.connections == []

    def test_disconnect(self, linear_graph):
        linear_graph.disconnect(linear_graph.connections[0])
        assert linear_graph.predecessors("B") == set()

    def test_dependency_queries(self, diamond_graph):
        assert diamond_graph.dependency_map() == {
            "A": set(),
            "B": {"A"},
            "C": {"A"},
            "D": {"B", "C"},
        }
        assert diamond_graph.successors("A") == {"B", "C"}
        assert diamond_graph.entry_nodes() == ["A"]
        assert diamond_graph.terminal_nodes() == ["D"]

    def test_disabled_nodes_are_invisible(self, diamond_graph):
        diamond_graph.nodes["D"].disable()

        assert "D" not in diamond_graph.dependency_map()
        assert diamond_graph.terminal_nodes() == ["B", "C"]
        assert not diamond_graph.is_active(diamond_graph.connections[-1])

    def test_container_protocol(self, linear_graph):
        assert len(linear_graph) == 3
        assert [node.id for node in linear_graph] == ["A", "B", "C"]
        assert bool(FlowGraph()) is False


class TestDetectCycle:
    """Test three-color cycle detection."""

    def test_cycle(self):
        assert FlowGraph.detect_cycle({"a": {"b"}, "b": {"c"}, "c": {"a"}}) == (
            "Cycle detected: a -> b -> c -> a"
        )

    def test_self_loop(self):
        assert FlowGraph.detect_cycle({"a": {"a"}}) == "Cycle detected: a -> a"

    def test_acyclic(self):
        assert FlowGraph.detect_cycle({"a": set(), "b": {"a"}, "c": {"a", "b"}}) is None

    def test_unknown_dependencies_are_ignored(self):
        assert FlowGraph.detect_cycle({"a": {"ghost"}}) is None

    def test_long_chain(self):
        n = 5000
        chain = {f"n{i}": ({f"n{i - 1}"} if i else set()) for i in reversed(range(n))}
        assert FlowGraph.detect_cycle(chain) is None

    def test_cycle_at_the_end_of_a_long_chain(self):
        n = 3000
        chain = {f"n{i}": ({f"n{i - 1}"} if i else {"n2"}) for i in reversed(range(n))}
        assert FlowGraph.detect_cycle(chain) == "Cycle detected: n2 -> n1 -> n0 -> n2"
