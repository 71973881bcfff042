"""Shared fixtures for the visionflow test suite.

- registry: an ExecutorRegistry with small arithmetic executors
- make_node: factory for nodes with integer ports
- linear_graph / diamond_graph: the two graph shapes most tests run
"""

import asyncio

import pytest

from visionflow.core.domain import FlowGraph, OperatorNode, PortKind
from visionflow.core.exceptions import OperatorError
from visionflow.core.registry import ExecutorRegistry


@pytest.fixture
def registry() -> ExecutorRegistry:
    """Registry with ``source``, ``add_one``, ``sum``, ``fail`` and ``sleep`` executors."""
    registry = ExecutorRegistry()

    @registry.executor("source")
    async def source(node, inputs, context):
        return {"value": node.get_parameter("value", 1)}

    @registry.executor("add_one")
    async def add_one(node, inputs, context):
        await asyncio.sleep(0.01)
        return {"value": inputs["value"].data + 1}

    @registry.executor("sum")
    def total(node, inputs, context):
        return {"value": inputs["left"].data + inputs["right"].data}

    @registry.executor("fail")
    async def fail(node, inputs, context):
        raise OperatorError("bad parameter")

    @registry.executor("sleep")
    async def sleep(node, inputs, context):
        await context.cancel_token.sleep(node.get_parameter("seconds", 5.0))
        return {"value": inputs["value"].data if "value" in inputs else 0}

    return registry


@pytest.fixture
def make_node():
    """Factory building a node with an optional ``value`` input and a ``value`` output."""

    def _make(name: str, operator_type: str, with_input: bool = True, **kwargs) -> OperatorNode:
        node = OperatorNode(name, operator_type, id=name, **kwargs)
        if with_input:
            node.add_input("value", PortKind.INTEGER)
        node.add_output("value", PortKind.INTEGER)
        return node

    return _make


@pytest.fixture
def linear_graph(make_node) -> FlowGraph:
    """A -> B -> C, all ``add_one`` except the ``source`` head."""
    graph = FlowGraph("linear")
    graph.add_node(make_node("A", "source", with_input=False))
    graph.add_node(make_node("B", "add_one"))
    graph.add_node(make_node("C", "add_one"))
    graph.connect("A", "value", "B", "value")
    graph.connect("B", "value", "C", "value")
    return graph


@pytest.fixture
def diamond_graph(make_node) -> FlowGraph:
    """A -> B, A -> C, B -> D.left, C -> D.right."""
    graph = FlowGraph("diamond")
    graph.add_node(make_node("A", "source", with_input=False))
    graph.add_node(make_node("B", "add_one"))
    graph.add_node(make_node("C", "add_one"))
    d = OperatorNode("D", "sum", id="D")
    d.add_input("left", PortKind.INTEGER)
    d.add_input("right", PortKind.INTEGER)
    d.add_output("value", PortKind.INTEGER)
    graph.add_node(d)
    graph.connect("A", "value", "B", "value")
    graph.connect("A", "value", "C", "value")
    graph.connect("B", "value", "D", "left")
    graph.connect("C", "value", "D", "right")
    return graph
