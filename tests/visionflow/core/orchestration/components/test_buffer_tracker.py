"""Tests for BufferTracker."""

import numpy as np
import pytest

from visionflow.core.domain import FlowGraph, OperatorNode, PortKind, PortValue
from visionflow.core.orchestration import NodeExecutionResult, NodeStatus
from visionflow.core.orchestration.components import BufferTracker
from visionflow.core.pool import BufferPool, BufferShape

SHAPE = BufferShape.image(4, 4, channels=1)


def image_node(name: str, with_input: bool = True) -> OperatorNode:
    node = OperatorNode(name, "t", id=name)
    if with_input:
        node.add_input("image", PortKind.IMAGE)
    node.add_output("image", PortKind.IMAGE)
    return node


def image_result(node: OperatorNode, buffer: np.ndarray) -> NodeExecutionResult:
    return NodeExecutionResult(
        node.id,
        node.name,
        node.operator_type,
        NodeStatus.SUCCEEDED,
        outputs={"image": PortValue.image(buffer)},
    )


@pytest.fixture
def pool() -> BufferPool:
    return BufferPool()


@pytest.fixture
def fan_out() -> FlowGraph:
    """P feeds both X and Y."""
    graph = FlowGraph("fan-out")
    for node in (image_node("P", with_input=False), image_node("X"), image_node("Y")):
        graph.add_node(node)
    graph.connect("P", "image", "X", "image")
    graph.connect("P", "image", "Y", "image")
    return graph


class TestBufferTracker:
    """Test lease bookkeeping across a run."""

    def test_scratch_buffers_return_at_node_end(self, pool, fan_out):
        tracker = BufferTracker(pool, fan_out)
        node = fan_out.nodes["P"]
        tracker.rent("P", SHAPE)

        tracker.node_completed(node, NodeExecutionResult.failed(node, "boom"))

        assert pool.get_statistics().checked_out_count == 0
        assert tracker.outstanding == 0

    def test_early_release(self, pool):
        tracker = BufferTracker(pool)
        buffer = tracker.rent("P", SHAPE)
        assert tracker.release("P", buffer) is True
        assert tracker.release("P", buffer) is False
        assert not pool.is_checked_out(buffer)

    def test_output_waits_for_every_consumer(self, pool, fan_out):
        tracker = BufferTracker(pool, fan_out)
        producer = fan_out.nodes["P"]
        buffer = tracker.rent("P", SHAPE)
        result = image_result(producer, buffer)
        tracker.node_completed(producer, result)
        tracker.consumer_finished("P")

        tracker.consumer_finished("X")
        assert pool.is_checked_out(buffer)

        tracker.consumer_finished("Y")
        assert not pool.is_checked_out(buffer)
        assert result.outputs["image"].released
        assert result.outputs["image"].meta == {"shape": (4, 4)}

    @pytest.mark.parametrize(
        "publish",
        [lambda buf: buf[1:, :], lambda buf: buf.reshape(16), lambda buf: buf.T[::2]],
    )
    def test_view_output_holds_the_lease(self, pool, fan_out, publish):
        tracker = BufferTracker(pool, fan_out)
        producer = fan_out.nodes["P"]
        buffer = tracker.rent("P", SHAPE)
        result = image_result(producer, publish(buffer))

        tracker.node_completed(producer, result)
        tracker.consumer_finished("P")
        tracker.consumer_finished("X")
        assert pool.is_checked_out(buffer)
        assert tracker.outstanding == 1

        tracker.consumer_finished("Y")
        assert not pool.is_checked_out(buffer)
        assert result.outputs["image"].released

    def test_terminal_view_is_copied(self, pool):
        graph = FlowGraph()
        node = graph.add_node(image_node("T", with_input=False))
        tracker = BufferTracker(pool, graph)
        buffer = tracker.rent("T", SHAPE)
        buffer.fill(5)
        result = image_result(node, buffer[:2])
        tracker.node_completed(node, result)
        assert pool.is_checked_out(buffer)

        outputs = tracker.settle_terminals(["T"], {"T": result})

        copied = outputs["T.image"].data
        assert copied.shape == (2, 4)
        assert not np.shares_memory(copied, buffer)
        assert int(copied.min()) == 5
        assert not pool.is_checked_out(buffer)

    def test_release_accepts_a_view(self, pool):
        tracker = BufferTracker(pool)
        buffer = tracker.rent("P", SHAPE)
        assert tracker.release("P", buffer[:, :2]) is True
        assert not pool.is_checked_out(buffer)

    def test_unread_output_is_released_at_once(self, pool):
        graph = FlowGraph()
        producer = graph.add_node(image_node("P", with_input=False))
        graph.add_node(image_node("X"))
        graph.connect("P", "image", "X", "image")
        tracker = BufferTracker(pool, graph)
        buffer = tracker.rent("P", SHAPE)
        other = producer.add_output("debug", PortKind.IMAGE)
        debug = tracker.rent("P", SHAPE)
        outputs = {"image": PortValue.image(buffer), other.name: PortValue.image(debug)}
        result = NodeExecutionResult("P", "P", "t", NodeStatus.SUCCEEDED, outputs=outputs)

        tracker.node_completed(producer, result)

        assert not pool.is_checked_out(debug)
        assert pool.is_checked_out(buffer)

    def test_terminal_outputs_are_copied(self, pool):
        graph = FlowGraph()
        node = graph.add_node(image_node("T", with_input=False))
        tracker = BufferTracker(pool, graph)
        buffer = tracker.rent("T", SHAPE)
        buffer.fill(9)
        result = image_result(node, buffer)
        tracker.node_completed(node, result)

        outputs = tracker.settle_terminals(["T"], {"T": result})

        copied = outputs["T.image"].data
        assert copied is not buffer
        assert int(copied.max()) == 9
        assert result.outputs["image"].data is copied
        assert not pool.is_checked_out(buffer)

    def test_pass_through_keeps_buffer_until_settled(self, pool):
        graph = FlowGraph()
        producer = graph.add_node(image_node("P", with_input=False))
        forward = graph.add_node(image_node("F"))
        graph.connect("P", "image", "F", "image")
        tracker = BufferTracker(pool, graph)
        buffer = tracker.rent("P", SHAPE)
        produced = image_result(producer, buffer)
        tracker.node_completed(producer, produced)
        tracker.consumer_finished("P")

        forwarded = image_result(forward, buffer)
        tracker.node_completed(forward, forwarded)
        tracker.consumer_finished("F")
        assert pool.is_checked_out(buffer)

        outputs = tracker.settle_terminals(["F"], {"P": produced, "F": forwarded})

        assert not pool.is_checked_out(buffer)
        assert produced.outputs["image"].released
        assert outputs["F.image"].data is not buffer

    def test_finalize_returns_everything(self, pool, fan_out):
        tracker = BufferTracker(pool, fan_out)
        producer = fan_out.nodes["P"]
        tracker.rent("X", SHAPE)
        buffer = tracker.rent("P", SHAPE)
        tracker.node_completed(producer, image_result(producer, buffer))

        assert tracker.finalize() == 2
        assert pool.get_statistics().checked_out_count == 0
        assert tracker.outstanding == 0

    def test_without_pool_buffers_are_plain_arrays(self):
        tracker = BufferTracker(None)
        buffer = tracker.rent("P", SHAPE)
        assert buffer.shape == (4, 4)
        assert tracker.release("P", buffer) is False
        assert tracker.finalize() == 0
