"""Input gathering: turns upstream results and caller inputs into node inputs."""

from collections.abc import Mapping
from typing import Any

import numpy as np

from visionflow.core.domain.graph import FlowGraph, OperatorNode
from visionflow.core.domain.ports import Port, PortKind, PortValue
from visionflow.core.orchestration.models import NodeExecutionResult

__all__ = ["InputMapper", "wrap_value"]


def _infer_kind(data: Any) -> PortKind:
    if isinstance(data, np.ndarray):
        return PortKind.IMAGE
    if isinstance(data, bool):
        return PortKind.BOOLEAN
    if isinstance(data, int):
        return PortKind.INTEGER
    if isinstance(data, float):
        return PortKind.FLOAT
    if isinstance(data, str):
        return PortKind.STRING
    return PortKind.ANY


def wrap_value(kind: PortKind, data: Any) -> PortValue:
    """Tag ``data`` with ``kind``; ``any`` ports infer the kind from the data.

    Examples
    --------
    >>> wrap_value(PortKind.ANY, 3).kind
    <PortKind.INTEGER: 'integer'>
    """
    if isinstance(data, PortValue):
        return data
    if kind == PortKind.ANY:
        kind = _infer_kind(data)
    return PortValue(kind, data)


class InputMapper:
    """Prepares the input mapping for a node.

    For each input port, in order of precedence:

    1. **Connected port** → the source node's output value. If the source is
       disabled, failed or produced nothing on that port, the port default is
       used, else the input is absent.
    2. **Unconnected port** → the caller's initial value under
       ``"<node_id>.<port>"``, then under the bare ``"<port>"`` name, then the
       port default.

    Required inputs left absent are reported back as missing; the node runner
    turns them into a node failure.
    """

    def gather(
        self,
        node: OperatorNode,
        graph: FlowGraph | None,
        results: Mapping[str, NodeExecutionResult],
        initial_inputs: Mapping[str, Any] | None = None,
    ) -> tuple[dict[str, PortValue], list[str]]:
        """Return ``(inputs, missing)`` for ``node``.

        ``inputs`` maps input-port name to PortValue; ``missing`` lists the
        names of required ports that could not be satisfied.
        """
        initial_inputs = initial_inputs or {}
        incoming = {c.target_port: c for c in graph.incoming(node.id)} if graph else {}

        inputs: dict[str, PortValue] = {}
        missing: list[str] = []
        for port in node.inputs:
            connection = incoming.get(port.id)
            if graph is not None and connection is not None:
                value = self._from_source(
                    graph, connection.source_node, connection.source_port, results
                )
            else:
                value = self._from_initial(node, port, initial_inputs)

            if value is None and port.has_default:
                value = wrap_value(port.kind, port.default)

            if value is not None:
                inputs[port.name] = value
            elif port.required:
                missing.append(port.name)
        return inputs, missing

    @staticmethod
    def _from_source(
        graph: FlowGraph,
        source_id: str,
        source_port_id: str,
        results: Mapping[str, NodeExecutionResult],
    ) -> PortValue | None:
        source = graph.nodes.get(source_id)
        if source is None or not source.enabled:
            return None
        result = results.get(source_id)
        if result is None or not result.success:
            return None
        out_port = source.output_port(source_port_id)
        if out_port is None:
            return None
        value = result.outputs.get(out_port.name)
        if value is None or value.released:
            return None
        return value

    @staticmethod
    def _from_initial(
        node: OperatorNode, port: Port, initial_inputs: Mapping[str, Any]
    ) -> PortValue | None:
        qualified = f"{node.id}.{port.name}"
        if qualified in initial_inputs:
            return wrap_value(port.kind, initial_inputs[qualified])
        if port.name in initial_inputs:
            return wrap_value(port.kind, initial_inputs[port.name])
        return None
