"""Structural validation of flow graphs."""

from collections import Counter
from collections.abc import Collection

from pydantic import BaseModel, Field, computed_field

from visionflow.core.domain.graph import Connection, FlowGraph, OperatorNode
from visionflow.core.domain.ports import Port, kinds_compatible
from visionflow.core.logging import get_logger

logger = get_logger(__name__)


class ValidationResult(BaseModel):
    """Accumulated validation findings. ``valid`` is True when there are no errors."""

    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def valid(self) -> bool:
        return not self.errors

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def merge(self, other: "ValidationResult") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)

    def __bool__(self) -> bool:
        return self.valid


class FlowValidationResult(ValidationResult):
    """ValidationResult extended with operator-level findings.

    ``node_errors`` groups the operator-level errors (unknown operator type,
    parameter problems) by node id; each of them is also in ``errors``.
    """

    node_errors: dict[str, list[str]] = Field(default_factory=dict)

    def add_node_error(self, node: OperatorNode, message: str) -> None:
        self.node_errors.setdefault(node.id, []).append(message)
        self.add_error(f"Node '{node.name}': {message}")


def _label(node: OperatorNode, port: Port | None = None) -> str:
    return f"'{node.name}.{port.name}'" if port else f"'{node.name}'"


class GraphValidator:
    """Checks a FlowGraph for structural defects without running it.

    The checks run in a fixed order and all of them run, so one call reports
    every problem at once:

    1. connection endpoints exist
    2. no input port has more than one incoming connection
    3. connected port kinds are compatible
    4. no cycle among enabled nodes
    5. every required input of an enabled node can be satisfied

    Validation never mutates the graph; validating twice gives equal results.

    Examples
    --------
    >>> from visionflow.core.domain import FlowGraph
    >>> GraphValidator().validate(FlowGraph()).valid
    True
    """

    def validate(
        self, graph: FlowGraph, provided_inputs: Collection[str] | None = None
    ) -> ValidationResult:
        """Validate ``graph``.

        Parameters
        ----------
        graph : FlowGraph
            Graph to check
        provided_inputs : Collection[str] | None
            Keys of caller-supplied initial inputs, either bare port names or
            ``"<node_id>.<port>"``. Required inputs named here count as satisfied.
        """
        result = ValidationResult()
        resolved = self._check_references(graph, result)
        self._check_fan_in(graph, resolved, result)
        self._check_kinds(graph, resolved, result)
        self._check_cycles(graph, result)
        self._check_required_inputs(graph, resolved, set(provided_inputs or ()), result)

        if result.errors:
            logger.debug(
                "Graph '{graph}' failed validation with {count} error(s)",
                graph=graph.name,
                count=len(result.errors),
            )
        return result

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    def _check_references(
        self, graph: FlowGraph, result: ValidationResult
    ) -> list[tuple[Connection, Port, Port]]:
        resolved: list[tuple[Connection, Port, Port]] = []
        for connection in graph.connections:
            src = graph.nodes.get(connection.source_node)
            dst = graph.nodes.get(connection.target_node)
            if src is None:
                result.add_error(
                    f"Connection references unknown source node '{connection.source_node}'"
                )
            if dst is None:
                result.add_error(
                    f"Connection references unknown target node '{connection.target_node}'"
                )
            if src is None or dst is None:
                continue

            out_port = next((p for p in src.outputs if p.id == connection.source_port), None)
            in_port = next((p for p in dst.inputs if p.id == connection.target_port), None)
            if out_port is None:
                result.add_error(
                    f"Connection references unknown output port '{connection.source_port}' "
                    f"on node {_label(src)}"
                )
            if in_port is None:
                result.add_error(
                    f"Connection references unknown input port '{connection.target_port}' "
                    f"on node {_label(dst)}"
                )
            if out_port is not None and in_port is not None:
                resolved.append((connection, out_port, in_port))
        return resolved

    def _check_fan_in(
        self,
        graph: FlowGraph,
        resolved: list[tuple[Connection, Port, Port]],
        result: ValidationResult,
    ) -> None:
        counts = Counter((c.target_node, c.target_port) for c, _, _ in resolved)
        for (node_id, port_id), count in counts.items():
            if count > 1:
                node = graph.nodes[node_id]
                port = node.input_port(port_id)
                result.add_error(
                    f"Input port {_label(node, port)} has {count} incoming connections"
                )

    def _check_kinds(
        self,
        graph: FlowGraph,
        resolved: list[tuple[Connection, Port, Port]],
        result: ValidationResult,
    ) -> None:
        for connection, out_port, in_port in resolved:
            if not kinds_compatible(out_port.kind, in_port.kind):
                src = graph.nodes[connection.source_node]
                dst = graph.nodes[connection.target_node]
                result.add_error(
                    f"Incompatible connection {_label(src, out_port)} ({out_port.kind}) -> "
                    f"{_label(dst, in_port)} ({in_port.kind})"
                )

    def _check_cycles(self, graph: FlowGraph, result: ValidationResult) -> None:
        if cycle := FlowGraph.detect_cycle(graph.dependency_map()):
            result.add_error(cycle)

    def _check_required_inputs(
        self,
        graph: FlowGraph,
        resolved: list[tuple[Connection, Port, Port]],
        provided: set[str],
        result: ValidationResult,
    ) -> None:
        feeders: dict[tuple[str, str], list[OperatorNode]] = {}
        for connection, _, _ in resolved:
            feeders.setdefault((connection.target_node, connection.target_port), []).append(
                graph.nodes[connection.source_node]
            )

        for node in graph.enabled_nodes():
            for port in node.inputs:
                if not port.required or port.has_default:
                    continue
                sources = feeders.get((node.id, port.id), [])
                if any(source.enabled for source in sources):
                    continue
                if f"{node.id}.{port.name}" in provided or port.name in provided:
                    continue
                if sources:
                    result.add_warning(
                        f"Required input {_label(node, port)} is fed only by disabled node(s): "
                        + ", ".join(_label(source) for source in sources)
                    )
                else:
                    result.add_error(f"Required input {_label(node, port)} is not connected")
