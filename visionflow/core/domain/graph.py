"""Flow graph primitives: OperatorNode, Connection and FlowGraph.

A FlowGraph is the description of work handed to the scheduler. Nodes carry
typed input/output ports and parameters; connections link one node's output
port to another node's input port. The scheduler treats a graph as an
immutable snapshot for the duration of a run.
"""

import sys
import uuid
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from visionflow.core.domain.parameters import ParameterSpec
from visionflow.core.domain.ports import Port, PortDirection, PortKind
from visionflow.core.exceptions import ResourceNotFoundError, ValidationError

_EMPTY_SET: frozenset[str] = frozenset()


class Color(Enum):
    """Colors for DFS cycle detection algorithm."""

    WHITE = auto()  # Unvisited
    GRAY = auto()  # Currently being processed (in recursion stack)
    BLACK = auto()  # Completely processed


class DuplicateNodeError(ValidationError):
    """Raised when attempting to add a node with an existing id."""

    def __init__(self, node_id: str) -> None:
        super().__init__("node", "id already exists in the graph", node_id)


@dataclass(eq=False)
class OperatorNode:
    """One operator instance in a flow graph.

    Attributes
    ----------
    name : str
        Display name
    operator_type : str
        Type tag used to resolve the executor
    enabled : bool
        Disabled nodes are skipped and treated as absent by the scheduler
    critical : bool
        If False, a failure of this node is recorded but does not abort the run
    position : tuple[float, float]
        Editor canvas coordinates, carried through untouched
    timeout : float | None
        Optional per-node execution timeout in seconds
    """

    name: str
    operator_type: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enabled: bool = True
    critical: bool = True
    position: tuple[float, float] = (0.0, 0.0)
    inputs: list[Port] = field(default_factory=list)
    outputs: list[Port] = field(default_factory=list)
    parameters: dict[str, ParameterSpec] = field(default_factory=dict)
    timeout: float | None = None

    def __post_init__(self) -> None:
        self.id = sys.intern(self.id)
        for port in self.inputs:
            if port.direction != PortDirection.INPUT:
                raise ValidationError("inputs", "contains an output port", port.name)
        for port in self.outputs:
            if port.direction != PortDirection.OUTPUT:
                raise ValidationError("outputs", "contains an input port", port.name)
        self._check_unique(self.inputs)
        self._check_unique(self.outputs)

    @staticmethod
    def _check_unique(ports: list[Port]) -> None:
        seen: set[str] = set()
        for port in ports:
            if port.name in seen:
                raise ValidationError("port", "name must be unique per direction", port.name)
            seen.add(port.name)

    # ------------------------------------------------------------------
    # Port definition
    # ------------------------------------------------------------------

    def add_input(
        self,
        name: str,
        kind: PortKind = PortKind.ANY,
        required: bool = True,
        default: Any = None,
        port_id: str | None = None,
    ) -> Port:
        """Append an input port and return it."""
        port = Port(name, kind, PortDirection.INPUT, required, default, **_id_kwarg(port_id))
        self._check_unique([*self.inputs, port])
        self.inputs.append(port)
        return port

    def add_output(
        self, name: str, kind: PortKind = PortKind.ANY, port_id: str | None = None
    ) -> Port:
        """Append an output port and return it."""
        port = Port(name, kind, PortDirection.OUTPUT, False, None, **_id_kwarg(port_id))
        self._check_unique([*self.outputs, port])
        self.outputs.append(port)
        return port

    def input_port(self, key: str) -> Port | None:
        """Find an input port by id or name."""
        return _find_port(self.inputs, key)

    def output_port(self, key: str) -> Port | None:
        """Find an output port by id or name."""
        return _find_port(self.outputs, key)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def add_parameter(self, parameter: ParameterSpec) -> ParameterSpec:
        self.parameters[parameter.name] = parameter
        return parameter

    def parameter(self, name: str) -> ParameterSpec:
        try:
            return self.parameters[name]
        except KeyError:
            raise ResourceNotFoundError("parameter", name, sorted(self.parameters)) from None

    def set_parameter(self, name: str, value: Any) -> None:
        """Set a parameter value, validating bounds and options."""
        self.parameter(name).set_value(value)

    def get_parameter(self, name: str, default: Any = None) -> Any:
        """Effective value of a parameter, or ``default`` if undeclared/unset."""
        spec = self.parameters.get(name)
        if spec is None or spec.effective_value is None:
            return default
        return spec.effective_value

    def parameter_values(self) -> dict[str, Any]:
        return {name: spec.effective_value for name, spec in self.parameters.items()}

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    def __repr__(self) -> str:
        state = "" if self.enabled else ", disabled"
        return f"OperatorNode('{self.name}', type={self.operator_type!r}, id={self.id!r}{state})"


def _id_kwarg(port_id: str | None) -> dict[str, str]:
    return {"id": port_id} if port_id else {}


def _find_port(ports: Iterable[Port], key: str) -> Port | None:
    by_name = None
    for port in ports:
        if port.id == key:
            return port
        if by_name is None and port.name == key:
            by_name = port
    return by_name


@dataclass(frozen=True, slots=True)
class Connection:
    """Directed edge from an output port to an input port (port ids)."""

    source_node: str
    source_port: str
    target_node: str
    target_port: str

    def __repr__(self) -> str:
        return (
            f"Connection({self.source_node}.{self.source_port} -> "
            f"{self.target_node}.{self.target_port})"
        )


class FlowGraph:
    """A named graph of operator nodes and the connections between them.

    The graph is a plain description: it can hold references to missing
    ports or even cycles while it is being edited. The GraphValidator reports
    such defects; the scheduler refuses to run a graph that has them.
    """

    def __init__(
        self,
        name: str = "flow",
        nodes: Iterable[OperatorNode] | None = None,
        connections: Iterable[Connection] | None = None,
    ) -> None:
        self.name = name
        self.nodes: dict[str, OperatorNode] = {}
        self.connections: list[Connection] = []
        for node in nodes or ():
            self.add_node(node)
        self.connections.extend(connections or ())

    @staticmethod
    def detect_cycle(graph: Mapping[str, set[str] | frozenset[str]]) -> str | None:
        """Detect cycles in a dependency graph using DFS with three-state coloring.

        Parameters
        ----------
        graph : Mapping[str, set[str] | frozenset[str]]
            Dependency graph where keys are node ids and values are sets of
            the ids each node depends on

        Returns
        -------
        str | None
            Cycle description if found, None otherwise

        Examples
        --------
        >>> graph = {"a": {"b"}, "b": {"c"}, "c": {"a"}}  # a->b->c->a
        >>> FlowGraph.detect_cycle(graph)
        'Cycle detected: a -> b -> c -> a'

        >>> FlowGraph.detect_cycle({"a": {"b"}, "b": set()}) is None
        True
        """
        colors = dict.fromkeys(graph, Color.WHITE)

        for root in graph:
            if colors[root] != Color.WHITE:
                continue

            colors[root] = Color.GRAY
            path = [root]
            stack = [(root, iter(sorted(graph.get(root, _EMPTY_SET))))]

            while stack:
                node, deps = stack[-1]
                for dep in deps:
                    if dep not in colors or colors[dep] == Color.BLACK:
                        continue
                    if colors[dep] == Color.GRAY:
                        # Back edge
                        cycle = path[path.index(dep) :] + [dep]
                        return f"Cycle detected: {' -> '.join(cycle)}"
                    colors[dep] = Color.GRAY
                    path.append(dep)
                    stack.append((dep, iter(sorted(graph.get(dep, _EMPTY_SET)))))
                    break
                else:
                    stack.pop()
                    path.pop()
                    colors[node] = Color.BLACK

        return None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add_node(self, node: OperatorNode) -> OperatorNode:
        if node.id in self.nodes:
            raise DuplicateNodeError(node.id)
        self.nodes[node.id] = node
        return node

    def remove_node(self, node_id: str) -> OperatorNode:
        """Remove a node and every connection touching it."""
        node = self.node(node_id)
        del self.nodes[node_id]
        self.connections = [
            c for c in self.connections if node_id not in (c.source_node, c.target_node)
        ]
        return node

    def node(self, node_id: str) -> OperatorNode:
        try:
            return self.nodes[node_id]
        except KeyError:
            raise ResourceNotFoundError("node", node_id, list(self.nodes)) from None

    def connect(
        self,
        source: OperatorNode | str,
        source_port: str,
        target: OperatorNode | str,
        target_port: str,
    ) -> Connection:
        """Connect ``source.source_port`` to ``target.target_port``.

        Ports may be given by name or id; the stored connection always holds
        port ids. Only existence is checked here, everything else is left to
        the validator.
        """
        src = self.node(source if isinstance(source, str) else source.id)
        dst = self.node(target if isinstance(target, str) else target.id)
        out_port = src.output_port(source_port)
        in_port = dst.input_port(target_port)
        if out_port is None:
            raise ResourceNotFoundError("output port", f"{src.name}.{source_port}")
        if in_port is None:
            raise ResourceNotFoundError("input port", f"{dst.name}.{target_port}")
        connection = Connection(src.id, out_port.id, dst.id, in_port.id)
        self.connections.append(connection)
        return connection

    def disconnect(self, connection: Connection) -> None:
        self.connections.remove(connection)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def enabled_nodes(self) -> list[OperatorNode]:
        return [node for node in self.nodes.values() if node.enabled]

    def incoming(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.target_node == node_id]

    def outgoing(self, node_id: str) -> list[Connection]:
        return [c for c in self.connections if c.source_node == node_id]

    def is_active(self, connection: Connection) -> bool:
        """True if both endpoints exist and are enabled."""
        src = self.nodes.get(connection.source_node)
        dst = self.nodes.get(connection.target_node)
        return bool(src and dst and src.enabled and dst.enabled)

    def dependency_map(self) -> dict[str, set[str]]:
        """Map each enabled node id to the ids of its enabled predecessors.

        Connections into or out of disabled (or missing) nodes are ignored.
        """
        deps: dict[str, set[str]] = {node.id: set() for node in self.enabled_nodes()}
        for connection in self.connections:
            if self.is_active(connection):
                deps[connection.target_node].add(connection.source_node)
        return deps

    def dependents_map(self) -> dict[str, set[str]]:
        """Map each enabled node id to the ids of its enabled successors."""
        forward: dict[str, set[str]] = {node.id: set() for node in self.enabled_nodes()}
        for node_id, deps in self.dependency_map().items():
            for dep in deps:
                forward[dep].add(node_id)
        return forward

    def predecessors(self, node_id: str) -> set[str]:
        return self.dependency_map().get(node_id, set())

    def successors(self, node_id: str) -> set[str]:
        return self.dependents_map().get(node_id, set())

    def entry_nodes(self) -> list[str]:
        """Enabled nodes with no enabled predecessors."""
        return [node_id for node_id, deps in self.dependency_map().items() if not deps]

    def terminal_nodes(self) -> list[str]:
        """Enabled nodes with no enabled successors."""
        return [node_id for node_id, deps in self.dependents_map().items() if not deps]

    def __len__(self) -> int:
        return len(self.nodes)

    def __bool__(self) -> bool:
        return bool(self.nodes)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self.nodes

    def __iter__(self) -> Iterator[OperatorNode]:
        return iter(self.nodes.values())

    def __repr__(self) -> str:
        return (
            f"FlowGraph({self.name!r}, nodes={len(self.nodes)}, "
            f"connections={len(self.connections)})"
        )
