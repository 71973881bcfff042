"""Flow graph domain model."""

from visionflow.core.domain.graph import (
    Color,
    Connection,
    DuplicateNodeError,
    FlowGraph,
    OperatorNode,
)
from visionflow.core.domain.parameters import ParameterSpec, ParameterType
from visionflow.core.domain.ports import Port, PortDirection, PortKind, PortValue, kinds_compatible

__all__ = [
    "Color",
    "Connection",
    "DuplicateNodeError",
    "FlowGraph",
    "OperatorNode",
    "ParameterSpec",
    "ParameterType",
    "Port",
    "PortDirection",
    "PortKind",
    "PortValue",
    "kinds_compatible",
]
