"""visionflow: execution engine for machine-vision operator flows.

Flows are directed graphs of operator nodes connected port to port. The
scheduler validates a flow, runs its nodes sequentially or in concurrent
waves, routes typed values between ports, and recycles image buffers
through a shape-keyed pool.
"""

# Version is defined in pyproject.toml and read dynamically
try:
    from importlib.metadata import version

    __version__ = version("visionflow")
except Exception:
    __version__ = "0.0.0.dev0"  # Fallback for development installs

from visionflow.core.config import VisionFlowConfig, load_config
from visionflow.core.domain import (
    Connection,
    FlowGraph,
    OperatorNode,
    ParameterSpec,
    Port,
    PortKind,
    PortValue,
)
from visionflow.core.exceptions import (
    ConfigurationError,
    ExecutorNotFoundError,
    GraphValidationError,
    OperationCancelledError,
    OperatorError,
    ValidationError,
    VisionFlowError,
)
from visionflow.core.orchestration import (
    CancellationToken,
    CancellationTokenSource,
    ExecutionMode,
    FlowExecutionResult,
    FlowScheduler,
    NodeExecutionResult,
    NodeRunContext,
    RunStatus,
    create_scheduler,
)
from visionflow.core.pool import BufferPool, BufferShape
from visionflow.core.registry import ExecutorRegistry, FunctionExecutor
from visionflow.core.validation import GraphValidator

__all__ = [
    "BufferPool",
    "BufferShape",
    "CancellationToken",
    "CancellationTokenSource",
    "ConfigurationError",
    "Connection",
    "ExecutionMode",
    "ExecutorNotFoundError",
    "ExecutorRegistry",
    "FlowExecutionResult",
    "FlowGraph",
    "FlowScheduler",
    "FunctionExecutor",
    "GraphValidationError",
    "GraphValidator",
    "NodeExecutionResult",
    "NodeRunContext",
    "OperationCancelledError",
    "OperatorError",
    "OperatorNode",
    "ParameterSpec",
    "Port",
    "PortKind",
    "PortValue",
    "RunStatus",
    "ValidationError",
    "VisionFlowConfig",
    "VisionFlowError",
    "__version__",
    "load_config",
]
