"""Flow execution: scheduling, cancellation, events and run state."""

from visionflow.core.orchestration.cancellation import CancellationToken, CancellationTokenSource
from visionflow.core.orchestration.factory import apply_logging_config, create_scheduler
from visionflow.core.orchestration.models import (
    ExecutionContext,
    ExecutionMode,
    ExecutionStatus,
    FlowExecutionResult,
    NodeExecutionResult,
    NodeRunContext,
    NodeStatus,
    RunStatus,
)
from visionflow.core.orchestration.scheduler import FlowScheduler

__all__ = [
    "CancellationToken",
    "CancellationTokenSource",
    "ExecutionContext",
    "ExecutionMode",
    "ExecutionStatus",
    "FlowExecutionResult",
    "FlowScheduler",
    "NodeExecutionResult",
    "NodeRunContext",
    "NodeStatus",
    "RunStatus",
    "apply_logging_config",
    "create_scheduler",
]
