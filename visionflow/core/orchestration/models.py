"""Models for run state, node results and status snapshots."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from visionflow.core.domain.ports import PortValue
from visionflow.core.exceptions import ValidationError

if TYPE_CHECKING:
    import numpy as np

    from visionflow.core.domain.graph import OperatorNode
    from visionflow.core.orchestration.cancellation import (
        CancellationToken,
        CancellationTokenSource,
    )
    from visionflow.core.orchestration.components.buffer_tracker import BufferTracker
    from visionflow.core.orchestration.events import Event
    from visionflow.core.pool import BufferShape
    from visionflow.core.validation import ValidationResult


class RunStatus(StrEnum):
    """Lifecycle status of a flow run."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class ExecutionMode(StrEnum):
    """How a run walks the graph."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class NodeStatus(StrEnum):
    """Terminal status of a single node execution."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class NodeExecutionResult:
    """Outcome of running one node.

    ``outputs`` maps output-port name to PortValue. Image outputs whose
    pooled buffer has gone back to the pool are replaced by
    ``PortValue.released_image`` markers once every consumer has finished.
    """

    node_id: str
    name: str
    operator_type: str
    status: NodeStatus
    outputs: dict[str, PortValue] = field(default_factory=dict)
    error: str | None = None
    error_type: str | None = None
    duration_ms: float = 0.0
    critical: bool = True
    wave_index: int = 0

    @property
    def success(self) -> bool:
        return self.status == NodeStatus.SUCCEEDED

    @property
    def cancelled(self) -> bool:
        return self.status == NodeStatus.CANCELLED

    def aborts_run(self, run_cancelled: bool) -> bool:
        """True if this result ends the run: a critical node that failed, or
        that came back cancelled although the run itself was not cancelled."""
        if not self.critical:
            return False
        if self.status == NodeStatus.FAILED:
            return True
        return self.status == NodeStatus.CANCELLED and not run_cancelled

    def output(self, port: str) -> Any:
        """Raw data of output ``port`` (None when absent or released)."""
        value = self.outputs.get(port)
        return value.data if value is not None else None

    @classmethod
    def failed(
        cls,
        node: OperatorNode,
        error: BaseException | str,
        duration_ms: float = 0.0,
        wave_index: int = 0,
    ) -> NodeExecutionResult:
        return cls(
            node_id=node.id,
            name=node.name,
            operator_type=node.operator_type,
            status=NodeStatus.FAILED,
            error=str(error),
            error_type=type(error).__name__ if isinstance(error, BaseException) else None,
            duration_ms=duration_ms,
            critical=node.critical,
            wave_index=wave_index,
        )

    @classmethod
    def cancelled_result(
        cls, node: OperatorNode, reason: str, duration_ms: float = 0.0, wave_index: int = 0
    ) -> NodeExecutionResult:
        return cls(
            node_id=node.id,
            name=node.name,
            operator_type=node.operator_type,
            status=NodeStatus.CANCELLED,
            error=reason,
            error_type="OperationCancelledError",
            duration_ms=duration_ms,
            critical=node.critical,
            wave_index=wave_index,
        )


@dataclass(slots=True)
class FlowExecutionResult:
    """Outcome of a flow run.

    Attributes
    ----------
    success : bool
        True only if every critical node that ran succeeded and the run was
        neither cancelled nor aborted
    node_results : list[NodeExecutionResult]
        One entry per node that ran, in completion order
    outputs : dict[str, PortValue]
        Output values of terminal nodes keyed ``"<node_id>.<port>"``; pooled
        images are copied out so they stay valid after the run
    events : list[Event]
        Every event emitted during the run, in emission order
    """

    run_id: str
    flow_name: str
    success: bool
    status: RunStatus
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    cancelled: bool = False
    error: str | None = None
    duration_ms: float = 0.0
    node_results: list[NodeExecutionResult] = field(default_factory=list)
    outputs: dict[str, PortValue] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)
    validation: ValidationResult | None = None

    def result_for(self, node_id: str) -> NodeExecutionResult | None:
        return next((r for r in self.node_results if r.node_id == node_id), None)

    @property
    def failed_nodes(self) -> list[str]:
        return [r.node_id for r in self.node_results if r.status == NodeStatus.FAILED]

    @property
    def executed_nodes(self) -> list[str]:
        return [r.node_id for r in self.node_results]


class ExecutionStatus(BaseModel):
    """Point-in-time snapshot of a run, safe to hand to other threads."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    flow_name: str
    status: RunStatus
    progress: float = 0.0
    current_node_id: str | None = None
    running_node_ids: list[str] = []
    completed_nodes: int = 0
    total_nodes: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error: str | None = None


class ExecutionContext:
    """Mutable state of one run.

    Only the scheduler writes to it; status queries read through
    ``snapshot()``, which takes the same lock as the writers.
    """

    def __init__(
        self,
        run_id: str,
        flow_name: str,
        total_nodes: int,
        cancel_source: CancellationTokenSource,
        mode: ExecutionMode = ExecutionMode.SEQUENTIAL,
    ) -> None:
        self.run_id = run_id
        self.flow_name = flow_name
        self.total_nodes = total_nodes
        self.cancel_source = cancel_source
        self.mode = mode
        self.status = RunStatus.IDLE
        self.results: dict[str, NodeExecutionResult] = {}
        self.running: dict[str, None] = {}
        self.error: str | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.finished_monotonic: float | None = None
        self._lock = threading.Lock()

    def start(self) -> None:
        with self._lock:
            self.status = RunStatus.RUNNING
            self.started_at = datetime.now(UTC)

    def node_started(self, node_id: str) -> None:
        with self._lock:
            self.running[node_id] = None

    def node_finished(self, result: NodeExecutionResult) -> None:
        with self._lock:
            self.running.pop(result.node_id, None)
            self.results[result.node_id] = result

    def finish(self, status: RunStatus, error: str | None = None) -> None:
        with self._lock:
            self.status = status
            self.error = error
            self.running.clear()
            self.finished_at = datetime.now(UTC)
            self.finished_monotonic = time.monotonic()

    @property
    def progress(self) -> float:
        if self.total_nodes == 0:
            return 100.0 if self.status.is_finished else 0.0
        return round(100.0 * len(self.results) / self.total_nodes, 2)

    def snapshot(self) -> ExecutionStatus:
        with self._lock:
            running = list(self.running)
            return ExecutionStatus(
                run_id=self.run_id,
                flow_name=self.flow_name,
                status=self.status,
                progress=self.progress,
                current_node_id=running[-1] if running else None,
                running_node_ids=running,
                completed_nodes=len(self.results),
                total_nodes=self.total_nodes,
                started_at=self.started_at,
                finished_at=self.finished_at,
                error=self.error,
            )


@dataclass(slots=True)
class NodeRunContext:
    """What an executor gets besides its node and inputs.

    Buffers obtained through ``rent`` are leased to this node: scratch
    buffers go back to the pool when the node finishes, and buffers returned
    as image outputs stay checked out until every consumer has run.
    """

    run_id: str
    node: OperatorNode
    cancel_token: CancellationToken
    buffers: BufferTracker | None = None
    wave_index: int = 0

    def rent(self, shape: BufferShape) -> np.ndarray:
        """Rent a zero-filled buffer from the run's pool."""
        if self.buffers is None:
            raise ValidationError("buffers", "no buffer pool is attached to this run")
        return self.buffers.rent(self.node.id, shape)

    def release(self, buffer: np.ndarray) -> bool:
        """Hand a scratch buffer back before the node finishes."""
        if self.buffers is None:
            return False
        return self.buffers.release(self.node.id, buffer)

    def parameter(self, name: str, default: Any = None) -> Any:
        return self.node.get_parameter(name, default)

    @property
    def is_cancelled(self) -> bool:
        return self.cancel_token.is_cancelled

    def raise_if_cancelled(self) -> None:
        self.cancel_token.raise_if_cancelled()
