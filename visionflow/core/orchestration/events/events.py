"""Event data classes emitted during a flow run.

Events are plain immutable records. The scheduler collects them into
``FlowExecutionResult.events`` and fans them out to observers through the
EventRecorder.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event.

        Override in subclasses to provide custom formatting.
        """
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Flow events
@dataclass(frozen=True, slots=True)
class FlowStarted(Event):
    """A flow run has started."""

    run_id: str
    name: str
    mode: str
    total_nodes: int
    total_waves: int

    def log_message(self) -> str:
        return (
            f"🚀 Flow '{self.name}' started ({self.mode}, "
            f"{self.total_nodes} nodes in {self.total_waves} waves)"
        )


@dataclass(frozen=True, slots=True)
class FlowCompleted(Event):
    """A flow run has finished (successfully or not) without being cancelled."""

    run_id: str
    name: str
    success: bool
    duration_ms: float
    error: str | None = None

    def log_message(self) -> str:
        if self.success:
            return f"🎉 Flow '{self.name}' completed in {self.duration_ms / 1000:.2f}s"
        return f"❌ Flow '{self.name}' failed after {self.duration_ms / 1000:.2f}s: {self.error}"


@dataclass(frozen=True, slots=True)
class FlowCancelled(Event):
    """A flow run was cancelled.

    Attributes
    ----------
    completed_nodes : tuple[str, ...]
        Ids of nodes that finished successfully before cancellation
    """

    run_id: str
    name: str
    duration_ms: float
    reason: str | None = None
    completed_nodes: tuple[str, ...] = ()

    def log_message(self) -> str:
        return (
            f"🛑 Flow '{self.name}' cancelled after {self.duration_ms / 1000:.2f}s "
            f"({len(self.completed_nodes)} nodes completed): {self.reason or 'requested'}"
        )


# Wave events
@dataclass(frozen=True, slots=True)
class WaveStarted(Event):
    """A wave of independent nodes has been admitted."""

    run_id: str
    wave_index: int
    nodes: tuple[str, ...]

    def log_message(self) -> str:
        return f"🌊 Wave {self.wave_index} started with {len(self.nodes)} nodes"


@dataclass(frozen=True, slots=True)
class WaveCompleted(Event):
    """Every node of a wave has finished."""

    run_id: str
    wave_index: int
    duration_ms: float

    def log_message(self) -> str:
        return f"✅ Wave {self.wave_index} completed in {self.duration_ms / 1000:.2f}s"


# Node events
@dataclass(frozen=True, slots=True)
class NodeStarted(Event):
    """A node has started execution."""

    run_id: str
    node_id: str
    name: str
    operator_type: str
    wave_index: int = 0
    dependencies: tuple[str, ...] = ()

    def log_message(self) -> str:
        deps = f" (deps: {', '.join(self.dependencies)})" if self.dependencies else ""
        return (
            f"▶️ Node '{self.name}' [{self.operator_type}] started in wave {self.wave_index}{deps}"
        )


@dataclass(frozen=True, slots=True)
class NodeCompleted(Event):
    """A node has completed successfully."""

    run_id: str
    node_id: str
    name: str
    duration_ms: float
    wave_index: int = 0
    outputs: tuple[str, ...] = ()

    def log_message(self) -> str:
        return f"✅ Node '{self.name}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(frozen=True, slots=True)
class NodeFailed(Event):
    """A node has failed."""

    run_id: str
    node_id: str
    name: str
    error: str
    duration_ms: float = 0.0
    wave_index: int = 0
    critical: bool = True

    def log_message(self) -> str:
        tag = "" if self.critical else " (non-critical)"
        return f"❌ Node '{self.name}' failed{tag}: {self.error}"


@dataclass(frozen=True, slots=True)
class NodeCancelled(Event):
    """A node execution was cancelled.

    Attributes
    ----------
    reason : str | None
        Reason for cancellation (e.g. "requested", "sibling failed")
    """

    run_id: str
    node_id: str
    name: str
    wave_index: int = 0
    reason: str | None = None

    def log_message(self) -> str:
        return f"🚫 Node '{self.name}' cancelled: {self.reason or 'unknown'}"


def event_fields(event: Event) -> dict[str, Any]:
    """Flatten an event into a dict, e.g. for JSON logging."""
    data = {f.name: getattr(event, f.name) for f in fields(event)}
    data["event_type"] = type(event).__name__
    return data
