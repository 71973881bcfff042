"""Building blocks the scheduler composes into a run."""

from visionflow.core.orchestration.components.buffer_tracker import BufferTracker
from visionflow.core.orchestration.components.input_mapper import InputMapper, wrap_value
from visionflow.core.orchestration.components.node_runner import NodeRunner, NodeTimeoutError
from visionflow.core.orchestration.components.wave_executor import RunOne, WaveExecutor

__all__ = [
    "BufferTracker",
    "InputMapper",
    "NodeRunner",
    "NodeTimeoutError",
    "RunOne",
    "WaveExecutor",
    "wrap_value",
]
