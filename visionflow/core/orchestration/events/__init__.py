"""Event system for flow runs.

- events.py: Event data classes (just data, no behavior)
- recorder.py: per-run event collection and observer fan-out
"""

from .events import (
    Event,
    FlowCancelled,
    FlowCompleted,
    FlowStarted,
    NodeCancelled,
    NodeCompleted,
    NodeFailed,
    NodeStarted,
    WaveCompleted,
    WaveStarted,
    event_fields,
)
from .recorder import DEFAULT_OBSERVER_TIMEOUT, EventRecorder, ObserverFunc, ObserverRegistration

# Event taxonomy - grouped event types for observer filtering
NODE_LIFECYCLE_EVENTS = (NodeStarted, NodeCompleted, NodeFailed, NodeCancelled)
WAVE_EVENTS = (WaveStarted, WaveCompleted)
FLOW_EVENTS = (FlowStarted, FlowCompleted, FlowCancelled)
ALL_EXECUTION_EVENTS = NODE_LIFECYCLE_EVENTS + WAVE_EVENTS + FLOW_EVENTS

__all__ = [
    "ALL_EXECUTION_EVENTS",
    "DEFAULT_OBSERVER_TIMEOUT",
    "FLOW_EVENTS",
    "NODE_LIFECYCLE_EVENTS",
    "WAVE_EVENTS",
    "Event",
    "EventRecorder",
    "FlowCancelled",
    "FlowCompleted",
    "FlowStarted",
    "NodeCancelled",
    "NodeCompleted",
    "NodeFailed",
    "NodeStarted",
    "ObserverFunc",
    "ObserverRegistration",
    "WaveCompleted",
    "WaveStarted",
    "event_fields",
]
