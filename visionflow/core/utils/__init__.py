"""Small shared utilities."""

from visionflow.core.utils.concurrency import call_maybe_async, is_async_callable
from visionflow.core.utils.node_timer import Timer, node_timer

__all__ = ["Timer", "call_maybe_async", "is_async_callable", "node_timer"]
