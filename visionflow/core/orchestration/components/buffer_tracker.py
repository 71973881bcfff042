"""Per-run bookkeeping of pooled buffers leased to nodes.

Lease lifecycle
---------------
- ``rent``: a node takes a buffer from the pool; it is a *scratch* lease.
- ``node_completed``: scratch leases that the node published as image
  outputs (the buffer itself or any view of it) become *output* leases held
  for the downstream consumers of that port; all other scratch leases go back
  to the pool.
- ``consumer_finished``: once every consumer of an output lease has run,
  the buffer goes back to the pool and the producer's result entry is
  replaced with a released marker.
- ``settle_terminals``: images published by terminal nodes are copied out
  for the caller and their buffers returned.
- ``finalize``: whatever is still leased when the run ends is returned.
"""

import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

import numpy as np

from visionflow.core.domain.graph import FlowGraph, OperatorNode
from visionflow.core.domain.ports import PortKind, PortValue
from visionflow.core.logging import get_logger
from visionflow.core.orchestration.models import NodeExecutionResult
from visionflow.core.pool import BufferPool, BufferShape

logger = get_logger(__name__)

__all__ = ["BufferTracker"]


def _owner(data: object) -> np.ndarray | None:
    """The array that owns the memory behind ``data``, or None for non-arrays."""
    if not isinstance(data, np.ndarray):
        return None
    while isinstance(data.base, np.ndarray):
        data = data.base
    return data


@dataclass(slots=True)
class _OutputLease:
    buffer: np.ndarray
    # (node_id, port) pairs whose result entry refers to the buffer
    holders: list[tuple[str, str]] = field(default_factory=list)
    pending: set[str] = field(default_factory=set)


class BufferTracker:
    """Tracks which node holds which pooled buffer during one run."""

    def __init__(self, pool: BufferPool | None, graph: FlowGraph | None = None) -> None:
        self.pool = pool
        self.graph = graph
        self._terminals = set(graph.terminal_nodes()) if graph is not None else None
        self._scratch: dict[str, dict[int, np.ndarray]] = {}
        self._outputs: dict[int, _OutputLease] = {}
        self._results: dict[str, NodeExecutionResult] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Leasing (may be called from executor worker threads)
    # ------------------------------------------------------------------

    def rent(self, node_id: str, shape: BufferShape) -> np.ndarray:
        if self.pool is None:
            return np.zeros(shape.dims, dtype=shape.dtype)
        buffer = self.pool.rent(shape)
        with self._lock:
            self._scratch.setdefault(node_id, {})[id(buffer)] = buffer
        return buffer

    def release(self, node_id: str, buffer: np.ndarray) -> bool:
        owner = _owner(buffer)
        if owner is None:
            return False
        with self._lock:
            leased = self._scratch.get(node_id, {}).pop(id(owner), None)
        if leased is None or self.pool is None:
            return False
        return self.pool.return_buffer(leased)

    # ------------------------------------------------------------------
    # Node lifecycle
    # ------------------------------------------------------------------

    def node_completed(self, node: OperatorNode, result: NodeExecutionResult) -> None:
        """Convert published scratch leases into output leases; return the rest."""
        with self._lock:
            scratch = self._scratch.pop(node.id, {})
            self._results[node.id] = result
            if result.success:
                for port_name, value in result.outputs.items():
                    owner = _owner(value.data)
                    if value.kind != PortKind.IMAGE or owner is None:
                        continue
                    key = id(owner)
                    if key in scratch:
                        lease = self._outputs.setdefault(key, _OutputLease(scratch.pop(key)))
                    elif key in self._outputs:
                        # upstream buffer passed straight through
                        lease = self._outputs[key]
                    else:
                        continue
                    lease.holders.append((node.id, port_name))
                    lease.pending |= self._consumers(node, port_name)

        self._return_all(scratch.values())
        # outputs nobody reads are released at once; terminal outputs wait for settle_terminals
        self._release_where(lambda lease: any(h == node.id for h, _ in lease.holders))

    def consumer_finished(self, node_id: str) -> None:
        """Record that ``node_id`` ran (in any outcome) and free satisfied leases."""
        with self._lock:
            for lease in self._outputs.values():
                lease.pending.discard(node_id)
        self._release_where(lambda lease: True)

    def settle_terminals(
        self, terminal_ids: Iterable[str], results: Mapping[str, NodeExecutionResult]
    ) -> dict[str, PortValue]:
        """Collect terminal outputs keyed ``"<node_id>.<port>"``, copying pooled images."""
        terminal_ids = list(terminal_ids)
        outputs: dict[str, PortValue] = {}
        for node_id in terminal_ids:
            result = results.get(node_id)
            if result is None or not result.success:
                continue
            for port_name, value in list(result.outputs.items()):
                lease = self._take_output(value)
                if lease is not None:
                    self._release_output(lease, copy_for=set(terminal_ids))
                outputs[f"{node_id}.{port_name}"] = result.outputs[port_name]
        return outputs

    def finalize(self) -> int:
        """Return every buffer still leased. Returns how many were returned."""
        with self._lock:
            scratch = [buf for leases in self._scratch.values() for buf in leases.values()]
            self._scratch.clear()
            outputs = list(self._outputs.values())
            self._outputs.clear()
        self._return_all(scratch)
        for lease in outputs:
            self._release_output(lease)
        count = len(scratch) + len(outputs)
        if count:
            logger.debug("Returned {count} outstanding buffer(s) at run end", count=count)
        return count

    @property
    def outstanding(self) -> int:
        with self._lock:
            return sum(len(v) for v in self._scratch.values()) + len(self._outputs)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consumers(self, node: OperatorNode, port_name: str) -> set[str]:
        if self.graph is None:
            return set()
        port = node.output_port(port_name)
        if port is None:
            return set()
        return {
            c.target_node
            for c in self.graph.outgoing(node.id)
            if c.source_port == port.id and self.graph.is_active(c)
        }

    def _is_terminal(self, node_id: str) -> bool:
        return self._terminals is None or node_id in self._terminals

    def _release_where(self, predicate: Callable[[_OutputLease], bool]) -> None:
        """Release leases with no pending consumers that match ``predicate``.

        Leases held by a terminal node are kept for ``settle_terminals``.
        """
        with self._lock:
            idle = [
                key
                for key, lease in self._outputs.items()
                if not lease.pending
                and not any(self._is_terminal(holder) for holder, _ in lease.holders)
                and predicate(lease)
            ]
            freed = [self._outputs.pop(key) for key in idle]
        for lease in freed:
            self._release_output(lease)

    def _take_output(self, value: PortValue) -> _OutputLease | None:
        owner = _owner(value.data)
        if value.kind != PortKind.IMAGE or owner is None:
            return None
        with self._lock:
            return self._outputs.pop(id(owner), None)

    def _release_output(self, lease: _OutputLease, copy_for: set[str] | None = None) -> None:
        self._mark_released(lease, copy_for or set())
        self._return(lease.buffer)

    def _mark_released(self, lease: _OutputLease, copy_for: set[str]) -> None:
        """Point every holder's result entry away from the pooled buffer.

        Holders in ``copy_for`` keep a private copy of what they published;
        the rest get a released marker.
        """
        for node_id, port_name in lease.holders:
            result = self._results.get(node_id)
            if result is None:
                continue
            value = result.outputs.get(port_name)
            if value is None or value.data is None:
                continue
            if node_id in copy_for:
                data = np.array(value.data, copy=True)
                result.outputs[port_name] = PortValue(PortKind.IMAGE, data, meta=dict(value.meta))
            else:
                result.outputs[port_name] = PortValue.released_image(tuple(value.data.shape))

    def _return(self, buffer: np.ndarray) -> None:
        if self.pool is not None:
            self.pool.return_buffer(buffer)

    def _return_all(self, buffers: Iterable[np.ndarray]) -> None:
        for buffer in buffers:
            self._return(buffer)
