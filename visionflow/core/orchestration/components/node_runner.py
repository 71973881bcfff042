"""Node runner: executes a single node and turns every outcome into a result.

Nothing raised by an executor escapes ``NodeRunner.run``: resolution errors,
missing inputs, timeouts, executor exceptions and cancellation all become a
``NodeExecutionResult``. Only ``asyncio.CancelledError`` (the run task itself
being cancelled) propagates.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

from visionflow.core.domain.graph import OperatorNode
from visionflow.core.domain.ports import PortKind, PortValue, kinds_compatible
from visionflow.core.exceptions import ExecutorNotFoundError, OperationCancelledError, OperatorError
from visionflow.core.logging import get_logger
from visionflow.core.orchestration.cancellation import CancellationToken
from visionflow.core.orchestration.components.buffer_tracker import BufferTracker
from visionflow.core.orchestration.components.input_mapper import wrap_value
from visionflow.core.orchestration.events import (
    EventRecorder,
    NodeCancelled,
    NodeCompleted,
    NodeFailed,
    NodeStarted,
)
from visionflow.core.orchestration.models import NodeExecutionResult, NodeRunContext, NodeStatus
from visionflow.core.registry import ExecutorRegistry
from visionflow.core.utils.concurrency import call_maybe_async
from visionflow.core.utils.node_timer import node_timer

logger = get_logger(__name__)

__all__ = ["NodeRunner", "NodeTimeoutError"]


class NodeTimeoutError(OperatorError):
    """Raised when a node exceeds its timeout."""

    def __init__(self, node_name: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Node '{node_name}' timed out after {timeout}s")


class NodeRunner:
    """Runs one node with its executor, timeout and event emission.

    Examples
    --------
    Example usage::

        runner = NodeRunner(registry, default_node_timeout=30.0)
        result = await runner.run(
            node,
            inputs,
            missing=[],
            run_id="r1",
            cancel_token=token,
            recorder=recorder,
        )
    """

    def __init__(
        self, registry: ExecutorRegistry, default_node_timeout: float | None = None
    ) -> None:
        """Initialize node runner.

        Parameters
        ----------
        registry : ExecutorRegistry
            Where executors are resolved by operator type
        default_node_timeout : float | None, default=None
            Timeout in seconds for nodes without their own ``timeout``.
            None means no timeout.
        """
        self.registry = registry
        self.default_node_timeout = default_node_timeout

    async def run(
        self,
        node: OperatorNode,
        inputs: dict[str, PortValue],
        missing: list[str],
        *,
        run_id: str,
        cancel_token: CancellationToken,
        recorder: EventRecorder,
        buffers: BufferTracker | None = None,
        wave_index: int = 0,
        dependencies: tuple[str, ...] = (),
    ) -> NodeExecutionResult:
        """Execute ``node`` and return its result."""
        if cancel_token.is_cancelled:
            result = NodeExecutionResult.cancelled_result(
                node, "run cancelled", wave_index=wave_index
            )
            await recorder.emit(
                NodeCancelled(run_id, node.id, node.name, wave_index, reason="not started")
            )
            return result

        await recorder.emit(
            NodeStarted(run_id, node.id, node.name, node.operator_type, wave_index, dependencies)
        )

        with node_timer() as t:
            try:
                outputs = await self._execute(
                    node, inputs, missing, run_id, cancel_token, buffers, wave_index
                )
            except OperationCancelledError as e:
                result = NodeExecutionResult.cancelled_result(
                    node, str(e), t.duration_ms, wave_index
                )
            except (NodeTimeoutError, ExecutorNotFoundError) as e:
                result = NodeExecutionResult.failed(node, e, t.duration_ms, wave_index)
            except Exception as e:
                logger.debug(
                    "Executor for node '{node}' raised {error_type}",
                    node=node.name,
                    error_type=type(e).__name__,
                )
                result = NodeExecutionResult.failed(node, e, t.duration_ms, wave_index)
            else:
                result = NodeExecutionResult(
                    node_id=node.id,
                    name=node.name,
                    operator_type=node.operator_type,
                    status=NodeStatus.SUCCEEDED,
                    outputs=outputs,
                    duration_ms=t.duration_ms,
                    critical=node.critical,
                    wave_index=wave_index,
                )

        if result.status == NodeStatus.SUCCEEDED:
            await recorder.emit(
                NodeCompleted(
                    run_id,
                    node.id,
                    node.name,
                    result.duration_ms,
                    wave_index,
                    tuple(result.outputs),
                )
            )
        elif result.status == NodeStatus.CANCELLED:
            await recorder.emit(
                NodeCancelled(run_id, node.id, node.name, wave_index, reason=result.error)
            )
        else:
            await recorder.emit(
                NodeFailed(
                    run_id,
                    node.id,
                    node.name,
                    result.error or "unknown error",
                    result.duration_ms,
                    wave_index,
                    node.critical,
                )
            )
        return result

    def _timeout_for(self, node: OperatorNode) -> float | None:
        return node.timeout if node.timeout is not None else self.default_node_timeout

    async def _execute(
        self,
        node: OperatorNode,
        inputs: dict[str, PortValue],
        missing: list[str],
        run_id: str,
        cancel_token: CancellationToken,
        buffers: BufferTracker | None,
        wave_index: int,
    ) -> dict[str, PortValue]:
        executor = self.registry.resolve(node.operator_type)
        if missing:
            raise OperatorError(f"missing required input(s): {', '.join(missing)}")

        context = NodeRunContext(run_id, node, cancel_token, buffers, wave_index)
        timeout = self._timeout_for(node)
        try:
            async with asyncio.timeout(timeout):
                raw = await call_maybe_async(executor.execute, node, inputs, context)
        except TimeoutError:
            if timeout is None:
                raise
            raise NodeTimeoutError(node.name, timeout) from None
        return self.normalize_outputs(node, raw)

    @staticmethod
    def normalize_outputs(node: OperatorNode, raw: Any) -> dict[str, PortValue]:
        """Wrap executor output into PortValues keyed by declared output name.

        Raises
        ------
        OperatorError
            If the executor returned something other than a mapping, named an
            undeclared output, or returned a value of an incompatible kind
        """
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise OperatorError(
                f"executor for '{node.operator_type}' must return a mapping of output "
                f"port names, got {type(raw).__name__}"
            )

        outputs: dict[str, PortValue] = {}
        for name, data in raw.items():
            port = node.output_port(name)
            if port is None:
                declared = ", ".join(p.name for p in node.outputs) or "none"
                raise OperatorError(f"undeclared output '{name}' (declared: {declared})")
            value = wrap_value(port.kind, data)
            if port.kind != PortKind.ANY and not kinds_compatible(value.kind, port.kind):
                raise OperatorError(
                    f"output '{name}' declared {port.kind} but got {value.kind}"
                )
            outputs[port.name] = value
        return outputs
