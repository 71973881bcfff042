"""Flow scheduler: the execution engine for operator flow graphs.

The scheduler walks a FlowGraph in topological order, either one node at a
time (sequential mode) or wave by wave with bounded concurrency (parallel
mode). Every node fault, validation failure and cancellation is reported in
the returned FlowExecutionResult; ``execute`` does not raise for them.
"""

import asyncio
import threading
import time
import uuid
from collections import OrderedDict, deque
from collections.abc import Iterable, Mapping
from typing import Any

from visionflow.core.config.models import SchedulerConfig
from visionflow.core.domain.graph import FlowGraph, OperatorNode
from visionflow.core.exceptions import GraphValidationError, SchedulingError, ValidationError
from visionflow.core.logging import correlation_id, get_logger
from visionflow.core.orchestration.cancellation import CancellationToken, CancellationTokenSource
from visionflow.core.orchestration.components import (
    BufferTracker,
    InputMapper,
    NodeRunner,
    WaveExecutor,
)
from visionflow.core.orchestration.events import (
    DEFAULT_OBSERVER_TIMEOUT,
    Event,
    EventRecorder,
    FlowCancelled,
    FlowCompleted,
    FlowStarted,
    ObserverFunc,
    ObserverRegistration,
    WaveCompleted,
    WaveStarted,
)
from visionflow.core.orchestration.models import (
    ExecutionContext,
    ExecutionMode,
    ExecutionStatus,
    FlowExecutionResult,
    NodeExecutionResult,
    RunStatus,
)
from visionflow.core.pool import BufferPool
from visionflow.core.registry import ExecutorRegistry
from visionflow.core.utils.node_timer import Timer
from visionflow.core.validation import FlowValidationResult, GraphValidator, ValidationResult

logger = get_logger(__name__)

__all__ = ["FlowScheduler"]


class FlowScheduler:
    """Executes operator flows.

    Examples
    --------
    Example usage::

        registry = ExecutorRegistry()

        @registry.executor("threshold")
        async def threshold(node, inputs, context):
            image = inputs["image"].data
            return {"mask": (image > node.get_parameter("level", 128)).astype("uint8")}

        scheduler = FlowScheduler(registry, pool=BufferPool())
        result = await scheduler.execute(graph, {"image": frame}, mode="parallel")
        if not result.success:
            print(result.error, result.failed_nodes)
    """

    def __init__(
        self,
        registry: ExecutorRegistry | None = None,
        pool: BufferPool | None = None,
        config: SchedulerConfig | None = None,
        validator: GraphValidator | None = None,
    ) -> None:
        """Initialize scheduler.

        Parameters
        ----------
        registry : ExecutorRegistry | None
            Executors by operator type. A new empty registry if None.
        pool : BufferPool | None
            Pool that ``NodeRunContext.rent`` draws from. Without a pool,
            rented buffers are freshly allocated and never recycled.
        config : SchedulerConfig | None
            Execution defaults
        validator : GraphValidator | None
            Structural validator run before every execution
        """
        self.registry = registry if registry is not None else ExecutorRegistry()
        self.pool = pool
        self.config = config or SchedulerConfig()
        self.validator = validator or GraphValidator()

        self._input_mapper = InputMapper()
        self._runner = NodeRunner(self.registry, self.config.default_node_timeout)
        self._observers: dict[str, ObserverRegistration] = {}
        self._active: dict[str, ExecutionContext] = {}
        self._finished: OrderedDict[str, ExecutionContext] = OrderedDict()
        self._lock = threading.Lock()

    # ========================================================================
    # Ordering
    # ========================================================================

    @staticmethod
    def execution_order(graph: FlowGraph) -> list[str]:
        """Topological order of the enabled nodes (Kahn's algorithm).

        Ties are broken by graph insertion order, so the order is
        deterministic for a given graph.

        Raises
        ------
        SchedulingError
            If the enabled nodes contain a cycle
        """
        return [node_id for wave in FlowScheduler.execution_waves(graph) for node_id in wave]

    @staticmethod
    def execution_waves(graph: FlowGraph) -> list[list[str]]:
        """Group the enabled nodes into waves of mutually independent nodes.

        Every node sits in the wave right after its latest predecessor.

        Raises
        ------
        SchedulingError
            If the enabled nodes contain a cycle
        """
        deps = graph.dependency_map()
        position = {node_id: index for index, node_id in enumerate(deps)}
        dependents = graph.dependents_map()
        in_degree = {node_id: len(preds) for node_id, preds in deps.items()}

        waves: list[list[str]] = []
        ready = deque(node_id for node_id in deps if in_degree[node_id] == 0)
        while ready:
            wave = list(ready)
            ready.clear()
            waves.append(wave)
            unlocked: list[str] = []
            for node_id in wave:
                for dependent in dependents[node_id]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        unlocked.append(dependent)
            ready.extend(sorted(unlocked, key=position.__getitem__))

        scheduled = sum(len(wave) for wave in waves)
        if scheduled != len(deps):
            detail = FlowGraph.detect_cycle(deps) or "unresolvable dependencies"
            raise SchedulingError(
                f"Could not schedule {len(deps) - scheduled} node(s) of flow "
                f"'{graph.name}': {detail}"
            )
        return waves

    # ========================================================================
    # Validation
    # ========================================================================

    def ensure_valid(self, graph: FlowGraph, provided_inputs: Iterable[str] | None = None) -> None:
        """Raise GraphValidationError if ``graph`` has structural errors."""
        result = self.validator.validate(graph, list(provided_inputs or ()))
        if not result.valid:
            raise GraphValidationError(result.errors)

    def validate_flow(self, graph: FlowGraph) -> FlowValidationResult:
        """Validate ``graph`` structurally and against the registered executors.

        Errors: an empty flow, every structural error, operator types with no
        registered executor, parameter problems reported by the executor's
        ``validate_parameters`` and ParameterSpec violations.

        Warnings: disabled nodes, enabled nodes with no path to a terminal
        node that declares outputs, and flows without entry or terminal nodes.
        """
        result = FlowValidationResult()
        if not graph:
            result.add_error(f"Flow '{graph.name}' has no nodes")
            return result

        result.merge(self.validator.validate(graph))

        for node in graph:
            if not node.enabled:
                result.add_warning(f"Node '{node.name}' is disabled and will be skipped")
                continue
            for problem in self._operator_problems(node):
                result.add_node_error(node, problem)

        if not graph.enabled_nodes():
            return result
        if not graph.entry_nodes():
            result.add_warning(f"Flow '{graph.name}' has no entry nodes")
        terminals = graph.terminal_nodes()
        if not terminals:
            result.add_warning(f"Flow '{graph.name}' has no terminal nodes")
        for node_id in self._nodes_without_output_path(graph, terminals):
            result.add_warning(
                f"Node '{graph.nodes[node_id].name}' has no path to a terminal output"
            )
        return result

    def _operator_problems(self, node: OperatorNode) -> list[str]:
        executor = self.registry.get(node.operator_type)
        if executor is None:
            return [f"no executor registered for operator type '{node.operator_type}'"]

        problems: list[str] = []
        validate_parameters = getattr(executor, "validate_parameters", None)
        if callable(validate_parameters):
            try:
                problems.extend(validate_parameters(node))
            except Exception as e:
                problems.append(f"parameter validation raised {type(e).__name__}: {e}")
        for spec in node.parameters.values():
            problems.extend(spec.violations())
        return problems

    @staticmethod
    def _nodes_without_output_path(graph: FlowGraph, terminals: list[str]) -> list[str]:
        deps = graph.dependency_map()
        reached = {node_id for node_id in terminals if graph.nodes[node_id].outputs}
        frontier = list(reached)
        while frontier:
            for dep in deps[frontier.pop()]:
                if dep not in reached:
                    reached.add(dep)
                    frontier.append(dep)
        return [node_id for node_id in deps if node_id not in reached]

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute(
        self,
        graph: FlowGraph,
        initial_inputs: Mapping[str, Any] | None = None,
        *,
        mode: ExecutionMode | str | None = None,
        cancel_token: CancellationToken | None = None,
        run_id: str | None = None,
    ) -> FlowExecutionResult:
        """Execute ``graph`` and return the outcome.

        Parameters
        ----------
        graph : FlowGraph
            Flow to run; never mutated
        initial_inputs : Mapping[str, Any] | None
            Values for unconnected input ports, keyed ``"<node_id>.<port>"``
            or by bare port name
        mode : ExecutionMode | str | None
            ``"sequential"`` or ``"parallel"``; the configured default if None
        cancel_token : CancellationToken | None
            Caller's token; cancelling it cancels the run
        run_id : str | None
            Id for status queries and ``cancel_execution``; generated if None

        Returns
        -------
        FlowExecutionResult
            Outcome of the run. Invalid graphs, node failures and
            cancellation are all reported here rather than raised.

        Raises
        ------
        ValidationError
            If ``run_id`` belongs to a run that is still executing
        """
        run_id = run_id or uuid.uuid4().hex
        mode = ExecutionMode(mode or self.config.default_mode)
        initial_inputs = dict(initial_inputs or {})

        source = CancellationTokenSource.linked(cancel_token)
        context = ExecutionContext(run_id, graph.name, len(graph.enabled_nodes()), source, mode)
        try:
            self._register_run(context)
        except ValidationError:
            source.close()
            raise

        cid_token = correlation_id.set(run_id)
        recorder = EventRecorder(self._snapshot_observers())
        timer = Timer()
        context.start()
        try:
            validation = self.validator.validate(graph, list(initial_inputs))
            if not validation.valid:
                error = "Flow validation failed: " + "; ".join(validation.errors)
                return await self._finish_failed(graph, context, recorder, timer, error, validation)
            return await self._run(
                graph, initial_inputs, mode, context, recorder, timer, validation
            )
        except asyncio.CancelledError:
            source.cancel()
            context.finish(RunStatus.CANCELLED, "Flow execution task was cancelled")
            logger.warning("Execution task for flow '{}' was cancelled", graph.name)
            raise
        except Exception as e:
            logger.exception("Unexpected error while executing flow '{}'", graph.name)
            error = f"{type(e).__name__}: {e}"
            return await self._finish_failed(graph, context, recorder, timer, error, None)
        finally:
            source.close()
            self._retire_run(context)
            correlation_id.reset(cid_token)

    async def _run(
        self,
        graph: FlowGraph,
        initial_inputs: dict[str, Any],
        mode: ExecutionMode,
        context: ExecutionContext,
        recorder: EventRecorder,
        timer: Timer,
        validation: ValidationResult | None,
    ) -> FlowExecutionResult:
        waves = self.execution_waves(graph)
        tracker = BufferTracker(self.pool, graph)
        token = context.cancel_source.token

        self.registry.freeze()
        try:
            await recorder.emit(
                FlowStarted(
                    context.run_id, graph.name, str(mode), context.total_nodes, len(waves)
                )
            )
            if mode == ExecutionMode.SEQUENTIAL:
                await self._run_sequential(graph, waves, initial_inputs, context, recorder, tracker)
            else:
                await self._run_parallel(graph, waves, initial_inputs, context, recorder, tracker)
            outputs = tracker.settle_terminals(graph.terminal_nodes(), context.results)
        finally:
            self.registry.thaw()
            tracker.finalize()

        node_results = list(context.results.values())
        run_cancelled = token.is_cancelled and (
            len(node_results) < context.total_nodes or any(r.cancelled for r in node_results)
        )
        fatal = next((r for r in node_results if r.aborts_run(token.is_cancelled)), None)
        duration_ms = timer.duration_ms

        if run_cancelled:
            status, error = RunStatus.CANCELLED, "Flow execution was cancelled"
            await recorder.emit(
                FlowCancelled(
                    context.run_id,
                    graph.name,
                    duration_ms,
                    reason="requested",
                    completed_nodes=tuple(r.node_id for r in node_results if r.success),
                )
            )
        elif fatal is not None:
            status = RunStatus.FAILED
            error = f"Node '{fatal.name}' failed: {fatal.error}"
            await recorder.emit(
                FlowCompleted(context.run_id, graph.name, False, duration_ms, error)
            )
        else:
            status, error = RunStatus.COMPLETED, None
            await recorder.emit(FlowCompleted(context.run_id, graph.name, True, duration_ms))

        context.finish(status, error)
        return FlowExecutionResult(
            run_id=context.run_id,
            flow_name=graph.name,
            success=status == RunStatus.COMPLETED,
            status=status,
            mode=mode,
            cancelled=status == RunStatus.CANCELLED,
            error=error,
            duration_ms=duration_ms,
            node_results=node_results,
            outputs=outputs,
            events=list(recorder.events),
            validation=validation,
        )

    async def _run_sequential(
        self,
        graph: FlowGraph,
        waves: list[list[str]],
        initial_inputs: dict[str, Any],
        context: ExecutionContext,
        recorder: EventRecorder,
        tracker: BufferTracker,
    ) -> None:
        token = context.cancel_source.token
        for wave_index, wave in enumerate(waves):
            for node_id in wave:
                if token.is_cancelled:
                    logger.info("Run cancelled before node '{}'", graph.nodes[node_id].name)
                    return
                result = await self._run_node(
                    graph, node_id, initial_inputs, context, recorder, tracker, token, wave_index
                )
                if result.aborts_run(token.is_cancelled):
                    return

    async def _run_parallel(
        self,
        graph: FlowGraph,
        waves: list[list[str]],
        initial_inputs: dict[str, Any],
        context: ExecutionContext,
        recorder: EventRecorder,
        tracker: BufferTracker,
    ) -> None:
        token = context.cancel_source.token
        wave_executor = WaveExecutor(self.config.resolved_max_concurrency)

        for wave_index, wave in enumerate(waves):
            if token.is_cancelled:
                logger.info("Run cancelled before wave {}", wave_index)
                return

            await recorder.emit(WaveStarted(context.run_id, wave_index, tuple(wave)))
            wave_timer = Timer()

            async def run_one(
                node_id: str, wave_token: CancellationToken, wave_index: int = wave_index
            ) -> NodeExecutionResult:
                return await self._run_node(
                    graph,
                    node_id,
                    initial_inputs,
                    context,
                    recorder,
                    tracker,
                    wave_token,
                    wave_index,
                )

            _, critical_failure = await wave_executor.execute_wave(wave, run_one, token)
            await recorder.emit(WaveCompleted(context.run_id, wave_index, wave_timer.duration_ms))
            if critical_failure:
                return

    async def _run_node(
        self,
        graph: FlowGraph,
        node_id: str,
        initial_inputs: dict[str, Any],
        context: ExecutionContext,
        recorder: EventRecorder,
        tracker: BufferTracker,
        token: CancellationToken,
        wave_index: int,
    ) -> NodeExecutionResult:
        node = graph.nodes[node_id]
        inputs, missing = self._input_mapper.gather(node, graph, context.results, initial_inputs)

        context.node_started(node_id)
        result = await self._runner.run(
            node,
            inputs,
            missing,
            run_id=context.run_id,
            cancel_token=token,
            recorder=recorder,
            buffers=tracker,
            wave_index=wave_index,
            dependencies=tuple(sorted(graph.predecessors(node_id))),
        )
        tracker.node_completed(node, result)
        context.node_finished(result)
        tracker.consumer_finished(node_id)
        return result

    async def _finish_failed(
        self,
        graph: FlowGraph,
        context: ExecutionContext,
        recorder: EventRecorder,
        timer: Timer,
        error: str,
        validation: ValidationResult | None,
    ) -> FlowExecutionResult:
        duration_ms = timer.duration_ms
        context.finish(RunStatus.FAILED, error)
        await recorder.emit(FlowCompleted(context.run_id, graph.name, False, duration_ms, error))
        return FlowExecutionResult(
            run_id=context.run_id,
            flow_name=graph.name,
            success=False,
            status=RunStatus.FAILED,
            mode=context.mode,
            error=error,
            duration_ms=duration_ms,
            node_results=list(context.results.values()),
            events=list(recorder.events),
            validation=validation,
        )

    async def execute_node(
        self,
        node: OperatorNode,
        inputs: Mapping[str, Any] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> NodeExecutionResult:
        """Run a single operator outside of any flow.

        ``inputs`` is keyed by input-port name. Image outputs built from
        pooled buffers are copied into the result.
        """
        run_id = uuid.uuid4().hex
        tracker = BufferTracker(self.pool)
        recorder = EventRecorder(self._snapshot_observers())
        values, missing = self._input_mapper.gather(node, None, {}, inputs or {})

        self.registry.freeze()
        try:
            result = await self._runner.run(
                node,
                values,
                missing,
                run_id=run_id,
                cancel_token=cancel_token or CancellationToken.none(),
                recorder=recorder,
                buffers=tracker,
            )
            tracker.node_completed(node, result)
            tracker.settle_terminals([node.id], {node.id: result})
        finally:
            self.registry.thaw()
            tracker.finalize()
        return result

    # ========================================================================
    # Status and control
    # ========================================================================

    def get_execution_status(self, run_id: str) -> ExecutionStatus | None:
        """Snapshot of a running or recently finished run, None if unknown or expired."""
        with self._lock:
            self._prune_finished()
            context = self._active.get(run_id) or self._finished.get(run_id)
        return context.snapshot() if context is not None else None

    def cancel_execution(self, run_id: str) -> bool:
        """Request cancellation of a running run. Returns False if it is not running."""
        with self._lock:
            context = self._active.get(run_id)
        if context is None:
            return False
        logger.info("Cancellation requested for run {}", run_id)
        context.cancel_source.cancel()
        return True

    def active_runs(self) -> list[str]:
        with self._lock:
            return list(self._active)

    def add_observer(
        self,
        handler: ObserverFunc,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        timeout: float | None = DEFAULT_OBSERVER_TIMEOUT,
    ) -> str:
        """Register an observer for events of future runs. Returns its id."""
        registration = ObserverRegistration.create(handler, event_types, timeout)
        with self._lock:
            self._observers[registration.observer_id] = registration
        return registration.observer_id

    def remove_observer(self, observer_id: str) -> bool:
        with self._lock:
            return self._observers.pop(observer_id, None) is not None

    def _snapshot_observers(self) -> list[ObserverRegistration]:
        with self._lock:
            return list(self._observers.values())

    def _register_run(self, context: ExecutionContext) -> None:
        with self._lock:
            if context.run_id in self._active:
                raise ValidationError("run_id", "is already executing", context.run_id)
            self._finished.pop(context.run_id, None)
            self._active[context.run_id] = context

    def _retire_run(self, context: ExecutionContext) -> None:
        with self._lock:
            self._active.pop(context.run_id, None)
            if self.config.status_retention > 0:
                self._finished[context.run_id] = context
            self._prune_finished()

    def _prune_finished(self) -> None:
        now = time.monotonic()
        ttl = self.config.status_ttl_seconds
        expired = [
            run_id
            for run_id, context in self._finished.items()
            if context.finished_monotonic is not None and now - context.finished_monotonic > ttl
        ]
        for run_id in expired:
            del self._finished[run_id]
        while len(self._finished) > self.config.status_retention:
            self._finished.popitem(last=False)

    def __repr__(self) -> str:
        return (
            f"FlowScheduler(executors={len(self.registry)}, "
            f"pool={'yes' if self.pool is not None else 'no'}, active={len(self._active)})"
        )
