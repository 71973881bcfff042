"""Operator executor protocol and the registry that maps type tags to executors."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from threading import Lock
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from visionflow.core.exceptions import ConfigurationError, ExecutorNotFoundError
from visionflow.core.logging import get_logger
from visionflow.core.utils.concurrency import call_maybe_async

if TYPE_CHECKING:
    from visionflow.core.domain.graph import OperatorNode
    from visionflow.core.domain.ports import PortValue
    from visionflow.core.orchestration.models import NodeRunContext

logger = get_logger(__name__)


@runtime_checkable
class OperatorExecutor(Protocol):
    """Runs one kind of operator.

    ``execute`` receives the node (for its parameters), the gathered inputs
    keyed by input-port name, and a NodeRunContext. It returns a mapping of
    output-port name to value; plain values are wrapped into PortValue using
    the declared output kind.

    ``execute`` may be a coroutine or a plain method. Plain methods run in a
    worker thread so they never block the event loop.

    Optional Methods
    ----------------
    - ``validate_parameters(node) -> list[str]``: parameter problems reported
      by ``FlowScheduler.validate_flow`` as errors.
    """

    def execute(
        self,
        node: OperatorNode,
        inputs: Mapping[str, PortValue],
        context: NodeRunContext,
    ) -> Any: ...


ExecuteFn = Callable[..., Any]
ParameterValidatorFn = Callable[["OperatorNode"], list[str]]


class FunctionExecutor:
    """Adapts a function ``fn(node, inputs, context)`` into an OperatorExecutor.

    Examples
    --------
    >>> async def invert(node, inputs, context):
    ...     return {"image": 255 - inputs["image"].data}
    >>> executor = FunctionExecutor(invert)
    """

    def __init__(self, fn: ExecuteFn, validator: ParameterValidatorFn | None = None) -> None:
        self.fn = fn
        self.validator = validator
        self.__name__ = getattr(fn, "__name__", type(fn).__name__)

    async def execute(
        self,
        node: OperatorNode,
        inputs: Mapping[str, PortValue],
        context: NodeRunContext,
    ) -> Any:
        return await call_maybe_async(self.fn, node, inputs, context)

    def validate_parameters(self, node: OperatorNode) -> list[str]:
        if self.validator is None:
            return []
        return list(self.validator(node))

    def __repr__(self) -> str:
        return f"FunctionExecutor({self.__name__})"


class ExecutorRegistry:
    """Maps operator type tags to executors.

    Registration is last-wins. While at least one run holds the registry
    frozen, registration and removal raise ``ConfigurationError``; lookups are
    always allowed.

    Examples
    --------
    >>> registry = ExecutorRegistry()
    >>> @registry.executor("invert")
    ... async def invert(node, inputs, context):
    ...     return {"image": 255 - inputs["image"].data}
    >>> "invert" in registry
    True
    """

    def __init__(self) -> None:
        self._executors: dict[str, OperatorExecutor] = {}
        self._freeze_count = 0
        self._lock = Lock()

    # ========================================================================
    # Registration
    # ========================================================================

    def register(self, operator_type: str, executor: OperatorExecutor | ExecuteFn) -> None:
        """Register ``executor`` for ``operator_type``, replacing any previous one.

        Plain callables are wrapped in FunctionExecutor.
        """
        if not operator_type:
            raise ConfigurationError("executor registry", "operator type cannot be empty")
        if not hasattr(executor, "execute"):
            if not callable(executor):
                raise ConfigurationError(
                    "executor registry",
                    f"executor for '{operator_type}' must define execute() or be callable",
                )
            executor = FunctionExecutor(executor)

        with self._lock:
            self._ensure_mutable(operator_type)
            if operator_type in self._executors:
                logger.debug("Replacing executor for '{type}'", type=operator_type)
            self._executors[operator_type] = executor  # type: ignore[assignment]
        logger.debug(
            "Registered executor {executor} for '{type}'", executor=executor, type=operator_type
        )

    def executor(self, operator_type: str) -> Callable[[ExecuteFn], ExecuteFn]:
        """Decorator form of ``register``; returns the function unchanged."""

        def decorator(fn: ExecuteFn) -> ExecuteFn:
            self.register(operator_type, fn)
            return fn

        return decorator

    def unregister(self, operator_type: str) -> None:
        with self._lock:
            self._ensure_mutable(operator_type)
            if operator_type not in self._executors:
                raise ExecutorNotFoundError(operator_type, self.types())
            del self._executors[operator_type]

    def _ensure_mutable(self, operator_type: str) -> None:
        if self._freeze_count:
            raise ConfigurationError(
                "executor registry",
                f"cannot change executor for '{operator_type}' while a run is in flight",
            )

    # ========================================================================
    # Lookup
    # ========================================================================

    def resolve(self, operator_type: str) -> OperatorExecutor:
        """Return the executor for ``operator_type``.

        Raises
        ------
        ExecutorNotFoundError
            If nothing is registered for the type
        """
        try:
            return self._executors[operator_type]
        except KeyError:
            raise ExecutorNotFoundError(operator_type, self.types()) from None

    def get(self, operator_type: str) -> OperatorExecutor | None:
        return self._executors.get(operator_type)

    def types(self) -> list[str]:
        return sorted(self._executors)

    # ========================================================================
    # Run lifecycle
    # ========================================================================

    def freeze(self) -> None:
        """Mark a run as in flight. Nested calls are counted."""
        with self._lock:
            self._freeze_count += 1

    def thaw(self) -> None:
        with self._lock:
            if self._freeze_count:
                self._freeze_count -= 1

    @property
    def frozen(self) -> bool:
        return self._freeze_count > 0

    def __contains__(self, operator_type: object) -> bool:
        return operator_type in self._executors

    def __len__(self) -> int:
        return len(self._executors)

    def __iter__(self) -> Iterator[str]:
        return iter(self.types())

    def __repr__(self) -> str:
        return f"ExecutorRegistry(types={self.types()})"
