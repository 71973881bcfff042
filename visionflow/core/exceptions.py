"""Core exception hierarchy for visionflow.

All visionflow exceptions inherit from VisionFlowError for easy exception
handling. Node-level failures never escape the scheduler: they are caught at
the node boundary and recorded as results. The exceptions here surface from
the synchronous APIs (registry, pool, config, graph construction) and from
executor code that wants to report a failure.
"""

from __future__ import annotations

from collections.abc import Sequence

# ============================================================================
# Base Exception
# ============================================================================


class VisionFlowError(Exception):
    """Base exception for all visionflow errors."""

    pass


# ============================================================================
# Configuration & Validation Errors
# ============================================================================


class ConfigurationError(VisionFlowError):
    """Raised when configuration is invalid or missing.

    Examples
    --------
    Example usage::

        raise ConfigurationError("scheduler", "config file not found")
    """

    def __init__(self, component: str, reason: str) -> None:
        """Initialize configuration error.

        Args
        ----
            component: Name of the component with invalid configuration
            reason: Explanation of what's wrong
        """
        super().__init__(f"Configuration error in '{component}': {reason}")
        self.component = component
        self.reason = reason


class ValidationError(VisionFlowError):
    """Raised when a single field fails validation.

    Examples
    --------
    Example usage::

        raise ValidationError("threshold", "must be <= 255", value=300)
    """

    def __init__(self, field: str, constraint: str, value: object = None) -> None:
        """Initialize validation error.

        Args
        ----
            field: Name of the field that failed validation
            constraint: Description of the validation constraint
            value: The invalid value (optional)
        """
        if value is not None:
            msg = f"Validation failed for '{field}': {constraint} (got {value!r})"
        else:
            msg = f"Validation failed for '{field}': {constraint}"
        super().__init__(msg)
        self.field = field
        self.constraint = constraint
        self.value = value


class GraphValidationError(VisionFlowError):
    """Raised when a flow graph fails structural validation.

    Carries the complete error list, never a partial one.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors) if self.errors else "unknown error"
        super().__init__(f"Graph validation failed: {summary}")


# ============================================================================
# Resource Errors
# ============================================================================


class ResourceNotFoundError(VisionFlowError):
    """Raised when a required resource cannot be found.

    Examples
    --------
    Example usage::

        raise ResourceNotFoundError("node", "n-42", ["n-1", "n-2"])
    """

    def __init__(
        self, resource_type: str, resource_id: str, available: list[str] | None = None
    ) -> None:
        msg = f"{resource_type.title()} '{resource_id}' not found"
        if available:
            msg += f". Available: {', '.join(available[:5])}"
            if len(available) > 5:
                msg += f" ... and {len(available) - 5} more"
        super().__init__(msg)
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.available = available


class ExecutorNotFoundError(ResourceNotFoundError):
    """Raised when no executor is registered for an operator type."""

    def __init__(self, operator_type: str, available: list[str] | None = None) -> None:
        super().__init__("executor", operator_type, available)
        self.operator_type = operator_type


# ============================================================================
# Execution Errors
# ============================================================================


class SchedulingError(VisionFlowError):
    """Internal invariant violation while ordering or driving a run.

    Unreachable for validated graphs; treated as a fatal run error.
    """

    pass


class OperatorError(VisionFlowError):
    """Raised by an executor to report that its node failed.

    Examples
    --------
    Example usage::

        raise OperatorError("bad parameter")
    """

    pass


class OperationCancelledError(VisionFlowError):
    """Raised when cooperative cancellation has been requested."""

    def __init__(self, message: str = "operation was cancelled") -> None:
        super().__init__(message)


__all__ = [
    "ConfigurationError",
    "ExecutorNotFoundError",
    "GraphValidationError",
    "OperationCancelledError",
    "OperatorError",
    "ResourceNotFoundError",
    "SchedulingError",
    "ValidationError",
    "VisionFlowError",
]
