"""Flow graph validation."""

from visionflow.core.validation.graph_validator import (
    FlowValidationResult,
    GraphValidator,
    ValidationResult,
)

__all__ = ["FlowValidationResult", "GraphValidator", "ValidationResult"]
