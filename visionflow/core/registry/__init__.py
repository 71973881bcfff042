"""Operator executor registry."""

from visionflow.core.registry.executor_registry import (
    ExecutorRegistry,
    FunctionExecutor,
    OperatorExecutor,
)

__all__ = ["ExecutorRegistry", "FunctionExecutor", "OperatorExecutor"]
