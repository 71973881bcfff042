"""Configuration data models for visionflow."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Literal

from visionflow.core.exceptions import ValidationError

_MODES = ("sequential", "parallel")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for visionflow.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, dual, rich)
    output_file : str | None, default=None
        Optional file path to write logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    use_rich : bool, default=False
        Use Rich library for enhanced console output
    dual_sink : bool, default=False
        Pretty console (Rich) plus structured JSON to stdout
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging from third-party libraries through Loguru
    backtrace : bool, default=True
        Enable backtrace for debugging
    diagnose : bool, default=True
        Enable diagnose mode with variable values

    Examples
    --------
    TOML configuration:

    ```toml
    [tool.visionflow.logging]
    level = "DEBUG"
    format = "rich"
    ```
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "dual", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True
    use_rich: bool = False
    dual_sink: bool = False
    enable_stdlib_bridge: bool = False
    backtrace: bool = True
    diagnose: bool = True


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Execution defaults for FlowScheduler.

    Attributes
    ----------
    max_concurrent_nodes : int | None, default=None
        Upper bound on nodes running at once in parallel mode. None means
        ``os.cpu_count()``.
    default_mode : str, default="sequential"
        Mode used when ``execute`` is called without one
    default_node_timeout : float | None, default=None
        Timeout in seconds for nodes that set none themselves. None means
        nodes may run indefinitely.
    status_retention : int, default=64
        How many finished runs stay queryable through ``get_execution_status``
    status_ttl_seconds : float, default=300.0
        How long a finished run stays queryable
    """

    max_concurrent_nodes: int | None = None
    default_mode: Literal["sequential", "parallel"] = "sequential"
    default_node_timeout: float | None = None
    status_retention: int = 64
    status_ttl_seconds: float = 300.0

    def __post_init__(self) -> None:
        """Validate scheduler settings.

        Raises
        ------
        ValidationError
            If a limit is not positive or the mode is unknown
        """
        if self.max_concurrent_nodes is not None and (
            isinstance(self.max_concurrent_nodes, bool)
            or not isinstance(self.max_concurrent_nodes, int)
            or self.max_concurrent_nodes < 1
        ):
            raise ValidationError(
                "max_concurrent_nodes",
                "must be a positive integer or None",
                self.max_concurrent_nodes,
            )
        if self.default_mode not in _MODES:
            raise ValidationError("default_mode", f"must be one of {_MODES}", self.default_mode)
        if self.default_node_timeout is not None and self.default_node_timeout <= 0:
            raise ValidationError(
                "default_node_timeout", "must be positive or None", self.default_node_timeout
            )
        if self.status_retention < 0:
            raise ValidationError("status_retention", "cannot be negative", self.status_retention)
        if self.status_ttl_seconds < 0:
            raise ValidationError(
                "status_ttl_seconds", "cannot be negative", self.status_ttl_seconds
            )

    @property
    def resolved_max_concurrency(self) -> int:
        return self.max_concurrent_nodes or os.cpu_count() or 1


@dataclass(frozen=True, slots=True)
class BufferPoolConfig:
    """Buffer pool settings.

    Attributes
    ----------
    max_per_shape : int, default=10
        Idle buffers kept per distinct shape; extra returns are discarded
    """

    max_per_shape: int = 10

    def __post_init__(self) -> None:
        if (
            isinstance(self.max_per_shape, bool)
            or not isinstance(self.max_per_shape, int)
            or self.max_per_shape < 1
        ):
            raise ValidationError("max_per_shape", "must be a positive integer", self.max_per_shape)


@dataclass(slots=True)
class VisionFlowConfig:
    """Complete visionflow configuration.

    Examples
    --------
    TOML configuration in pyproject.toml:

    ```toml
    [tool.visionflow.logging]
    level = "DEBUG"

    [tool.visionflow.scheduler]
    max_concurrent_nodes = 4
    default_mode = "parallel"

    [tool.visionflow.pool]
    max_per_shape = 16
    ```
    """

    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    pool: BufferPoolConfig = field(default_factory=BufferPoolConfig)

    # Additional settings
    settings: dict[str, Any] = field(default_factory=dict)
