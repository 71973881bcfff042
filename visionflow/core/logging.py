"""Centralized logging configuration for visionflow using Loguru.

Provides consistent logging across the engine with support for:
- Multiple output formats (console, JSON, structured, rich)
- Environment-based defaults
- Run-scoped correlation IDs
- Idempotent configuration

Examples
--------
Basic usage:

>>> from visionflow.core.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Run started", run_id="123")

Configure logging globally::

    from visionflow.core.logging import configure_logging
    configure_logging(level="DEBUG", format="json")
"""

import contextvars
import logging
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    import types

from loguru import logger
from rich.logging import RichHandler

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich", "dual"]

_CURRENT_CONFIG: dict | None = None
_HANDLER_IDS: list[int] = []

# Correlation ID context variable, set to the run id while a flow executes
correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _inject_correlation_id(record: dict[str, Any]) -> None:
    record["extra"].setdefault("cid", correlation_id.get())


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    use_rich: bool = False,
    dual_sink: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = True,
) -> None:
    """Configure global logging for visionflow.

    This function is idempotent - calling it multiple times with the same
    configuration will not duplicate handlers or change settings.

    Parameters
    ----------
    level : LogLevel, default="INFO"
        Minimum log level to output
    format : LogFormat, default="structured"
        Output format:
        - "console": Simple console output (no colors, basic format)
        - "json": JSON format for log aggregation
        - "structured": Structured format with colors (Loguru native)
        - "rich": Rich console handler
        - "dual": Rich to stderr + JSON to stdout
    output_file : str | Path | None, default=None
        Optional file path to write JSON logs to (in addition to console)
    use_color : bool, default=True
        Use ANSI color codes in structured format (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output
    force_reconfigure : bool, default=False
        Force reconfiguration even if already configured with same settings
    use_rich : bool, default=False
        Use Rich for console output (overrides format if True)
    dual_sink : bool, default=False
        Enable dual-sink: Rich console (stderr) + JSON (stdout)
    enable_stdlib_bridge : bool, default=False
        Route stdlib logging records through Loguru
    backtrace : bool, default=True
        Enable extended backtraces
    diagnose : bool, default=True
        Show variable values in tracebacks (disable in production)

    Examples
    --------
    Testing setup::

        configure_logging(level="WARNING", format="console")
    """
    global _CURRENT_CONFIG

    current_config = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "use_rich": use_rich,
        "dual_sink": dual_sink,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }

    if not force_reconfigure and current_config == _CURRENT_CONFIG:
        return

    # Remove only our previously added handlers (pytest and others keep theirs)
    for handler_id in _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(handler_id)
    _HANDLER_IDS.clear()

    logger.configure(patcher=_inject_correlation_id)

    if dual_sink or format == "dual":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="{message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stdout,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif use_rich or format == "rich":
        _HANDLER_IDS.append(
            logger.add(
                sink=_rich_handler(include_timestamp),
                level=level,
                format="{message}",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "json":
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                serialize=True,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    elif format == "structured":
        colorize = use_color and sys.stderr.isatty()
        timestamp_fmt = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if include_timestamp else ""
        color_level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
        structured_format = (
            f"{timestamp_fmt}[{color_level}] <magenta>{{extra[cid]}}</magenta> "
            "<cyan>{name}:{function}:{line}</cyan> | <level>{message}</level>"
        )
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=structured_format,
                colorize=colorize,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    else:  # console
        timestamp_fmt = "{time:YYYY-MM-DD HH:mm:ss} " if include_timestamp else ""
        console_format = f"{timestamp_fmt}{{level: <8}} | {{name}} | {{message}}"
        _HANDLER_IDS.append(
            logger.add(
                sink=sys.stderr,
                level=level,
                format=console_format,
                colorize=False,
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if output_file:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        # File output always uses JSON for easier parsing
        _HANDLER_IDS.append(
            logger.add(
                sink=output_path,
                level=level,
                serialize=True,
                rotation="10 MB",
                retention="1 week",
                compression="zip",
                backtrace=backtrace,
                diagnose=diagnose,
            )
        )

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = current_config


def _rich_handler(include_timestamp: bool) -> RichHandler:
    return RichHandler(
        rich_tracebacks=True,
        markup=True,
        show_time=include_timestamp,
        show_level=True,
        show_path=True,
    )


@lru_cache(maxsize=256)
def get_logger(name: str) -> Any:
    """Get a logger instance bound with the given module name (cached).

    Parameters
    ----------
    name : str
        Logger name, typically ``__name__`` of the calling module

    Returns
    -------
    loguru.Logger
        Logger bound with ``module=name``

    Notes
    -----
    If configure_logging() hasn't been called yet, sensible defaults are
    applied from ``VISIONFLOW_LOG_LEVEL`` / ``VISIONFLOW_LOG_FORMAT``.
    """
    _ensure_configured()
    return logger.bind(module=name)


@lru_cache(maxsize=128)
def get_logger_for_component(component_type: str, component_name: str) -> Any:
    """Get a logger for a specific component instance (e.g. an executor).

    Examples
    --------
    >>> log = get_logger_for_component("executor", "threshold")
    >>> log.debug("registered")
    """
    _ensure_configured()
    return logger.bind(
        module=f"visionflow.{component_type}.{component_name}",
        component_type=component_type,
        component_name=component_name,
    )


def enable_stdlib_logging_bridge() -> None:
    """Redirect stdlib ``logging`` records to Loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            level: str | int
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find caller from where originated the logged message
            frame: types.FrameType | None = sys._getframe(6)
            depth = 6
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def set_correlation_id(cid: str) -> contextvars.Token[str]:
    """Set correlation ID for the current context.

    Returns the ContextVar token so callers can restore the previous value.
    """
    return correlation_id.set(cid)


def get_correlation_id() -> str:
    """Get the current correlation ID.

    Examples
    --------
    >>> get_correlation_id()
    '-'
    """
    return correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID for the current context."""
    correlation_id.set("-")


def _ensure_configured() -> None:
    """Apply default configuration on first use."""
    if _CURRENT_CONFIG is None:
        level = os.getenv("VISIONFLOW_LOG_LEVEL", "INFO").upper()
        format_type = os.getenv("VISIONFLOW_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=format_type)  # type: ignore[arg-type]
