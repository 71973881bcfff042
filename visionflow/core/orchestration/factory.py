"""Scheduler factory: builds a FlowScheduler from visionflow configuration."""

from visionflow.core.config import LoggingConfig, VisionFlowConfig, load_config
from visionflow.core.logging import configure_logging, get_logger
from visionflow.core.orchestration.scheduler import FlowScheduler
from visionflow.core.pool import BufferPool
from visionflow.core.registry import ExecutorRegistry

logger = get_logger(__name__)

__all__ = ["apply_logging_config", "create_scheduler"]


def apply_logging_config(config: LoggingConfig) -> None:
    """Configure the global logger from a LoggingConfig."""
    configure_logging(
        level=config.level,
        format=config.format,
        output_file=config.output_file,
        use_color=config.use_color,
        include_timestamp=config.include_timestamp,
        use_rich=config.use_rich,
        dual_sink=config.dual_sink,
        enable_stdlib_bridge=config.enable_stdlib_bridge,
        backtrace=config.backtrace,
        diagnose=config.diagnose,
    )


def create_scheduler(
    config: VisionFlowConfig | None = None,
    registry: ExecutorRegistry | None = None,
    pool: BufferPool | None = None,
    configure_logs: bool = True,
) -> FlowScheduler:
    """Create a scheduler wired from configuration.

    Parameters
    ----------
    config : VisionFlowConfig | None
        Configuration to use. If None, ``load_config()`` discovers one
        (``visionflow.toml``, ``[tool.visionflow]`` or defaults).
    registry : ExecutorRegistry | None
        Executors to run with; a new empty registry if None
    pool : BufferPool | None
        Buffer pool to share; a new pool sized by ``config.pool`` if None
    configure_logs : bool, default=True
        Apply ``config.logging`` to the global logger

    Returns
    -------
    FlowScheduler
        Scheduler ready to execute flows

    Examples
    --------
    Example usage::

        scheduler = create_scheduler(registry=registry)
        result = await scheduler.execute(graph, {"image": frame})
    """
    config = config or load_config()
    if configure_logs:
        apply_logging_config(config.logging)
    if pool is None:
        pool = BufferPool(max_per_shape=config.pool.max_per_shape)

    scheduler = FlowScheduler(registry=registry, pool=pool, config=config.scheduler)
    logger.debug(
        "Created scheduler (mode={mode}, max_concurrent_nodes={limit}, "
        "pool max_per_shape={per_shape})",
        mode=config.scheduler.default_mode,
        limit=config.scheduler.resolved_max_concurrency,
        per_shape=pool.max_per_shape,
    )
    return scheduler
