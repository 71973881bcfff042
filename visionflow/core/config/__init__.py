"""Configuration loading and management for visionflow."""

from visionflow.core.config.loader import (
    ConfigLoader,
    clear_config_cache,
    get_default_config,
    load_config,
)
from visionflow.core.config.models import (
    BufferPoolConfig,
    LoggingConfig,
    SchedulerConfig,
    VisionFlowConfig,
)

__all__ = [
    "BufferPoolConfig",
    "ConfigLoader",
    "LoggingConfig",
    "SchedulerConfig",
    "VisionFlowConfig",
    "clear_config_cache",
    "get_default_config",
    "load_config",
]
