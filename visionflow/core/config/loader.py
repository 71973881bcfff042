"""Configuration loader for visionflow.

Reads TOML configuration from one of, in discovery order:

1. an explicit path,
2. the ``VISIONFLOW_CONFIG_PATH`` environment variable,
3. ``visionflow.toml`` in the working directory,
4. ``[tool.visionflow]`` in ``pyproject.toml`` (working directory, then parents).

``${VAR}`` references in string values are replaced from the environment, and
a handful of ``VISIONFLOW_*`` variables override file values.
"""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from visionflow.core.config.models import (
    BufferPoolConfig,
    LoggingConfig,
    SchedulerConfig,
    VisionFlowConfig,
)
from visionflow.core.exceptions import ConfigurationError, ValidationError
from visionflow.core.logging import get_logger

# Constants for boolean environment variable parsing
_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

CONFIG_PATH_ENV = "VISIONFLOW_CONFIG_PATH"
CONFIG_FILE_NAME = "visionflow.toml"

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = sorted(_TRUTHY_VALUES | _FALSY_VALUES)
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


def _parse_int_env(name: str, value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        logger.warning("Invalid {name} value {value!r}, ignoring", name=name, value=value)
        return None


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> VisionFlowConfig:
    """Cached configuration loader."""
    loader = ConfigLoader()
    return loader._load_and_parse(Path(path_str))


class ConfigLoader:
    """Loads and processes visionflow configuration files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")

    def load_config_file(self, path: str | Path | None = None) -> VisionFlowConfig:
        """Load configuration from a TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to config file. If None, searches using discovery order.

        Returns
        -------
        VisionFlowConfig
            Parsed configuration with environment variables substituted

        Raises
        ------
        FileNotFoundError
            If no configuration file is found
        ConfigurationError
            If the file is not valid TOML or holds invalid values
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> VisionFlowConfig:
        logger.info("Loading configuration from {path}", path=config_path)
        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(str(config_path), f"invalid TOML: {e}") from e

        if config_path.name == "pyproject.toml":
            section = data.get("tool", {}).get("visionflow", {})
            if not section:
                logger.warning(
                    "No [tool.visionflow] section found in pyproject.toml, using defaults"
                )
        elif "tool" in data and "visionflow" in data.get("tool", {}):
            section = data["tool"]["visionflow"]
        else:
            section = data

        section = self._substitute_env_vars(section)
        try:
            return self._parse_config(section)
        except ValidationError as e:
            raise ConfigurationError(str(config_path), str(e)) from e

    def _find_config_file(self, path: str | Path | None) -> Path:
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv(CONFIG_PATH_ENV):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from {env}: {}", config_path, env=CONFIG_PATH_ENV)
                return config_path
            logger.warning("{env} set but file not found: {}", config_path, env=CONFIG_PATH_ENV)

        if Path(CONFIG_FILE_NAME).exists():
            return Path(CONFIG_FILE_NAME)

        # Parent directory traversal for pyproject.toml
        current = Path.cwd()
        while True:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "visionflow" in data.get("tool", {}):
                    return pyproject
            if current == current.parent:
                break
            current = current.parent

        raise FileNotFoundError(
            f"No configuration file found. Provide a path, set {CONFIG_PATH_ENV}, "
            f"add {CONFIG_FILE_NAME}, or add [tool.visionflow] to pyproject.toml"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively replace ``${VAR}`` in strings; unknown variables are kept."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name = match.group(1)
                value = os.environ.get(var_name)
                if value is None:
                    logger.debug(
                        "Environment variable ${{{var_name}}} not found, keeping placeholder",
                        var_name=var_name,
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> VisionFlowConfig:
        config = VisionFlowConfig()
        config.logging = self._parse_logging_config(data.get("logging", {}))
        config.scheduler = self._parse_scheduler_config(data.get("scheduler", {}))
        config.pool = self._parse_pool_config(data.get("pool", {}))

        if "settings" in data:
            config.settings = data["settings"]
            logger.debug("Loaded {count} settings", count=len(config.settings))
        return config

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over config file values:
        - VISIONFLOW_LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        - VISIONFLOW_LOG_FORMAT: Output format (console, json, structured, rich, dual)
        - VISIONFLOW_LOG_FILE: Optional file path for log output
        - VISIONFLOW_LOG_COLOR: Use color output (true/false)
        """
        level = logging_data.get("level", "INFO")
        format_type = logging_data.get("format", "structured")
        output_file = logging_data.get("output_file")
        use_color = logging_data.get("use_color", True)

        if env_level := os.getenv("VISIONFLOW_LOG_LEVEL"):
            level = env_level.upper()
            logger.debug("Overriding log level from env: {}", level)

        if env_format := os.getenv("VISIONFLOW_LOG_FORMAT"):
            format_type = env_format.lower()
            logger.debug("Overriding log format from env: {}", format_type)

        if env_file := os.getenv("VISIONFLOW_LOG_FILE"):
            output_file = env_file
            logger.debug("Overriding log file from env: {}", output_file)

        if env_color := os.getenv("VISIONFLOW_LOG_COLOR"):
            try:
                use_color = _parse_bool_env(env_color)
                logger.debug("Overriding log color from env: {}", use_color)
            except ValueError as e:
                logger.warning("Invalid VISIONFLOW_LOG_COLOR value: {}", e)

        return LoggingConfig(
            level=cast("Any", level),
            format=cast("Any", format_type),
            output_file=output_file,
            use_color=use_color,
            include_timestamp=logging_data.get("include_timestamp", True),
            use_rich=logging_data.get("use_rich", False),
            dual_sink=logging_data.get("dual_sink", False),
            enable_stdlib_bridge=logging_data.get("enable_stdlib_bridge", False),
            backtrace=logging_data.get("backtrace", True),
            diagnose=logging_data.get("diagnose", True),
        )

    def _parse_scheduler_config(self, scheduler_data: dict[str, Any]) -> SchedulerConfig:
        """Parse scheduler configuration.

        ``VISIONFLOW_MAX_CONCURRENT_NODES`` overrides ``max_concurrent_nodes``.
        """
        max_concurrent = scheduler_data.get("max_concurrent_nodes")
        if env_max := os.getenv("VISIONFLOW_MAX_CONCURRENT_NODES"):
            parsed = _parse_int_env("VISIONFLOW_MAX_CONCURRENT_NODES", env_max)
            if parsed is not None:
                max_concurrent = parsed
                logger.debug("Overriding max_concurrent_nodes from env: {}", max_concurrent)

        return SchedulerConfig(
            max_concurrent_nodes=max_concurrent,
            default_mode=scheduler_data.get("default_mode", "sequential"),
            default_node_timeout=scheduler_data.get("default_node_timeout"),
            status_retention=scheduler_data.get("status_retention", 64),
            status_ttl_seconds=scheduler_data.get("status_ttl_seconds", 300.0),
        )

    def _parse_pool_config(self, pool_data: dict[str, Any]) -> BufferPoolConfig:
        """Parse buffer pool configuration.

        ``VISIONFLOW_POOL_MAX_PER_SHAPE`` overrides ``max_per_shape``.
        """
        max_per_shape = pool_data.get("max_per_shape", 10)
        if env_max := os.getenv("VISIONFLOW_POOL_MAX_PER_SHAPE"):
            parsed = _parse_int_env("VISIONFLOW_POOL_MAX_PER_SHAPE", env_max)
            if parsed is not None:
                max_per_shape = parsed
                logger.debug("Overriding pool max_per_shape from env: {}", max_per_shape)
        return BufferPoolConfig(max_per_shape=max_per_shape)


def load_config(path: str | Path | None = None) -> VisionFlowConfig:
    """Load configuration from file or return defaults.

    Parsed files are cached by absolute path; call ``clear_config_cache``
    after editing a file or changing environment overrides.

    Parameters
    ----------
    path : str | Path | None
        Path to configuration file or None to search

    Returns
    -------
    VisionFlowConfig
        Loaded configuration or defaults if no file found
    """
    try:
        loader = ConfigLoader()
        return loader.load_config_file(path)
    except FileNotFoundError:
        if path:
            raise
        logger.info("No configuration file found, using defaults")
        return get_default_config()


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when configuration files have been modified
    and you need to force a reload.
    """
    _load_and_parse_cached.cache_clear()


def get_default_config() -> VisionFlowConfig:
    """Get default configuration."""
    return VisionFlowConfig()
