# Copyright (c) 2025 Stephen Clau

# This file is part of File Source Agent.

# File Source Agent is dual-licensed:

# 1. GNU Affero General Public License v3.0 (AGPL-3.0)
#    See LICENSE file for full terms

# 2. Commercial License
#    For proprietary use without AGPL requirements
#    Contact: licensing@laudiversified.com

# SPDX-License-Identifier: AGPL-3.0-only OR Commercial

"""
Configuration module for File Source Agent.

- sources.yml is MANDATORY (one entry per watched file)
- Process-level settings (logging, health endpoint) come from environment variables
- ${VAR} references inside sources.yml string values are expanded from the environment
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Any
import os
import re
import yaml
import structlog

logger = structlog.get_logger()

DEFAULT_INTERVAL = 0.5
DEFAULT_DECODER = "utf8"
DEFAULT_INITIAL_POSITION = "beginning"


class ConfigurationError(ValueError):
    """Raised for invalid source or agent configuration."""
    pass


def get_config_value(env_var: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get configuration value from environment variables.

    Args:
        env_var: Environment variable name (e.g., 'LOG_LEVEL')
        default: Default value if not found in env

    Returns:
        Configuration value from env var, else the default (possibly None)
    """
    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug("config_value_loaded_from_env", source="environment", var=env_var)
        return env_value

    if default is not None:
        logger.debug("config_value_loaded_from_default", source="default", var=env_var)

    return default


def _safe_int(value: Any, field_name: str, default: int) -> int:
    """
    Safely convert value to int with proper type checking.

    Args:
        value: Value to convert (can be None, int, or str)
        field_name: Field name for error messages
        default: Default value if None

    Returns:
        Converted int value

    Raises:
        ConfigurationError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ConfigurationError(f"Cannot convert {field_name} to int: bool")

    if isinstance(value, int):
        return value

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"Invalid integer for {field_name}: {value}")

    raise ConfigurationError(f"Cannot convert {field_name} to int: {type(value).__name__}")


def _safe_float(value: Any, field_name: str, default: float) -> float:
    """
    Safely convert value to float with proper type checking.

    Args:
        value: Value to convert (can be None, float, int, or str)
        field_name: Field name for error messages
        default: Default value if None

    Returns:
        Converted float value

    Raises:
        ConfigurationError: If conversion fails
    """
    if value is None:
        return default

    if isinstance(value, bool):
        raise ConfigurationError(f"Cannot convert {field_name} to float: bool")

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Invalid float for {field_name}: {value}")

    raise ConfigurationError(f"Cannot convert {field_name} to float: {type(value).__name__}")


def _expand_env_vars(value: Any) -> Any:
    """
    Expand environment variables in a string.

    Supports ${VAR_NAME} syntax.
    Falls back to original string if variable not found.

    Args:
        value: String potentially containing ${VAR_NAME} references

    Returns:
        String with environment variables expanded
    """
    if not isinstance(value, str):
        return value

    def replace_var(match: Any) -> str:
        var_name = match.group(1)
        return os.getenv(var_name, match.group(0))  # Fall back to original if not found

    return re.sub(r'\$\{([^}]+)\}', replace_var, value)


@dataclass
class SourceConfig:
    """Per-source configuration as read from sources.yml."""

    tag: str
    """Source tag (e.g., 'app', 'nginx_access'). Must be unique across sources.yml."""

    path: Path
    """File to tail."""

    decoder: str = DEFAULT_DECODER
    """Decoder binding: 'utf8', 'json' or 'module:Name'."""

    state_file: Optional[Path] = None
    """Checkpoint side file. Optional."""

    interval: float = DEFAULT_INTERVAL
    """Poll delay in seconds."""

    initial_position: str = DEFAULT_INITIAL_POSITION
    """'beginning' or 'end'; used when no checkpoint matches the file."""

    def __post_init__(self) -> None:
        """Validate source config after initialization."""
        if not isinstance(self.path, Path):
            self.path = Path(self.path)

        if self.state_file is not None and not isinstance(self.state_file, Path):
            self.state_file = Path(self.state_file)

        if not self.tag or not self.tag.replace("_", "").replace("-", "").isalnum():
            raise ConfigurationError(
                f"Source tag must be alphanumeric (with underscores or dashes): {self.tag}"
            )

        if str(self.path) in ("", "."):
            raise ConfigurationError(f"Source {self.tag}: path is required")

        if not self.decoder:
            raise ConfigurationError(f"Source {self.tag}: decoder cannot be empty")

        if self.interval <= 0:
            raise ConfigurationError(
                f"Source {self.tag}: interval must be > 0, got {self.interval}"
            )

        if self.initial_position.lower() not in ("beginning", "end"):
            raise ConfigurationError(
                f"Source {self.tag}: initial_position must be 'beginning' or 'end', "
                f"got '{self.initial_position}'"
            )
        self.initial_position = self.initial_position.lower()


@dataclass
class Config:
    """Main application configuration."""

    sources: Dict[str, SourceConfig]
    """Dictionary of source tag -> SourceConfig. At least one is REQUIRED."""

    # Health check configuration
    health_check_host: str = "0.0.0.0"
    """Host to bind health check server to. Default: 0.0.0.0"""

    health_check_port: int = 8080
    """Port to bind health check server to. Default: 8080"""

    # Logging configuration
    log_level: str = "info"
    """Logging level: debug, info, warning, error. Default: info"""

    log_format: str = "console"
    """Logging format: console or json. Default: console"""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.sources or not isinstance(self.sources, dict):
            raise ConfigurationError(
                "sources configuration is REQUIRED. "
                "sources.yml must define at least one source."
            )

        # Two tailers on one path (or one state file) would race on checkpoints
        seen_paths: Dict[Path, str] = {}
        seen_state: Dict[Path, str] = {}
        for tag, source in self.sources.items():
            resolved = source.path.expanduser().absolute()
            if resolved in seen_paths:
                raise ConfigurationError(
                    f"Sources '{seen_paths[resolved]}' and '{tag}' tail the same file: {source.path}"
                )
            seen_paths[resolved] = tag

            if source.state_file is not None:
                state = source.state_file.expanduser().absolute()
                if state in seen_state:
                    raise ConfigurationError(
                        f"Sources '{seen_state[state]}' and '{tag}' share state_file: {source.state_file}"
                    )
                seen_state[state] = tag

        # Validate log level
        valid_levels = {"debug", "info", "warning", "error"}
        if self.log_level.lower() not in valid_levels:
            raise ConfigurationError(
                f"Invalid log_level '{self.log_level}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )

        # Validate health check port
        if not 1 <= self.health_check_port <= 65535:
            raise ConfigurationError(
                f"Invalid health_check_port: {self.health_check_port}. Must be 1-65535"
            )

        # Validate log format
        valid_formats = {"console", "json"}
        if self.log_format.lower() not in valid_formats:
            raise ConfigurationError(
                f"Invalid log_format '{self.log_format}'. Must be one of: {', '.join(sorted(valid_formats))}"
            )


def _parse_source(tag: str, source_data: Any) -> SourceConfig:
    if not isinstance(source_data, dict):
        raise ConfigurationError(f"Source '{tag}' must be a mapping")

    if "path" not in source_data:
        raise ConfigurationError(f"Source '{tag}' is missing required 'path'")

    state_file = _expand_env_vars(source_data.get("state_file"))

    return SourceConfig(
        tag=str(tag),
        path=Path(_expand_env_vars(str(source_data["path"]))),
        decoder=str(_expand_env_vars(source_data.get("decoder", DEFAULT_DECODER))),
        state_file=Path(state_file) if state_file else None,
        interval=_safe_float(
            source_data.get("interval"), f"Source {tag} interval", DEFAULT_INTERVAL
        ),
        initial_position=str(
            source_data.get("initial_position", DEFAULT_INITIAL_POSITION)
        ),
    )


def load_config() -> Config:
    """
    Load configuration from environment variables and sources.yml.

    Priority order for process settings:
    1. Environment variable
    2. Hardcoded defaults

    Returns:
        Fully populated Config object with validation

    Raises:
        FileNotFoundError: If sources.yml not found
        ConfigurationError: If config values are invalid
        yaml.YAMLError: If sources.yml invalid YAML
    """
    config_dir = os.getenv("CONFIG_DIR", ".")
    sources_yml_path = Path(config_dir) / "sources.yml"

    if not sources_yml_path.exists():
        raise FileNotFoundError(
            f"sources.yml not found at {sources_yml_path}. "
            f"At least one source must be configured."
        )

    with open(sources_yml_path) as f:
        sources_data = yaml.safe_load(f)

    if not sources_data or not isinstance(sources_data, dict) or "sources" not in sources_data:
        raise ConfigurationError("sources.yml must contain 'sources' key with source definitions")

    if not isinstance(sources_data["sources"], dict):
        raise ConfigurationError("'sources' in sources.yml must be a mapping of tag -> source")

    sources: Dict[str, SourceConfig] = {
        str(tag): _parse_source(str(tag), source_data)
        for tag, source_data in sources_data["sources"].items()
    }

    health_check_port = _safe_int(
        get_config_value(env_var="HEALTH_CHECK_PORT", default="8080"),
        "health_check_port",
        8080,
    )

    config = Config(
        sources=sources,
        health_check_host=get_config_value(env_var="HEALTH_CHECK_HOST", default="0.0.0.0") or "0.0.0.0",
        health_check_port=health_check_port,
        log_level=get_config_value(env_var="LOG_LEVEL", default="info") or "info",
        log_format=get_config_value(env_var="LOG_FORMAT", default="console") or "console",
    )

    logger.debug("config_loaded", path=str(sources_yml_path), sources=list(sources.keys()))
    return config


def validate_config(config: Config) -> bool:
    """
    Validate a Config object against the filesystem.

    Missing source files are fine (they are waited for); a state file whose
    directory cannot be created is not.

    Args:
        config: Config object to validate

    Returns:
        True if config is valid, False otherwise
    """
    try:
        if not config.sources:
            logger.error("config_validation_failed_no_sources")
            return False

        for tag, source in config.sources.items():
            if not source.path.exists():
                logger.warning(
                    "config_source_file_missing",
                    source=tag,
                    path=str(source.path),
                )

            if source.state_file is not None:
                state_dir = source.state_file.parent
                if state_dir.exists() and not state_dir.is_dir():
                    logger.error(
                        "config_validation_failed_state_dir",
                        source=tag,
                        state_dir=str(state_dir),
                    )
                    return False

        return True

    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        return False
