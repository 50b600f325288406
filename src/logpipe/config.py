"""
logpipe Configuration Management

Provides configuration loading with multi-layer support:
1. Hardcoded defaults
2. User config file (--config, $LOGPIPE_CONFIG or ~/.logpipe/config.yaml)
3. Environment variables (LOGPIPE_* prefix)

Command-line options override everything loaded here.

Features:
- Schema validation with clear error messages
- Environment variable expansion (${VAR} syntax) in config paths
- Path expansion (~ and environment variables)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


# =============================================================================
# Configuration Schema Data Classes
# =============================================================================


INPUT_FORMATS = {"auto", "json", "logfmt"}
OUTPUT_FORMATS = {"text", "json", "logfmt"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class InputConfig:
    """Input parsing settings"""
    format: str = "auto"  # or "json" or "logfmt"


@dataclass
class OutputConfig:
    """Output rendering settings"""
    format: str = "text"  # or "json" or "logfmt"
    color: bool = False
    pretty: bool = False
    fields: list[str] = field(default_factory=list)


@dataclass
class LogpipeConfig:
    """Main logpipe configuration"""
    input: InputConfig = field(default_factory=InputConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Diagnostics written to stderr
    log_level: str = "WARNING"

    # Where the configuration came from (None if defaults only)
    source_path: Path | None = field(default=None, repr=False, compare=False)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(Exception):
    """Base configuration error"""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error with detailed context"""

    def __init__(self, message: str, path: str = "", value: Any = None):
        self.message = message
        self.path = path
        self.value = value
        full_msg = "Validation error"
        if path:
            full_msg += f" at '{path}'"
        full_msg += f": {message}"
        if value is not None:
            full_msg += f" (got: {repr(value)})"
        super().__init__(full_msg)


class ConfigNotFoundError(ConfigError):
    """Configuration file not found"""
    pass


# =============================================================================
# Configuration Utilities
# =============================================================================


def expand_env_vars(value: str, env: dict[str, str] | None = None) -> str:
    """
    Expand environment variables in a string.

    Supports ${VAR} and $VAR syntax. Non-existent variables are left unexpanded.

    Args:
        value: String potentially containing environment variables
        env: Optional environment dictionary (defaults to os.environ)

    Returns:
        String with environment variables expanded

    Examples:
        >>> expand_env_vars("$FOO/bar", {"FOO": "baz"})
        'baz/bar'
    """
    if env is None:
        env = os.environ

    pattern = r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)'

    def replacer(match: re.Match) -> str:
        var_name = match.group(1) or match.group(2)
        return env.get(var_name, match.group(0))

    return re.sub(pattern, replacer, value)


def expand_path(path: str | Path) -> Path:
    """Expand a path string with ~ and environment variables"""
    return Path(expand_env_vars(str(path))).expanduser()


def validate_enum(value: Any, allowed: set[str] | list[str], path: str = "") -> None:
    """
    Validate that a value is in the allowed set.

    Raises:
        ConfigValidationError: If validation fails
    """
    if value not in allowed:
        allowed_str = ", ".join(repr(v) for v in sorted(allowed))
        raise ConfigValidationError(f"Value must be one of: {allowed_str}", path, value)


def parse_bool(value: str) -> bool:
    """Interpret an environment variable as a boolean"""
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Configuration Loader
# =============================================================================


class ConfigLoader:
    """
    Loads and validates logpipe configuration.

    Loading order (later sources override earlier ones):
    1. Hardcoded defaults
    2. User config file (explicit path, $LOGPIPE_CONFIG, or ~/.logpipe/config.yaml)
    3. Environment variables (LOGPIPE_* prefix)
    """

    DEFAULT_USER_CONFIG_PATH = "~/.logpipe/config.yaml"

    # Map of environment variable names to config paths
    ENV_VAR_MAP: dict[str, str] = {
        "LOGPIPE_INPUT_FORMAT": "input.format",
        "LOGPIPE_OUTPUT_FORMAT": "output.format",
        "LOGPIPE_COLOR": "output.color",
        "LOGPIPE_PRETTY": "output.pretty",
        "LOGPIPE_LOG_LEVEL": "log_level",
    }

    def __init__(self, config_path: Path | str | None = None):
        """
        Initialize the configuration loader.

        Args:
            config_path: Optional explicit config file; it must exist
        """
        self.config_path = expand_path(config_path) if config_path else None

    def load(self) -> LogpipeConfig:
        """
        Load configuration from all sources.

        Returns:
            Fully loaded and validated LogpipeConfig

        Raises:
            ConfigNotFoundError: If an explicit config file does not exist
            ConfigError: If the file is not valid YAML
            ConfigValidationError: If configuration is invalid
        """
        config = LogpipeConfig()

        if self.config_path is not None:
            path, required = self.config_path, True
        else:
            path, required = self._get_user_config_path(), False

        data = self._load_yaml_file(path, required=required)
        if data:
            self._apply_config_dict(config, data)
            config.source_path = path

        self._apply_env_vars(config)
        self._validate_config(config)

        return config

    def _get_user_config_path(self) -> Path:
        """Get the user config path, checking LOGPIPE_CONFIG env var."""
        env_path = os.environ.get("LOGPIPE_CONFIG")
        if env_path:
            return expand_path(env_path)
        return expand_path(self.DEFAULT_USER_CONFIG_PATH)

    def _load_yaml_file(self, path: Path, required: bool = True) -> dict[str, Any] | None:
        """
        Load a YAML configuration file.

        Returns:
            Parsed YAML data or None if file not found and not required

        Raises:
            ConfigError: If file is invalid YAML or unreadable
        """
        if not path.exists():
            if required:
                raise ConfigNotFoundError(f"Configuration file not found: {path}")
            return None

        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f)
                return data if isinstance(data, dict) else {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")

    def _apply_config_dict(self, config: LogpipeConfig, data: dict[str, Any]) -> None:
        """Apply a configuration dictionary to the config object."""
        for key, value in data.items():
            if value is None:
                continue  # Skip null values

            if key == "input" and isinstance(value, dict):
                self._apply_section(config.input, value, key)
            elif key == "output" and isinstance(value, dict):
                self._apply_section(config.output, value, key)
            elif key == "log_level":
                config.log_level = str(value).upper()
            else:
                raise ConfigValidationError("Unknown configuration key", key, value)

    def _apply_section(self, section: Any, data: dict[str, Any], prefix: str) -> None:
        for key, value in data.items():
            current_path = f"{prefix}.{key}"
            if value is None:
                continue
            if not hasattr(section, key):
                raise ConfigValidationError("Unknown configuration key", current_path, value)

            current_value = getattr(section, key)
            if isinstance(current_value, bool) and not isinstance(value, bool):
                raise ConfigValidationError("Expected a boolean", current_path, value)
            if isinstance(current_value, list):
                if isinstance(value, str):
                    value = [name.strip() for name in value.split(",") if name.strip()]
                elif not isinstance(value, list):
                    raise ConfigValidationError("Expected a list", current_path, value)
                else:
                    value = [str(item) for item in value]

            setattr(section, key, value)

    def _apply_env_vars(self, config: LogpipeConfig) -> None:
        """Apply environment variable overrides to configuration."""
        for env_var, config_path in self.ENV_VAR_MAP.items():
            value = os.environ.get(env_var)
            if value is None:
                continue

            parts = config_path.split(".")
            obj: Any = config
            for part in parts[:-1]:
                obj = getattr(obj, part)

            final_attr = parts[-1]
            current_value = getattr(obj, final_attr)
            if isinstance(current_value, bool):
                setattr(obj, final_attr, parse_bool(value))
            elif final_attr == "log_level":
                setattr(obj, final_attr, value.upper())
            else:
                setattr(obj, final_attr, value)

    def _validate_config(self, config: LogpipeConfig) -> None:
        """
        Validate the complete configuration.

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        validate_enum(config.input.format, INPUT_FORMATS, "input.format")
        validate_enum(config.output.format, OUTPUT_FORMATS, "output.format")
        validate_enum(config.log_level, LOG_LEVELS, "log_level")


def load_config(config_path: Path | str | None = None) -> LogpipeConfig:
    """Convenience wrapper around ConfigLoader"""
    return ConfigLoader(config_path=config_path).load()
