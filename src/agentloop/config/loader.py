"""Configuration loading and validation."""

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

import yaml
from pydantic import ValidationError

from agentloop.config.schema import AgentLoopConfig

DEFAULT_CONFIG_PATH = Path.home() / ".agentloop" / "agentloop.yaml"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""


def _expand_env(value: Any) -> Any:
    """Recursively substitute ``${VAR}`` references from the environment."""
    if isinstance(value, str):

        def _lookup(match: re.Match) -> str:
            name = match.group(1)
            if name not in os.environ:
                raise ConfigError(f"Environment variable {name} is not set")
            return os.environ[name]

        return _ENV_PATTERN.sub(_lookup, value)
    if isinstance(value, dict):
        return {key: _expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand_env(item) for item in value]
    return value


def load_config(path: Optional[Path] = None) -> AgentLoopConfig:
    """Load and validate agentloop configuration from a YAML file.

    Args:
        path: Path to config file. If None, tries default location.
              If file doesn't exist, returns default config.

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If config file exists but is invalid
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH

    # Zero-config mode: if file doesn't exist, use all defaults
    if not path.exists():
        return AgentLoopConfig()

    try:
        with open(path, "r") as f:
            config_data = yaml.safe_load(f)

        # Handle empty file
        if config_data is None:
            return AgentLoopConfig()

        return AgentLoopConfig(**_expand_env(config_data))

    except ConfigError:
        raise
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def save_config(config: AgentLoopConfig, path: Optional[Union[str, Path]] = None) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration object to save
        path: Destination path (string or Path object). If None, uses default location.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH
    elif isinstance(path, str):
        path = Path(path)

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(exclude_none=True)

    with open(path, "w") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False)
