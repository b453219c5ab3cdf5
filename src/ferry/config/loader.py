"""
Configuration file loading.

Loads ``config.yaml`` (or any named YAML file), merges an optional
``config.{env}.yaml`` overlay from the same directory, then resolves
environment placeholders.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from ferry.config.resolver import resolve_config
from ferry.exceptions import ConfigurationError

DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_HISTORY_FILE = "history.json"


class Config:
    """Ferry configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any], path: Path | None = None):
        self.data = data
        self.path = path
        # Convenience properties for common config sections
        self.tasks = data.get("tasks") or []
        self.scheduler = data.get("scheduler") or {}

    @property
    def base_dir(self) -> Path:
        """Directory relative paths in the config are resolved against."""
        return self.path.parent if self.path is not None else Path.cwd()

    @property
    def history_path(self) -> Path:
        history = Path(self.data.get("history_file") or DEFAULT_HISTORY_FILE)
        return history if history.is_absolute() else self.base_dir / history

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        keys = key.split(".")
        value = self.data
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def __getitem__(self, key: str) -> Any:
        """Dict-like access: config['key'] or config['nested.key']."""
        if "." in key:
            return self.get(key)
        if key in self.data:
            return self.data[key]
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        if "." in key:
            value = self.data
            for k in key.split("."):
                if not isinstance(value, dict) or k not in value:
                    return False
                value = value[k]
            return True
        return key in self.data

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)

    def validate(self) -> None:
        """Validate configuration structure (task contents are checked by load_tasks)."""
        errors = []

        if not isinstance(self.data, dict):
            raise ConfigurationError(f"Configuration must be a dictionary/mapping, got {type(self.data).__name__}")

        tasks = self.data.get("tasks")
        if tasks is not None and not isinstance(tasks, list):
            errors.append(f"Configuration 'tasks' must be a list, got {type(tasks).__name__}")

        for section in ("logging", "scheduler"):
            value = self.data.get(section)
            if value is not None and not isinstance(value, dict):
                errors.append(f"Configuration '{section}' must be a dictionary, got {type(value).__name__}")

        if errors:
            raise ConfigurationError("\n".join(errors))


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark is not None else ""
        raise ConfigurationError(
            f"Error parsing {path.name}{where}:\n"
            f"  {e}\n"
            f"  Suggestion: Check YAML syntax, ensure proper indentation and quotes",
            details={"path": str(path)},
        ) from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}", details={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration must be a dictionary/mapping, got {type(data).__name__}", details={"path": str(path)}
        )
    return data


def load_config(config_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load Ferry configuration.

    Args:
        config_path: Path to the YAML file (default: ./config.yaml)
        env: Environment name; ``config.{env}.yaml`` next to the base file is merged over it

    Returns:
        Config instance with merged configuration
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(
            f"Configuration file not found: {config_path}\n" f"  Suggestion: Create a {DEFAULT_CONFIG_FILE} file",
            details={"path": str(config_path)},
        )
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration path is not a file: {config_path}", details={"path": str(config_path)})

    config_data = _read_yaml(config_path)

    if env:
        env_config_path = config_path.parent / f"config.{env}.yaml"
        if env_config_path.exists():
            # Env overrides base
            _merge_dict(config_data, _read_yaml(env_config_path))

    config_data = resolve_config(config_data, env or "dev")

    config = Config(config_data, path=config_path.resolve())
    config.validate()
    return config


def _merge_dict(base: dict, override: dict):
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
