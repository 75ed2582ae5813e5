"""Configuration loading and merging."""

import copy
from pathlib import Path
from typing import Optional

import yaml


def load_yaml(path: Path) -> dict:
    """Load a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base config.

    Arrays are replaced, not merged.
    Nested dicts are merged recursively.
    """
    result = copy.deepcopy(base)

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)

    return result


def load_config(
    base_path: Path,
    override_paths: Optional[list[Path]] = None,
) -> dict:
    """Load base config and apply overrides sequentially.

    Args:
        base_path: Path to the base YAML configuration.
        override_paths: Optional list of override YAML files to apply.

    Returns:
        Merged configuration dictionary.
    """
    config = load_yaml(base_path)

    if override_paths:
        for override_path in override_paths:
            override = load_yaml(override_path)
            config = deep_merge(config, override)

    return config


class SchedulerConfig:
    """Wrapper for application configuration with typed access."""

    def __init__(self, config: dict):
        self._config = config

    @property
    def raw(self) -> dict:
        """Get raw configuration dictionary."""
        return self._config

    # Database
    @property
    def database_path(self) -> str:
        return self._config["database"]["path"]

    # Scheduler
    @property
    def seed(self) -> Optional[int]:
        return self._config.get("scheduler", {}).get("seed")

    @property
    def purchase_duration(self) -> str:
        return self._config.get("scheduler", {}).get("purchase_duration", "jitter")

    @property
    def render_mode(self) -> str:
        return self._config.get("scheduler", {}).get("render_mode", "template")

    @property
    def legacy_host(self) -> str:
        return self._config.get("scheduler", {}).get("legacy_host", "localhost")

    # Output
    @property
    def output_format(self) -> str:
        return self._config["output"]["format"]

    @property
    def output_compression(self) -> str:
        return self._config["output"].get("compression", "gzip")

    @property
    def output_batch_size(self) -> int:
        return self._config["output"].get("batch_size", 1000)

    @property
    def include_metadata(self) -> bool:
        return self._config["output"].get("include_metadata", True)
