"""Configuration management for drive-profiler.

Provides hierarchical loading from defaults → config file → environment → CLI,
validated through the pydantic models in ``driveprof.models``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import toml
from pydantic import ValidationError as PydanticValidationError

from driveprof.models import Config
from driveprof.utils.exceptions import ConfigurationError
from driveprof.utils.logging_config import setup_logging

CONFIG_FILENAME = "driveprof.toml"

# Mapping of environment variables to config paths
ENV_MAPPINGS: dict[str, str] = {
    "DRIVEPROF_INTERVAL": "profiler.interval",
    "DRIVEPROF_BACKEND": "profiler.backend",
    "DRIVEPROF_SHOW_ADDRESS": "profiler.show_address",
    "DRIVEPROF_SHOW_DETAIL": "profiler.show_detail",
    "DRIVEPROF_REMOTE_PEERS_FILE": "profiler.remote_peers_file",
    "DRIVEPROF_WORKSPACE_ROOT": "profiler.workspace_root",
    "DRIVEPROF_LOG_LEVEL": "observability.log_level",
    "DRIVEPROF_LOG_FILE": "observability.log_file",
}

_config_manager: ConfigManager | None = None


def _parse_env_value(raw: str) -> bool | int | float | str:
    low = raw.lower()
    if low in {"true", "yes", "on"}:
        return True
    if low in {"false", "no", "off"}:
        return False
    try:
        if "." in raw:
            return float(raw)
        return int(raw)
    except ValueError:
        return raw


def _set_nested(d: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    cur = d
    for p in parts[:-1]:
        cur = cur.setdefault(p, {})
    cur[parts[-1]] = value


class ConfigManager:
    """Loads and validates the profiler configuration."""

    def __init__(self, config_file: str | Path | None = None):
        """Initialize configuration manager.

        Args:
            config_file: Path to TOML config file. If None, searches the
                standard locations for driveprof.toml

        """
        self.config_file = self._find_config_file(config_file)
        self.config = self._load_config()

    def _find_config_file(self, config_file: str | Path | None) -> Path | None:
        """Find configuration file in standard locations."""
        if config_file:
            return Path(config_file)

        search_paths = [
            Path.cwd() / CONFIG_FILENAME,
            Path.home() / ".config" / "driveprof" / CONFIG_FILENAME,
        ]
        for path in search_paths:
            if path.exists():
                return path
        return None

    def _load_config(self) -> Config:
        """Load configuration from file and environment."""
        config_data: dict[str, Any] = {}

        if self.config_file is not None:
            try:
                with open(self.config_file, encoding="utf-8") as f:
                    config_data.update(toml.load(f))
            except (OSError, toml.TomlDecodeError) as e:
                msg = f"Failed to load config file {self.config_file}"
                raise ConfigurationError(msg, {"error": str(e)}) from e

        config_data = self._merge_config(config_data, self._get_env_config())
        return self._validate(config_data)

    @staticmethod
    def _validate(config_data: dict[str, Any]) -> Config:
        try:
            return Config(**config_data)
        except PydanticValidationError as e:
            msg = f"Invalid configuration: {e}"
            raise ConfigurationError(msg) from e

    def _get_env_config(self) -> dict[str, Any]:
        """Get configuration from environment variables."""
        env_config: dict[str, Any] = {}
        for env_name, cfg_path in ENV_MAPPINGS.items():
            raw = os.getenv(env_name)
            if raw is None:
                continue
            value: Any = raw if cfg_path.endswith(("_file", "_root", "backend")) else _parse_env_value(raw)
            _set_nested(env_config, cfg_path, value)
        return env_config

    def _merge_config(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge configuration dictionaries recursively."""
        result = base.copy()

        for key, value in override.items():
            if (
                key in result
                and isinstance(result[key], dict)
                and isinstance(value, dict)
            ):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value

        return result

    def apply_overrides(self, overrides: dict[str, Any]) -> Config:
        """Apply CLI overrides given as ``section.option`` paths.

        ``None`` values mean "option not given" and are skipped.
        """
        nested: dict[str, Any] = {}
        for path, value in overrides.items():
            if value is not None:
                _set_nested(nested, path, value)
        self.config = self._validate(
            self._merge_config(self.config.model_dump(), nested)
        )
        return self.config

    def setup_logging(self) -> None:
        """Configure logging from the observability section."""
        setup_logging(self.config.observability)


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager.config


def init_config(config_file: str | Path | None = None) -> ConfigManager:
    """Initialize the global configuration manager."""
    global _config_manager
    _config_manager = ConfigManager(config_file)
    return _config_manager
