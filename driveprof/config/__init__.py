"""Configuration loading for drive-profiler."""

from driveprof.config.config import ConfigManager, get_config, init_config

__all__ = ["ConfigManager", "get_config", "init_config"]
