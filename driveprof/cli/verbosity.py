"""Verbosity handling for the drive-profiler CLI.

Maps repeated -v flags onto logging levels.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Any


class VerbosityLevel(IntEnum):
    """Verbosity levels for CLI commands."""

    NORMAL = 0  # Configured log level (INFO by default)
    VERBOSE = 1  # -v: INFO
    DEBUG = 2  # -vv: DEBUG
    TRACE = 3  # -vvv: DEBUG plus tracebacks on errors


class VerbosityManager:
    """Maps a -v count to a verbosity level and a logging level."""

    COUNT_TO_LEVEL: dict[int, VerbosityLevel] = {
        0: VerbosityLevel.NORMAL,
        1: VerbosityLevel.VERBOSE,
        2: VerbosityLevel.DEBUG,
        3: VerbosityLevel.TRACE,
    }

    LEVEL_TO_LOGGING: dict[VerbosityLevel, int | None] = {
        VerbosityLevel.NORMAL: None,
        VerbosityLevel.VERBOSE: logging.INFO,
        VerbosityLevel.DEBUG: logging.DEBUG,
        VerbosityLevel.TRACE: logging.DEBUG,
    }

    def __init__(self, verbosity_count: int = 0):
        """Initialize verbosity manager.

        Args:
            verbosity_count: Number of -v flags (clamped to 0-3)

        """
        self.verbosity_count = max(0, min(3, verbosity_count))
        self.level = self.COUNT_TO_LEVEL[self.verbosity_count]

    @classmethod
    def from_count(cls, count: int) -> VerbosityManager:
        return cls(count)

    def logging_level(self) -> int | None:
        """Level forced by the flags, or ``None`` to keep the configured one."""
        return self.LEVEL_TO_LOGGING[self.level]

    def should_log(self, log_level: int, configured: int = logging.INFO) -> bool:
        """Check whether a record at ``log_level`` would be displayed."""
        forced = self.logging_level()
        return log_level >= (configured if forced is None else forced)

    def is_verbose(self) -> bool:
        return self.level >= VerbosityLevel.VERBOSE

    def is_debug(self) -> bool:
        return self.level >= VerbosityLevel.DEBUG

    def is_trace(self) -> bool:
        return self.level == VerbosityLevel.TRACE


def get_verbosity_from_ctx(ctx: dict[str, Any] | None) -> VerbosityManager:
    """Get the verbosity manager stored on a Click context object.

    Defaults to NORMAL when the context carries none.
    """
    if ctx is None:
        return VerbosityManager(0)
    return VerbosityManager.from_count(ctx.get("verbosity", 0))
