"""Pydantic models for drive-profiler configuration.

Provides validated configuration models for the profiler, the local
benchmark and logging.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ObservabilityConfig(BaseModel):
    """Logging configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(default=None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Write the log file as JSON lines"
    )


class ProfilerConfig(BaseModel):
    """Download profiling configuration."""

    interval: float = Field(
        default=10.0,
        ge=1.0,
        le=3600.0,
        description="Seconds between periodic reports",
    )
    show_address: bool = Field(
        default=False, description="Print the observed address instead of redacting it"
    )
    show_detail: bool = Field(
        default=False, description="Include per-message and DHT counters"
    )
    remote_peers_file: str | None = Field(
        default=None,
        description="Newline-delimited list of remote peer keys to track",
    )
    backend: str = Field(default="loopback", description="Replication backend name")
    workspace_root: str | None = Field(
        default=None,
        description="Directory for the temporary workspace (system temp dir if unset)",
    )

    @field_validator("backend")
    @classmethod
    def _backend_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "backend name must not be empty"
            raise ValueError(msg)
        return value


class BenchConfig(BaseModel):
    """Local benchmark configuration."""

    entries: int = Field(default=2000, ge=1, description="Files in the seeded drive")
    entry_size: int = Field(
        default=50 * 1024, ge=1, description="Size of each seeded file in bytes"
    )
    latency: float = Field(
        default=0.005,
        ge=0.0,
        le=10.0,
        description="Simulated delay per replication batch in seconds",
    )
    loss_rate: float = Field(
        default=0.0,
        ge=0.0,
        lt=1.0,
        description="Probability that a simulated packet is dropped",
    )


class Config(BaseModel):
    """Top-level configuration."""

    profiler: ProfilerConfig = Field(default_factory=ProfilerConfig)
    bench: BenchConfig = Field(default_factory=BenchConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
