"""drive-profiler - profile the download of a replicated drive over a swarm."""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
