"""Command-line interface for drive-profiler."""
