"""Shared utilities for drive-profiler."""
