"""Workspace management."""
