"""Collaborator interfaces, key helpers and the built-in loopback backend."""
