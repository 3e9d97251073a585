"""Exception hierarchy for drive-profiler.

Setup and validation errors are the only ones that reach the command line;
everything raised while a session is running is logged and absorbed.
"""

from __future__ import annotations

from typing import Any


class DriveProfError(Exception):
    """Base exception for all drive-profiler errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize drive-profiler error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class SetupError(DriveProfError):
    """Session could not be set up."""


class WorkspaceError(SetupError):
    """Workspace directory could not be created or cleaned."""


class StorageError(SetupError):
    """Underlying storage could not be opened."""


class NetworkError(DriveProfError):
    """Network-related errors."""


class PeerConnectionError(NetworkError):
    """A single peer connection failed."""


class ValidationError(DriveProfError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class KeyEncodingError(ValidationError):
    """Drive key or peer identity could not be decoded."""


class PeerListError(ValidationError):
    """Remote-peer list file is malformed."""


class SessionStateError(DriveProfError):
    """Operation invoked in a session state that does not allow it."""
