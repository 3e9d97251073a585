"""Backend lookup.

The loopback backend ships with the package; other implementations register
a factory under the ``driveprof.backends`` entry-point group.
"""

from __future__ import annotations

from importlib.metadata import entry_points
from typing import Any

from driveprof.network.interfaces import Backend
from driveprof.network.loopback import LoopbackBackend
from driveprof.utils.exceptions import ConfigurationError
from driveprof.utils.logging_config import get_logger

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "driveprof.backends"

BUILTIN_BACKENDS: dict[str, type] = {
    LoopbackBackend.name: LoopbackBackend,
}


def available_backends() -> list[str]:
    """Names of every backend that can be resolved."""
    names = set(BUILTIN_BACKENDS)
    names.update(ep.name for ep in entry_points(group=ENTRY_POINT_GROUP))
    return sorted(names)


def resolve_backend(name: str, **options: Any) -> Backend:
    """Instantiate the backend registered under ``name``.

    Raises:
        ConfigurationError: If no backend of that name exists, or the
            registered object does not satisfy the ``Backend`` protocol

    """
    factory = BUILTIN_BACKENDS.get(name)
    if factory is None:
        matches = [ep for ep in entry_points(group=ENTRY_POINT_GROUP) if ep.name == name]
        if not matches:
            msg = f"Unknown backend {name!r}"
            raise ConfigurationError(msg, {"available": available_backends()})
        factory = matches[0].load()
        logger.debug("Loaded backend %s from %s", name, matches[0].value)

    backend = factory(**options)
    if not isinstance(backend, Backend):
        msg = f"Backend {name!r} does not implement the backend protocol"
        raise ConfigurationError(msg)
    return backend
