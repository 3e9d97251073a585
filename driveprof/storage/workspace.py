"""Temporary storage directory owned by one profiling session."""

from __future__ import annotations

import asyncio
import secrets
import shutil
import tempfile
from pathlib import Path

from driveprof.utils.exceptions import WorkspaceError
from driveprof.utils.logging_config import get_logger

logger = get_logger(__name__)

WORKSPACE_PREFIX = "drive-profiler-tmp-"


class Workspace:
    """A uniquely named directory that is created empty and removed at exit."""

    def __init__(self, root: str | Path | None = None, name: str | None = None) -> None:
        self.root = Path(root) if root is not None else Path(tempfile.gettempdir())
        self.path = self.root / (name or f"{WORKSPACE_PREFIX}{secrets.token_hex(16)}")
        self._created = False

    @property
    def created(self) -> bool:
        return self._created

    async def create(self) -> Path:
        """Create the directory, clearing any leftover from a previous run.

        Raises:
            WorkspaceError: If the directory cannot be cleared or created

        """
        try:
            await asyncio.to_thread(self._recreate)
        except OSError as e:
            msg = f"Cannot prepare workspace {self.path}"
            raise WorkspaceError(msg, {"error": str(e)}) from e
        self._created = True
        logger.debug("Created workspace %s", self.path)
        return self.path

    def _recreate(self) -> None:
        if self.path.exists():
            shutil.rmtree(self.path)
        self.path.mkdir(parents=True)

    async def remove(self) -> bool:
        """Remove the directory recursively; failures are logged, not raised."""
        try:
            await asyncio.to_thread(shutil.rmtree, self.path)
        except FileNotFoundError:
            return True
        except OSError as e:
            logger.warning("Could not remove workspace %s: %s", self.path, e)
            return False
        logger.debug("Removed workspace %s", self.path)
        return True
