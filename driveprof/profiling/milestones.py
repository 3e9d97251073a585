"""Session-lifetime timestamps.

Each milestone is recorded at most once; later calls leave the first value
in place.
"""

from __future__ import annotations

from dataclasses import dataclass

from driveprof.utils.exceptions import SessionStateError
from driveprof.utils.time import Clock


@dataclass(frozen=True)
class Milestones:
    """Immutable view of the recorded milestones (seconds since start)."""

    metadata_found_at: float | None = None
    fully_downloaded_at: float | None = None


class MilestoneTracker:
    """Records start, metadata-found and fully-downloaded times."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or Clock()
        self._start_time: float | None = None
        self._metadata_found_at: float | None = None
        self._fully_downloaded_at: float | None = None

    @property
    def start_time(self) -> float | None:
        return self._start_time

    @property
    def metadata_found_at(self) -> float | None:
        return self._metadata_found_at

    @property
    def fully_downloaded_at(self) -> float | None:
        return self._fully_downloaded_at

    @property
    def started(self) -> bool:
        return self._start_time is not None

    def mark_start(self) -> float:
        """Record the session start; repeated calls keep the first value."""
        if self._start_time is None:
            self._start_time = self._clock.now()
        return self._start_time

    def mark_metadata_found(self) -> float:
        """Record when the metadata stream first advanced past its root."""
        if self._metadata_found_at is None:
            self._metadata_found_at = self.elapsed()
        return self._metadata_found_at

    def mark_fully_downloaded(self) -> float:
        """Record when the download operation first reported completion."""
        if self._fully_downloaded_at is None:
            self._fully_downloaded_at = self.elapsed()
        return self._fully_downloaded_at

    def elapsed(self) -> float:
        """Seconds since ``mark_start``."""
        if self._start_time is None:
            msg = "Milestone tracker has not been started"
            raise SessionStateError(msg)
        return self.elapsed_since(self._start_time)

    def elapsed_since(self, start: float) -> float:
        """Seconds between ``start`` and now on this tracker's clock."""
        return self._clock.now() - start

    def snapshot(self) -> Milestones:
        return Milestones(
            metadata_found_at=self._metadata_found_at,
            fully_downloaded_at=self._fully_downloaded_at,
        )
