"""Tracking of a named set of remote peers.

Answers "have the peers I care about finished replicating?" by matching
their identities against the live peer lists of the metadata and blob
streams on every report tick. Nothing is cached between ticks; a peer that
is not currently connected is simply absent from that tick's result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Collection, Iterable

from driveprof.network.identity import normalize_key
from driveprof.profiling.snapshot import RemotePeerView, StreamState
from driveprof.utils.exceptions import KeyEncodingError, PeerListError


class PeerProgress(str, Enum):
    """Replication progress of one remote peer on one stream."""

    DOWNLOADING = "downloading"
    DONE = "done"


@dataclass(frozen=True)
class RemotePeerStatus:
    status: PeerProgress
    contiguous_length: int
    length: int


def classify(
    peers: Iterable[RemotePeerView], expected: Collection[str]
) -> dict[str, RemotePeerStatus]:
    """Classify the live peers whose identity is in ``expected``.

    A peer is done when it claims a non-empty stream and holds all of it
    contiguously. Peers outside ``expected`` are ignored.
    """
    result: dict[str, RemotePeerStatus] = {}
    for peer in peers:
        if peer.public_key not in expected:
            continue
        done = (
            peer.remote_length > 0
            and peer.remote_contiguous_length == peer.remote_length
        )
        status = RemotePeerStatus(
            status=PeerProgress.DONE if done else PeerProgress.DOWNLOADING,
            contiguous_length=peer.remote_contiguous_length,
            length=peer.remote_length,
        )
        previous = result.get(peer.public_key)
        # Several connections to one peer: report the most advanced one.
        if previous is None or status.contiguous_length > previous.contiguous_length:
            result[peer.public_key] = status
    return result


@dataclass(frozen=True)
class PeerClassification:
    """Per-stream status of the expected peers at one tick."""

    expected: tuple[str, ...]
    metadata: dict[str, RemotePeerStatus] = field(default_factory=dict)
    blobs: dict[str, RemotePeerStatus] = field(default_factory=dict)

    @property
    def done_count(self) -> int:
        return sum(
            1
            for statuses in (self.metadata, self.blobs)
            for status in statuses.values()
            if status.status is PeerProgress.DONE
        )

    @property
    def all_done(self) -> bool:
        return self.done_count == 2 * len(self.expected)


class RemotePeerTracker:
    """Classifies a fixed, ordered set of expected peer identities."""

    def __init__(self, expected: Iterable[str] = ()) -> None:
        self._expected = tuple(dict.fromkeys(expected))

    @property
    def expected(self) -> tuple[str, ...]:
        return self._expected

    @property
    def enabled(self) -> bool:
        return bool(self._expected)

    def classify(
        self, metadata: StreamState | None, blobs: StreamState | None
    ) -> PeerClassification | None:
        """Classify both streams; ``None`` when tracking is disabled."""
        if not self.enabled:
            return None
        expected = frozenset(self._expected)
        return PeerClassification(
            expected=self._expected,
            metadata=classify(metadata.peers if metadata else (), expected),
            blobs=classify(blobs.peers if blobs else (), expected),
        )


def load_peer_list(path: str | Path) -> list[str]:
    """Read a newline-delimited list of peer keys.

    Blank lines and ``#`` comments are skipped; every other line must be a
    valid key and is returned in normalized form.

    Raises:
        PeerListError: If the file cannot be read or a line is not a key

    """
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        msg = f"Cannot read remote peer list {path}"
        raise PeerListError(msg, {"error": str(e)}) from e

    keys: list[str] = []
    for lineno, line in enumerate(lines, start=1):
        entry = line.split("#", 1)[0].strip()
        if not entry:
            continue
        try:
            keys.append(normalize_key(entry))
        except KeyEncodingError as e:
            msg = f"Invalid peer key in {path}"
            raise PeerListError(msg, {"line": lineno, "value": entry}) from e
    return keys
