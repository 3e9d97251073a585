"""Protocols for the collaborators a download session drives.

The swarm, the replicated drive and its storage live outside the profiler;
it only reads their counters and issues two operations against them
(join the swarm, request the download).
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:  # pragma: no cover
    from driveprof.profiling.snapshot import (
        ConnectionCounters,
        DhtCounters,
        PeerAddressInfo,
        ReplicationCounters,
        TransportCounters,
    )


@runtime_checkable
class RemotePeer(Protocol):
    """A connected peer as seen from one stream."""

    remote_public_key: bytes
    remote_length: int
    remote_contiguous_length: int


@runtime_checkable
class Stream(Protocol):
    """One append-only replicated stream (metadata or blobs)."""

    @property
    def length(self) -> int: ...

    @property
    def contiguous_length(self) -> int: ...

    @property
    def peers(self) -> Sequence[RemotePeer]: ...

    async def wait_for_append(self) -> None: ...


@runtime_checkable
class DownloadOperation(Protocol):
    """Handle of an issued download request."""

    async def done(self) -> None: ...


@runtime_checkable
class Drive(Protocol):
    """Replicated tree made of a metadata stream and a blob stream."""

    key: bytes
    discovery_key: bytes

    @property
    def version(self) -> int: ...

    @property
    def metadata(self) -> Stream: ...

    @property
    def blobs(self) -> Stream | None: ...

    async def ready(self) -> None: ...

    def download(self, path: str = "/", *, wait: bool = True) -> DownloadOperation: ...


@runtime_checkable
class Connection(Protocol):
    """Encrypted connection to one remote peer."""

    remote_public_key: bytes

    def on_error(self, callback: Callable[[BaseException], None]) -> None: ...


@runtime_checkable
class Store(Protocol):
    """Storage holding every stream of the drive."""

    def replicate(self, connection: Connection) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class Swarm(Protocol):
    """Membership of the peer-to-peer network."""

    def on_connection(self, callback: Callable[[Connection], None]) -> None: ...

    def join(self, topic: bytes, *, server: bool = False, client: bool = True) -> None: ...

    async def destroy(self) -> None: ...


@runtime_checkable
class SwarmStats(Protocol):
    """Read-only counters of the transport and connection layers."""

    def transport_counters(self) -> TransportCounters: ...

    def connection_counters(self) -> ConnectionCounters: ...

    def address_info(self) -> PeerAddressInfo: ...

    def dht_counters(self) -> DhtCounters: ...


@runtime_checkable
class ReplicationStats(Protocol):
    """Read-only counters of the replication protocol."""

    def replication_counters(self) -> ReplicationCounters: ...


@runtime_checkable
class Backend(Protocol):
    """Factory for one concrete swarm/storage implementation."""

    name: str

    async def open_store(self, directory: Path) -> Store: ...

    def open_drive(self, store: Store, key: bytes) -> Drive: ...

    def create_swarm(self) -> Swarm: ...

    def swarm_stats(self, swarm: Swarm) -> SwarmStats: ...

    async def replication_stats(self, store: Store) -> ReplicationStats: ...
