"""In-process swarm and drive implementation.

Seeded drives are announced on a shared ``LoopbackNetwork``; a client swarm
that joins a drive's discovery key connects to every seeder of that key and
replicates metadata, then blob blocks, in batches. Transport, connection,
DHT and wire counters are maintained the way a real stack reports them so
the profiler has something realistic to read. Joining a key that nobody
seeds never produces a connection.
"""

from __future__ import annotations

import asyncio
import random
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from driveprof.network.identity import discovery_key, encode_key
from driveprof.profiling.snapshot import (
    MESSAGE_TYPES,
    ConnectionCounters,
    DhtCounters,
    MessageCounts,
    PeerAddressInfo,
    ReplicationCounters,
    TransportCounters,
)
from driveprof.utils.exceptions import NetworkError, PeerConnectionError, StorageError
from driveprof.utils.logging_config import get_logger
from driveprof.utils.tasks import BackgroundTaskGroup

logger = get_logger(__name__)

MTU = 1200
HEADER_BLOCK_SIZE = 64
ENTRY_RECORD_SIZE = 96
REQUEST_MESSAGE_SIZE = 24
DEFAULT_BATCH_SIZE = 16


def _packets(size: int) -> int:
    return max(1, -(-size // MTU))


@dataclass
class LoopbackPeer:
    """A remote peer's claim about one stream."""

    remote_public_key: bytes
    remote_length: int
    remote_contiguous_length: int


class LoopbackStream:
    """Append-only stream tracking which blocks are held locally."""

    def __init__(self, name: str, block_sizes: list[int] | None = None) -> None:
        self.name = name
        self._sizes: dict[int, int] = dict(enumerate(block_sizes or []))
        self._length = len(self._sizes)
        self._contiguous = self._length
        self._have: set[int] = set()
        self._claimed: set[int] = set()
        self._peers: list[LoopbackPeer] = []
        self._append_waiters: list[asyncio.Future[None]] = []

    @property
    def length(self) -> int:
        return self._length

    @property
    def contiguous_length(self) -> int:
        return self._contiguous

    @property
    def peers(self) -> list[LoopbackPeer]:
        return list(self._peers)

    @property
    def is_complete(self) -> bool:
        return self._length > 0 and self._contiguous == self._length

    def block_size(self, index: int) -> int:
        return self._sizes[index]

    async def wait_for_append(self) -> None:
        """Suspend until the stream's length next grows."""
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._append_waiters.append(fut)
        await fut

    def update_length(self, length: int) -> None:
        if length <= self._length:
            return
        self._length = length
        waiters, self._append_waiters = self._append_waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(None)

    def add_peer(self, peer: LoopbackPeer) -> None:
        self._peers.append(peer)

    def remove_peer(self, peer: LoopbackPeer) -> None:
        if peer in self._peers:
            self._peers.remove(peer)

    def claim(self, count: int) -> list[int]:
        """Reserve up to ``count`` missing block indices for one fetch."""
        batch: list[int] = []
        index = self._contiguous
        while index < self._length and len(batch) < count:
            if index not in self._have and index not in self._claimed:
                batch.append(index)
            index += 1
        self._claimed.update(batch)
        return batch

    def release(self, indices: list[int]) -> None:
        self._claimed.difference_update(indices)

    def put(self, index: int, size: int) -> None:
        self._claimed.discard(index)
        self._sizes[index] = size
        self._have.add(index)
        while self._contiguous in self._have:
            self._have.discard(self._contiguous)
            self._contiguous += 1


class LoopbackDownload:
    """Resolves once every block of the drive is held locally."""

    def __init__(self, drive: LoopbackDrive) -> None:
        self._drive = drive

    async def done(self) -> None:
        await self._drive.wait_complete()


class LoopbackDrive:
    """Drive made of a metadata stream and a lazily opened blob stream."""

    def __init__(
        self,
        key: bytes,
        metadata: LoopbackStream | None = None,
        blobs: LoopbackStream | None = None,
    ) -> None:
        self.key = key
        self.discovery_key = discovery_key(key)
        self._metadata = metadata or LoopbackStream("metadata")
        self._blobs = blobs
        self._download_requested = asyncio.Event()
        self._complete = asyncio.Event()

    @property
    def version(self) -> int:
        return self._metadata.length

    @property
    def metadata(self) -> LoopbackStream:
        return self._metadata

    @property
    def blobs(self) -> LoopbackStream | None:
        return self._blobs

    async def ready(self) -> None:
        self.check_complete()

    def download(self, path: str = "/", *, wait: bool = True) -> LoopbackDownload:
        # Every entry lives under "/", so any path prefix means the whole drive.
        logger.debug("Download requested for %s (wait=%s)", path, wait)
        self._download_requested.set()
        return LoopbackDownload(self)

    async def wait_download_requested(self) -> None:
        await self._download_requested.wait()

    async def wait_complete(self) -> None:
        await self._complete.wait()

    def open_blobs(self) -> LoopbackStream:
        if self._blobs is None:
            self._blobs = LoopbackStream("blobs")
        return self._blobs

    def check_complete(self) -> None:
        if (
            self._metadata.is_complete
            and self._blobs is not None
            and self._blobs.is_complete
        ):
            self._complete.set()


class LoopbackSeeder:
    """A fully populated drive announced on the network."""

    def __init__(
        self, network: LoopbackNetwork, drive: LoopbackDrive, public_key: bytes
    ) -> None:
        self.network = network
        self.drive = drive
        self.public_key = public_key

    @classmethod
    def create(
        cls,
        network: LoopbackNetwork,
        entries: int,
        entry_size: int,
        key: bytes | None = None,
    ) -> LoopbackSeeder:
        """Seed a drive of ``entries`` files of ``entry_size`` bytes each."""
        metadata = LoopbackStream(
            "metadata", [HEADER_BLOCK_SIZE] + [ENTRY_RECORD_SIZE] * entries
        )
        blobs = LoopbackStream("blobs", [entry_size] * entries)
        drive = LoopbackDrive(key or secrets.token_bytes(32), metadata, blobs)
        seeder = cls(network, drive, secrets.token_bytes(32))
        network.announce(drive.discovery_key, seeder)
        logger.info(
            "Seeding drive %s with %d entries of %d bytes",
            encode_key(drive.key),
            entries,
            entry_size,
        )
        return seeder

    def close(self) -> None:
        self.network.withdraw(self.drive.discovery_key, self)


class LoopbackNetwork:
    """Shared in-process discovery table: topic -> seeders."""

    def __init__(self) -> None:
        self._topics: dict[bytes, list[LoopbackSeeder]] = {}

    def announce(self, topic: bytes, seeder: LoopbackSeeder) -> None:
        self._topics.setdefault(topic, []).append(seeder)

    def withdraw(self, topic: bytes, seeder: LoopbackSeeder) -> None:
        seeders = self._topics.get(topic, [])
        if seeder in seeders:
            seeders.remove(seeder)
        if not seeders:
            self._topics.pop(topic, None)

    def lookup(self, topic: bytes) -> list[LoopbackSeeder]:
        return list(self._topics.get(topic, []))


@dataclass
class _SwarmCounters:
    bytes_received: int = 0
    bytes_transmitted: int = 0
    packets_received: int = 0
    packets_transmitted: int = 0
    packets_dropped: int = 0
    attempted: int = 0
    opened: int = 0
    closed: int = 0
    retransmission_timeouts: int = 0
    fast_recoveries: int = 0
    retransmits: int = 0
    punches_consistent: int = 0
    punches_random: int = 0
    punches_open: int = 0
    queries_total: int = 0
    commands: dict[str, list[int]] = field(
        default_factory=lambda: {
            "ping": [0, 0],
            "ping_nat": [0, 0],
            "down_hint": [0, 0],
            "find_node": [0, 0],
        }
    )
    address: str | None = None
    firewalled: bool | None = None


class LoopbackConnection:
    """Connection from a client swarm to one seeder."""

    def __init__(self, swarm: LoopbackSwarm, seeder: LoopbackSeeder) -> None:
        self.swarm = swarm
        self.seeder = seeder
        self.remote_public_key = seeder.public_key
        self._error_callbacks: list[Callable[[BaseException], None]] = []
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_callbacks.append(callback)

    def fail(self, error: BaseException) -> None:
        """Report an error to listeners and close the connection."""
        for callback in list(self._error_callbacks):
            callback(error)
        self.close()

    def close(self) -> None:
        if not self.closed:
            self._closed.set()
            self.swarm.connection_closed(self)

    async def wait_closed(self) -> None:
        await self._closed.wait()


class LoopbackSwarm:
    """Client membership of a ``LoopbackNetwork``."""

    def __init__(
        self,
        network: LoopbackNetwork,
        *,
        lookup_interval: float = 1.0,
        loss_rate: float = 0.0,
        seed: int | None = None,
    ) -> None:
        self.network = network
        self.public_key = secrets.token_bytes(32)
        self.counters = _SwarmCounters()
        self._lookup_interval = lookup_interval
        self._loss_rate = loss_rate
        self._random = random.Random(seed)
        self._callbacks: list[Callable[[LoopbackConnection], None]] = []
        self._connections: dict[bytes, LoopbackConnection] = {}
        self._tasks = BackgroundTaskGroup()
        self._destroyed = False

    def on_connection(self, callback: Callable[[LoopbackConnection], None]) -> None:
        self._callbacks.append(callback)

    def join(self, topic: bytes, *, server: bool = False, client: bool = True) -> None:
        if self._destroyed:
            msg = "Cannot join a destroyed swarm"
            raise NetworkError(msg)
        if server:
            logger.debug("Loopback swarm does not announce; ignoring server mode")
        if client:
            self._tasks.create(self._lookup(topic), name="loopback-lookup")

    async def _lookup(self, topic: bytes) -> None:
        self._bootstrap()
        while not self._destroyed:
            seeders = self.network.lookup(topic)
            self.counters.queries_total += 1
            self._count_command("find_node", tx=1, rx=len(seeders))
            for seeder in seeders:
                if seeder.public_key not in self._connections:
                    self._connect(seeder)
            self._drop_departed(topic, seeders)
            await asyncio.sleep(self._lookup_interval)

    def _drop_departed(self, topic: bytes, seeders: list[LoopbackSeeder]) -> None:
        for conn in list(self._connections.values()):
            if conn.seeder.drive.discovery_key == topic and conn.seeder not in seeders:
                peer = encode_key(conn.remote_public_key)
                msg = "Remote peer left the swarm"
                conn.fail(PeerConnectionError(msg, {"peer": peer}))

    def _bootstrap(self) -> None:
        self._count_command("ping", tx=1, rx=1)
        self._count_command("ping_nat", tx=1, rx=1)
        self.counters.address = f"127.0.0.1:{49152 + self._random.randrange(16384)}"
        self.counters.firewalled = False

    def _count_command(self, name: str, *, tx: int = 0, rx: int = 0) -> None:
        counts = self.counters.commands[name]
        counts[0] += rx
        counts[1] += tx

    def _connect(self, seeder: LoopbackSeeder) -> None:
        self.counters.attempted += 1
        self.counters.punches_consistent += 1
        conn = LoopbackConnection(self, seeder)
        self._connections[seeder.public_key] = conn
        self.counters.opened += 1
        logger.debug("Connected to %s", encode_key(seeder.public_key))
        for callback in list(self._callbacks):
            try:
                callback(conn)
            except Exception:
                logger.exception("Connection handler failed")

    def connection_closed(self, conn: LoopbackConnection) -> None:
        if self._connections.get(conn.remote_public_key) is conn:
            del self._connections[conn.remote_public_key]
        self.counters.closed += 1

    def record_transfer(self, received: list[int], transmitted: int) -> None:
        """Account for one request/response exchange on the transport."""
        packets_in = 0
        for size in received:
            packets = _packets(size)
            packets_in += packets
            self.counters.bytes_received += size
            for _ in range(packets):
                if self._loss_rate and self._random.random() < self._loss_rate:
                    self.counters.packets_dropped += 1
                    self.counters.retransmits += 1
                    if self.counters.packets_dropped % 8 == 0:
                        self.counters.retransmission_timeouts += 1
                    else:
                        self.counters.fast_recoveries += 1
        self.counters.packets_received += packets_in
        self.counters.bytes_transmitted += transmitted
        self.counters.packets_transmitted += _packets(transmitted) + packets_in // 2

    async def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        await self._tasks.cancel_and_wait()
        for conn in list(self._connections.values()):
            conn.close()


class _CachedReader:
    def __init__(self, cache_expiry: float) -> None:
        self._cache_expiry = cache_expiry
        self._cached_at: float | None = None

    def _stale(self) -> bool:
        now = time.monotonic()
        if self._cached_at is None or now - self._cached_at >= self._cache_expiry:
            self._cached_at = now
            return True
        return False


class LoopbackSwarmStats(_CachedReader):
    """Swarm counters, refreshed at most once per ``cache_expiry`` seconds."""

    def __init__(self, swarm: LoopbackSwarm, cache_expiry: float = 1.0) -> None:
        super().__init__(cache_expiry)
        self._swarm = swarm
        self._reading: tuple[
            TransportCounters, ConnectionCounters, PeerAddressInfo, DhtCounters
        ] | None = None

    def _read(self) -> tuple[TransportCounters, ConnectionCounters, PeerAddressInfo, DhtCounters]:
        if self._stale() or self._reading is None:
            c = self._swarm.counters
            self._reading = (
                TransportCounters(
                    bytes_received=c.bytes_received,
                    bytes_transmitted=c.bytes_transmitted,
                    packets_received=c.packets_received,
                    packets_transmitted=c.packets_transmitted,
                    packets_dropped=c.packets_dropped,
                ),
                ConnectionCounters(
                    attempted=c.attempted,
                    opened=c.opened,
                    closed=c.closed,
                    retransmission_timeouts=c.retransmission_timeouts,
                    fast_recoveries=c.fast_recoveries,
                    retransmits=c.retransmits,
                ),
                PeerAddressInfo(address=c.address, firewalled=c.firewalled),
                DhtCounters(
                    punches_consistent=c.punches_consistent,
                    punches_random=c.punches_random,
                    punches_open=c.punches_open,
                    queries_total=c.queries_total,
                    **{
                        name: MessageCounts(received=rx, transmitted=tx)
                        for name, (rx, tx) in c.commands.items()
                    },
                ),
            )
        return self._reading

    def transport_counters(self) -> TransportCounters:
        return self._read()[0]

    def connection_counters(self) -> ConnectionCounters:
        return self._read()[1]

    def address_info(self) -> PeerAddressInfo:
        return self._read()[2]

    def dht_counters(self) -> DhtCounters:
        return self._read()[3]


class _WireCounters:
    def __init__(self) -> None:
        self.messages: dict[str, list[int]] = {name: [0, 0] for name in MESSAGE_TYPES}
        self.hotswaps = 0

    def count(self, name: str, *, rx: int = 0, tx: int = 0) -> None:
        self.messages[name][0] += rx
        self.messages[name][1] += tx


class LoopbackReplicationStats(_CachedReader):
    """Wire counters of a store, refreshed at most once per ``cache_expiry``."""

    def __init__(self, store: LoopbackStore, cache_expiry: float = 1.0) -> None:
        super().__init__(cache_expiry)
        self._store = store
        self._reading: ReplicationCounters | None = None

    def replication_counters(self) -> ReplicationCounters:
        if self._stale() or self._reading is None:
            wire = self._store.counters
            self._reading = ReplicationCounters(
                hotswaps=wire.hotswaps,
                **{
                    name: MessageCounts(received=rx, transmitted=tx)
                    for name, (rx, tx) in wire.messages.items()
                },
            )
        return self._reading


class LoopbackStore:
    """Holds client drives and replicates them over loopback connections.

    Received blocks are appended to one file per stream under ``directory``.
    """

    def __init__(
        self,
        directory: Path,
        *,
        latency: float = 0.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self.directory = directory
        self.counters = _WireCounters()
        self._latency = latency
        self._batch_size = batch_size
        self._drives: dict[bytes, LoopbackDrive] = {}
        self._last_source: dict[str, bytes] = {}
        self._tasks = BackgroundTaskGroup()
        self._closed = False

    def get_drive(self, key: bytes) -> LoopbackDrive:
        if self._closed:
            msg = "Store is closed"
            raise StorageError(msg)
        topic = discovery_key(key)
        if topic not in self._drives:
            self._drives[topic] = LoopbackDrive(key)
        return self._drives[topic]

    def replicate(self, connection: LoopbackConnection) -> None:
        remote = connection.seeder.drive
        local = self._drives.get(remote.discovery_key)
        if local is None or self._closed:
            return
        self._tasks.create(
            self._replicate(local, remote, connection), name="loopback-replicate"
        )

    async def _replicate(
        self, local: LoopbackDrive, remote: LoopbackDrive, conn: LoopbackConnection
    ) -> None:
        self.counters.count("sync", rx=1, tx=1)
        meta_peer = LoopbackPeer(
            conn.remote_public_key,
            remote.metadata.length,
            remote.metadata.contiguous_length,
        )
        local.metadata.add_peer(meta_peer)
        local.metadata.update_length(remote.metadata.length)
        self.counters.count("want", tx=1)
        self.counters.count("bitfield", rx=1)
        self.counters.count("range", rx=1)
        blob_peer: LoopbackPeer | None = None
        try:
            await local.wait_download_requested()
            await self._fetch(local, local.metadata, remote.metadata, conn, first_batch_only=True)
            if remote.blobs is not None:
                blobs = local.open_blobs()
                blob_peer = LoopbackPeer(
                    conn.remote_public_key,
                    remote.blobs.length,
                    remote.blobs.contiguous_length,
                )
                blobs.add_peer(blob_peer)
                blobs.update_length(remote.blobs.length)
                self.counters.count("sync", rx=1, tx=1)
            await self._fetch(local, local.metadata, remote.metadata, conn)
            if local.blobs is not None and remote.blobs is not None:
                await self._fetch(local, local.blobs, remote.blobs, conn)
            local.check_complete()
            await conn.wait_closed()
        finally:
            local.metadata.remove_peer(meta_peer)
            if blob_peer is not None and local.blobs is not None:
                local.blobs.remove_peer(blob_peer)

    async def _fetch(
        self,
        drive: LoopbackDrive,
        local: LoopbackStream,
        remote: LoopbackStream,
        conn: LoopbackConnection,
        first_batch_only: bool = False,
    ) -> None:
        while not conn.closed:
            batch = local.claim(self._batch_size)
            if not batch:
                return
            source = self._last_source.get(local.name)
            if source is not None and source != conn.remote_public_key:
                self.counters.hotswaps += 1
            self._last_source[local.name] = conn.remote_public_key

            sizes = [remote.block_size(i) for i in batch]
            self.counters.count("request", tx=len(batch))
            try:
                await asyncio.sleep(self._latency)
            except asyncio.CancelledError:
                local.release(batch)
                raise
            self.counters.count("data", rx=len(batch))
            conn.swarm.record_transfer(sizes, REQUEST_MESSAGE_SIZE * len(batch))
            await asyncio.to_thread(self._append, drive, local.name, sum(sizes))
            for index, size in zip(batch, sizes):
                local.put(index, size)
            drive.check_complete()
            if first_batch_only:
                return

    def _append(self, drive: LoopbackDrive, stream: str, size: int) -> None:
        path = self.directory / drive.discovery_key.hex()[:16] / f"{stream}.data"
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f:
            f.write(bytes(size))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._tasks.cancel_and_wait()


class LoopbackBackend:
    """Backend wiring loopback stores and swarms to one network."""

    name = "loopback"

    def __init__(
        self,
        network: LoopbackNetwork | None = None,
        *,
        latency: float = 0.0,
        batch_size: int = DEFAULT_BATCH_SIZE,
        loss_rate: float = 0.0,
        lookup_interval: float = 1.0,
        stats_cache_expiry: float = 1.0,
        seed: int | None = None,
    ) -> None:
        self.network = network if network is not None else DEFAULT_NETWORK
        self.latency = latency
        self.batch_size = batch_size
        self.loss_rate = loss_rate
        self.lookup_interval = lookup_interval
        self.stats_cache_expiry = stats_cache_expiry
        self.seed = seed

    async def open_store(self, directory: Path) -> LoopbackStore:
        if not directory.is_dir():
            msg = f"Storage directory {directory} does not exist"
            raise StorageError(msg)
        return LoopbackStore(directory, latency=self.latency, batch_size=self.batch_size)

    def open_drive(self, store: LoopbackStore, key: bytes) -> LoopbackDrive:
        return store.get_drive(key)

    def create_swarm(self) -> LoopbackSwarm:
        return LoopbackSwarm(
            self.network,
            lookup_interval=self.lookup_interval,
            loss_rate=self.loss_rate,
            seed=self.seed,
        )

    def swarm_stats(self, swarm: LoopbackSwarm) -> LoopbackSwarmStats:
        return LoopbackSwarmStats(swarm, cache_expiry=self.stats_cache_expiry)

    async def replication_stats(self, store: LoopbackStore) -> LoopbackReplicationStats:
        return LoopbackReplicationStats(store, cache_expiry=self.stats_cache_expiry)


DEFAULT_NETWORK = LoopbackNetwork()
