"""Point-in-time reads of the transport, swarm and replication counters.

Every structure here is frozen: a snapshot is captured once per report and
never mutated afterwards. A counter a provider cannot supply is ``None``
(rendered as "unavailable"), never a missing attribute.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING, Iterator

from driveprof.network.identity import encode_key

if TYPE_CHECKING:  # pragma: no cover
    from driveprof.network.interfaces import Drive, ReplicationStats, Stream, SwarmStats

MESSAGE_TYPES = (
    "sync",
    "request",
    "cancel",
    "data",
    "want",
    "bitfield",
    "range",
    "extension",
)

DHT_COMMANDS = ("ping", "ping_nat", "down_hint", "find_node")


@dataclass(frozen=True)
class TransportCounters:
    """Raw transport (UDP stream layer) totals."""

    bytes_received: int | None = 0
    bytes_transmitted: int | None = 0
    packets_received: int | None = 0
    packets_transmitted: int | None = 0
    packets_dropped: int | None = 0


@dataclass(frozen=True)
class ConnectionCounters:
    """Outbound connection totals and congestion-control events."""

    attempted: int | None = 0
    opened: int | None = 0
    closed: int | None = 0
    retransmission_timeouts: int | None = 0
    fast_recoveries: int | None = 0
    retransmits: int | None = 0


@dataclass(frozen=True)
class PeerAddressInfo:
    """Our address as observed by the network."""

    address: str | None = None
    firewalled: bool | None = None


@dataclass(frozen=True)
class MessageCounts:
    """Received/transmitted count for one message type."""

    received: int | None = 0
    transmitted: int | None = 0


@dataclass(frozen=True)
class ReplicationCounters:
    """Per-message-type wire counts of the replication protocol."""

    sync: MessageCounts = field(default_factory=MessageCounts)
    request: MessageCounts = field(default_factory=MessageCounts)
    cancel: MessageCounts = field(default_factory=MessageCounts)
    data: MessageCounts = field(default_factory=MessageCounts)
    want: MessageCounts = field(default_factory=MessageCounts)
    bitfield: MessageCounts = field(default_factory=MessageCounts)
    range: MessageCounts = field(default_factory=MessageCounts)
    extension: MessageCounts = field(default_factory=MessageCounts)
    hotswaps: int | None = 0

    def messages(self) -> Iterator[tuple[str, MessageCounts]]:
        """Yield ``(message type, counts)`` in wire order."""
        for name in MESSAGE_TYPES:
            yield name, getattr(self, name)


@dataclass(frozen=True)
class DhtCounters:
    """Hole punching, query and command totals of the DHT node."""

    punches_consistent: int | None = 0
    punches_random: int | None = 0
    punches_open: int | None = 0
    queries_total: int | None = 0
    ping: MessageCounts = field(default_factory=MessageCounts)
    ping_nat: MessageCounts = field(default_factory=MessageCounts)
    down_hint: MessageCounts = field(default_factory=MessageCounts)
    find_node: MessageCounts = field(default_factory=MessageCounts)

    def commands(self) -> Iterator[tuple[str, MessageCounts]]:
        """Yield ``(command, counts)`` pairs."""
        for name in DHT_COMMANDS:
            yield name, getattr(self, name)


@dataclass(frozen=True)
class RemotePeerView:
    """What one connected peer claims to have of a stream."""

    public_key: str
    remote_length: int
    remote_contiguous_length: int


@dataclass(frozen=True)
class StreamState:
    """Local progress of one replicated stream plus its live peers."""

    length: int
    contiguous_length: int
    peers: tuple[RemotePeerView, ...] = ()


@dataclass(frozen=True)
class MetricsSnapshot:
    """All counters read at one instant."""

    captured_at: float
    transport: TransportCounters = field(default_factory=TransportCounters)
    connections: ConnectionCounters = field(default_factory=ConnectionCounters)
    address: PeerAddressInfo = field(default_factory=PeerAddressInfo)
    replication: ReplicationCounters = field(default_factory=ReplicationCounters)
    dht: DhtCounters = field(default_factory=DhtCounters)
    metadata: StreamState | None = None
    blobs: StreamState | None = None


def read_stream(stream: Stream | None) -> StreamState | None:
    """Copy a live stream's lengths and peer list into a ``StreamState``.

    A stream that does not exist yet yields ``None`` ("loading").
    """
    if stream is None:
        return None
    peers = tuple(
        RemotePeerView(
            public_key=encode_key(peer.remote_public_key),
            remote_length=peer.remote_length,
            remote_contiguous_length=peer.remote_contiguous_length,
        )
        for peer in stream.peers
    )
    return StreamState(
        length=stream.length,
        contiguous_length=stream.contiguous_length,
        peers=peers,
    )


def capture_snapshot(
    swarm_stats: SwarmStats,
    replication_stats: ReplicationStats,
    drive: Drive,
    captured_at: float,
) -> MetricsSnapshot:
    """Read every counter provider once and freeze the result."""
    return MetricsSnapshot(
        captured_at=captured_at,
        transport=swarm_stats.transport_counters(),
        connections=swarm_stats.connection_counters(),
        address=swarm_stats.address_info(),
        replication=replication_stats.replication_counters(),
        dht=swarm_stats.dht_counters(),
        metadata=read_stream(drive.metadata),
        blobs=read_stream(drive.blobs),
    )


def counter_regressions(previous: MetricsSnapshot, current: MetricsSnapshot) -> list[str]:
    """Names of counters that went down between two snapshots.

    Counters are monotonic within a session, so a non-empty result points
    at a misbehaving provider. Unavailable values are not compared.
    """
    regressions: list[str] = []
    pairs = [
        ("transport", previous.transport, current.transport),
        ("connections", previous.connections, current.connections),
    ]
    for section, before, after in pairs:
        for f in fields(before):
            old, new = getattr(before, f.name), getattr(after, f.name)
            if old is not None and new is not None and new < old:
                regressions.append(f"{section}.{f.name}")
    for name, before_counts in previous.replication.messages():
        after_counts = getattr(current.replication, name)
        for direction in ("received", "transmitted"):
            old = getattr(before_counts, direction)
            new = getattr(after_counts, direction)
            if old is not None and new is not None and new < old:
                regressions.append(f"replication.{name}.{direction}")
    return regressions
