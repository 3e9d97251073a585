"""Plain-text rendering of a profiling report.

``render_report`` is a pure function of its inputs: identical snapshots,
rates, milestones and options always produce identical text.
"""

from __future__ import annotations

from dataclasses import dataclass

from driveprof.profiling.milestones import Milestones
from driveprof.profiling.rates import Availability, DerivedMetrics, human_bytes
from driveprof.profiling.remote_peers import PeerClassification, RemotePeerStatus
from driveprof.profiling.snapshot import MessageCounts, MetricsSnapshot, StreamState

REDACTED_ADDRESS = "xxx.xxx.xxx.xxx"
UNAVAILABLE = "unavailable"
NOT_AVAILABLE = "n/a"
SEPARATOR = "-" * 50

_MESSAGE_LABELS = {
    "sync": "Sync",
    "request": "Request",
    "cancel": "Cancel",
    "data": "Data",
    "want": "Want",
    "bitfield": "Bitfield",
    "range": "Range",
    "extension": "Extension",
}

_DHT_LABELS = {
    "ping": "Ping",
    "ping_nat": "Ping NAT",
    "down_hint": "Down Hint",
    "find_node": "Find Node",
}


@dataclass(frozen=True)
class ReportOptions:
    """Verbosity switches for a report."""

    # Redacted by default so shared reports do not leak network identity.
    show_address: bool = False
    show_detail: bool = False


def _count(value: int | None) -> str:
    return UNAVAILABLE if value is None else str(value)


def _bytes(value: int | None) -> str:
    return UNAVAILABLE if value is None else human_bytes(value)


def _per_sec(value: float | None, decimals: int) -> str:
    return NOT_AVAILABLE if value is None else f"{value:.{decimals}f}"


def _bytes_per_sec(value: float | None) -> str:
    return NOT_AVAILABLE if value is None else human_bytes(value)


def _flag(value: bool | None) -> str:
    if value is None:
        return "unknown"
    return "true" if value else "false"


def _messages(counts: MessageCounts) -> str:
    return f"{_count(counts.received)} received / {_count(counts.transmitted)} transmitted"


def _progress(stream: StreamState | None) -> str:
    if stream is None:
        return "loading"
    return (
        f"{stream.contiguous_length} / {stream.length} "
        "(contiguous length / length)"
    )


def _availability(availability: Availability | None, stream: StreamState | None) -> str:
    if availability is None:
        return "loading"
    if stream is not None and not stream.peers:
        return "no connected peers"
    return (
        f"{availability.max_contiguous_length} / {availability.max_length} "
        "(max contiguous length / max length)"
    )


def _general(
    snapshot: MetricsSnapshot, derived: DerivedMetrics, milestones: Milestones
) -> list[str]:
    lines = ["General", f"  - Runtime: {derived.elapsed:.2f} seconds"]
    if milestones.metadata_found_at is None:
        lines.append("  - Metadata found in: unknown (still connecting...)")
    else:
        lines.append(f"  - Metadata found in: {milestones.metadata_found_at:.2f} seconds")
    lines.append(f"  - Metadata db: {_progress(snapshot.metadata)}")
    lines.append(f"  - Blobs core: {_progress(snapshot.blobs)}")
    if milestones.fully_downloaded_at is not None:
        lines.append(
            f"  - Fully downloaded in {milestones.fully_downloaded_at:.2f} seconds"
        )
    return lines


def _network(snapshot: MetricsSnapshot, derived: DerivedMetrics) -> list[str]:
    t = snapshot.transport
    return [
        "Network",
        f"  - Bytes received: {_bytes(t.bytes_received)} "
        f"({_bytes_per_sec(derived.bytes_received_per_sec)} / second)",
        f"  - Bytes transmitted: {_bytes(t.bytes_transmitted)} "
        f"({_bytes_per_sec(derived.bytes_transmitted_per_sec)} / second)",
        f"  - Packets received: {_count(t.packets_received)} "
        f"({_per_sec(derived.packets_received_per_sec, 0)} / second)",
        f"  - Packets transmitted: {_count(t.packets_transmitted)} "
        f"({_per_sec(derived.packets_transmitted_per_sec, 0)} / second)",
        f"  - Packets dropped: {_count(t.packets_dropped)} "
        f"({_per_sec(derived.packets_dropped_per_sec, 2)} / second)",
    ]


def _connection(snapshot: MetricsSnapshot, options: ReportOptions) -> list[str]:
    c = snapshot.connections
    if options.show_address:
        address = snapshot.address.address or "unknown"
    else:
        address = REDACTED_ADDRESS
    lines = [
        "Connection info",
        f"  - Address: {address} (firewalled: {_flag(snapshot.address.firewalled)})",
        "  - Connections:",
        f"    - Attempted: {_count(c.attempted)}",
        f"    - Opened: {_count(c.opened)}",
        f"    - Closed: {_count(c.closed)}",
        "  - Connection issues:",
        f"    - Retransmission timeouts: {_count(c.retransmission_timeouts)}",
        f"    - Fast recoveries: {_count(c.fast_recoveries)}",
        f"    - Retransmits: {_count(c.retransmits)}",
    ]
    if options.show_detail:
        dht = snapshot.dht
        lines += [
            "  - Punches:",
            f"    - Consistent: {_count(dht.punches_consistent)}",
            f"    - Random: {_count(dht.punches_random)}",
            f"    - Open: {_count(dht.punches_open)}",
            f"  - Total queries: {_count(dht.queries_total)}",
            "  - DHT commands:",
        ]
        lines += [
            f"    - {_DHT_LABELS[name]}: {_messages(counts)}"
            for name, counts in dht.commands()
        ]
    return lines


def _availability_section(snapshot: MetricsSnapshot, derived: DerivedMetrics) -> list[str]:
    return [
        "Availability",
        f"  - Metadata db: {_availability(derived.metadata_availability, snapshot.metadata)}",
        f"  - Blobs core: {_availability(derived.blobs_availability, snapshot.blobs)}",
    ]


def _replication(snapshot: MetricsSnapshot, options: ReportOptions) -> list[str]:
    r = snapshot.replication
    lines = ["Replication", f"  - Hotswaps: {_count(r.hotswaps)}"]
    if not options.show_detail:
        return lines
    lines.append("  - Commands:")
    lines += [
        f"    - {_MESSAGE_LABELS[name]}: {_messages(counts)}"
        for name, counts in r.messages()
    ]
    return lines


def _peer_line(label: str, status: RemotePeerStatus) -> str:
    return (
        f"    - {label}: {status.status.value} "
        f"({status.contiguous_length} / {status.length})"
    )


def _remote_peers(classification: PeerClassification) -> list[str]:
    lines = ["Remote peers"]
    for key in classification.expected:
        metadata = classification.metadata.get(key)
        blobs = classification.blobs.get(key)
        if metadata is None and blobs is None:
            continue
        lines.append(f"  - {key}")
        if metadata is not None:
            lines.append(_peer_line("Metadata db", metadata))
        if blobs is not None:
            lines.append(_peer_line("Blobs core", blobs))
    total = 2 * len(classification.expected)
    if classification.all_done:
        lines.append(f"  - All remotes complete ({classification.done_count} / {total})")
    else:
        lines.append(
            f"  - Not all remotes complete ({classification.done_count} / {total})"
        )
    return lines


def render_report(
    snapshot: MetricsSnapshot,
    derived: DerivedMetrics,
    milestones: Milestones,
    peers: PeerClassification | None = None,
    options: ReportOptions | None = None,
) -> str:
    """Render the report sections as text (no trailing separator)."""
    options = options or ReportOptions()
    lines = _general(snapshot, derived, milestones)
    lines += _network(snapshot, derived)
    lines += _connection(snapshot, options)
    lines += _availability_section(snapshot, derived)
    lines += _replication(snapshot, options)
    if peers is not None:
        lines += _remote_peers(peers)
    return "\n".join(lines)
