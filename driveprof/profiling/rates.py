"""Derived per-second rates and human-readable byte sizes.

Rates are computed on raw counts first and only scaled for display
afterwards; scaling before dividing would pick the unit of the total, not
of the rate.
"""

from __future__ import annotations

from dataclasses import dataclass

from driveprof.profiling.snapshot import MetricsSnapshot, StreamState

BYTE_UNITS = ("B", "kB", "MB", "GB", "TB", "PB", "EB", "ZB", "YB")


def rate(count: float | None, elapsed_seconds: float) -> float | None:
    """Counts per second, or ``None`` when it cannot be computed.

    ``None`` is returned for a zero (or negative) elapsed time and for an
    unavailable count.
    """
    if count is None or elapsed_seconds <= 0:
        return None
    return count / elapsed_seconds


def human_bytes(n: float) -> str:
    """Scale a byte count to the largest 1000-based unit, two decimals."""
    value = float(n)
    unit = BYTE_UNITS[0]
    for unit in BYTE_UNITS:
        # Compare the displayed value so 999.999 becomes 1.00 of the next unit
        if abs(float(f"{value:.2f}")) < 1000 or unit == BYTE_UNITS[-1]:
            break
        value /= 1000
    return f"{value:.2f} {unit}"


def running_max(current: int, candidate: int) -> int:
    """Fold step keeping the highest value seen."""
    return candidate if candidate > current else current


@dataclass(frozen=True)
class Availability:
    """Best remote length/contiguous length seen across a stream's peers."""

    max_length: int = 0
    max_contiguous_length: int = 0


def stream_availability(stream: StreamState | None) -> Availability | None:
    """Fold a stream's live peer list into the best advertised lengths.

    This is a "best known" signal only: any single peer may be behind.
    """
    if stream is None:
        return None
    length = 0
    contiguous = 0
    for peer in stream.peers:
        length = running_max(length, peer.remote_length)
        contiguous = running_max(contiguous, peer.remote_contiguous_length)
    return Availability(max_length=length, max_contiguous_length=contiguous)


@dataclass(frozen=True)
class DerivedMetrics:
    """Rates and availability computed from one snapshot."""

    elapsed: float
    bytes_received_per_sec: float | None
    bytes_transmitted_per_sec: float | None
    packets_received_per_sec: float | None
    packets_transmitted_per_sec: float | None
    packets_dropped_per_sec: float | None
    metadata_availability: Availability | None
    blobs_availability: Availability | None


def derive_metrics(snapshot: MetricsSnapshot, elapsed: float) -> DerivedMetrics:
    """Compute every derived value the report shows."""
    transport = snapshot.transport
    return DerivedMetrics(
        elapsed=elapsed,
        bytes_received_per_sec=rate(transport.bytes_received, elapsed),
        bytes_transmitted_per_sec=rate(transport.bytes_transmitted, elapsed),
        packets_received_per_sec=rate(transport.packets_received, elapsed),
        packets_transmitted_per_sec=rate(transport.packets_transmitted, elapsed),
        packets_dropped_per_sec=rate(transport.packets_dropped, elapsed),
        metadata_availability=stream_availability(snapshot.metadata),
        blobs_availability=stream_availability(snapshot.blobs),
    )

