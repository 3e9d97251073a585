"""Pytest configuration and shared fixtures for drive-profiler tests."""

from __future__ import annotations

import logging

import pytest

from driveprof.profiling.snapshot import (
    ConnectionCounters,
    DhtCounters,
    MessageCounts,
    MetricsSnapshot,
    PeerAddressInfo,
    RemotePeerView,
    ReplicationCounters,
    StreamState,
    TransportCounters,
)


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("integration", "marks tests as integration tests"),
        ("unit", "marks tests as unit tests"),
        ("cli", "marks tests as CLI tests"),
        ("session", "marks tests as session management tests"),
        ("network", "marks tests as network tests"),
        ("monitoring", "marks tests as monitoring tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch, tmp_path):
    """Keep user config files and DRIVEPROF_* variables out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("DRIVEPROF_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    # setup_logging detaches the package logger from the root logger
    package_logger = logging.getLogger("driveprof")
    package_logger.propagate = True
    package_logger.setLevel(logging.NOTSET)


def make_snapshot(
    *,
    captured_at: float = 10.0,
    bytes_received: int | None = 2_000_000,
    metadata: StreamState | None = None,
    blobs: StreamState | None = None,
    address: str | None = "203.0.113.7:49737",
    hotswaps: int | None = 3,
) -> MetricsSnapshot:
    """Build a fully populated snapshot with overridable fields."""
    return MetricsSnapshot(
        captured_at=captured_at,
        transport=TransportCounters(
            bytes_received=bytes_received,
            bytes_transmitted=50_000,
            packets_received=1500,
            packets_transmitted=700,
            packets_dropped=4,
        ),
        connections=ConnectionCounters(
            attempted=3,
            opened=2,
            closed=1,
            retransmission_timeouts=1,
            fast_recoveries=2,
            retransmits=5,
        ),
        address=PeerAddressInfo(address=address, firewalled=False),
        replication=ReplicationCounters(
            sync=MessageCounts(2, 2),
            request=MessageCounts(0, 120),
            cancel=MessageCounts(0, 0),
            data=MessageCounts(120, 0),
            want=MessageCounts(0, 1),
            bitfield=MessageCounts(1, 0),
            range=MessageCounts(1, 0),
            extension=MessageCounts(0, 0),
            hotswaps=hotswaps,
        ),
        dht=DhtCounters(
            punches_consistent=1,
            punches_random=0,
            punches_open=2,
            queries_total=9,
            ping=MessageCounts(1, 1),
            ping_nat=MessageCounts(1, 1),
            down_hint=MessageCounts(0, 0),
            find_node=MessageCounts(8, 9),
        ),
        metadata=metadata,
        blobs=blobs,
    )


def stream(length: int, contiguous: int, *peers: RemotePeerView) -> StreamState:
    return StreamState(length=length, contiguous_length=contiguous, peers=tuple(peers))


def peer(key: str, length: int, contiguous: int) -> RemotePeerView:
    return RemotePeerView(
        public_key=key, remote_length=length, remote_contiguous_length=contiguous
    )
