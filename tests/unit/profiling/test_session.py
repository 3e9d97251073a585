"""Unit tests for DownloadSession against in-memory collaborators."""

from __future__ import annotations

import asyncio
import logging

import pytest

from driveprof.network.identity import encode_key
from driveprof.profiling.remote_peers import RemotePeerTracker
from driveprof.profiling.report import REDACTED_ADDRESS, SEPARATOR, ReportOptions
from driveprof.profiling.session import CANCEL_NOTICE, DownloadSession, SessionState
from driveprof.storage.workspace import Workspace
from driveprof.utils.exceptions import PeerConnectionError, SetupError, StorageError
from driveprof.utils.time import Clock
from tests.fakes import DRIVE_KEY, FakeBackend, FakeConnection, FakeRemotePeer

pytestmark = [pytest.mark.unit, pytest.mark.session]

PEER_KEY = bytes([9]) * 32


class FrozenClock(Clock):
    """Clock whose time never advances; sleeping still yields to the loop."""

    def now(self) -> float:
        return 100.0


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_poll(), timeout)


def _session(tmp_path, backend, lines, **kwargs) -> DownloadSession:
    kwargs.setdefault("interval", 3600.0)
    return DownloadSession(
        DRIVE_KEY,
        backend,
        Workspace(tmp_path / "root"),
        output=lines.append,
        **kwargs,
    )


async def _until_awaiting_metadata(backend: FakeBackend) -> None:
    await _wait_for(lambda: backend.drive is not None)
    await asyncio.wait_for(backend.drive.metadata.waiting.wait(), 2.0)


class TestCompletion:
    """Test the natural INITIALIZING -> COMPLETED path."""

    @pytest.mark.asyncio
    async def test_download_completes(self, tmp_path):
        """Test a full run prints one final report and tears down once."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)
        task = asyncio.create_task(session.run())

        await _until_awaiting_metadata(backend)
        assert session.state is SessionState.AWAITING_METADATA
        backend.drive.metadata.append(10)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)
        assert session.state is SessionState.DOWNLOADING
        backend.drive.finish()

        assert await asyncio.wait_for(task, 2.0) is SessionState.COMPLETED
        text = "\n".join(lines)
        assert CANCEL_NOTICE not in text
        assert "Fully downloaded in" in text
        assert "  - Blobs core: 4 / 4 (contiguous length / length)" in text
        assert lines[-2:] == [SEPARATOR, ""]
        assert backend.drive.download_calls == [("/", True)]
        assert backend.events[-2:] == ["swarm.destroy", "store.close"]
        assert session.teardown_count == 1
        assert not session.workspace.path.exists()

    @pytest.mark.asyncio
    async def test_metadata_already_present(self, tmp_path):
        """Test a drive with metadata at join time skips the metadata wait."""
        backend = FakeBackend(metadata_length=7)
        session = _session(tmp_path, backend, [], clock=FrozenClock())
        task = asyncio.create_task(session.run())

        await _wait_for(lambda: backend.drive is not None)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)
        assert session.state is SessionState.DOWNLOADING
        assert not backend.drive.metadata.waiting.is_set()
        assert session.milestones.metadata_found_at == 0.0

        backend.drive.finish()
        assert await asyncio.wait_for(task, 2.0) is SessionState.COMPLETED
        assert session.milestones.fully_downloaded_at == 0.0

    @pytest.mark.asyncio
    async def test_joins_discovery_topic_as_client(self, tmp_path):
        """Test the swarm joins the drive's discovery key in client mode."""
        backend = FakeBackend()
        session = _session(tmp_path, backend, [])
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        assert backend.swarm.joined == [(backend.drive.discovery_key, False, True)]
        session.request_stop()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_milestones_recorded(self, tmp_path):
        """Test both milestones are set after completion."""
        backend = FakeBackend()
        session = _session(tmp_path, backend, [])
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        backend.drive.metadata.append(3)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)
        backend.drive.finish()
        await asyncio.wait_for(task, 2.0)

        milestones = session.milestones
        assert milestones.metadata_found_at is not None
        assert milestones.fully_downloaded_at >= milestones.metadata_found_at

    @pytest.mark.asyncio
    async def test_periodic_reports(self, tmp_path):
        """Test the ticker prints reports while downloading."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(tmp_path, backend, lines, interval=0.01)
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        assert lines == []
        backend.drive.metadata.append(3)
        await _wait_for(lambda: lines.count(SEPARATOR) >= 2)
        backend.drive.finish()
        await asyncio.wait_for(task, 2.0)
        assert lines.count(SEPARATOR) >= 3


class TestCancellation:
    """Test interrupts delivered in each state."""

    @pytest.mark.asyncio
    async def test_interrupt_while_awaiting_metadata(self, tmp_path):
        """Test an interrupt before metadata still reports and tears down once."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)

        session.request_stop()
        session.request_stop()

        assert await asyncio.wait_for(task, 2.0) is SessionState.CANCELLING
        text = "\n".join(lines)
        assert lines[0] == CANCEL_NOTICE
        assert "  - Metadata found in: unknown (still connecting...)" in text
        assert "  - Blobs core: loading" in text
        assert backend.swarm.destroy_calls == 1
        assert backend.store.close_calls == 1
        assert session.teardown_count == 1
        assert not session.workspace.path.exists()

    @pytest.mark.asyncio
    async def test_interrupt_while_downloading(self, tmp_path):
        """Test an interrupt after metadata keeps the metadata milestone."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        backend.drive.metadata.append(5)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)

        session.request_stop()

        assert await asyncio.wait_for(task, 2.0) is SessionState.CANCELLING
        text = "\n".join(lines)
        assert "still connecting" not in text
        assert "Fully downloaded" not in text

    @pytest.mark.asyncio
    async def test_stop_before_run(self, tmp_path):
        """Test a stop requested before running still tears down cleanly."""
        backend = FakeBackend()
        session = _session(tmp_path, backend, [])
        session.request_stop()
        assert await asyncio.wait_for(session.run(), 2.0) is SessionState.CANCELLING
        assert session.teardown_count == 1

    @pytest.mark.asyncio
    async def test_finalizer_runs_teardown_once(self, tmp_path):
        """Test racing finalizers execute the teardown sequence only once."""
        backend = FakeBackend()
        session = _session(tmp_path, backend, [])
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)

        await asyncio.gather(
            session.shutdown(cancelled=False),
            session.shutdown(cancelled=True),
        )
        session.request_stop()
        await asyncio.wait_for(task, 2.0)

        assert session.teardown_count == 1
        assert backend.swarm.destroy_calls == 1
        assert backend.events.count("store.close") == 1


class TestFailures:
    """Test error propagation and absorption."""

    @pytest.mark.asyncio
    async def test_setup_failure_propagates(self, tmp_path):
        """Test a storage failure reaches the caller without a report."""
        backend = FakeBackend(fail_open_store=True)
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)

        with pytest.raises(StorageError):
            await session.run()

        assert lines == []
        assert session.teardown_count == 1
        assert not session.workspace.path.exists()

    @pytest.mark.asyncio
    async def test_unexpected_setup_error_becomes_setup_error(self, tmp_path):
        """Test a backend error of any type surfaces as SetupError."""
        backend = FakeBackend(setup_error=OSError("no route to bootstrap"))
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)

        with pytest.raises(SetupError) as exc_info:
            await session.run()

        assert "no route to bootstrap" in str(exc_info.value)
        assert exc_info.value.details == {"error": "OSError"}
        assert isinstance(exc_info.value.__cause__, OSError)
        assert lines == []
        assert backend.store.close_calls == 1
        assert not session.workspace.path.exists()

    @pytest.mark.asyncio
    async def test_stop_during_setup_is_not_an_error(self, tmp_path, caplog):
        """Test an interrupt while setting up is logged as a cancellation."""
        backend = FakeBackend(block_ready=True)
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)
        task = asyncio.create_task(session.run())
        await _wait_for(lambda: "drive.ready" in backend.events)

        with caplog.at_level(logging.DEBUG, logger="driveprof"):
            session.request_stop()
            assert await asyncio.wait_for(task, 2.0) is SessionState.CANCELLING

        assert "Cancelled session setup" in caplog.text
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
        assert lines == [CANCEL_NOTICE]
        assert backend.store.close_calls == 1
        assert not session.workspace.path.exists()

    @pytest.mark.asyncio
    async def test_connection_error_is_not_fatal(self, tmp_path, caplog):
        """Test a failed peer connection is logged and the session continues."""
        backend = FakeBackend()
        session = _session(tmp_path, backend, [])
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)

        conn = FakeConnection(PEER_KEY)
        with caplog.at_level(logging.WARNING, logger="driveprof"):
            backend.swarm.connect(conn)
            conn.fail(PeerConnectionError("connection reset"))

        assert backend.store.replicated == [conn]
        assert "Connection error" in caplog.text
        assert encode_key(PEER_KEY) in caplog.text
        assert session.state is SessionState.AWAITING_METADATA
        assert not task.done()

        session.request_stop()
        await asyncio.wait_for(task, 2.0)

    @pytest.mark.asyncio
    async def test_teardown_step_failure_does_not_block_others(self, tmp_path, caplog):
        """Test a failing swarm destroy still closes storage and removes the workspace."""
        backend = FakeBackend(destroy_error=RuntimeError("destroy failed"))
        session = _session(tmp_path, backend, [])
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)

        with caplog.at_level(logging.ERROR, logger="driveprof"):
            session.request_stop()
            await asyncio.wait_for(task, 2.0)

        assert backend.store.close_calls == 1
        assert not session.workspace.path.exists()
        assert "destroy swarm" in caplog.text


class TestReportContent:
    """Test what the session passes to the renderer."""

    @pytest.mark.asyncio
    async def test_no_remote_peer_section_without_tracking(self, tmp_path):
        """Test live peers alone never produce a Remote peers section."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(tmp_path, backend, lines)
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        backend.drive.metadata.peers.append(FakeRemotePeer(PEER_KEY, 5, 5))
        backend.drive.metadata.append(4)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)
        backend.drive.finish()
        await asyncio.wait_for(task, 2.0)

        assert "Remote peers" not in "\n".join(lines)

    @pytest.mark.asyncio
    async def test_tracked_peers_reported(self, tmp_path):
        """Test expected peers appear with their per-stream status."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(
            tmp_path,
            backend,
            lines,
            peer_tracker=RemotePeerTracker([encode_key(PEER_KEY)]),
        )
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        backend.drive.metadata.peers.append(FakeRemotePeer(PEER_KEY, 5, 5))
        backend.drive.metadata.append(4)
        await asyncio.wait_for(backend.drive.download_requested.wait(), 2.0)
        backend.drive.finish()
        await asyncio.wait_for(task, 2.0)

        text = "\n".join(lines)
        assert "Remote peers" in text
        assert "    - Metadata db: done (5 / 5)" in text
        assert "  - Not all remotes complete (1 / 2)" in text

    @pytest.mark.asyncio
    async def test_address_options_forwarded(self, tmp_path):
        """Test report options reach the renderer."""
        backend = FakeBackend()
        lines: list[str] = []
        session = _session(
            tmp_path, backend, lines, options=ReportOptions(show_address=True)
        )
        task = asyncio.create_task(session.run())
        await _until_awaiting_metadata(backend)
        session.request_stop()
        await asyncio.wait_for(task, 2.0)

        text = "\n".join(lines)
        assert "198.51.100.4:40000 (firewalled: true)" in text
        assert REDACTED_ADDRESS not in text
