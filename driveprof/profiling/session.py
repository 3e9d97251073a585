"""Download profiling session.

A session owns one workspace, one store and one swarm membership for the
lifetime of a single download. It moves through an explicit state machine::

    INITIALIZING -> AWAITING_METADATA -> DOWNLOADING -> COMPLETED

with CANCELLING reachable from the first three on interrupt. Every path
ends with one final report followed by exactly one teardown: swarm
destroy, store close, then workspace removal.
"""

from __future__ import annotations

import asyncio
import functools
from enum import Enum
from typing import Callable

from rich.console import Console

from driveprof.network.identity import encode_key
from driveprof.network.interfaces import (
    Backend,
    Connection,
    Drive,
    ReplicationStats,
    Store,
    Swarm,
    SwarmStats,
)
from driveprof.profiling.milestones import MilestoneTracker, Milestones
from driveprof.profiling.rates import derive_metrics
from driveprof.profiling.remote_peers import RemotePeerTracker
from driveprof.profiling.report import SEPARATOR, ReportOptions, render_report
from driveprof.profiling.snapshot import (
    MetricsSnapshot,
    capture_snapshot,
    counter_regressions,
)
from driveprof.storage.workspace import Workspace
from driveprof.utils.exceptions import SetupError, ValidationError
from driveprof.utils.logging_config import (
    LoggingContext,
    get_logger,
    log_exception,
    set_correlation_id,
)
from driveprof.utils.tasks import BackgroundTaskGroup
from driveprof.utils.time import Clock

logger = get_logger(__name__)

CANCEL_NOTICE = "Cancelling before the download is complete..."


class SessionState(str, Enum):
    """Lifecycle states of a download session."""

    INITIALIZING = "initializing"
    AWAITING_METADATA = "awaiting_metadata"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    CANCELLING = "cancelling"


def _console_output() -> Callable[[str], None]:
    console = Console(markup=False, highlight=False, soft_wrap=True)
    return console.print


class DownloadSession:
    """Profiles the download of one drive until completion or interrupt."""

    def __init__(
        self,
        key: bytes,
        backend: Backend,
        workspace: Workspace,
        *,
        interval: float = 10.0,
        options: ReportOptions | None = None,
        peer_tracker: RemotePeerTracker | None = None,
        clock: Clock | None = None,
        output: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize a session.

        Args:
            key: Public key of the drive to download
            backend: Provider of the store, drive and swarm
            workspace: Directory exclusively owned by this session
            interval: Seconds between periodic reports
            options: Report verbosity switches
            peer_tracker: Expected remote peers to follow, if any
            clock: Time source for milestones, rates and ticking
            output: Receives every line of report text

        """
        self.key = key
        self.interval = interval
        self.options = options or ReportOptions()
        self._backend = backend
        self._workspace = workspace
        self._peers = peer_tracker or RemotePeerTracker()
        self._clock = clock or Clock()
        self._print = output or _console_output()
        self._milestones = MilestoneTracker(self._clock)
        self._tasks = BackgroundTaskGroup()
        self._state = SessionState.INITIALIZING

        self._store: Store | None = None
        self._drive: Drive | None = None
        self._swarm: Swarm | None = None
        self._swarm_stats: SwarmStats | None = None
        self._replication_stats: ReplicationStats | None = None
        self._last_snapshot: MetricsSnapshot | None = None

        self._stop_requested = asyncio.Event()
        self._exited = False
        self._teardown_done = asyncio.Event()
        self.teardown_count = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def milestones(self) -> Milestones:
        return self._milestones.snapshot()

    @property
    def drive(self) -> Drive | None:
        return self._drive

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    def _set_state(self, state: SessionState) -> None:
        if state is not self._state:
            logger.debug("Session state %s -> %s", self._state.name, state.name)
            self._state = state

    def request_stop(self) -> None:
        """Ask the session to cancel; safe to call any number of times."""
        if not self._exited and not self._stop_requested.is_set():
            logger.info("Stop requested in state %s", self._state.name)
        self._stop_requested.set()

    async def run(self) -> SessionState:
        """Run the session to its end and return the state it ended in.

        Raises:
            SetupError: If the workspace, store, drive or swarm could not be
                prepared. Any other error raised by the backend during setup
                is wrapped in SetupError. Resources opened before the
                failure are torn down and no report is printed.
            ValidationError: If the backend rejects the drive key.

        """
        set_correlation_id()
        self._milestones.mark_start()
        main = asyncio.create_task(self._main(), name="drive-session")
        stop = asyncio.create_task(self._stop_requested.wait(), name="drive-session-stop")
        interrupted = False
        try:
            await asyncio.wait({main, stop}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            interrupted = True
        finally:
            for task in (main, stop):
                if not task.done():
                    task.cancel()
            await asyncio.gather(main, stop, return_exceptions=True)

        if interrupted:
            await self.shutdown(cancelled=self._state is not SessionState.COMPLETED)
            raise asyncio.CancelledError

        error = None if main.cancelled() else main.exception()
        if error is not None and self._state is SessionState.INITIALIZING:
            await self.shutdown(cancelled=False, report=False)
            if isinstance(error, (SetupError, ValidationError)):
                raise error
            msg = f"Session setup failed: {error}"
            raise SetupError(msg, {"error": type(error).__name__}) from error
        if error is not None:
            log_exception(logger, error, f"Session failed while {self._state.value}")

        await self.shutdown(cancelled=self._state is not SessionState.COMPLETED)
        return self._state

    async def _main(self) -> None:
        await self._setup()
        await self._download()

    async def _setup(self) -> None:
        with LoggingContext("session setup", logger=logger, drive=encode_key(self.key)):
            directory = await self._workspace.create()
            self._store = await self._backend.open_store(directory)
            self._drive = self._backend.open_drive(self._store, self.key)
            await self._drive.ready()
            self._swarm = self._backend.create_swarm()
            self._swarm_stats = self._backend.swarm_stats(self._swarm)
            self._replication_stats = await self._backend.replication_stats(self._store)
            self._swarm.on_connection(self._on_connection)
            self._swarm.join(self._drive.discovery_key, server=False, client=True)

    async def _download(self) -> None:
        drive = self._drive
        self._set_state(SessionState.AWAITING_METADATA)
        # A length of 1 is the root-only state of an empty tree.
        while drive.metadata.length <= 1:
            await drive.metadata.wait_for_append()
        found_at = self._milestones.mark_metadata_found()
        logger.info("Metadata found after %.2f seconds", found_at)
        logger.info("Downloading drive version %d", drive.version)

        self._tasks.create(self._tick(), name="report-ticker")
        self._set_state(SessionState.DOWNLOADING)
        await drive.download("/", wait=True).done()
        done_at = self._milestones.mark_fully_downloaded()
        logger.info("Drive fully downloaded after %.2f seconds", done_at)
        self._set_state(SessionState.COMPLETED)

    async def _tick(self) -> None:
        while True:
            await self._clock.sleep(self.interval)
            try:
                self._emit_report()
            except Exception:
                logger.exception("Failed to produce periodic report")

    def _on_connection(self, conn: Connection) -> None:
        peer = encode_key(conn.remote_public_key)
        logger.debug("Connection opened with %s", peer)
        conn.on_error(functools.partial(self._on_connection_error, peer))
        self._store.replicate(conn)

    def _on_connection_error(self, peer: str, error: BaseException) -> None:
        logger.warning("Connection error with %s: %s", peer, error)

    def _emit_report(self) -> bool:
        """Print one report; ``False`` when no counters can be read yet."""
        if (
            self._drive is None
            or self._swarm_stats is None
            or self._replication_stats is None
            or not self._milestones.started
        ):
            return False
        now = self._clock.now()
        snapshot = capture_snapshot(
            self._swarm_stats, self._replication_stats, self._drive, now
        )
        if self._last_snapshot is not None:
            for name in counter_regressions(self._last_snapshot, snapshot):
                logger.warning("Counter %s decreased since the previous report", name)
        self._last_snapshot = snapshot

        derived = derive_metrics(snapshot, now - self._milestones.start_time)
        peers = self._peers.classify(snapshot.metadata, snapshot.blobs)
        self._print(
            render_report(
                snapshot, derived, self._milestones.snapshot(), peers, self.options
            )
        )
        self._print(SEPARATOR)
        self._print("")
        return True

    async def shutdown(self, *, cancelled: bool, report: bool = True) -> None:
        """Stop ticking, print the final report and tear everything down.

        Only the first call does any work; later or concurrent calls wait
        for that teardown to finish.
        """
        if self._exited:
            await self._teardown_done.wait()
            return
        self._exited = True
        try:
            await self._tasks.cancel_and_wait()
            if cancelled:
                self._set_state(SessionState.CANCELLING)
            if report:
                if cancelled:
                    self._print(CANCEL_NOTICE)
                try:
                    self._emit_report()
                except Exception:
                    logger.exception("Failed to produce final report")
            await self._teardown()
        finally:
            self._teardown_done.set()

    async def _teardown(self) -> None:
        self.teardown_count += 1
        steps = []
        if self._swarm is not None:
            steps.append(("destroy swarm", self._swarm.destroy))
        if self._store is not None:
            steps.append(("close store", self._store.close))
        steps.append(("remove workspace", self._workspace.remove))
        for name, step in steps:
            try:
                with LoggingContext(name, logger=logger):
                    await step()
            except Exception:
                logger.debug("Continuing teardown after %s failed", name, exc_info=True)
