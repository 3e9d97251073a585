"""Download profiling: snapshots, rates, milestones, reports and the session."""

from driveprof.profiling.milestones import MilestoneTracker, Milestones
from driveprof.profiling.rates import human_bytes, rate, running_max
from driveprof.profiling.remote_peers import RemotePeerTracker, load_peer_list
from driveprof.profiling.report import ReportOptions, render_report
from driveprof.profiling.session import DownloadSession, SessionState
from driveprof.profiling.snapshot import MetricsSnapshot, capture_snapshot

__all__ = [
    "DownloadSession",
    "MetricsSnapshot",
    "MilestoneTracker",
    "Milestones",
    "RemotePeerTracker",
    "ReportOptions",
    "SessionState",
    "capture_snapshot",
    "human_bytes",
    "load_peer_list",
    "rate",
    "render_report",
    "running_max",
]
