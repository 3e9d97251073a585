"""drive-profiler command line.

Provides two commands:
- profile: download a drive from the swarm and report on it periodically
- bench: seed a drive in-process and profile downloading it over loopback
"""

from __future__ import annotations

import asyncio
import functools
import logging
import platform
from typing import Any

import click
from rich.console import Console
from rich.markup import escape

from driveprof.cli.verbosity import get_verbosity_from_ctx
from driveprof.config.config import init_config
from driveprof.models import Config, LogLevel
from driveprof.network.backends import resolve_backend
from driveprof.network.identity import decode_key, encode_key
from driveprof.network.interfaces import Backend
from driveprof.network.loopback import LoopbackBackend, LoopbackNetwork, LoopbackSeeder
from driveprof.profiling.remote_peers import RemotePeerTracker, load_peer_list
from driveprof.profiling.report import ReportOptions
from driveprof.profiling.session import DownloadSession, SessionState
from driveprof.storage.workspace import Workspace
from driveprof.utils.exceptions import DriveProfError, SetupError, ValidationError
from driveprof.utils.logging_config import get_logger, setup_logging
from driveprof.utils.signals import install_interrupt_handlers

logger = get_logger(__name__)

BENCH_LOOKUP_INTERVAL = 0.1


def _runtime() -> str:
    return f"{platform.python_implementation()} {platform.python_version()}"


def _load_config(ctx: click.Context, overrides: dict[str, Any]) -> Config:
    """Load config, apply CLI overrides and configure logging."""
    config_manager = init_config(ctx.obj.get("config"))
    config = config_manager.apply_overrides(overrides)

    observability = config.observability
    forced = get_verbosity_from_ctx(ctx.obj).logging_level()
    if forced is not None:
        # Verbosity only affects this run, not the stored configuration
        observability = observability.model_copy(
            update={"log_level": LogLevel(logging.getLevelName(forced))}
        )
    setup_logging(observability)
    return config


def _report_error(ctx: click.Context, console: Console, error: DriveProfError) -> None:
    console.print(f"[red]Error: {escape(str(error))}[/red]")
    if get_verbosity_from_ctx(ctx.obj).is_trace():
        console.print_exception()


async def _run_session(session: DownloadSession) -> SessionState:
    restore = install_interrupt_handlers(session.request_stop)
    try:
        return await session.run()
    finally:
        restore()


def _profile(key: bytes, backend: Backend, config: Config, console: Console) -> SessionState:
    profiler = config.profiler
    expected: list[str] = []
    if profiler.remote_peers_file:
        expected = load_peer_list(profiler.remote_peers_file)
    workspace = Workspace(profiler.workspace_root)

    console.print(
        f"Profiling drive download for {encode_key(key)} using runtime: {_runtime()}",
        markup=False,
    )
    console.print(f"Using temporary directory {workspace.path}", markup=False)
    console.print(f"Printing progress every {profiler.interval:.0f} seconds", markup=False)
    if expected:
        console.print(f"Tracking {len(expected)} remote peer(s)", markup=False)

    session = DownloadSession(
        key,
        backend,
        workspace,
        interval=profiler.interval,
        options=ReportOptions(
            show_address=profiler.show_address,
            show_detail=profiler.show_detail,
        ),
        peer_tracker=RemotePeerTracker(expected),
        output=functools.partial(console.print, markup=False, highlight=False),
    )
    state = asyncio.run(_run_session(session))
    logger.debug("Session ended in state %s", state.name)
    return state


def _report_options(f):
    f = click.option(
        "--detail",
        is_flag=True,
        help="Include per-message replication and DHT counters",
    )(f)
    f = click.option(
        "--ip",
        "show_address",
        is_flag=True,
        help="Print the observed address (redacted by default)",
    )(f)
    return click.option(
        "--interval",
        "-i",
        type=float,
        help="Seconds between progress reports (default: 10)",
    )(f)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug, -vvv: debug with tracebacks)",
)
@click.pass_context
def cli(ctx, config, verbose):
    """drive-profiler - profile how fast a replicated drive downloads."""
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["verbosity"] = verbose


@cli.command()
@click.argument("key")
@_report_options
@click.option(
    "--remote-peers",
    type=click.Path(),
    help="File of remote peer keys (one per line) to track until they finish",
)
@click.option("--backend", help="Replication backend to use (default: loopback)")
@click.pass_context
def profile(ctx, key, interval, show_address, detail, remote_peers, backend):
    """Profile downloading the drive identified by KEY."""
    console = Console(highlight=False, soft_wrap=True)
    try:
        config = _load_config(
            ctx,
            {
                "profiler.interval": interval,
                "profiler.show_address": True if show_address else None,
                "profiler.show_detail": True if detail else None,
                "profiler.remote_peers_file": remote_peers,
                "profiler.backend": backend,
            },
        )
        drive_key = decode_key(key)
        backend_impl = resolve_backend(config.profiler.backend)
        _profile(drive_key, backend_impl, config, console)
    except (SetupError, ValidationError) as e:
        _report_error(ctx, console, e)
        ctx.exit(1)


@cli.command()
@_report_options
@click.option("--entries", type=int, help="Number of files in the seeded drive")
@click.option("--entry-size", type=int, help="Size of each seeded file in bytes")
@click.option("--latency", type=float, help="Simulated delay per replication batch (s)")
@click.option("--loss", type=float, help="Simulated packet loss rate (0..1)")
@click.pass_context
def bench(ctx, interval, show_address, detail, entries, entry_size, latency, loss):
    """Seed a drive in-process and profile downloading it over loopback."""
    console = Console(highlight=False, soft_wrap=True)
    try:
        config = _load_config(
            ctx,
            {
                "profiler.interval": interval,
                "profiler.show_address": True if show_address else None,
                "profiler.show_detail": True if detail else None,
                "bench.entries": entries,
                "bench.entry_size": entry_size,
                "bench.latency": latency,
                "bench.loss_rate": loss,
            },
        )
        network = LoopbackNetwork()
        seeder = LoopbackSeeder.create(
            network, config.bench.entries, config.bench.entry_size
        )
        backend_impl = LoopbackBackend(
            network,
            latency=config.bench.latency,
            loss_rate=config.bench.loss_rate,
            lookup_interval=BENCH_LOOKUP_INTERVAL,
        )
        try:
            _profile(seeder.drive.key, backend_impl, config, console)
        finally:
            seeder.close()
    except (SetupError, ValidationError) as e:
        _report_error(ctx, console, e)
        ctx.exit(1)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
