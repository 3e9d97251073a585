"""Interrupt handling.

Translates SIGINT/SIGTERM into a callback on the running event loop so a
session can print its final report and tear down instead of dying mid-run.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Callable

from driveprof.utils.logging_config import get_logger

logger = get_logger(__name__)


def install_interrupt_handlers(
    callback: Callable[[], None],
    loop: asyncio.AbstractEventLoop | None = None,
) -> Callable[[], None]:
    """Route interrupt signals to ``callback``.

    Args:
        callback: Invoked on the event loop for every interrupt received
        loop: Loop to register on (defaults to the running loop)

    Returns:
        Function that restores the previous handlers

    """
    loop = loop or asyncio.get_running_loop()
    signals = [signal.SIGINT]
    if sys.platform != "win32":
        signals.append(signal.SIGTERM)

    def _on_signal(signum: int) -> None:
        logger.info("Received signal %d, stopping session", signum)
        callback()

    if sys.platform != "win32":
        for signum in signals:
            loop.add_signal_handler(signum, _on_signal, signum)

        def _restore() -> None:
            for signum in signals:
                loop.remove_signal_handler(signum)

        return _restore

    # Windows event loops do not support add_signal_handler.
    previous = {signum: signal.getsignal(signum) for signum in signals}

    def _handler(signum: int, _frame: object) -> None:
        loop.call_soon_threadsafe(_on_signal, signum)

    for signum in signals:
        signal.signal(signum, _handler)

    def _restore_windows() -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    return _restore_windows
