"""Time/clock abstraction to aid testability and deterministic sleeps."""

from __future__ import annotations

import asyncio
import time as _time


class Clock:
    """Monotonic clock with millisecond-or-better resolution."""

    def now(self) -> float:
        """Return the current monotonic time in seconds."""
        return _time.perf_counter()

    async def sleep(self, seconds: float) -> None:
        """Async sleep for the specified number of seconds."""
        await asyncio.sleep(seconds)
