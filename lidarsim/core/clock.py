from __future__ import annotations

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Simulation time source used to stamp packets and pace delays."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Wall-paced clock: ``time.monotonic`` relative to construction."""

    def __init__(self) -> None:
        self._origin = time.monotonic()

    def now(self) -> float:
        return time.monotonic() - self._origin

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class SimulatedClock:
    """Virtual clock that only moves when slept on or advanced.

    ``sleep`` jumps time forward and yields once to the event loop, so a
    pending cancellation is delivered at the same point a real delay would
    deliver it.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._t = float(start)

    def now(self) -> float:
        return self._t

    def advance(self, seconds: float) -> None:
        if seconds < 0.0:
            raise ValueError("Cannot move the clock backwards.")
        self._t += float(seconds)

    async def sleep(self, seconds: float) -> None:
        self.advance(max(0.0, seconds))
        await asyncio.sleep(0)
