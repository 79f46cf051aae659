"""
Flush trigger: size threshold OR elapsed interval, whichever comes first.

Producers call ``notify()`` from any thread after each enqueue; the flush loop
awaits ``wait()``. Fires that arrive while a cycle is running are not queued.
They only force a re-evaluation of the conditions on the next ``wait()``, so
any number of them coalesce into at most one further cycle.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Callable, Optional


class TriggerReason(str, Enum):
    """Why a flush cycle started."""

    SIZE = "size"
    INTERVAL = "interval"
    MANUAL = "manual"
    SHUTDOWN = "shutdown"


class FlushTrigger:
    """Size-or-interval flush trigger.

    Args:
        size_threshold: Occupancy at which the size condition fires
        interval: Seconds between flushes when the size condition never fires
        occupancy: Callable returning current buffer occupancy (best-effort)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        size_threshold: int,
        interval: float,
        occupancy: Callable[[], int],
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if size_threshold <= 0:
            raise ValueError("size_threshold must be > 0")
        if interval <= 0:
            raise ValueError("interval must be > 0")

        self._threshold = size_threshold
        self._interval = interval
        self._occupancy = occupancy
        self._clock = clock

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._event: Optional[asyncio.Event] = None
        self._deadline = clock() + interval
        self._requested: Optional[TriggerReason] = None

    @property
    def size_threshold(self) -> int:
        return self._threshold

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def seconds_until_interval(self) -> float:
        return max(0.0, self._deadline - self._clock())

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach to the loop running the flush path and arm the timer."""
        self._loop = loop
        self._event = asyncio.Event()
        self._deadline = self._clock() + self._interval

    def notify(self, occupancy: int) -> None:
        """Called after each enqueue; wakes the flush loop at the threshold."""
        if occupancy >= self._threshold:
            self._wake()

    def request(self, reason: TriggerReason) -> None:
        """Wake the flush loop for a reason other than size or interval.

        SHUTDOWN is sticky; it survives reset().
        """
        if self._requested is not TriggerReason.SHUTDOWN:
            self._requested = reason
        self._wake()

    async def wait(self) -> TriggerReason:
        """Block until a condition holds and return which one."""
        if self._event is None:
            self.bind(asyncio.get_running_loop())
        assert self._event is not None

        while True:
            if self._requested is not None:
                return self._requested
            if self._occupancy() >= self._threshold:
                return TriggerReason.SIZE

            remaining = self._deadline - self._clock()
            if remaining <= 0:
                return TriggerReason.INTERVAL

            try:
                await asyncio.wait_for(self._event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return TriggerReason.INTERVAL
            self._event.clear()

    def reset(self) -> None:
        """Re-arm after a completed cycle. Missed interval ticks are skipped."""
        self._deadline = self._clock() + self._interval
        if self._requested is not TriggerReason.SHUTDOWN:
            self._requested = None
        # re-evaluate with the new deadline if someone is already waiting
        self._wake()

    def _wake(self) -> None:
        loop, event = self._loop, self._event
        if loop is None or event is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            event.set()
            return
        try:
            loop.call_soon_threadsafe(event.set)
        except RuntimeError:
            # loop already closed; nothing left to wake
            pass
