"""
Structured dispatch reports.

In-process pub/sub for flush lifecycle events so operators can detect data
loss (exhausted/fatal batches, overflow drops, abandoned shutdown batches)
without the dispatcher knowing where the reports end up.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from loguru import logger


class DispatchEventKind(str, Enum):
    """Lifecycle events emitted by a dispatcher."""

    FLUSH_STARTED = "flush_started"
    FLUSH_SUCCEEDED = "flush_succeeded"
    FLUSH_EXHAUSTED = "flush_exhausted"  # points lost after retry budget
    FLUSH_FATAL = "flush_fatal"  # points lost, batch undeliverable
    BUFFER_OVERFLOW = "buffer_overflow"  # points evicted by drop_oldest
    BATCH_ABANDONED = "batch_abandoned"  # in-flight batch lost at shutdown timeout


LOSS_KINDS = frozenset(
    {
        DispatchEventKind.FLUSH_EXHAUSTED,
        DispatchEventKind.FLUSH_FATAL,
        DispatchEventKind.BUFFER_OVERFLOW,
        DispatchEventKind.BATCH_ABANDONED,
    }
)


@dataclass(frozen=True)
class DispatchEvent:
    """Immutable dispatch report.

    Attributes:
        dispatcher_id: Identifies the emitting dispatcher
        kind: What happened
        points: Points involved (delivered, lost or dropped)
        batch_id: Batch sequence number, None for overflow reports
        attempts: Delivery attempts made (0 when not applicable)
        trigger: What started the cycle ("size", "interval", ...)
        reason: Optional context, e.g. the last error message
    """

    dispatcher_id: str
    kind: DispatchEventKind
    points: int
    batch_id: int | None = None
    attempts: int = 0
    trigger: str | None = None
    reason: str | None = None

    @property
    def is_loss(self) -> bool:
        return self.kind in LOSS_KINDS


class ReportSubscriber(Protocol):
    """Async callable accepting a DispatchEvent."""

    async def __call__(self, event: DispatchEvent) -> None: ...


class ReportBus:
    """Pub/sub bus for dispatch reports.

    Subscribers are called in registration order with error isolation: one
    subscriber failing does not affect the others or the flush loop.
    """

    def __init__(self) -> None:
        self._subs: list[ReportSubscriber] = []

    def subscribe(self, callback: ReportSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Report subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: ReportSubscriber) -> None:
        """Remove a subscriber. No-op if it was never subscribed."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Report subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: DispatchEvent) -> None:
        if not self._subs:
            return

        for callback in list(self._subs):
            try:
                await callback(event)
            except Exception as exc:
                logger.debug(f"Report subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
