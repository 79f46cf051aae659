"""
Dispatcher: buffer → trigger → retry policy → sink.

Producers call ``enqueue()`` (plain function, never awaits); a single flush
loop waits on the trigger, drains the buffer and delivers the batch. At most
one flush cycle runs at a time.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

from loguru import logger

from .aggregate import Aggregator, RunningAverage
from .buffer import OverflowPolicy, PointBuffer
from .errors import BufferFull
from .metrics import (
    BUFFER_OCCUPANCY,
    DELIVERY_ATTEMPTS_TOTAL,
    FLUSH_CYCLES_TOTAL,
    FLUSH_LATENCY_MS,
    POINTS_DELIVERED_TOTAL,
    POINTS_DROPPED_TOTAL,
    POINTS_ENQUEUED_TOTAL,
    POINTS_LOST_TOTAL,
)
from .point import Batch, Point
from .policy import DeliveryOutcome, DeliveryStatus, RetryPolicy
from .reporting import DispatchEvent, DispatchEventKind, ReportBus
from .settings import DispatcherSettings, get_settings
from .trigger import FlushTrigger, TriggerReason
from .types import SleepFn, Sink


class FlushState(str, Enum):
    IDLE = "idle"
    DRAINING = "draining"
    DELIVERING = "delivering"


@dataclass(frozen=True)
class DispatcherHealth:
    dispatcher_id: str
    running: bool
    state: str
    buffered: int
    capacity: int
    overflow_policy: str
    dropped: int
    rejected: int
    delivered: int
    lost: int
    cycles: int
    in_flight: int
    avg_batch_size: float
    avg_delivery_ms: float


_LOSS_KIND = {
    DeliveryStatus.EXHAUSTED: DispatchEventKind.FLUSH_EXHAUSTED,
    DeliveryStatus.FATAL: DispatchEventKind.FLUSH_FATAL,
}


class Dispatcher:
    """Batches points and relays them to a sink without blocking producers.

    Args:
        sink: Write capability for batches of points
        buffer_capacity: Maximum buffered points
        flush_size_threshold: Occupancy that triggers an immediate flush
        flush_interval: Seconds between flushes when the size trigger is quiet
        overflow_policy: "drop_oldest" evicts the oldest point when full,
            "reject" makes enqueue() raise BufferFull
        retry_policy: Backoff and classification for sink failures
        shutdown_timeout: Seconds shutdown() waits for the final delivery
        dispatcher_id: Label for logs, metrics and reports
        report_bus: Where dispatch events are published (one per dispatcher
            by default)
        aggregator: Receives submit() values; whatever it collects joins
            each flushed batch

    Example:
        async with Dispatcher(InfluxSink(...), flush_interval=5.0) as d:
            d.enqueue(Point(measurement="cpu", fields={"load": 0.4}))
    """

    def __init__(
        self,
        sink: Sink[Point],
        *,
        buffer_capacity: int = 10_000,
        flush_size_threshold: int = 1_000,
        flush_interval: float = 5.0,
        overflow_policy: OverflowPolicy = "drop_oldest",
        retry_policy: Optional[RetryPolicy] = None,
        shutdown_timeout: float = 10.0,
        dispatcher_id: str = "default",
        report_bus: Optional[ReportBus] = None,
        aggregator: Optional[Aggregator] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        if flush_size_threshold > buffer_capacity:
            raise ValueError("flush_size_threshold must not exceed buffer_capacity")
        if shutdown_timeout <= 0:
            raise ValueError("shutdown_timeout must be > 0")

        self._id = dispatcher_id
        self._sink = sink
        self._buffer: PointBuffer[Point] = PointBuffer(
            buffer_capacity, overflow_policy=overflow_policy
        )
        self._trigger = FlushTrigger(
            flush_size_threshold, flush_interval, self._buffer.__len__, clock=clock
        )
        self._retry = retry_policy or RetryPolicy()
        self._shutdown_timeout = shutdown_timeout
        self._sleep = sleep
        self.reports = report_bus or ReportBus()
        self._aggregator = aggregator
        self._aggregator_lock = threading.Lock()

        self._cycle_lock = asyncio.Lock()
        self._state = FlushState.IDLE
        self._batch_ids = itertools.count(1)
        self._in_flight: Optional[Batch] = None

        self._task: Optional[asyncio.Task] = None
        self._looping = False
        self._loop_done: Optional[asyncio.Event] = None
        self._closed = False
        self._shut_down = False

        # Stats
        self._rejected = 0
        self._closed_drops = 0
        self._delivered = 0
        self._lost = 0
        self._cycles = 0
        self._batch_sizes = RunningAverage()
        self._latency_ms = RunningAverage()

    @classmethod
    def from_settings(
        cls, sink: Sink[Point], settings: Optional[DispatcherSettings] = None, **kwargs
    ) -> "Dispatcher":
        """Build a dispatcher from DispatcherSettings (cached env settings by default)."""
        cfg = settings or get_settings()
        retry = RetryPolicy(
            max_attempts=cfg.max_retry_attempts,
            initial_backoff_ms=cfg.base_backoff_ms,
            max_backoff_ms=cfg.max_backoff_ms,
            jitter=cfg.backoff_jitter,
        )
        params = dict(
            buffer_capacity=cfg.buffer_capacity,
            flush_size_threshold=cfg.flush_size_threshold,
            flush_interval=cfg.flush_interval_sec,
            overflow_policy=cfg.overflow_policy,
            retry_policy=retry,
            shutdown_timeout=cfg.shutdown_timeout_sec,
            dispatcher_id=cfg.dispatcher_id,
        )
        params.update(kwargs)
        return cls(sink, **params)

    # ---------------------------------------------------------------- producers

    @property
    def dispatcher_id(self) -> str:
        return self._id

    @property
    def state(self) -> FlushState:
        return self._state

    def enqueue(self, point: Point) -> None:
        """Buffer one point. Only ever raises BufferFull (reject policy)."""
        if self._closed:
            self._drop_closed()
            return
        try:
            occupancy = self._buffer.enqueue(point)
        except BufferFull:
            self._rejected += 1
            POINTS_DROPPED_TOTAL.labels(self._id, "rejected").inc()
            raise

        POINTS_ENQUEUED_TOTAL.labels(self._id).inc()
        BUFFER_OCCUPANCY.labels(self._id).set(occupancy)
        self._trigger.notify(occupancy)

    def enqueue_many(self, points: Iterable[Point]) -> None:
        for p in points:
            self.enqueue(p)

    def submit(self, value: Any) -> None:
        """Hand a value to the aggregator; its result ships with the next flush."""
        if self._aggregator is None:
            raise RuntimeError(f"dispatcher '{self._id}' has no aggregator")
        if self._closed:
            self._drop_closed()
            return
        with self._aggregator_lock:
            self._aggregator.accept(value)

    def _drop_closed(self) -> None:
        if self._closed_drops == 0:
            logger.warning(f"Dispatcher '{self._id}' is shut down; discarding new points")
        self._closed_drops += 1
        POINTS_DROPPED_TOTAL.labels(self._id, "closed").inc()

    # ---------------------------------------------------------------- lifecycle

    def start(self) -> None:
        """Run the flush loop as a background task (idempotent)."""
        if self._shut_down:
            raise RuntimeError(f"dispatcher '{self._id}' already shut down")
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(), name=f"dispatcher-{self._id}")

    async def run(self) -> None:
        """Flush loop. Returns after shutdown() and the final flush."""
        if self._looping:
            raise RuntimeError(f"dispatcher '{self._id}' is already running")
        self._looping = True
        self._loop_done = asyncio.Event()
        if self._task is None:
            self._task = asyncio.current_task()
        self._trigger.bind(asyncio.get_running_loop())

        logger.info(
            f"Dispatcher '{self._id}' started (capacity={self._buffer.capacity}, "
            f"threshold={self._trigger.size_threshold}, interval={self._trigger.interval}s)"
        )
        try:
            while not self._closed:
                reason = await self._trigger.wait()
                if reason is TriggerReason.SHUTDOWN:
                    break
                await self._flush_cycle(reason)

            await self._flush_cycle(TriggerReason.SHUTDOWN)
        finally:
            self._looping = False
            self._loop_done.set()
            logger.info(
                f"Dispatcher '{self._id}' stopped: delivered={self._delivered} "
                f"lost={self._lost} dropped={self._buffer.dropped_count}"
            )

    async def flush(self) -> Optional[DeliveryOutcome]:
        """Flush now, or join the cycle already in progress.

        Returns the outcome of the cycle this call ran, None when the buffer
        was empty or the call coalesced into another cycle.
        """
        if self._cycle_lock.locked():
            async with self._cycle_lock:
                return None
        return await self._flush_cycle(TriggerReason.MANUAL)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the loop, deliver what is buffered, then return.

        Waits at most ``timeout`` (default: shutdown_timeout) for the final
        delivery; on expiry the in-flight batch is abandoned and reported.
        """
        if self._shut_down:
            return
        self._shut_down = True
        self._closed = True
        timeout = self._shutdown_timeout if timeout is None else timeout
        logger.info(f"Dispatcher '{self._id}' shutting down (timeout={timeout}s)")

        if not self._looping:
            # started but never scheduled; the final flush happens here instead
            if self._task is not None and not self._task.done():
                self._task.cancel()
                await asyncio.gather(self._task, return_exceptions=True)
            try:
                await asyncio.wait_for(self._flush_cycle(TriggerReason.SHUTDOWN), timeout)
            except asyncio.TimeoutError:
                logger.error(f"Dispatcher '{self._id}' final flush timed out after {timeout}s")
            await self._abandon_leftovers()
            return

        self._trigger.request(TriggerReason.SHUTDOWN)
        assert self._loop_done is not None
        try:
            await asyncio.wait_for(asyncio.shield(self._loop_done.wait()), timeout)
        except asyncio.TimeoutError:
            logger.error(f"Dispatcher '{self._id}' shutdown timed out after {timeout}s")
            task = self._task
            if task is not None and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
        await self._abandon_leftovers()

    async def __aenter__(self) -> "Dispatcher":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    # ---------------------------------------------------------------- flush cycle

    async def _flush_cycle(self, reason: TriggerReason) -> Optional[DeliveryOutcome]:
        async with self._cycle_lock:
            try:
                return await self._run_cycle(reason)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    f"Dispatcher '{self._id}' flush cycle failed: {type(exc).__name__}: {exc}"
                )
                return None
            finally:
                self._state = FlushState.IDLE
                self._trigger.reset()

    async def _run_cycle(self, reason: TriggerReason) -> Optional[DeliveryOutcome]:
        dropped = self._buffer.take_dropped()
        if dropped:
            await self._report_overflow(dropped)

        self._state = FlushState.DRAINING
        points = self._buffer.drain()
        BUFFER_OCCUPANCY.labels(self._id).set(len(self._buffer))
        points.extend(self._collect_aggregates())
        if not points:
            return None

        batch = Batch.from_drain(next(self._batch_ids), points)
        self._in_flight = batch
        self._state = FlushState.DELIVERING
        try:
            logger.debug(
                f"Dispatcher '{self._id}' flush started: batch={batch.batch_id} "
                f"points={len(batch)} trigger={reason.value}"
            )
            await self._publish(
                DispatchEventKind.FLUSH_STARTED, batch, trigger=reason.value
            )
            outcome = await self._retry.deliver(self._sink, batch, sleep=self._sleep)
        except asyncio.CancelledError:
            await self._report_abandoned(batch.points, batch.batch_id)
            raise
        except Exception as exc:
            # the batch is already drained: account for it as undeliverable
            logger.exception(f"Dispatcher '{self._id}' delivery of batch {batch.batch_id} crashed")
            outcome = DeliveryOutcome(
                status=DeliveryStatus.FATAL,
                batch_id=batch.batch_id,
                points=len(batch),
                attempts=0,
                error=exc,
            )
        finally:
            self._in_flight = None

        await self._record(outcome, reason)
        return outcome

    def _collect_aggregates(self) -> List[Point]:
        if self._aggregator is None:
            return []
        try:
            with self._aggregator_lock:
                return list(self._aggregator.collect())
        except Exception as exc:
            logger.error(
                f"Dispatcher '{self._id}' aggregator collect failed: {type(exc).__name__}: {exc}"
            )
            return []

    async def _record(self, outcome: DeliveryOutcome, reason: TriggerReason) -> None:
        DELIVERY_ATTEMPTS_TOTAL.labels(self._id).inc(outcome.attempts)
        FLUSH_LATENCY_MS.labels(self._id).observe(outcome.elapsed_ms)
        FLUSH_CYCLES_TOTAL.labels(self._id, reason.value, outcome.status.value).inc()
        self._cycles += 1
        self._batch_sizes.accept(outcome.points)
        self._latency_ms.accept(outcome.elapsed_ms)

        if outcome.ok:
            self._delivered += outcome.points
            POINTS_DELIVERED_TOTAL.labels(self._id).inc(outcome.points)
            logger.debug(
                f"Dispatcher '{self._id}' flushed {outcome.points} points "
                f"(batch={outcome.batch_id}, attempts={outcome.attempts}, "
                f"{outcome.elapsed_ms:.1f}ms)"
            )
            kind = DispatchEventKind.FLUSH_SUCCEEDED
        else:
            self._lost += outcome.points
            POINTS_LOST_TOTAL.labels(self._id, outcome.status.value).inc(outcome.points)
            logger.error(
                f"Dispatcher '{self._id}' lost {outcome.points} points: batch {outcome.batch_id} "
                f"{outcome.status.value} after {outcome.attempts} attempts "
                f"({type(outcome.error).__name__}: {outcome.error})"
            )
            kind = _LOSS_KIND[outcome.status]

        await self.reports.publish(
            DispatchEvent(
                dispatcher_id=self._id,
                kind=kind,
                points=outcome.points,
                batch_id=outcome.batch_id,
                attempts=outcome.attempts,
                trigger=reason.value,
                reason=None if outcome.error is None else str(outcome.error),
            )
        )

    async def _report_overflow(self, dropped: int) -> None:
        POINTS_DROPPED_TOTAL.labels(self._id, "overflow").inc(dropped)
        logger.warning(
            f"Dispatcher '{self._id}' buffer overflow: {dropped} oldest points dropped "
            f"(capacity={self._buffer.capacity})"
        )
        await self.reports.publish(
            DispatchEvent(
                dispatcher_id=self._id,
                kind=DispatchEventKind.BUFFER_OVERFLOW,
                points=dropped,
                reason="drop_oldest",
            )
        )

    async def _report_abandoned(self, points, batch_id: Optional[int]) -> None:
        n = len(points)
        self._lost += n
        POINTS_LOST_TOTAL.labels(self._id, "abandoned").inc(n)
        logger.error(f"Dispatcher '{self._id}' abandoned {n} points at shutdown (batch={batch_id})")
        await self.reports.publish(
            DispatchEvent(
                dispatcher_id=self._id,
                kind=DispatchEventKind.BATCH_ABANDONED,
                points=n,
                batch_id=batch_id,
                reason="shutdown_timeout",
            )
        )

    async def _abandon_leftovers(self) -> None:
        dropped = self._buffer.take_dropped()
        if dropped:
            await self._report_overflow(dropped)
        leftovers = self._buffer.drain()
        BUFFER_OCCUPANCY.labels(self._id).set(0)
        if leftovers:
            await self._report_abandoned(leftovers, None)

    async def _publish(self, kind: DispatchEventKind, batch: Batch, **extra) -> None:
        await self.reports.publish(
            DispatchEvent(
                dispatcher_id=self._id,
                kind=kind,
                points=len(batch),
                batch_id=batch.batch_id,
                **extra,
            )
        )

    # ---------------------------------------------------------------- health

    def health(self) -> DispatcherHealth:
        in_flight = self._in_flight
        return DispatcherHealth(
            dispatcher_id=self._id,
            running=self._looping,
            state=self._state.value,
            buffered=len(self._buffer),
            capacity=self._buffer.capacity,
            overflow_policy=self._buffer.overflow_policy,
            dropped=self._buffer.dropped_count + self._closed_drops,
            rejected=self._rejected,
            delivered=self._delivered,
            lost=self._lost,
            cycles=self._cycles,
            in_flight=len(in_flight) if in_flight is not None else 0,
            avg_batch_size=self._batch_sizes.get(),
            avg_delivery_ms=self._latency_ms.get(),
        )

    def __repr__(self) -> str:
        return (
            f"Dispatcher(id={self._id!r}, buffered={len(self._buffer)}, "
            f"state={self._state.value}, delivered={self._delivered}, lost={self._lost})"
        )


async def dispatch(
    sink: Sink[Point], point: Point, *, retry_policy: Optional[RetryPolicy] = None
) -> DeliveryOutcome:
    """Write one point straight to the sink, bypassing any buffer.

    Goes through the retry policy; a failed write is logged and returned in
    the outcome, never raised.
    """
    retry = retry_policy or RetryPolicy()
    outcome = await retry.deliver(sink, Batch.from_drain(0, [point]))
    if not outcome.ok:
        logger.error(
            f"Failed to dispatch point '{point.measurement}': {outcome.status.value} after "
            f"{outcome.attempts} attempts ({type(outcome.error).__name__}: {outcome.error})"
        )
    return outcome


async def dispatch_many(
    sink: Sink[Point], points: Iterable[Point], *, retry_policy: Optional[RetryPolicy] = None
) -> List[DeliveryOutcome]:
    """Write each point as its own request, all concurrently.

    Outcomes are returned in the order of ``points``.
    """
    return list(
        await asyncio.gather(*(dispatch(sink, p, retry_policy=retry_policy) for p in points))
    )
