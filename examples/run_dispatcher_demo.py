"""
Demo script for the metrics Dispatcher.

Shows size and interval flushes, retry on a flaky sink, loss reports and
graceful shutdown. Runs without an InfluxDB server.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Sequence

from loguru import logger

from metrics_dispatcher import (
    DispatchEvent,
    Dispatcher,
    Point,
    RetryableSinkError,
    RetryPolicy,
    Sink,
)


@dataclass
class RequestLatency:
    route: str
    ms: float


class FlakySink(Sink[Point]):
    """Prints batches, failing ~30% of writes with a retryable error."""

    async def write(self, batch: Sequence[Point]) -> None:
        await asyncio.sleep(0.01)
        if random.random() < 0.3:
            raise RetryableSinkError("HTTP 503: simulated outage", status_code=503)
        logger.info(f"FlakySink wrote batch of {len(batch)} (first={batch[0].fields})")


async def on_report(event: DispatchEvent):
    if event.is_loss:
        logger.warning(f"⚠️  {event.kind.value}: {event.points} points ({event.reason})")


async def main():
    async with Dispatcher(
        FlakySink(),
        buffer_capacity=500,
        flush_size_threshold=100,
        flush_interval=0.5,
        retry_policy=RetryPolicy(max_attempts=3, initial_backoff_ms=20, max_backoff_ms=200),
        dispatcher_id="demo",
    ) as dispatcher:
        dispatcher.reports.subscribe(on_report)
        logger.info("🚀 Starting dispatcher demo - producing 1,000 points")

        routes = ["/", "/health", "/api/orders"]
        for i in range(1_000):
            sample = RequestLatency(route=random.choice(routes), ms=random.uniform(1, 50))
            dispatcher.enqueue(Point.from_object(sample, tags=["route"]))
            if i % 50 == 0:
                await asyncio.sleep(0.01)

        # a trickle below the size threshold, flushed by the interval
        for _ in range(10):
            dispatcher.enqueue(Point(measurement="heartbeat", fields={"alive": True}))
        logger.info("⏳ Waiting for the interval flush...")
        await asyncio.sleep(0.7)

        h = dispatcher.health()
        logger.info(
            f"Health: delivered={h.delivered} lost={h.lost} dropped={h.dropped} "
            f"avg_batch={h.avg_batch_size:.1f} avg_delivery={h.avg_delivery_ms:.1f}ms"
        )

    logger.info("✅ Dispatcher demo complete")


if __name__ == "__main__":
    asyncio.run(main())
