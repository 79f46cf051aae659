"""
Unit tests for dispatcher Prometheus metrics.
"""

from typing import Sequence

import pytest
from prometheus_client import REGISTRY

from metrics_dispatcher import Dispatcher, FatalSinkError, Point, Sink
from metrics_dispatcher.metrics import metrics_registry


class OkSink(Sink[Point]):
    async def write(self, batch: Sequence[Point]) -> None:
        return None


class FatalSink(Sink[Point]):
    async def write(self, batch: Sequence[Point]) -> None:
        raise FatalSinkError("HTTP 401: unauthorized", status_code=401)


def sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_registry_exposes_metrics():
    assert metrics_registry.points_enqueued_total is not None
    assert metrics_registry.flush_latency_ms is not None
    assert metrics_registry.sink_writes_total is not None


@pytest.mark.asyncio
async def test_delivery_counters(make_point, dispatcher_id):
    d = Dispatcher(OkSink(), flush_interval=60.0, dispatcher_id=dispatcher_id)
    for i in range(5):
        d.enqueue(make_point(i))

    assert sample("dispatcher_points_enqueued_total", dispatcher=dispatcher_id) == 5
    assert sample("dispatcher_buffer_occupancy", dispatcher=dispatcher_id) == 5

    await d.flush()

    assert sample("dispatcher_points_delivered_total", dispatcher=dispatcher_id) == 5
    assert sample("dispatcher_delivery_attempts_total", dispatcher=dispatcher_id) == 1
    assert (
        sample(
            "dispatcher_flush_cycles_total",
            dispatcher=dispatcher_id,
            trigger="manual",
            outcome="success",
        )
        == 1
    )
    assert sample("dispatcher_flush_latency_ms_count", dispatcher=dispatcher_id) == 1
    assert sample("dispatcher_buffer_occupancy", dispatcher=dispatcher_id) == 0
    await d.shutdown()


@pytest.mark.asyncio
async def test_loss_and_drop_counters(make_point, dispatcher_id):
    d = Dispatcher(
        FatalSink(),
        buffer_capacity=3,
        flush_size_threshold=3,
        flush_interval=60.0,
        dispatcher_id=dispatcher_id,
    )
    for i in range(5):
        d.enqueue(make_point(i))

    await d.flush()

    assert sample("dispatcher_points_dropped_total", dispatcher=dispatcher_id, reason="overflow") == 2
    assert sample("dispatcher_points_lost_total", dispatcher=dispatcher_id, reason="fatal") == 3
    assert sample("dispatcher_points_delivered_total", dispatcher=dispatcher_id) == 0

    await d.shutdown()
    d.enqueue(make_point(9))
    assert sample("dispatcher_points_dropped_total", dispatcher=dispatcher_id, reason="closed") == 1
