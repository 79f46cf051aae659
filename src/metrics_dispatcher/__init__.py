"""Metrics Dispatcher

Batching relay from application code to a time-series store:
- Point / Batch value types
- PointBuffer (bounded, drop_oldest or reject overflow)
- FlushTrigger (size threshold OR interval)
- RetryPolicy with capped exponential backoff
- Dispatcher orchestration, health and structured reports
- Aggregators fed through Dispatcher.submit(), and direct dispatch()
- InfluxSink (InfluxDB v2 line protocol over HTTP)
- Prometheus metrics
- Environment-based settings

Usage:
    from metrics_dispatcher import Dispatcher, InfluxSink, Point

    async with Dispatcher(InfluxSink.from_settings(), flush_interval=5.0) as d:
        d.enqueue(Point(measurement="requests", tags={"route": "/"}, fields={"ms": 12.5}))
"""

from .aggregate import Aggregator, MeanAggregator, RunningAverage
from .buffer import OverflowPolicy, PointBuffer
from .dispatcher import Dispatcher, DispatcherHealth, FlushState, dispatch, dispatch_many
from .errors import (
    BufferFull,
    DeliveryError,
    DeliveryExhausted,
    DeliveryFatal,
    DispatcherError,
    FatalSinkError,
    RetryableSinkError,
    SinkError,
    map_http_error,
)
from .point import Batch, Point, measurement_name
from .policy import DeliveryOutcome, DeliveryStatus, RetryPolicy, default_retry_classifier
from .reporting import DispatchEvent, DispatchEventKind, ReportBus
from .settings import DispatcherSettings, InfluxSettings, get_influx_settings, get_settings
from .sinks import InfluxSink
from .trigger import FlushTrigger, TriggerReason
from .types import Sink

__version__ = "2.1.1"
__all__ = [
    # types
    "Point",
    "Batch",
    "Sink",
    "OverflowPolicy",
    "measurement_name",
    "DispatcherHealth",
    "FlushState",
    # errors
    "DispatcherError",
    "BufferFull",
    "SinkError",
    "RetryableSinkError",
    "FatalSinkError",
    "DeliveryError",
    "DeliveryExhausted",
    "DeliveryFatal",
    "map_http_error",
    # policies
    "RetryPolicy",
    "DeliveryOutcome",
    "DeliveryStatus",
    "default_retry_classifier",
    "FlushTrigger",
    "TriggerReason",
    # runtime
    "PointBuffer",
    "Dispatcher",
    "dispatch",
    "dispatch_many",
    "DispatcherSettings",
    "InfluxSettings",
    "get_settings",
    "get_influx_settings",
    # reporting
    "ReportBus",
    "DispatchEvent",
    "DispatchEventKind",
    # tooling
    "InfluxSink",
    "RunningAverage",
    "Aggregator",
    "MeanAggregator",
]
