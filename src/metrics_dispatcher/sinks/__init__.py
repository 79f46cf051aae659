"""Sink implementations for the metrics dispatcher."""

from ..metrics import SINK_WRITE_LATENCY, SINK_WRITES_TOTAL
from .influx import InfluxSink, encode_line_protocol

__all__ = [
    "InfluxSink",
    "encode_line_protocol",
    "SINK_WRITES_TOTAL",
    "SINK_WRITE_LATENCY",
]
