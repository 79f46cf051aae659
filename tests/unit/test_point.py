"""
Unit tests for Point / Batch models and line protocol encoding.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import pytest
from pydantic import BaseModel, ValidationError

from metrics_dispatcher import Batch, Point, measurement_name
from metrics_dispatcher.sinks import encode_line_protocol

TS = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class RequestLatency:
    route: str
    ms: float
    status: Optional[int] = None


class QueueDepth(BaseModel):
    queue: str
    depth: int


def test_point_is_frozen():
    p = Point(measurement="cpu", tags={"host": "a"}, fields={"load": 0.5})
    with pytest.raises(ValidationError):
        p.measurement = "mem"  # type: ignore
    with pytest.raises(TypeError):
        p.tags["host"] = "b"  # type: ignore
    with pytest.raises(TypeError):
        p.fields["load"] = 0.9  # type: ignore

    assert p.tags == {"host": "a"}
    assert p.fields == {"load": 0.5}


def test_point_in_batch_cannot_be_changed():
    batch = Batch.from_drain(1, [Point(measurement="m", tags={"k": "v"}, fields={"v": 1})])
    with pytest.raises(TypeError):
        batch.points[0].fields["v"] = 999  # type: ignore
    with pytest.raises(TypeError):
        batch.points[0].tags.pop("k")  # type: ignore
    assert batch.points[0].fields == {"v": 1}


def test_default_tags_are_read_only():
    p = Point(measurement="m", fields={"v": 1})
    with pytest.raises(TypeError):
        p.tags["k"] = "v"  # type: ignore


def test_model_dump_returns_plain_dicts():
    dumped = Point(measurement="m", tags={"k": "v"}, fields={"v": 1}).model_dump()
    assert type(dumped["tags"]) is dict
    assert type(dumped["fields"]) is dict
    assert Point.model_validate(dumped).fields == {"v": 1}


def test_point_copies_caller_dicts():
    tags = {"host": "a"}
    fields = {"load": 0.5}
    p = Point(measurement="cpu", tags=tags, fields=fields)

    tags["host"] = "b"
    fields["load"] = 0.9

    assert p.tags == {"host": "a"}
    assert p.fields == {"load": 0.5}


def test_point_validation():
    with pytest.raises(ValidationError):
        Point(measurement="cpu", fields={})
    with pytest.raises(ValidationError):
        Point(measurement="   ", fields={"v": 1})


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_fields_rejected(value):
    with pytest.raises(ValidationError):
        Point(measurement="cpu", fields={"load": value})


def test_tag_values_coerced_to_str():
    p = Point(measurement="cpu", tags={"core": 3}, fields={"v": 1})
    assert p.tags == {"core": "3"}


def test_measurement_name():
    assert measurement_name(RequestLatency) == "RequestLatency"
    assert measurement_name(RequestLatency("/", 1.0)) == "RequestLatency"


def test_from_dataclass():
    p = Point.from_object(RequestLatency(route="/health", ms=1.5), tags=["route"], timestamp=TS)

    assert p.measurement == "RequestLatency"
    assert p.tags == {"route": "/health"}
    # None attributes are skipped
    assert p.fields == {"ms": 1.5}
    assert p.timestamp == TS


def test_from_pydantic_model():
    p = Point.from_object(QueueDepth(queue="jobs", depth=12), tags=["queue"])
    assert p.measurement == "QueueDepth"
    assert p.fields == {"depth": 12}


def test_from_object_rejects_plain_values():
    with pytest.raises(TypeError):
        Point.from_object({"v": 1})


def test_batch_stamps_missing_timestamps_only():
    now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
    explicit = Point(measurement="m", fields={"v": 1}, timestamp=TS)
    bare = Point(measurement="m", fields={"v": 2})

    batch = Batch.from_drain(3, [explicit, bare], now=now)

    assert batch.batch_id == 3
    assert len(batch) == 2
    assert batch.points[0] is explicit
    assert batch.points[1].timestamp == now
    assert bare.timestamp is None
    assert batch.created_at == now


def test_empty_batch_is_falsy():
    assert not Batch.from_drain(1, [])


def test_line_protocol_encoding():
    p = Point(measurement="cpu", tags={"host": "a"}, fields={"load": 0.5}, timestamp=TS)

    line = encode_line_protocol([p]).decode()

    assert line.startswith("cpu,host=a load=0.5")
    assert line.endswith("1704067200000000000")


def test_line_protocol_one_line_per_point():
    points = [Point(measurement="m", fields={"v": float(i)}, timestamp=TS) for i in range(3)]
    body = encode_line_protocol(points, precision="s").decode()

    lines = body.split("\n")
    assert len(lines) == 3
    assert all(line.endswith(" 1704067200") for line in lines)
