"""
Data models for telemetry points and drained batches.

Points are immutable once built; a Batch is the snapshot produced by one
buffer drain and is handed, unchanged, to every delivery attempt.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields as dc_fields, is_dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

FieldValue = Union[bool, int, float, str]


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def measurement_name(obj: Any) -> str:
    """Measurement name derived from a type (or an instance's type) name."""
    cls = obj if isinstance(obj, type) else type(obj)
    return cls.__qualname__.rsplit(".", 1)[-1]


class Point(BaseModel):
    """One telemetry measurement.

    Tags and fields are held as read-only mappings, so neither the point nor
    a batch holding it can change after construction.
    """

    model_config = ConfigDict(frozen=True)

    measurement: str
    tags: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    fields: Mapping[str, FieldValue]
    timestamp: Optional[datetime] = None

    @field_validator("measurement")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("measurement must not be empty")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _copy_tags(cls, v):
        # own copy so the producer's dict can be reused
        return {str(k): str(val) for k, val in dict(v or {}).items()}

    @field_validator("fields", mode="before")
    @classmethod
    def _copy_fields(cls, v):
        v = dict(v or {})
        if not v:
            raise ValueError("a point needs at least one field")
        return v

    @field_validator("tags")
    @classmethod
    def _freeze_tags(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @field_validator("fields")
    @classmethod
    def _freeze_fields(cls, v: Mapping[str, FieldValue]) -> Mapping[str, FieldValue]:
        # line protocol has no encoding for these; the writer would skip them silently
        for name, value in v.items():
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"field {name!r} must be a finite number, got {value}")
        return MappingProxyType(dict(v))

    @field_serializer("tags", "fields")
    def _serialize_mapping(self, v: Mapping[str, Any]) -> Dict[str, Any]:
        return dict(v)

    def with_timestamp(self, ts: datetime) -> "Point":
        return self.model_copy(update={"timestamp": ts})

    def to_influx(self):
        """Convert to an influxdb_client Point for line-protocol encoding."""
        from influxdb_client import Point as InfluxPoint

        p = InfluxPoint(self.measurement)
        for k, v in sorted(self.tags.items()):
            p.tag(k, v)
        for k, v in self.fields.items():
            p.field(k, v)
        if self.timestamp is not None:
            p.time(self.timestamp)
        return p

    @classmethod
    def from_object(
        cls,
        obj: Any,
        *,
        tags: Iterable[str] = (),
        timestamp: Optional[datetime] = None,
    ) -> "Point":
        """Build a point from a dataclass or pydantic model instance.

        The measurement is named after the object's type. Attributes listed in
        ``tags`` become tags; the remaining non-None attributes become fields.
        """
        if isinstance(obj, BaseModel):
            data = obj.model_dump()
        elif is_dataclass(obj) and not isinstance(obj, type):
            data = {f.name: getattr(obj, f.name) for f in dc_fields(obj)}
        else:
            raise TypeError(f"cannot build a Point from {type(obj).__name__}")

        tag_names = set(tags)
        return cls(
            measurement=measurement_name(obj),
            tags={k: data[k] for k in tag_names if data.get(k) is not None},
            fields={k: v for k, v in data.items() if k not in tag_names and v is not None},
            timestamp=timestamp,
        )


@dataclass(frozen=True)
class Batch:
    """Immutable snapshot of points drained together.

    Attributes:
        batch_id: Monotonic sequence number within one dispatcher
        points: Drained points in FIFO order, all timestamped
        created_at: Drain time, used for points enqueued without a timestamp
    """

    batch_id: int
    points: Tuple[Point, ...]
    created_at: datetime

    @classmethod
    def from_drain(
        cls, batch_id: int, points: Iterable[Point], now: Optional[datetime] = None
    ) -> "Batch":
        now = now or utc_now()
        stamped = tuple(p if p.timestamp is not None else p.with_timestamp(now) for p in points)
        return cls(batch_id=batch_id, points=stamped, created_at=now)

    def __len__(self) -> int:
        return len(self.points)

    def __bool__(self) -> bool:
        return bool(self.points)
