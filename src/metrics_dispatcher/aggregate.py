"""Helpers for pre-aggregating values before they become points."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple

from .point import Point

_MAX_COUNT = 2**32 - 1


class RunningAverage:
    """Mean of a stream of values without storing the values.

    Trades a little precision for O(1) memory, which is fine for metrics.
    """

    __slots__ = ("_average", "_count")

    def __init__(self) -> None:
        self._average = 0.0
        self._count = 0

    def accept(self, value: float) -> None:
        # M(n+1) = M(n) * n/(n+1) + V(n+1)/(n+1)
        n = float(self._count)
        # saturates instead of growing forever; the weight error is negligible
        self._count = min(self._count + 1, _MAX_COUNT)
        self._average = self._average * (n / (n + 1.0)) + (value / (n + 1.0))

    def get(self) -> float:
        return self._average

    @property
    def count(self) -> int:
        return self._count

    def reset(self) -> None:
        self._average = 0.0
        self._count = 0

    def __repr__(self) -> str:
        return f"RunningAverage(average={self._average:.4f}, count={self._count})"


class Aggregator(Protocol):
    """Pre-aggregates submitted values between flushes.

    ``accept()`` is called for every ``Dispatcher.submit()``; ``collect()`` is
    called once per flush cycle and returns the points to deliver, resetting
    the aggregator.
    """

    def accept(self, value: Any) -> None: ...

    def collect(self) -> List[Point]: ...


SeriesKey = Tuple[str, Tuple[Tuple[str, str], ...]]


class MeanAggregator:
    """Averages the numeric fields of submitted points, per series.

    A series is a measurement plus its tag set. Each ``collect()`` emits one
    point per series holding the mean of every numeric field seen since the
    previous collect. Non-numeric fields are ignored.

    Args:
        count_field: When set, also emit the number of samples under this
            field name
    """

    def __init__(self, count_field: Optional[str] = None) -> None:
        self._count_field = count_field
        self._series: Dict[SeriesKey, Dict[str, RunningAverage]] = {}

    def accept(self, point: Point) -> None:
        key = (point.measurement, tuple(sorted(point.tags.items())))
        averages = self._series.setdefault(key, {})
        for name, value in point.fields.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            averages.setdefault(name, RunningAverage()).accept(value)

    def collect(self) -> List[Point]:
        series, self._series = self._series, {}
        points = []
        for (measurement, tags), averages in series.items():
            if not averages:
                continue
            fields: Dict[str, Any] = {name: avg.get() for name, avg in averages.items()}
            if self._count_field:
                fields[self._count_field] = max(avg.count for avg in averages.values())
            points.append(Point(measurement=measurement, tags=dict(tags), fields=fields))
        return points

    def __len__(self) -> int:
        return len(self._series)
