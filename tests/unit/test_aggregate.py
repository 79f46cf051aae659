"""
Unit tests for RunningAverage and MeanAggregator.
"""

import pytest

from metrics_dispatcher import MeanAggregator, Point, RunningAverage


def test_empty_average_is_zero():
    avg = RunningAverage()
    assert avg.get() == 0.0
    assert avg.count == 0


def test_running_mean_matches_arithmetic_mean():
    avg = RunningAverage()
    for v in range(1, 101):
        avg.accept(v)

    assert avg.get() == pytest.approx(50.5)
    assert avg.count == 100


def test_reset():
    avg = RunningAverage()
    avg.accept(10)
    avg.reset()
    assert avg.get() == 0.0
    assert avg.count == 0


def test_count_saturates():
    avg = RunningAverage()
    avg._count = 2**32 - 1
    avg._average = 5.0
    avg.accept(5.0)

    assert avg.count == 2**32 - 1
    assert avg.get() == pytest.approx(5.0)


def test_mean_aggregator_groups_by_series():
    agg = MeanAggregator()
    for ms in (10, 20):
        agg.accept(Point(measurement="latency", tags={"route": "/"}, fields={"ms": ms}))
    agg.accept(Point(measurement="latency", tags={"route": "/api"}, fields={"ms": 5}))
    assert len(agg) == 2

    by_route = {p.tags["route"]: p for p in agg.collect()}

    assert by_route["/"].fields == {"ms": pytest.approx(15.0)}
    assert by_route["/api"].fields == {"ms": pytest.approx(5.0)}
    assert agg.collect() == []


def test_mean_aggregator_skips_non_numeric_fields():
    agg = MeanAggregator(count_field="n")
    agg.accept(Point(measurement="job", fields={"ok": True, "state": "done", "secs": 2.0}))
    agg.accept(Point(measurement="job", fields={"ok": False, "secs": 4.0}))

    (point,) = agg.collect()

    assert point.fields == {"secs": pytest.approx(3.0), "n": 2}


def test_mean_aggregator_omits_series_without_numbers():
    agg = MeanAggregator()
    agg.accept(Point(measurement="event", fields={"name": "deploy"}))
    assert agg.collect() == []
