"""
Unit tests for environment-based settings.
"""

import pytest
from pydantic import ValidationError

from metrics_dispatcher import (
    Dispatcher,
    DispatcherSettings,
    InfluxSettings,
    InfluxSink,
    Point,
    Sink,
    get_influx_settings,
    get_settings,
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run from an empty directory so a local .env cannot leak in."""
    monkeypatch.chdir(tmp_path)
    for key in ("METRICS_DISPATCHER_BUFFER_CAPACITY", "METRICS_DISPATCHER_OVERFLOW_POLICY"):
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    get_influx_settings.cache_clear()
    yield
    get_settings.cache_clear()
    get_influx_settings.cache_clear()


def test_defaults():
    cfg = DispatcherSettings()
    assert cfg.buffer_capacity == 10_000
    assert cfg.flush_size_threshold == 1_000
    assert cfg.flush_interval_sec == 5.0
    assert cfg.overflow_policy == "drop_oldest"
    assert cfg.max_retry_attempts == 5
    assert cfg.base_backoff_ms == 100
    assert cfg.max_backoff_ms == 10_000


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("METRICS_DISPATCHER_BUFFER_CAPACITY", "500")
    monkeypatch.setenv("METRICS_DISPATCHER_FLUSH_SIZE_THRESHOLD", "50")
    monkeypatch.setenv("METRICS_DISPATCHER_OVERFLOW_POLICY", "reject")

    cfg = DispatcherSettings()

    assert cfg.buffer_capacity == 500
    assert cfg.flush_size_threshold == 50
    assert cfg.overflow_policy == "reject"


def test_env_file(tmp_path):
    (tmp_path / ".env").write_text("INFLUX_BUCKET=telemetry\nINFLUX_PRECISION=ms\n")

    cfg = InfluxSettings()

    assert cfg.bucket == "telemetry"
    assert cfg.precision == "ms"


def test_invalid_values_rejected():
    with pytest.raises(ValidationError):
        DispatcherSettings(buffer_capacity=10, flush_size_threshold=11)
    with pytest.raises(ValidationError):
        DispatcherSettings(base_backoff_ms=500, max_backoff_ms=100)
    with pytest.raises(ValidationError):
        DispatcherSettings(overflow_policy="block")
    with pytest.raises(ValidationError):
        DispatcherSettings(flush_interval_sec=0)


def test_cached_accessors(monkeypatch):
    monkeypatch.setenv("METRICS_DISPATCHER_DISPATCHER_ID", "first")
    assert get_settings() is get_settings()
    assert get_settings().dispatcher_id == "first"

    monkeypatch.setenv("METRICS_DISPATCHER_DISPATCHER_ID", "second")
    assert get_settings().dispatcher_id == "first"

    get_settings.cache_clear()
    assert get_settings().dispatcher_id == "second"


def test_from_settings_defaults_to_cached_settings(monkeypatch):
    monkeypatch.setenv("METRICS_DISPATCHER_DISPATCHER_ID", "from-env")
    monkeypatch.setenv("INFLUX_BUCKET", "cached-bucket")

    class NullSink(Sink[Point]):
        async def write(self, batch):
            return None

    d = Dispatcher.from_settings(NullSink())
    sink = InfluxSink.from_settings()

    assert d.dispatcher_id == "from-env"
    assert "'cached-bucket'" in repr(sink)
    assert get_settings.cache_info().currsize == 1
    assert get_influx_settings.cache_info().currsize == 1
