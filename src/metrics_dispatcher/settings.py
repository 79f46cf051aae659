"""
Environment-based settings for the dispatcher and the InfluxDB sink.

    METRICS_DISPATCHER_BUFFER_CAPACITY=20000
    METRICS_DISPATCHER_OVERFLOW_POLICY=reject
    INFLUX_URL=http://influxdb:8086
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatcherSettings(BaseSettings):
    """Batching, flushing and retry thresholds."""

    model_config = SettingsConfigDict(
        env_prefix="METRICS_DISPATCHER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    dispatcher_id: str = "default"
    buffer_capacity: int = Field(10_000, gt=0)
    flush_size_threshold: int = Field(1_000, gt=0)
    flush_interval_sec: float = Field(5.0, gt=0)
    overflow_policy: Literal["drop_oldest", "reject"] = "drop_oldest"

    max_retry_attempts: int = Field(5, ge=1)
    base_backoff_ms: int = Field(100, ge=0)
    max_backoff_ms: int = Field(10_000, ge=0)
    backoff_jitter: bool = False

    shutdown_timeout_sec: float = Field(10.0, gt=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.flush_size_threshold > self.buffer_capacity:
            raise ValueError("flush_size_threshold must not exceed buffer_capacity")
        if self.base_backoff_ms > self.max_backoff_ms:
            raise ValueError("base_backoff_ms must not exceed max_backoff_ms")
        return self


class InfluxSettings(BaseSettings):
    """Connection details for InfluxDB v2."""

    model_config = SettingsConfigDict(
        env_prefix="INFLUX_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    url: str = "http://localhost:8086"
    token: str = ""
    org: str = ""
    bucket: str = "metrics"
    precision: Literal["ns", "us", "ms", "s"] = "ns"
    timeout_sec: float = Field(10.0, gt=0)


@lru_cache()
def get_settings() -> DispatcherSettings:
    return DispatcherSettings()


@lru_cache()
def get_influx_settings() -> InfluxSettings:
    return InfluxSettings()
