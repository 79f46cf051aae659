"""
InfluxDB v2 sink.

Encodes each batch as line protocol and POSTs it to ``/api/v2/write``.
HTTP failures are mapped to RetryableSinkError / FatalSinkError so the
dispatcher's retry policy can tell throttling and outages from bad data.
"""

from __future__ import annotations

import time
from typing import Optional, Sequence

import httpx
from loguru import logger

from ..errors import map_http_error
from ..metrics import SINK_WRITE_LATENCY, SINK_WRITES_TOTAL
from ..point import Point
from ..settings import InfluxSettings, get_influx_settings
from ..types import Sink


def encode_line_protocol(batch: Sequence[Point], precision: str = "ns") -> bytes:
    """Encode points as newline-separated line protocol."""
    return "\n".join(p.to_influx().to_line_protocol(precision=precision) for p in batch).encode(
        "utf-8"
    )


class InfluxSink(Sink[Point]):
    """Writes point batches to InfluxDB over HTTP.

    Args:
        url: Base URL of the InfluxDB server (e.g. "http://localhost:8086")
        token: API token sent as ``Authorization: Token ...``
        org: Organization name or id
        bucket: Destination bucket
        precision: Timestamp precision for line protocol ("ns", "us", "ms", "s")
        timeout: HTTP timeout in seconds
        client: Pre-built httpx.AsyncClient (tests, shared pools); not closed
            by this sink when supplied
        name: Label used in sink metrics
    """

    def __init__(
        self,
        url: str = "http://localhost:8086",
        token: str = "",
        org: str = "",
        bucket: str = "metrics",
        *,
        precision: str = "ns",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "influx",
    ):
        self._url = url.rstrip("/")
        self._token = token
        self._org = org
        self._bucket = bucket
        self._precision = precision
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None
        self.name = name

    @classmethod
    def from_settings(cls, settings: Optional[InfluxSettings] = None, **kwargs) -> "InfluxSink":
        cfg = settings or get_influx_settings()
        return cls(
            url=cfg.url,
            token=cfg.token,
            org=cfg.org,
            bucket=cfg.bucket,
            precision=cfg.precision,
            timeout=cfg.timeout_sec,
            **kwargs,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "text/plain; charset=utf-8", "Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Token {self._token}"
        return headers

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def write(self, batch: Sequence[Point]) -> None:
        if not batch:
            return

        body = encode_line_protocol(batch, self._precision)
        client = self._get_client()
        t0 = time.perf_counter()
        try:
            resp = await client.post(
                f"{self._url}/api/v2/write",
                params={"org": self._org, "bucket": self._bucket, "precision": self._precision},
                content=body,
                headers=self._headers(),
            )
            resp.raise_for_status()
        except Exception as exc:
            SINK_WRITES_TOTAL.labels(self.name, "failure").inc()
            raise map_http_error(exc) from exc
        finally:
            SINK_WRITE_LATENCY.labels(self.name).observe(time.perf_counter() - t0)

        SINK_WRITES_TOTAL.labels(self.name, "success").inc()
        logger.trace(f"InfluxSink wrote {len(batch)} points to bucket '{self._bucket}'")

    async def ping(self) -> bool:
        """True when the server answers /ping."""
        try:
            resp = await self._get_client().get(f"{self._url}/ping")
        except httpx.HTTPError as exc:
            logger.warning(f"InfluxDB ping failed: {type(exc).__name__}: {exc}")
            return False
        return resp.status_code in (200, 204)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def __repr__(self) -> str:
        return f"InfluxSink(url={self._url}, org={self._org!r}, bucket={self._bucket!r})"
