"""
Exceptions for the metrics dispatcher.

Producers only ever see BufferFull. Everything under SinkError/DeliveryError
stays inside the flush loop and is surfaced through reports.
"""

from __future__ import annotations

from typing import Optional


class DispatcherError(Exception):
    """Base error for the metrics dispatcher."""

    pass


class BufferFull(DispatcherError):
    """Buffer at capacity while running with the reject overflow policy."""

    def __init__(self, capacity: int):
        super().__init__(f"buffer full (capacity={capacity})")
        self.capacity = capacity


class SinkError(DispatcherError):
    """Base error raised by sinks. Subclasses pre-classify the failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RetryableSinkError(SinkError):
    """Transient write failure (connection reset, 5xx, throttling)."""

    pass


class FatalSinkError(SinkError):
    """Permanent write failure (malformed batch, auth, rejected payload)."""

    pass


class DeliveryError(DispatcherError):
    """A batch could not be delivered."""

    def __init__(self, message: str, points: int = 0, attempts: int = 0):
        super().__init__(message)
        self.points = points
        self.attempts = attempts


class DeliveryExhausted(DeliveryError):
    """Retry budget spent on retryable failures."""

    pass


class DeliveryFatal(DeliveryError):
    """Batch rejected with a non-retryable failure."""

    pass


_RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


def map_http_error(e: Exception) -> SinkError:
    import httpx

    if isinstance(e, SinkError):
        return e
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        body = e.response.text[:200]
        msg = f"HTTP {status}: {body}" if body else f"HTTP {status}"
        if status in _RETRYABLE_STATUS_CODES or status >= 500:
            return RetryableSinkError(msg, status_code=status)
        return FatalSinkError(msg, status_code=status)
    if isinstance(e, (httpx.TransportError, TimeoutError, ConnectionError)):
        return RetryableSinkError(f"{type(e).__name__}: {e}")
    return FatalSinkError(f"{type(e).__name__}: {e}")
