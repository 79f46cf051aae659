"""
Retry policy for batch delivery.

Exponential backoff with a cap and optional jitter, plus the classification
rule that decides whether a sink failure is worth another attempt.
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from loguru import logger

from .errors import (
    DeliveryExhausted,
    DeliveryFatal,
    FatalSinkError,
    RetryableSinkError,
)
from .point import Batch
from .types import SleepFn, Sink

ErrorClassifier = Callable[[Exception], bool]

_TRANSIENT_HINTS = (
    "timeout",
    "timed out",
    "temporar",
    "unavailable",
    "busy",
    "try again",
    "connection reset",
    "connection refused",
    "too many requests",
)


def default_retry_classifier(exc: Exception) -> bool:
    """True if the failure looks transient."""
    if isinstance(exc, RetryableSinkError):
        return True
    if isinstance(exc, FatalSinkError):
        return False
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError, ConnectionError)):
        return True
    msg = str(exc).lower()
    return any(hint in msg for hint in _TRANSIENT_HINTS)


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of delivering one batch, including every retry."""

    status: DeliveryStatus
    batch_id: int
    points: int
    attempts: int
    delays_ms: tuple = ()
    error: Optional[Exception] = None
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS

    def raise_for_status(self) -> None:
        if self.status is DeliveryStatus.EXHAUSTED:
            raise DeliveryExhausted(
                f"batch {self.batch_id} undelivered after {self.attempts} attempts: {self.error}",
                points=self.points,
                attempts=self.attempts,
            ) from self.error
        if self.status is DeliveryStatus.FATAL:
            raise DeliveryFatal(
                f"batch {self.batch_id} rejected: {self.error}",
                points=self.points,
                attempts=self.attempts,
            ) from self.error


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries with capped exponential backoff.

    Attributes:
        max_attempts: Total attempts including the first one
        initial_backoff_ms: Delay before the second attempt
        max_backoff_ms: Upper bound for any single delay
        backoff_multiplier: Growth factor per attempt
        jitter: Scale each delay to a random 50-100% of its nominal value
        classify_retryable: Rule applied to failures not already classified
            by a SinkError subclass
    """

    max_attempts: int = 5
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 10_000
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: ErrorClassifier = field(default=default_retry_classifier)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_backoff_ms < 0 or self.max_backoff_ms < 0:
            raise ValueError("backoff must be >= 0")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1.0")

    def next_backoff_ms(self, attempt: int) -> int:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        exp = max(0, attempt - 1)
        base = min(self.initial_backoff_ms * (self.backoff_multiplier**exp), self.max_backoff_ms)
        if self.jitter:
            base = random.uniform(base / 2, base)
        return int(base)

    def is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, RetryableSinkError):
            return True
        if isinstance(exc, FatalSinkError):
            return False
        try:
            return bool(self.classify_retryable(exc))
        except Exception as classify_exc:
            logger.warning(
                f"Retry classifier failed on {type(exc).__name__}, treating as fatal: "
                f"{type(classify_exc).__name__}: {classify_exc}"
            )
            return False

    async def deliver(
        self,
        sink: Sink,
        batch: Batch,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> DeliveryOutcome:
        """Write ``batch`` to ``sink`` until success, a fatal error, or exhaustion.

        Every attempt sends the same ``batch.points`` tuple. Failures never
        escape; the outcome carries the last error instead.
        """
        t0 = time.perf_counter()
        delays: List[int] = []
        points: Sequence = batch.points
        last_exc: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                await sink.write(points)
            except Exception as exc:
                last_exc = exc
                if not self.is_retryable(exc):
                    logger.debug(
                        f"Batch {batch.batch_id} failed fatally on attempt {attempt}: "
                        f"{type(exc).__name__}: {exc}"
                    )
                    return self._outcome(DeliveryStatus.FATAL, batch, attempt, delays, exc, t0)

                if attempt >= self.max_attempts:
                    break

                delay_ms = self.next_backoff_ms(attempt)
                delays.append(delay_ms)
                logger.warning(
                    f"Batch {batch.batch_id} write failed (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay_ms}ms: {type(exc).__name__}: {exc}"
                )
                await sleep(delay_ms / 1000.0)
                continue

            return self._outcome(DeliveryStatus.SUCCESS, batch, attempt, delays, None, t0)

        logger.debug(
            f"Batch {batch.batch_id} exhausted {self.max_attempts} attempts: "
            f"{type(last_exc).__name__}: {last_exc}"
        )
        return self._outcome(
            DeliveryStatus.EXHAUSTED, batch, self.max_attempts, delays, last_exc, t0
        )

    @staticmethod
    def _outcome(status, batch, attempts, delays, error, t0) -> DeliveryOutcome:
        return DeliveryOutcome(
            status=status,
            batch_id=batch.batch_id,
            points=len(batch.points),
            attempts=attempts,
            delays_ms=tuple(delays),
            error=error,
            elapsed_ms=(time.perf_counter() - t0) * 1000.0,
        )
