from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")

DropCallback = Callable[[T], None]
SleepFn = Callable[[float], Awaitable[None]]


class Sink(ABC, Generic[T]):
    """Write capability for a batch of items.

    Implementations raise RetryableSinkError / FatalSinkError to classify a
    failure themselves; any other exception goes through the retry policy's
    classifier.
    """

    @abstractmethod
    async def write(self, batch: Sequence[T]) -> None:
        """Write the whole batch or raise."""
        ...

    async def aclose(self) -> None:
        """Release connections. Default: nothing to release."""
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
