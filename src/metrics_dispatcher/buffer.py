from __future__ import annotations

import threading
from collections import deque
from typing import Generic, List, Literal, Optional, TypeVar

from loguru import logger

from .errors import BufferFull
from .types import DropCallback

T = TypeVar("T")
OverflowPolicy = Literal["drop_oldest", "reject"]


class PointBuffer(Generic[T]):
    """Bounded FIFO buffer with atomic drain and an overflow policy.

    Safe for producers on any thread: every mutation happens under one
    threading.Lock held only for the append/popleft/swap itself.
    """

    def __init__(
        self,
        capacity: int,
        *,
        overflow_policy: OverflowPolicy = "drop_oldest",
        drop_callback: Optional[DropCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if overflow_policy not in ("drop_oldest", "reject"):
            raise ValueError(f"unknown overflow policy: {overflow_policy!r}")

        self._capacity = capacity
        self._overflow = overflow_policy
        self._drop_cb = drop_callback
        self._items: deque[T] = deque()
        self._lock = threading.Lock()

        self._dropped_total = 0
        self._dropped_pending = 0  # since last take_dropped()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def overflow_policy(self) -> OverflowPolicy:
        return self._overflow

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def dropped_count(self) -> int:
        """Total number of points evicted by drop_oldest overflow."""
        return self._dropped_total

    def enqueue(self, item: T) -> int:
        """Append one item and return the occupancy afterwards.

        Raises BufferFull in reject mode when at capacity, leaving the
        contents untouched. In drop_oldest mode the oldest item is evicted.
        """
        evicted = None
        with self._lock:
            if len(self._items) >= self._capacity:
                if self._overflow == "reject":
                    raise BufferFull(self._capacity)
                evicted = self._items.popleft()
                self._dropped_total += 1
                self._dropped_pending += 1
            self._items.append(item)
            occupancy = len(self._items)

        if evicted is not None and self._drop_cb:
            try:
                self._drop_cb(evicted)
            except Exception as exc:
                logger.debug(f"Drop callback error (ignored): {type(exc).__name__}: {exc}")
        return occupancy

    def drain(self) -> List[T]:
        """Remove and return everything buffered, oldest first."""
        with self._lock:
            if not self._items:
                return []
            items, self._items = self._items, deque()
        return list(items)

    def take_dropped(self) -> int:
        """Return evictions since the previous call and reset the tally."""
        with self._lock:
            n, self._dropped_pending = self._dropped_pending, 0
        return n

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return (
            f"PointBuffer(size={len(self._items)}, capacity={self._capacity}, "
            f"overflow={self._overflow}, dropped={self._dropped_total})"
        )
