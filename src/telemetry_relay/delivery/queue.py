from __future__ import annotations

import threading
from collections import deque
from typing import Iterable, Optional

from loguru import logger

from .types import DropCallback, DropReason, QueuedEvent


class EventQueue:
    """Bounded FIFO of pending events with drop-oldest overflow.

    ``record`` never blocks and never fails: when the queue is full the
    head (oldest) event is evicted and reported through ``on_drop``.

    The re-entrant ``lock`` is shared with FlushScheduler and
    RetryCoordinator so the sending flag, the queue contents and the retry
    timer handle are all guarded by the same mutex.
    """

    def __init__(
        self,
        capacity: int,
        *,
        on_drop: Optional[DropCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self._capacity = capacity
        self._items: deque[QueuedEvent] = deque()
        self._on_drop = on_drop
        self._lock = threading.RLock()
        self._evicted = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def evicted(self) -> int:
        """Number of events dropped by overflow since creation."""
        return self._evicted

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def __len__(self) -> int:
        return self.size

    def record(self, payload: object) -> QueuedEvent:
        """Append a new event at the tail, evicting the head when full."""
        item = payload if isinstance(payload, QueuedEvent) else QueuedEvent(payload)
        evicted: QueuedEvent | None = None

        with self._lock:
            if len(self._items) >= self._capacity:
                evicted = self._items.popleft()
                self._evicted += 1
            self._items.append(item)

        # callback runs outside the lock
        if evicted is not None:
            logger.debug(f"Queue full ({self._capacity}), dropped oldest event")
            if self._on_drop:
                self._on_drop(evicted, DropReason.OVERFLOW)
        return item

    def take_batch(self, max_batch_size: int) -> list[QueuedEvent]:
        """Atomically remove up to ``max_batch_size`` events from the head."""
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be > 0")
        with self._lock:
            n = min(max_batch_size, len(self._items))
            return [self._items.popleft() for _ in range(n)]

    def requeue_front(self, events: Iterable[QueuedEvent]) -> None:
        """Put ``events`` back at the head, keeping their relative order.

        If producers refilled the queue while the batch was out, the
        capacity bound still holds: the oldest events (the requeued ones
        first) are evicted as overflow.
        """
        events = list(events)
        if not events:
            return
        evicted: list[QueuedEvent] = []
        with self._lock:
            self._items.extendleft(reversed(events))
            while len(self._items) > self._capacity:
                evicted.append(self._items.popleft())
            self._evicted += len(evicted)

        if evicted:
            logger.debug(f"Requeue overflowed capacity, dropped {len(evicted)} oldest events")
            if self._on_drop:
                for item in evicted:
                    self._on_drop(item, DropReason.OVERFLOW)

    def snapshot(self) -> list[QueuedEvent]:
        """Copy of the current contents, head first."""
        with self._lock:
            return list(self._items)
