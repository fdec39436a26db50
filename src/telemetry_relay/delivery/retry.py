from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from loguru import logger

from .queue import EventQueue
from .types import DropCallback, DropReason, QueuedEvent, RetryDecision


def backoff_delay_ms(
    retry_count: int, base_ms: int, max_backoff_ms: int | None = None
) -> int:
    """Exponential backoff: ``base_ms * 2^(retry_count - 1)``, optionally capped."""
    delay = base_ms * (2 ** max(retry_count - 1, 0))
    if max_backoff_ms is not None:
        delay = min(delay, max_backoff_ms)
    return delay


class RetryCoordinator:
    """Decides which events of a failed batch survive and when to try again.

    Holds at most one pending retry timer: scheduling a new one cancels the
    previous, so a burst of consecutive failures yields a single retry
    flush. The timer handle is guarded by the queue's lock.
    """

    def __init__(
        self,
        queue: EventQueue,
        *,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        max_backoff_ms: int | None = None,
        on_drop: Optional[DropCallback] = None,
        on_due: Optional[Callable[[], None]] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if backoff_base_ms <= 0:
            raise ValueError("backoff_base_ms must be > 0")
        if max_backoff_ms is not None and max_backoff_ms < backoff_base_ms:
            raise ValueError("max_backoff_ms must be >= backoff_base_ms")

        self._queue = queue
        self.max_retries = max_retries
        self.backoff_base_ms = backoff_base_ms
        self.max_backoff_ms = max_backoff_ms
        self._on_drop = on_drop
        self._on_due = on_due
        self._timer: asyncio.TimerHandle | None = None

    def set_on_due(self, callback: Callable[[], None]) -> None:
        self._on_due = callback

    @property
    def pending(self) -> bool:
        """True while a retry timer is scheduled and has not fired."""
        with self._queue.lock:
            return self._timer is not None and not self._timer.cancelled()

    def handle_failure(self, batch: Sequence[QueuedEvent]) -> RetryDecision:
        """Bump retry counts, drop exhausted events, requeue the rest, arm timer.

        Must be called from the event loop thread (it arms a loop timer).
        """
        survivors: list[QueuedEvent] = []
        dropped: list[QueuedEvent] = []
        for item in batch:
            item.retry_count += 1
            if item.retry_count <= self.max_retries:
                survivors.append(item)
            else:
                dropped.append(item)

        for item in dropped:
            logger.warning(
                f"Dropping telemetry event after {item.retry_count - 1} retries "
                f"(max_retries={self.max_retries})"
            )
            if self._on_drop:
                self._on_drop(item, DropReason.MAX_RETRIES)

        max_retry = max((item.retry_count for item in batch), default=1)
        delay_ms = backoff_delay_ms(max_retry, self.backoff_base_ms, self.max_backoff_ms)

        self._queue.requeue_front(survivors)
        self._schedule(delay_ms)

        logger.warning(
            f"Batch of {len(batch)} failed: requeued={len(survivors)} "
            f"dropped={len(dropped)}, retrying in {delay_ms}ms"
        )
        return RetryDecision(
            survivors=survivors,
            dropped=dropped,
            delay_ms=delay_ms,
            max_retry_count=max_retry,
        )

    def cancel(self) -> None:
        """Cancel the pending retry timer, if any."""
        with self._queue.lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule(self, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        with self._queue.lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = loop.call_later(delay_ms / 1000.0, self._fire)

    def _fire(self) -> None:
        with self._queue.lock:
            self._timer = None
        logger.debug("Retry timer fired")
        if self._on_due:
            self._on_due()
