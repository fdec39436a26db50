"""
Flush scheduling with single-flight sending.

Three triggers funnel into ``flush()``: the periodic tick, the retry
timer, and the network-restored signal. The ``sending`` flag is checked
and set under the queue lock together with the empty check and the batch
extraction, and is cleared only once the send has fully resolved, so at
most one batch is ever in flight.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from .network import NetworkGate
from .queue import EventQueue
from .retry import RetryCoordinator
from .types import FlushOutcome, FlushTrigger, SkipReason, Transport


class FlushScheduler:
    def __init__(
        self,
        queue: EventQueue,
        sender: Transport,
        retry: RetryCoordinator,
        gate: NetworkGate,
        *,
        max_batch_size: int = 20,
        flush_interval: float = 5.0,
        on_outcome: Optional[Callable[[FlushOutcome], None]] = None,
    ):
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be > 0")
        if flush_interval <= 0:
            raise ValueError("flush_interval must be > 0")

        self._queue = queue
        self._sender = sender
        self._retry = retry
        self._gate = gate
        self.max_batch_size = max_batch_size
        self.flush_interval = flush_interval
        self._on_outcome = on_outcome

        self._sending = False
        self._stopped = False
        self._tick_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._loop: asyncio.AbstractEventLoop | None = None

        self._retry.set_on_due(self._on_retry_due)

    @property
    def sending(self) -> bool:
        with self._queue.lock:
            return self._sending

    @property
    def running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # ---------- lifecycle

    async def start(self) -> None:
        if self.running:
            return
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._gate.subscribe(self._on_network_restored)
        self._tick_task = asyncio.create_task(self._tick_loop(), name="telemetry-flush-tick")
        logger.debug(f"FlushScheduler started (interval={self.flush_interval}s)")

    async def stop(self) -> None:
        """Stop the tick and the retry timer; let an in-flight send finish."""
        self._stopped = True
        self._gate.unsubscribe(self._on_network_restored)
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        await self.wait_idle()
        # a send that failed while we waited may have armed a new timer
        self._retry.cancel()
        logger.debug("FlushScheduler stopped")

    # ---------- triggers

    def trigger(self, trigger: FlushTrigger = FlushTrigger.MANUAL) -> Optional[asyncio.Task]:
        """Fire-and-forget flush on the running loop. None once stopped."""
        if self._stopped:
            logger.debug(f"Flush ({trigger.value}) ignored: scheduler stopped")
            return None
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self.flush(trigger))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    async def wait_idle(self) -> None:
        """Wait until every spawned flush task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def flush(self, trigger: FlushTrigger = FlushTrigger.MANUAL) -> FlushOutcome:
        with self._queue.lock:
            skipped = self._skip_reason()
            if skipped is None:
                self._sending = True
                batch = self._queue.take_batch(self.max_batch_size)

        if skipped is not None:
            logger.debug(f"Flush ({trigger.value}) skipped: {skipped.value}")
            return self._report(FlushOutcome(trigger=trigger, skipped=skipped))

        logger.debug(f"Flush ({trigger.value}): sending {len(batch)} events")
        retry = None
        try:
            try:
                result = await self._sender.send(batch)
            except (asyncio.CancelledError, Exception):
                # the attempt never resolved: put the batch back untouched
                self._queue.requeue_front(batch)
                raise
            if not result.ok:
                retry = self._retry.handle_failure(batch)
        finally:
            with self._queue.lock:
                self._sending = False

        return self._report(FlushOutcome(trigger=trigger, result=result, retry=retry))

    # ---------- internals

    def _skip_reason(self) -> SkipReason | None:
        if self._sending:
            return SkipReason.BUSY
        if self._queue.size == 0:
            return SkipReason.EMPTY
        if not self._gate.is_reachable:
            return SkipReason.OFFLINE
        return None

    def _report(self, outcome: FlushOutcome) -> FlushOutcome:
        if self._on_outcome:
            self._on_outcome(outcome)
        return outcome

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Flush task failed: {type(exc).__name__}: {exc}")

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.trigger(FlushTrigger.TIMER)

    def _on_retry_due(self) -> None:
        self.trigger(FlushTrigger.RETRY)

    async def _on_network_restored(self) -> None:
        self.trigger(FlushTrigger.NETWORK)
