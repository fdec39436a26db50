"""
TelemetryEngine: the producer-facing delivery engine.

Owns one EventQueue, RetryCoordinator, BatchSender, FlushScheduler and
NetworkGate per instance; there is no module-level state apart from the
optional shared DeliveryBus.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Iterable, Optional

from loguru import logger

from ..errors import EngineNotRunning
from ..metrics.registry import metrics_registry as M
from .dlq import DeadLetterQueue
from .feedback import DeliveryBus, DropNotice, delivery_bus
from .network import NetworkGate, ReachabilityProbe
from .queue import EventQueue
from .retry import RetryCoordinator
from .scheduler import FlushScheduler
from .sender import BatchSender, coerce_payload
from .settings import DeliverySettings
from .types import (
    DropReason,
    EngineHealth,
    FlushOutcome,
    FlushTrigger,
    QueuedEvent,
    Transport,
)


class TelemetryEngine:
    """Bounded queue + periodic batch flush + backoff retry, single-flight.

    Example:
        async with TelemetryEngine("http://localhost:3000/telemetry") as engine:
            engine.record(event)       # never blocks, never raises
        # remaining events are drained on exit
    """

    def __init__(
        self,
        endpoint: str | None = None,
        *,
        flush_interval_ms: int = 5000,
        max_batch_size: int = 20,
        max_queue_size: int = 1000,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        max_backoff_ms: int | None = None,
        request_timeout: float = 10.0,
        sender: Optional[Transport] = None,
        gate: Optional[NetworkGate] = None,
        probe: Optional[ReachabilityProbe] = None,
        bus: Optional[DeliveryBus] = None,
        dlq: Optional[DeadLetterQueue] = None,
        engine_id: str = "default",
    ):
        if sender is None:
            if not endpoint:
                raise ValueError("endpoint required")
            sender = BatchSender(endpoint, timeout=request_timeout)

        self.engine_id = engine_id
        self._sender = sender
        self._gate = gate or NetworkGate()
        self._probe = probe
        self._bus = bus if bus is not None else delivery_bus()
        self._dlq = dlq

        self._queue = EventQueue(max_queue_size, on_drop=self._on_drop)
        self._retry = RetryCoordinator(
            self._queue,
            max_retries=max_retries,
            backoff_base_ms=backoff_base_ms,
            max_backoff_ms=max_backoff_ms,
            on_drop=self._on_drop,
        )
        self._scheduler = FlushScheduler(
            self._queue,
            self._sender,
            self._retry,
            self._gate,
            max_batch_size=max_batch_size,
            flush_interval=flush_interval_ms / 1000.0,
            on_outcome=self._on_outcome,
        )

        self._loop: asyncio.AbstractEventLoop | None = None
        self._running = False
        self._counters_lock = threading.Lock()
        self._counters = {"recorded": 0, "delivered": 0, "dropped": 0, "failed_sends": 0}
        self._publishing: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, settings: DeliverySettings | None = None, **overrides: Any
    ) -> "TelemetryEngine":
        """Build an engine (plus probe and DLQ, when configured) from settings."""
        cfg = settings or DeliverySettings()
        gate = overrides.pop("gate", None) or NetworkGate()
        probe = overrides.pop("probe", None)
        if probe is None and cfg.probe_url:
            probe = ReachabilityProbe(gate, cfg.probe_url, interval=cfg.probe_interval_s)

        kwargs: dict[str, Any] = dict(
            flush_interval_ms=cfg.flush_interval_ms,
            max_batch_size=cfg.max_batch_size,
            max_queue_size=cfg.max_queue_size,
            max_retries=cfg.max_retries,
            backoff_base_ms=cfg.backoff_base_ms,
            max_backoff_ms=cfg.max_backoff_ms,
            request_timeout=cfg.request_timeout_s,
            engine_id=cfg.engine_id,
            gate=gate,
            probe=probe,
        )
        if cfg.dlq_path:
            kwargs["dlq"] = DeadLetterQueue(cfg.dlq_path)
            # a dead-letter file belongs to this engine alone
            kwargs["bus"] = DeliveryBus()
        kwargs.update(overrides)
        return cls(cfg.endpoint, **kwargs)

    # ---------- accessors

    @property
    def queue(self) -> EventQueue:
        return self._queue

    @property
    def gate(self) -> NetworkGate:
        return self._gate

    @property
    def bus(self) -> DeliveryBus:
        return self._bus

    @property
    def dlq(self) -> Optional[DeadLetterQueue]:
        return self._dlq

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._running

    # ---------- lifecycle

    async def start(self) -> None:
        if self._running:
            return
        self._loop = asyncio.get_running_loop()
        await self._sender.start()
        if self._probe is not None:
            await self._probe.start()
        await self._scheduler.start()
        if self._dlq is not None:
            self._bus.subscribe(self._dlq.on_drop, engine_id=self.engine_id)
            logger.info(f"Dead-lettering dropped events to {self._dlq.path}")
        self._running = True
        logger.info(
            f"TelemetryEngine '{self.engine_id}' started "
            f"(capacity={self._queue.capacity}, batch={self._scheduler.max_batch_size})"
        )

    async def stop(self, drain: bool = True, timeout: float = 5.0) -> None:
        """Stop timers; optionally keep flushing until empty, a failure, or timeout."""
        if not self._running:
            return
        await self._scheduler.stop()

        if drain:
            try:
                await asyncio.wait_for(self._drain(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Drain timed out after {timeout}s")
        # a failed drain flush may have armed a retry timer
        self._retry.cancel()
        if self._publishing:
            await asyncio.gather(*list(self._publishing), return_exceptions=True)
        if self._dlq is not None:
            self._bus.unsubscribe(self._dlq.on_drop, engine_id=self.engine_id)

        if self._probe is not None:
            await self._probe.stop()
        await self._sender.stop()
        self._running = False

        left = self._queue.size
        if left:
            logger.warning(f"TelemetryEngine '{self.engine_id}' stopped with {left} undelivered events")
        else:
            logger.info(f"TelemetryEngine '{self.engine_id}' stopped")

    async def __aenter__(self) -> "TelemetryEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop(drain=True)

    # ---------- producer API

    def record(self, event: Any) -> None:
        """Queue one event. Safe from any thread; never blocks or raises."""
        self._queue.record(QueuedEvent(event))
        with self._counters_lock:
            self._counters["recorded"] += 1
        M.events_recorded_total.labels(self.engine_id).inc()
        M.queue_depth.labels(self.engine_id).set(self._queue.size)

    def record_many(self, events: Iterable[Any]) -> int:
        n = 0
        for event in events:
            self.record(event)
            n += 1
        return n

    async def flush(self) -> FlushOutcome:
        """Flush one batch now (subject to the same single-flight guard)."""
        if not self._running:
            raise EngineNotRunning("TelemetryEngine.start() must be called before flush()")
        return await self._scheduler.flush(FlushTrigger.MANUAL)

    def health(self) -> EngineHealth:
        with self._counters_lock:
            counters = dict(self._counters)
        return EngineHealth(
            engine_id=self.engine_id,
            running=self._running,
            queue_size=self._queue.size,
            capacity=self._queue.capacity,
            sending=self._scheduler.sending,
            reachable=self._gate.is_reachable,
            retry_pending=self._retry.pending,
            counters=counters,
        )

    # ---------- internals

    async def _drain(self) -> None:
        while self._queue.size and self._gate.is_reachable:
            outcome = await self._scheduler.flush(FlushTrigger.SHUTDOWN)
            if outcome.skipped is not None or not outcome.result.ok:
                break

    def _on_outcome(self, outcome: FlushOutcome) -> None:
        if outcome.skipped is not None:
            M.flush_skipped_total.labels(self.engine_id, outcome.skipped.value).inc()
            return

        result = outcome.result
        M.send_latency_ms.labels(self.engine_id).observe(result.latency_ms)
        if result.ok:
            M.flush_attempts_total.labels(self.engine_id, "ok").inc()
            M.events_delivered_total.labels(self.engine_id).inc(result.batch_size)
            with self._counters_lock:
                self._counters["delivered"] += result.batch_size
        else:
            M.flush_attempts_total.labels(self.engine_id, "failed").inc()
            with self._counters_lock:
                self._counters["failed_sends"] += 1
        M.queue_depth.labels(self.engine_id).set(self._queue.size)

    def _on_drop(self, item: QueuedEvent, reason: DropReason) -> None:
        """Diagnostic for QueueOverflow / MaxRetriesExceeded. Never raises."""
        with self._counters_lock:
            self._counters["dropped"] += 1
        M.events_dropped_total.labels(self.engine_id, reason.value).inc()
        if reason is DropReason.OVERFLOW:
            logger.warning(f"Queue full ({self._queue.capacity}), dropped oldest event")

        if not self._bus.wants(self.engine_id):
            return
        try:
            event = coerce_payload(item.payload)
        except TypeError:
            event = {"repr": repr(item.payload)}
        notice = DropNotice(self.engine_id, reason, item.retry_count, event)
        self._publish(notice)

    def _publish(self, notice: DropNotice) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop, drop notice not published ({notice.reason.value})")
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            task = loop.create_task(self._bus.publish(notice))
            self._publishing.add(task)
            task.add_done_callback(self._publishing.discard)
        else:
            asyncio.run_coroutine_threadsafe(self._bus.publish(notice), loop)
