"""Telemetry delivery engine

Producer -> EventQueue -> FlushScheduler -> BatchSender pipeline with:
- EventQueue (bounded, drop-oldest overflow)
- RetryCoordinator (per-event retry counts, exponential backoff, one retry timer)
- BatchSender (httpx POST of a JSON array, 2xx = delivered)
- FlushScheduler (periodic/retry/network triggers, single-flight sending)
- NetworkGate + ReachabilityProbe (skip flushes while offline)
- DeliveryBus drop notifications and NDJSON DeadLetterQueue
- Environment-based settings and Prometheus metrics
"""

from .types import (
    DropReason,
    EngineHealth,
    FlushOutcome,
    FlushTrigger,
    QueuedEvent,
    RetryDecision,
    SendResult,
    SkipReason,
    Transport,
)
from .queue import EventQueue
from .retry import RetryCoordinator, backoff_delay_ms
from .sender import BatchSender, encode_batch
from .network import NetworkGate, ReachabilityProbe
from .scheduler import FlushScheduler
from .feedback import DeliveryBus, DropNotice, delivery_bus
from .dlq import DeadLetterQueue, DLQRecord
from .settings import DeliverySettings
from .engine import TelemetryEngine

__all__ = [
    # types
    "QueuedEvent",
    "SendResult",
    "RetryDecision",
    "FlushOutcome",
    "EngineHealth",
    "DropReason",
    "SkipReason",
    "FlushTrigger",
    "Transport",
    # components
    "EventQueue",
    "RetryCoordinator",
    "backoff_delay_ms",
    "BatchSender",
    "encode_batch",
    "NetworkGate",
    "ReachabilityProbe",
    "FlushScheduler",
    "TelemetryEngine",
    "DeliverySettings",
    # diagnostics
    "DeliveryBus",
    "DropNotice",
    "delivery_bus",
    "DeadLetterQueue",
    "DLQRecord",
]
