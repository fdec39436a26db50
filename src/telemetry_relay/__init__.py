"""
Telemetry Relay

Reliable delivery of client playback telemetry to an HTTP ingestion
service: bounded queue, periodic batch flushing, exponential-backoff retry
and single-flight sending.

Usage:
    from telemetry_relay import TelemetryEngine, PlaybackSession

    async with TelemetryEngine("http://localhost:3000/telemetry") as engine:
        session = PlaybackSession("viewer-42", engine.record)
        session.play()
"""

from .delivery import (
    DeadLetterQueue,
    DeliveryBus,
    DeliverySettings,
    DropNotice,
    NetworkGate,
    TelemetryEngine,
)
from .errors import EngineNotRunning, SendFailure, TelemetryError
from .events import EventType, PlaybackSession, TelemetryEvent

__version__ = "0.1.0"
__all__ = [
    "TelemetryEngine",
    "DeliverySettings",
    "NetworkGate",
    "DeliveryBus",
    "DropNotice",
    "DeadLetterQueue",
    "TelemetryEvent",
    "EventType",
    "PlaybackSession",
    "TelemetryError",
    "SendFailure",
    "EngineNotRunning",
]
