from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence


@dataclass
class QueuedEvent:
    """Queue envelope around a producer payload.

    ``retry_count`` belongs to the engine and is never put on the wire.
    """

    payload: Any
    retry_count: int = 0


class DropReason(str, Enum):
    OVERFLOW = "queue_overflow"
    MAX_RETRIES = "max_retries_exceeded"


class SkipReason(str, Enum):
    BUSY = "busy"
    EMPTY = "empty"
    OFFLINE = "offline"


class FlushTrigger(str, Enum):
    TIMER = "timer"
    RETRY = "retry"
    NETWORK = "network"
    MANUAL = "manual"
    SHUTDOWN = "shutdown"


@dataclass(frozen=True)
class SendResult:
    """Outcome of exactly one POST of one batch."""

    ok: bool
    batch_size: int
    status_code: int | None = None
    error: str | None = None
    latency_ms: float = 0.0


@dataclass(frozen=True)
class RetryDecision:
    survivors: list[QueuedEvent]
    dropped: list[QueuedEvent]
    delay_ms: int
    max_retry_count: int


@dataclass(frozen=True)
class FlushOutcome:
    """What one flush trigger did: skipped, or sent (and maybe rescheduled)."""

    trigger: FlushTrigger
    skipped: SkipReason | None = None
    result: SendResult | None = None
    retry: RetryDecision | None = None

    @property
    def attempted(self) -> bool:
        return self.skipped is None

    @property
    def delivered(self) -> int:
        if self.result is not None and self.result.ok:
            return self.result.batch_size
        return 0


class Transport(Protocol):
    """One-shot batch transport (HTTP in production, fakes in tests)."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, batch: Sequence[QueuedEvent]) -> SendResult: ...


DropCallback = Callable[[QueuedEvent, DropReason], None]
RestoreListener = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class EngineHealth:
    engine_id: str
    running: bool
    queue_size: int
    capacity: int
    sending: bool
    reachable: bool
    retry_pending: bool
    counters: dict[str, int] = field(default_factory=dict)
