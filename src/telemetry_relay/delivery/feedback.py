"""
Drop notifications for the delivery engine.

In-process pub/sub for events the engine gives up on: overflow evictions
and retry exhaustion. Subscribers can log, count, or dead-letter them
(see ``DeadLetterQueue.on_drop``).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

from loguru import logger

from .types import DropReason


@dataclass(frozen=True)
class DropNotice:
    """Immutable record of one permanently dropped event.

    Attributes:
        engine_id: Engine that dropped the event
        reason: Why it was dropped (overflow or retry exhaustion)
        retry_count: Failed send attempts the event went through
        event: Wire form of the dropped event
    """

    engine_id: str
    reason: DropReason
    retry_count: int
    event: dict[str, Any]


class DropSubscriber(Protocol):
    async def __call__(self, notice: DropNotice) -> None: ...


class DeliveryBus:
    """Best-effort async fan-out of DropNotices.

    A subscription can be scoped to one engine id, so several engines may
    share a bus while each dead-letter file only sees its own engine's
    drops. One subscriber's failure does not affect the others.
    """

    def __init__(self) -> None:
        # (callback, engine_id or None for every engine)
        self._subs: list[tuple[DropSubscriber, Optional[str]]] = []

    def subscribe(self, callback: DropSubscriber, engine_id: Optional[str] = None) -> None:
        entry = (callback, engine_id)
        if entry not in self._subs:
            self._subs.append(entry)
            scope = engine_id or "*"
            logger.debug(f"Drop subscriber added for {scope} (total: {len(self._subs)})")

    def unsubscribe(self, callback: DropSubscriber, engine_id: Optional[str] = None) -> None:
        """No-op if callback was never subscribed with that scope."""
        entry = (callback, engine_id)
        if entry in self._subs:
            self._subs.remove(entry)
            logger.debug(f"Drop subscriber removed (total: {len(self._subs)})")

    def wants(self, engine_id: str) -> bool:
        """True if any subscriber would receive a notice from engine_id."""
        return any(scope is None or scope == engine_id for _, scope in self._subs)

    async def publish(self, notice: DropNotice) -> None:
        targets = [cb for cb, scope in self._subs if scope is None or scope == notice.engine_id]
        for callback in targets:
            try:
                await callback(notice)
            except Exception as exc:
                logger.debug(f"Drop subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)


_bus: Optional[DeliveryBus] = None


def delivery_bus() -> DeliveryBus:
    """Process-wide DeliveryBus used by engines that are not given one."""
    global _bus
    if _bus is None:
        _bus = DeliveryBus()
        logger.debug("DeliveryBus singleton initialized")
    return _bus
