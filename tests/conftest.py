"""
Pytest configuration and fixtures for telemetry-relay.

Provides cross-platform event loop configuration and shared test doubles.
"""

import asyncio
import sys
from typing import Sequence

import pytest

from telemetry_relay.delivery import QueuedEvent, SendResult, delivery_bus

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeSender:
    """Transport double: scripted outcomes, optional gate to hold a send open."""

    def __init__(self, outcomes: Sequence[bool] = (), default_ok: bool = True):
        self._outcomes = list(outcomes)
        self.default_ok = default_ok
        self.batches: list[list] = []
        self.release: asyncio.Event | None = None
        self.started = False
        self.in_flight = 0
        self.max_in_flight = 0

    def hold(self) -> asyncio.Event:
        """Make every send wait until the returned event is set."""
        self.release = asyncio.Event()
        return self.release

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.started = False

    async def send(self, batch: Sequence[QueuedEvent]) -> SendResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            self.batches.append([item.payload for item in batch])
            if self.release is not None:
                await self.release.wait()
            ok = self._outcomes.pop(0) if self._outcomes else self.default_ok
            return SendResult(ok=ok, batch_size=len(batch), status_code=200 if ok else 503)
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_sender():
    return FakeSender()


@pytest.fixture
def fresh_bus():
    """Clear singleton bus subscribers before and after each test."""
    bus = delivery_bus()
    bus._subs.clear()
    yield bus
    bus._subs.clear()


@pytest.fixture
def sender_factory():
    """FakeSender class, for tests that script outcomes."""
    return FakeSender
