"""
Network reachability gate.

FlushScheduler consults ``is_reachable`` before touching the queue, so a
flush that starts while offline removes nothing. Restore listeners fire
only on the unreachable -> reachable transition.
"""

from __future__ import annotations

import asyncio
from typing import Optional

import httpx
from loguru import logger

from .types import RestoreListener


class NetworkGate:
    """Current reachability plus restore notifications.

    Example:
        gate = NetworkGate()
        gate.subscribe(on_restored)
        await gate.set_reachable(False)
        await gate.set_reachable(True)   # on_restored() awaited here
    """

    def __init__(self, reachable: bool = True) -> None:
        self._reachable = reachable
        self._listeners: list[RestoreListener] = []

    @property
    def is_reachable(self) -> bool:
        return self._reachable

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, callback: RestoreListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: RestoreListener) -> None:
        try:
            self._listeners.remove(callback)
        except ValueError:
            pass

    async def set_reachable(self, reachable: bool) -> None:
        """Update reachability; notify listeners when the network comes back."""
        was = self._reachable
        self._reachable = reachable
        if was == reachable:
            return

        if not reachable:
            logger.warning("Network unreachable, deferring telemetry flushes")
            return

        logger.info("Network restored")
        for callback in list(self._listeners):
            try:
                await callback()
            except Exception as exc:
                # one listener must not starve the others
                logger.debug(f"Restore listener error (ignored): {type(exc).__name__}: {exc}")


class ReachabilityProbe:
    """Polls a URL and drives a NetworkGate from the result.

    Any response below 500 counts as reachable; 5xx and transport errors
    count as unreachable.
    """

    def __init__(
        self,
        gate: NetworkGate,
        url: str,
        *,
        interval: float = 5.0,
        timeout: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self.gate = gate
        self.url = url
        self.interval = interval
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._task: asyncio.Task | None = None

    async def check_once(self) -> bool:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        try:
            response = await self._client.get(self.url)
            reachable = response.status_code < 500
        except httpx.HTTPError as exc:
            logger.debug(f"Reachability probe failed: {type(exc).__name__}: {exc}")
            reachable = False
        await self.gate.set_reachable(reachable)
        return reachable

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="reachability-probe")

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _run(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self.interval)
