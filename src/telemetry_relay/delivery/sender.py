"""
HTTP batch sender.

Performs exactly one POST per batch and classifies the outcome. A 2xx
response is success; any other status, or any transport error (timeout,
refused connection, DNS failure), is a failure. The sender never raises
for backend problems: it returns a failed SendResult and lets the
RetryCoordinator decide what happens next. A payload that cannot be
encoded counts as a failed attempt too, so it is eventually dropped
instead of blocking the queue.
"""

from __future__ import annotations

import time
from typing import Any, Mapping, Optional, Sequence

import httpx
from loguru import logger

from ..errors import EngineNotRunning, SendFailure
from .types import QueuedEvent, SendResult


def coerce_payload(payload: Any) -> dict:
    """Wire form of one event: pydantic model, mapping, or plain object."""
    if hasattr(payload, "model_dump"):
        return payload.model_dump(by_alias=True, exclude_none=True, mode="json")
    if isinstance(payload, Mapping):
        return {k: v for k, v in payload.items() if v is not None}
    return {k: v for k, v in vars(payload).items() if v is not None}


def encode_batch(batch: Sequence[QueuedEvent]) -> list[dict]:
    """JSON array body for a batch. Retry bookkeeping stays out of it."""
    return [coerce_payload(item.payload) for item in batch]


class BatchSender:
    """Posts batches to the ingestion endpoint with httpx.

    Example:
        sender = BatchSender("http://localhost:3000/telemetry")
        await sender.start()
        result = await sender.send(batch)
        await sender.stop()
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        headers: Optional[Mapping[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not endpoint:
            raise ValueError("endpoint required")
        self.endpoint = endpoint
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client
        self._owns_client = client is None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=self.headers)
        self._started = True
        logger.debug(f"BatchSender started (endpoint={self.endpoint})")

    async def stop(self) -> None:
        if not self._started:
            return
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._started = False
        logger.debug("BatchSender stopped")

    async def send(self, batch: Sequence[QueuedEvent]) -> SendResult:
        """One send attempt. Returns a SendResult, never raises for I/O errors."""
        if not batch:
            raise ValueError("batch must not be empty")
        if not self._started or self._client is None:
            raise EngineNotRunning("BatchSender.start() must be called before send()")

        t0 = time.perf_counter()
        try:
            # an unencodable payload fails the attempt like a transport error
            status = await self._post(encode_batch(batch))
        except SendFailure as exc:
            latency = (time.perf_counter() - t0) * 1000.0
            logger.error(f"Ingestion endpoint rejected batch of {len(batch)}: {exc}")
            return SendResult(
                ok=False,
                batch_size=len(batch),
                status_code=exc.status_code,
                error=str(exc),
                latency_ms=latency,
            )
        except Exception as exc:  # noqa: BLE001
            latency = (time.perf_counter() - t0) * 1000.0
            logger.error(f"Network send failed: {type(exc).__name__}: {exc}")
            return SendResult(
                ok=False,
                batch_size=len(batch),
                error=f"{type(exc).__name__}: {exc}",
                latency_ms=latency,
            )

        latency = (time.perf_counter() - t0) * 1000.0
        logger.info(f"Sent batch of {len(batch)} events ({latency:.0f}ms)")
        return SendResult(ok=True, batch_size=len(batch), status_code=status, latency_ms=latency)

    async def _post(self, body: list[dict]) -> int:
        response = await self._client.post(self.endpoint, json=body)
        if not 200 <= response.status_code < 300:
            raise SendFailure(response.status_code, (response.text or "")[:200] or None)
        return response.status_code
