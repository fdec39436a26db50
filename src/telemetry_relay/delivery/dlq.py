from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from loguru import logger

from .feedback import DropNotice


@dataclass
class DLQRecord:
    ts: float
    reason: str
    events: list[dict[str, Any]]
    metadata: dict[str, Any] = field(default_factory=dict)


class DeadLetterQueue:
    """Append-only NDJSON file of dropped telemetry events.

    One line per ``save`` call. Pass it to ``TelemetryEngine(dlq=...)`` to
    dead-letter everything that engine gives up on, then re-send later with
    ``telemetry-relay replay-dlq``.
    """

    def __init__(self, path: str | Path, *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def save(
        self,
        events: Sequence[Mapping[str, Any]],
        reason: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        rec = {
            "ts": time.time(),
            "reason": reason,
            "events": [dict(e) for e in events],
            "metadata": dict(metadata or {}),
        }
        line = json.dumps(rec, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)

    async def replay(self, max_records: int = 1000) -> list[DLQRecord]:
        """Read up to ``max_records`` records from the head of the file."""
        if not self.path.exists():
            return []
        return await asyncio.to_thread(self._read, max_records)

    async def on_drop(self, notice: DropNotice) -> None:
        """DeliveryBus subscriber."""
        await self.save(
            [notice.event],
            notice.reason.value,
            {"engine_id": notice.engine_id, "retry_count": notice.retry_count},
        )

    def _append(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)

    def _read(self, max_records: int) -> list[DLQRecord]:
        out: list[DLQRecord] = []
        with open(self.path, "r", encoding="utf-8") as f:
            for n, line in enumerate(f, start=1):
                if len(out) >= max_records:
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt DLQ line {n} in {self.path}")
                    continue
                out.append(
                    DLQRecord(
                        ts=float(obj.get("ts", 0.0)),
                        reason=str(obj.get("reason", "")),
                        events=list(obj.get("events", [])),
                        metadata=dict(obj.get("metadata", {})),
                    )
                )
        return out
