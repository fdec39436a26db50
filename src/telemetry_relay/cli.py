from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import httpx
import typer
from loguru import logger
from pydantic import ValidationError

from .delivery import DeadLetterQueue, DeliverySettings, NetworkGate, ReachabilityProbe, TelemetryEngine
from .utils import iter_ndjson

app = typer.Typer(help="telemetry-relay operational CLI")

# ---------------------------
# Common options
# ---------------------------


def endpoint_opt() -> str:
    return typer.Option(..., "--endpoint", envvar="TELEMETRY_ENDPOINT", help="Ingestion URL")


def batch_size_opt(default=20) -> int:
    return typer.Option(default, "--max-batch-size", help="Events per POST")


def retries_opt(default=3) -> int:
    return typer.Option(default, "--max-retries", help="Retries per event before dropping")


def backoff_opt(default=1000) -> int:
    return typer.Option(default, "--backoff-base-ms", help="First retry delay (doubles each time)")


def timeout_opt(default=30.0) -> float:
    return typer.Option(default, "--timeout", help="Seconds to wait for the final drain")


# ---------------------------
# Commands
# ---------------------------


@app.command("send-ndjson")
def send_ndjson(
    path: str = typer.Argument(..., help="NDJSON (or .ndjson.gz) file, one event per line"),
    endpoint: str = endpoint_opt(),
    max_batch_size: int = batch_size_opt(),
    max_retries: int = retries_opt(),
    backoff_base_ms: int = backoff_opt(),
    timeout: float = timeout_opt(),
    dlq: Optional[str] = typer.Option(None, "--dlq", help="Dead-letter file for dropped events"),
):
    """Record every event in PATH and deliver them, retrying with backoff."""
    summary = asyncio.run(
        _deliver(
            iter_ndjson(path),
            endpoint,
            max_batch_size=max_batch_size,
            max_retries=max_retries,
            backoff_base_ms=backoff_base_ms,
            timeout=timeout,
            dlq_path=dlq,
        )
    )
    typer.echo(json.dumps(summary, indent=2))
    if summary["remaining"]:
        raise typer.Exit(code=1)


@app.command("replay-dlq")
def replay_dlq(
    path: str = typer.Argument(..., help="Dead-letter NDJSON file"),
    endpoint: str = endpoint_opt(),
    max_records: int = typer.Option(1000, "--max-records"),
    max_batch_size: int = batch_size_opt(),
    timeout: float = timeout_opt(),
):
    """Re-send events previously written to a dead-letter file."""

    async def _run():
        recs = await DeadLetterQueue(path, mkdirs=False).replay(max_records)
        events = [e for r in recs for e in r.events]
        logger.info(f"Replaying {len(events)} events from {len(recs)} DLQ records")
        return await _deliver(events, endpoint, max_batch_size=max_batch_size, timeout=timeout)

    summary = asyncio.run(_run())
    typer.echo(json.dumps(summary, indent=2))
    if summary["remaining"]:
        raise typer.Exit(code=1)


@app.command("probe")
def probe(
    url: str = typer.Argument(..., help="URL to check"),
    timeout: float = typer.Option(2.0, "--timeout"),
):
    """One reachability check (status < 500 counts as reachable)."""

    async def _run() -> bool:
        async with httpx.AsyncClient(timeout=timeout) as client:
            return await ReachabilityProbe(NetworkGate(), url, client=client).check_once()

    ok = asyncio.run(_run())
    typer.echo(json.dumps({"url": url, "reachable": ok}, indent=2))
    if not ok:
        raise typer.Exit(code=1)


@app.command("show-settings")
def show_settings():
    """Print the effective TELEMETRY_* settings as JSON."""
    try:
        cfg = DeliverySettings()
    except ValidationError as e:
        logger.error(f"Invalid telemetry settings: {e}")
        sys.exit(1)
    typer.echo(json.dumps(cfg.model_dump(), indent=2))


# ---------------------------
# Helpers
# ---------------------------


async def _deliver(
    events,
    endpoint: str,
    *,
    max_batch_size: int = 20,
    max_retries: int = 3,
    backoff_base_ms: int = 1000,
    timeout: float = 30.0,
    dlq_path: Optional[str] = None,
) -> dict:
    events = list(events)
    engine = TelemetryEngine(
        endpoint,
        max_batch_size=max_batch_size,
        max_queue_size=max(len(events), 1),
        max_retries=max_retries,
        backoff_base_ms=backoff_base_ms,
        dlq=DeadLetterQueue(dlq_path) if dlq_path else None,
        engine_id="cli",
    )

    await engine.start()
    engine.record_many(events)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    try:
        while engine.queue.size and loop.time() < deadline:
            h = engine.health()
            # after a failure the engine's retry timer owns the next attempt
            if h.retry_pending or h.sending:
                await asyncio.sleep(0.05)
                continue
            await engine.flush()
    finally:
        await engine.stop(drain=False)

    h = engine.health()
    return {
        "recorded": h.counters["recorded"],
        "delivered": h.counters["delivered"],
        "dropped": h.counters["dropped"],
        "remaining": h.queue_size,
    }


if __name__ == "__main__":
    app()
