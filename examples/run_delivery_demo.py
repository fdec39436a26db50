"""
Demo: playback telemetry delivery against a flaky ingestion endpoint.

Starts a mock ingestion server that rejects every third POST, feeds a
simulated playback session into a TelemetryEngine, takes the network down
for a moment, and shows retries, offline skips and the final delivery.

Requires:
- aiohttp installed (pip install telemetry-relay[demo])
"""

import asyncio

from aiohttp import web
from loguru import logger
from prometheus_client import start_http_server

from telemetry_relay import DeliveryBus, NetworkGate, PlaybackSession, TelemetryEngine

received = []
posts = {"n": 0}


async def ingest_handler(request):
    """Mock ingestion endpoint: accepts a JSON array, fails every third call."""
    posts["n"] += 1
    batch = await request.json()
    if posts["n"] % 3 == 0:
        logger.warning(f"💥 Mock server rejecting POST #{posts['n']} ({len(batch)} events)")
        return web.json_response({"error": "insert_failed"}, status=500)

    received.extend(batch)
    logger.info(f"📥 Stored {len(batch)} events (total {len(received)})")
    return web.json_response({"ok": True})


async def run_mock_server():
    app = web.Application()
    app.router.add_post("/telemetry", ingest_handler)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "localhost", 8766)
    await site.start()

    logger.info("🌐 Mock ingestion server at http://localhost:8766/telemetry")
    return runner


async def main():
    start_http_server(8001)
    logger.info("📊 Prometheus metrics available at http://localhost:8001/metrics")

    server = await run_mock_server()
    bus = DeliveryBus()

    async def on_drop(notice):
        logger.warning(f"🗑️  Dropped {notice.event.get('eventType')} ({notice.reason.value})")

    bus.subscribe(on_drop)
    gate = NetworkGate()

    try:
        async with TelemetryEngine(
            "http://localhost:8766/telemetry",
            flush_interval_ms=200,
            max_batch_size=5,
            max_queue_size=50,
            max_retries=3,
            backoff_base_ms=100,
            gate=gate,
            bus=bus,
            engine_id="demo",
        ) as engine:
            session = PlaybackSession("demo-viewer", engine.record, position=lambda: 0.0)

            logger.info("Phase 1: normal playback")
            session.quality_switched(bitrate_bps=1_500_000, width=854, height=480)
            session.play()
            for _ in range(6):
                session.buffering_started()
                await asyncio.sleep(0.05)
                session.buffering_ended()
            await asyncio.sleep(1.0)

            logger.info("Phase 2: network down, events keep queueing")
            await gate.set_reachable(False)
            session.pause()
            session.quality_switched(bitrate_bps=4_000_000, width=1920, height=1080)
            session.play()
            await asyncio.sleep(0.6)
            logger.info(f"Queue while offline: {engine.queue.size}")

            logger.info("Phase 3: network back")
            await gate.set_reachable(True)
            await asyncio.sleep(1.5)

            h = engine.health()
            logger.info(
                f"Health: queue={h.queue_size}/{h.capacity} "
                f"retry_pending={h.retry_pending} counters={h.counters}"
            )

        logger.info(f"✅ Demo complete, server stored {len(received)} events")
    finally:
        await server.cleanup()
        logger.info("🛑 Mock server stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("⚠️  Interrupted")
