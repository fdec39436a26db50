"""
Unit tests for TelemetryEngine.
"""

import asyncio
import json
import threading

import httpx
import pytest

from telemetry_relay.delivery import (
    BatchSender,
    DeadLetterQueue,
    DeliveryBus,
    DeliverySettings,
    DropReason,
    NetworkGate,
    SkipReason,
    TelemetryEngine,
)
from telemetry_relay.errors import EngineNotRunning
from telemetry_relay.events import EventType, TelemetryEvent


def make_event(n: int) -> TelemetryEvent:
    return TelemetryEvent(
        viewer_id="viewer-1",
        session_id="session-1",
        event_type=EventType.PLAY,
        timestamp=1_700_000_000_000 + n,
        playback_position_sec=float(n),
    )


@pytest.mark.asyncio
async def test_submit_and_drain(fake_sender):
    bus = DeliveryBus()
    async with TelemetryEngine(
        sender=fake_sender, max_batch_size=10, flush_interval_ms=50, bus=bus
    ) as engine:
        for i in range(25):
            engine.record(make_event(i))
        await asyncio.sleep(0.3)
        h = engine.health()
        assert h.running
        assert h.capacity == 1000

    assert sum(len(b) for b in fake_sender.batches) == 25
    # delivery order matches record order
    flat = [e.timestamp for b in fake_sender.batches for e in b]
    assert flat == sorted(flat)
    assert engine.health().counters["delivered"] == 25
    assert not fake_sender.started


@pytest.mark.asyncio
async def test_overflow_drop_published(fake_sender):
    bus = DeliveryBus()
    notices = []

    async def on_drop(notice):
        notices.append(notice)

    bus.subscribe(on_drop)
    engine = TelemetryEngine(sender=fake_sender, max_queue_size=3, bus=bus)
    await engine.start()

    for i in range(4):
        engine.record(make_event(i))
    await asyncio.sleep(0)

    assert engine.queue.size == 3
    assert len(notices) == 1
    assert notices[0].reason is DropReason.OVERFLOW
    assert notices[0].event["timestamp"] == 1_700_000_000_000
    assert notices[0].event["eventType"] == "PLAY"
    await engine.stop(drain=False)


@pytest.mark.asyncio
async def test_max_retries_drop_published(sender_factory):
    sender = sender_factory(default_ok=False)
    bus = DeliveryBus()
    notices = []

    async def on_drop(notice):
        notices.append(notice)

    bus.subscribe(on_drop)
    engine = TelemetryEngine(
        sender=sender,
        max_batch_size=2,
        max_retries=1,
        backoff_base_ms=10,
        flush_interval_ms=60_000,
        bus=bus,
    )
    await engine.start()
    engine.record({"id": "E1"})
    engine.record({"id": "E2"})

    first = await engine.flush()
    assert not first.result.ok
    await asyncio.sleep(0.1)  # retry timer fires, second failure drops both

    assert engine.queue.size == 0
    assert [n.event["id"] for n in notices] == ["E1", "E2"]
    assert all(n.reason is DropReason.MAX_RETRIES and n.retry_count == 2 for n in notices)
    assert len(sender.batches) == 2
    assert engine.health().counters["dropped"] == 2
    await engine.stop(drain=False)


@pytest.mark.asyncio
async def test_flush_requires_start(fake_sender):
    engine = TelemetryEngine(sender=fake_sender, bus=DeliveryBus())
    engine.record({"a": 1})
    with pytest.raises(EngineNotRunning):
        await engine.flush()


@pytest.mark.asyncio
async def test_offline_then_restored(fake_sender):
    gate = NetworkGate(reachable=False)
    engine = TelemetryEngine(sender=fake_sender, gate=gate, bus=DeliveryBus(), flush_interval_ms=60_000)
    await engine.start()
    engine.record({"a": 1})

    outcome = await engine.flush()
    assert outcome.skipped is SkipReason.OFFLINE
    assert engine.queue.size == 1

    await gate.set_reachable(True)
    await engine.scheduler.wait_idle()

    assert engine.queue.size == 0
    assert fake_sender.batches == [[{"a": 1}]]
    await engine.stop()


@pytest.mark.asyncio
async def test_stop_drains_in_batches(fake_sender):
    engine = TelemetryEngine(sender=fake_sender, max_batch_size=4, flush_interval_ms=60_000, bus=DeliveryBus())
    await engine.start()
    engine.record_many({"n": i} for i in range(10))

    await engine.stop(drain=True, timeout=2.0)

    assert [len(b) for b in fake_sender.batches] == [4, 4, 2]
    assert not engine.running


@pytest.mark.asyncio
async def test_stop_drain_stops_on_failure(sender_factory):
    sender = sender_factory(default_ok=False)
    engine = TelemetryEngine(sender=sender, flush_interval_ms=60_000, bus=DeliveryBus())
    await engine.start()
    engine.record({"a": 1})

    await engine.stop(drain=True, timeout=2.0)

    assert len(sender.batches) == 1
    assert engine.queue.size == 1
    assert not engine.health().retry_pending


@pytest.mark.asyncio
async def test_record_from_threads(fake_sender):
    bus = DeliveryBus()
    notices = []

    async def on_drop(notice):
        notices.append(notice)

    bus.subscribe(on_drop)
    engine = TelemetryEngine(sender=fake_sender, max_queue_size=10, flush_interval_ms=60_000, bus=bus)
    await engine.start()

    def produce():
        for i in range(20):
            engine.record({"n": i})

    threads = [threading.Thread(target=produce) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    await asyncio.sleep(0.05)

    assert engine.queue.size == 10
    assert len(notices) == 30
    assert engine.health().counters["recorded"] == 40
    await engine.stop(drain=False)


def test_endpoint_required():
    with pytest.raises(ValueError):
        TelemetryEngine(bus=DeliveryBus())


def test_from_settings(fresh_bus, tmp_path):
    cfg = DeliverySettings(
        endpoint="http://localhost:3000/telemetry",
        max_queue_size=7,
        max_batch_size=3,
        flush_interval_ms=250,
        engine_id="player",
        dlq_path=str(tmp_path / "dlq.ndjson"),
    )
    engine = TelemetryEngine.from_settings(cfg)

    assert engine.engine_id == "player"
    assert engine.queue.capacity == 7
    assert engine.scheduler.max_batch_size == 3
    assert engine.scheduler.flush_interval == 0.25
    assert engine.dlq.path == tmp_path / "dlq.ndjson"
    # dead-lettering engines get a bus of their own
    assert engine.bus is not fresh_bus
    assert fresh_bus.subscriber_count == 0


def test_from_settings_without_dlq_uses_shared_bus(fresh_bus):
    engine = TelemetryEngine.from_settings(DeliverySettings(endpoint="http://localhost:3000/telemetry"))
    assert engine.bus is fresh_bus
    assert engine.dlq is None


@pytest.mark.asyncio
async def test_dead_letter_files_are_per_engine(fresh_bus, tmp_path, sender_factory):
    def build(engine_id):
        cfg = DeliverySettings(
            endpoint="http://localhost:3000/telemetry",
            engine_id=engine_id,
            max_queue_size=1,
            flush_interval_ms=60_000,
            dlq_path=str(tmp_path / f"{engine_id}.ndjson"),
        )
        return TelemetryEngine.from_settings(cfg, sender=sender_factory())

    a, b = build("a"), build("b")
    await a.start()
    await b.start()

    a.record({"n": 1})
    a.record({"n": 2})  # evicts n=1

    await a.stop(drain=False)
    await b.stop(drain=False)

    (rec,) = await a.dlq.replay(10)
    assert rec.reason == "queue_overflow"
    assert rec.events == [{"n": 1}]
    assert rec.metadata["engine_id"] == "a"
    assert await b.dlq.replay(10) == []
    assert a.bus.subscriber_count == 0
    assert b.bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_shared_bus_scopes_dead_letters_by_engine(tmp_path, sender_factory):
    bus = DeliveryBus()
    a = TelemetryEngine(
        sender=sender_factory(), bus=bus, engine_id="a", max_queue_size=1,
        dlq=DeadLetterQueue(tmp_path / "a.ndjson"),
    )
    b = TelemetryEngine(
        sender=sender_factory(), bus=bus, engine_id="b", max_queue_size=1,
        dlq=DeadLetterQueue(tmp_path / "b.ndjson"),
    )
    await a.start()
    await b.start()
    assert bus.subscriber_count == 2

    b.record({"n": 1})
    b.record({"n": 2})
    await a.stop(drain=False)
    await b.stop(drain=False)

    assert await a.dlq.replay(10) == []
    assert [r.events for r in await b.dlq.replay(10)] == [[{"n": 1}]]
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_unencodable_event_is_dropped_and_queue_keeps_moving():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    bus = DeliveryBus()
    notices = []

    async def on_drop(notice):
        notices.append(notice)

    bus.subscribe(on_drop)
    engine = TelemetryEngine(
        sender=BatchSender("http://localhost:3000/telemetry", client=client),
        max_batch_size=1,
        max_retries=1,
        backoff_base_ms=10,
        flush_interval_ms=60_000,
        bus=bus,
    )
    await engine.start()
    engine.record(("tuple", "payload"))
    engine.record({"ok": 1})

    first = await engine.flush()
    assert not first.result.ok
    await asyncio.sleep(0.2)  # retry drops the tuple, next retry delivers

    assert engine.queue.size == 0
    assert seen == [[{"ok": 1}]]
    assert [n.reason for n in notices] == [DropReason.MAX_RETRIES]
    counters = engine.health().counters
    assert counters["dropped"] == 1
    assert counters["delivered"] == 1
    await engine.stop(drain=False)
    await client.aclose()
