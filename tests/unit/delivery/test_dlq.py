"""
Unit tests for the dead-letter queue.
"""

import asyncio

import pytest

from telemetry_relay.delivery import DeadLetterQueue, DropNotice, DropReason


@pytest.mark.asyncio
async def test_save_and_replay(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq" / "events.ndjson")

    await dlq.save([{"eventType": "PLAY"}, {"eventType": "PAUSE"}], "max_retries_exceeded", {"k": "v"})
    await dlq.save([{"eventType": "BUFFER_START"}], "queue_overflow")

    recs = await dlq.replay(10)
    assert len(recs) == 2
    assert recs[0].reason == "max_retries_exceeded"
    assert recs[0].metadata == {"k": "v"}
    assert [e["eventType"] for e in recs[0].events] == ["PLAY", "PAUSE"]
    assert recs[1].metadata == {}


@pytest.mark.asyncio
async def test_replay_limit(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    for i in range(10):
        await dlq.save([{"n": i}], "queue_overflow")

    recs = await dlq.replay(5)
    assert [r.events[0]["n"] for r in recs] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_replay_missing_file(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "nonexistent.ndjson", mkdirs=False)
    assert await dlq.replay(10) == []


@pytest.mark.asyncio
async def test_corrupt_line_skipped(tmp_path):
    p = tmp_path / "dlq.ndjson"
    dlq = DeadLetterQueue(p)
    await dlq.save([{"n": 1}], "queue_overflow")
    with open(p, "a", encoding="utf-8") as f:
        f.write("{not json\n")
    await dlq.save([{"n": 2}], "queue_overflow")

    recs = await dlq.replay(10)
    assert [r.events[0]["n"] for r in recs] == [1, 2]


@pytest.mark.asyncio
async def test_on_drop_subscriber(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    notice = DropNotice("eng", DropReason.MAX_RETRIES, 4, {"eventType": "PLAY"})

    await dlq.on_drop(notice)

    (rec,) = await dlq.replay(10)
    assert rec.reason == "max_retries_exceeded"
    assert rec.events == [{"eventType": "PLAY"}]
    assert rec.metadata == {"engine_id": "eng", "retry_count": 4}


@pytest.mark.asyncio
async def test_concurrent_writes(tmp_path):
    dlq = DeadLetterQueue(tmp_path / "dlq.ndjson")
    await asyncio.gather(*[dlq.save([{"n": i}], "queue_overflow") for i in range(20)])
    recs = await dlq.replay(100)
    assert len(recs) == 20
