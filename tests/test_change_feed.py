import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))

from analytics.change_feed import LocalChangeFeed
from analytics.models import ChangeEvent


def insert(table="responses", **row):
    return ChangeEvent(event="insert", table=table, new=row)


@pytest.mark.asyncio
async def test_publish_reaches_only_the_surveys_handlers():
    feed = LocalChangeFeed()
    seen = []

    async def on_a(event):
        seen.append(("a", event.new["id"]))

    async def on_b(event):
        seen.append(("b", event.new["id"]))

    await feed.subscribe("survey-a", on_a)
    await feed.subscribe("survey-b", on_b)

    delivered = await feed.publish("survey-a", insert(id="r1"))

    assert delivered == 1
    assert seen == [("a", "r1")]
    assert feed.registration_count() == 2
    assert feed.registration_count("survey-a") == 1


@pytest.mark.asyncio
async def test_events_delivered_in_publish_order():
    feed = LocalChangeFeed()
    seen = []

    async def handler(event):
        seen.append(event.new["id"])

    await feed.subscribe("survey-1", handler)
    for i in range(5):
        await feed.publish("survey-1", insert(id=f"r{i}"))

    assert seen == ["r0", "r1", "r2", "r3", "r4"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_block_others(caplog):
    feed = LocalChangeFeed()
    seen = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        seen.append(event.new["id"])

    await feed.subscribe("survey-1", broken)
    await feed.subscribe("survey-1", healthy)

    delivered = await feed.publish("survey-1", insert(id="r1"))

    assert delivered == 2
    assert seen == ["r1"]
    assert any(r.getMessage() == "handler failed" for r in caplog.records)


@pytest.mark.asyncio
async def test_publish_all_and_payloads():
    feed = LocalChangeFeed()
    seen = []

    async def handler(event):
        seen.append((event.table, event.event))

    await feed.subscribe("survey-a", handler)
    await feed.subscribe("survey-b", handler)

    delivered = await feed.publish_payload(None, {"eventType": "INSERT", "table": "answers", "new": {"response_id": "r1"}})

    assert delivered == 2
    assert seen == [("answers", "insert"), ("answers", "insert")]

    with pytest.raises(ValueError):
        await feed.publish_payload("survey-a", {"eventType": "INSERT"})


@pytest.mark.asyncio
async def test_unsubscribe_removes_handler():
    feed = LocalChangeFeed()
    seen = []

    async def handler(event):
        seen.append(event)

    handle = await feed.subscribe("survey-1", handler)
    await feed.unsubscribe(handle)
    await feed.unsubscribe(handle)  # unknown handles are ignored

    assert await feed.publish("survey-1", insert(id="r1")) == 0
    assert seen == []
    assert feed.registration_count() == 0
