import asyncio

import pytest

from chatty.errors import BackendError
from chatty.services.live_query import ChangeFeed, LiveQuery
from chatty.services.telemetry import get_counter


@pytest.mark.asyncio
async def test_live_query_yields_initial_snapshot_then_changes():
    feed = ChangeFeed()
    state = {"value": 1}

    async def fetch():
        return state["value"]

    async with LiveQuery(feed, ["topic"], fetch) as query:
        assert await query.__anext__() == 1

        state["value"] = 2
        feed.publish("topic")
        assert await query.__anext__() == 2


@pytest.mark.asyncio
async def test_changes_between_reads_coalesce():
    feed = ChangeFeed()
    calls = []

    async def fetch():
        calls.append(len(calls))
        return len(calls)

    query = LiveQuery(feed, ["topic"], fetch).start()
    await query.__anext__()

    feed.publish("topic")
    feed.publish("topic")
    feed.publish("topic")
    await query.__anext__()

    assert len(calls) == 2
    query.close()


@pytest.mark.asyncio
async def test_close_unwatches_and_ends_iteration():
    feed = ChangeFeed()

    async def fetch():
        return "snapshot"

    query = LiveQuery(feed, ["a", "b"], fetch).start()
    assert feed.watcher_count() == 2
    await query.__anext__()

    pending = asyncio.ensure_future(query.__anext__())
    await asyncio.sleep(0)
    query.close()

    with pytest.raises(StopAsyncIteration):
        await pending
    assert feed.watcher_count() == 0
    assert query.closed


@pytest.mark.asyncio
async def test_unrelated_topics_do_not_wake_query():
    feed = ChangeFeed()

    async def fetch():
        return "snapshot"

    query = LiveQuery(feed, ["mine"], fetch).start()
    await query.__anext__()

    feed.publish("theirs")
    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(query.__anext__(), timeout=0.05)
    query.close()


@pytest.mark.asyncio
async def test_backend_error_keeps_subscription_alive():
    feed = ChangeFeed()
    results = [BackendError("offline"), "recovered"]

    async def fetch():
        result = results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    query = LiveQuery(feed, ["topic"], fetch).start()
    pending = asyncio.ensure_future(query.__anext__())
    await asyncio.sleep(0)
    feed.publish("topic")

    assert await asyncio.wait_for(pending, timeout=1) == "recovered"
    assert get_counter("live_query_refresh_failures_total") == 1
    query.close()
