"""
Tests for the publish/subscribe channel.
"""
import asyncio

import pytest

from opsdeck.pubsub import Broadcaster


class TestBroadcaster:
    def test_emit_reaches_subscribers_in_order(self):
        channel = Broadcaster("test")
        seen = []
        channel.subscribe(lambda v: seen.append(("a", v)))
        channel.subscribe(lambda v: seen.append(("b", v)))

        channel.emit(1)

        assert seen == [("a", 1), ("b", 1)]
        assert channel.subscriber_count == 2

    def test_unsubscribe(self):
        channel = Broadcaster()
        seen = []
        unsubscribe = channel.subscribe(seen.append)

        unsubscribe()
        unsubscribe()
        channel.emit(1)

        assert seen == []

    def test_failing_subscriber_is_isolated(self, caplog):
        channel = Broadcaster("test")
        seen = []

        def broken(value):
            raise RuntimeError("boom")

        channel.subscribe(broken)
        channel.subscribe(seen.append)
        channel.emit("x")

        assert seen == ["x"]
        assert "subscriber" in caplog.text

    async def test_async_subscriber_is_scheduled(self):
        channel = Broadcaster()
        seen = []

        async def handler(value):
            await asyncio.sleep(0)
            seen.append(value)

        channel.subscribe(handler)
        channel.emit(5)
        assert seen == []

        await channel.drain()
        assert seen == [5]

    async def test_stream(self):
        channel = Broadcaster()
        received = []

        async def consume():
            async for value in channel.stream():
                received.append(value)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0)
        channel.emit(1)
        channel.emit(2)
        channel.close()
        await asyncio.wait_for(task, 1)

        assert received == [1, 2]
        assert channel.subscriber_count == 0

    def test_closed(self):
        channel = Broadcaster("test")
        seen = []
        channel.subscribe(seen.append)

        channel.close()
        channel.emit(1)

        assert channel.closed
        assert seen == []
        with pytest.raises(RuntimeError, match="closed"):
            channel.subscribe(seen.append)
