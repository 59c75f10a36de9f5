"""
Tests for ResultChannel.
"""
import asyncio

import pytest

from cs230.engine.result_channel import ResultChannel
from cs230.exceptions import ChannelClosedError, ServerFatalError
from cs230.models import ClientConnection, ClientSuccess


class TestResultChannel:
    @pytest.mark.asyncio
    async def test_preserves_send_order(self):
        channel = ResultChannel()
        sent = [ClientConnection(address=f"h:{i}") for i in range(5)]
        for outcome in sent:
            channel.send(outcome)

        assert channel.qsize() == 5
        assert [await channel.receive() for _ in sent] == sent

    @pytest.mark.asyncio
    async def test_try_receive_empty(self):
        channel = ResultChannel()
        assert channel.try_receive() is None

        channel.send(ClientSuccess(address="h:1"))
        assert channel.try_receive() == ClientSuccess(address="h:1")
        assert channel.try_receive() is None

    @pytest.mark.asyncio
    async def test_send_never_blocks(self):
        channel = ResultChannel()
        for i in range(10_000):
            channel.send(ClientConnection(address=f"h:{i}"))
        assert channel.qsize() == 10_000

    @pytest.mark.asyncio
    async def test_send_after_close_is_fatal(self):
        channel = ResultChannel()
        channel.send(ClientSuccess(address="h:1"))
        channel.close()

        assert channel.closed
        assert channel.qsize() == 0
        with pytest.raises(ChannelClosedError) as exc_info:
            channel.send(ClientSuccess(address="h:2"))
        assert isinstance(exc_info.value, ServerFatalError)

    @pytest.mark.asyncio
    async def test_receive_waits_for_producer(self):
        channel = ResultChannel()

        async def produce_later():
            await asyncio.sleep(0.01)
            channel.send(ClientSuccess(address="h:1"))

        asyncio.create_task(produce_later())
        outcome = await asyncio.wait_for(channel.receive(), 1.0)

        assert outcome == ClientSuccess(address="h:1")

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        channel = ResultChannel()
        for i in range(3):
            channel.send(ClientConnection(address=f"h:{i}"))

        received = []
        async for outcome in channel:
            received.append(outcome)
            if len(received) == 3:
                break

        assert [o.address for o in received] == ["h:0", "h:1", "h:2"]

    @pytest.mark.asyncio
    async def test_close_ends_waiting_iteration(self):
        channel = ResultChannel()
        received = []

        async def consume():
            async for outcome in channel:
                received.append(outcome)

        consumer = asyncio.create_task(consume())
        channel.send(ClientConnection(address="h:1"))
        await asyncio.sleep(0.01)
        channel.close()

        await asyncio.wait_for(consumer, 1.0)
        assert received == [ClientConnection(address="h:1")]

    @pytest.mark.asyncio
    async def test_close_wakes_blocked_receive(self):
        channel = ResultChannel()
        waiting = asyncio.create_task(channel.receive())
        await asyncio.sleep(0.01)
        channel.close()

        with pytest.raises(ChannelClosedError):
            await asyncio.wait_for(waiting, 1.0)
        with pytest.raises(ChannelClosedError):
            await asyncio.wait_for(channel.receive(), 1.0)
        assert channel.try_receive() is None
