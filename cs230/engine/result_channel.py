"""
Result Channel - carries outcomes from the dispatch loop to the caller.

Unbounded multi-producer / single-consumer queue. Producers never block.
Once the consumer closes its end there is no way left to report outcomes,
so every further send raises ChannelClosedError, which the dispatch loop
treats as fatal for the whole server.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

import structlog

from cs230.exceptions import ChannelClosedError
from cs230.models import Outcome

logger = structlog.get_logger()

# Left in the queue by close() so blocked consumers wake up
_CLOSED = object()


class ResultChannel:
    """Outcome queue shared by the dispatch loop (producer) and the caller (consumer)."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return 0 if self._closed else self._queue.qsize()

    def send(self, outcome: Outcome) -> None:
        """
        Enqueue an outcome without blocking.

        Raises:
            ChannelClosedError: The consumer has closed its end
        """
        if self._closed:
            raise ChannelClosedError(
                "Result consumer is disconnected", details={"outcome": str(outcome)}
            )
        self._queue.put_nowait(outcome)

    async def receive(self) -> Outcome:
        """
        Wait for the next outcome.

        Raises:
            ChannelClosedError: The channel was closed, before or while waiting
        """
        outcome = await self._queue.get()
        if outcome is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise ChannelClosedError("Result channel is closed")
        return outcome

    def try_receive(self) -> Optional[Outcome]:
        """Return the next outcome, or None if none is waiting."""
        if self._closed:
            return None
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        """Consumer side hang-up. Pending outcomes are discarded and waiting consumers return."""
        if self._closed:
            return
        self._closed = True
        dropped = self._queue.qsize()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)
        logger.debug("result_channel_closed", dropped=dropped)

    def __aiter__(self) -> AsyncIterator[Outcome]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Outcome]:
        while True:
            outcome = await self._queue.get()
            if outcome is _CLOSED:
                self._queue.put_nowait(_CLOSED)
                return
            yield outcome
