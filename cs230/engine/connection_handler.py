"""
Connection Handler - drives one client through the cs230 protocol.

States:
    AWAIT_HELLO -> PROBLEM_ROUND (x message_count) -> DONE
    ERRORED is absorbing and reachable from every state.

Any failure aborts the connection immediately; nothing is retried and the
stream is closed when the handler finishes.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import structlog

from cs230.config import settings
from cs230.engine.message_channel import MessageChannel
from cs230.engine.problem_generator import ProblemGenerator
from cs230.exceptions import ClientFailureError, ClientProtocolError
from cs230.models import Hello, TestParams, Transform, format_address

logger = structlog.get_logger()


def _peer_address(writer: asyncio.StreamWriter) -> str:
    # peername is None once the peer has reset the connection
    peer = writer.get_extra_info("peername")
    return format_address(peer) if peer else "unknown"


class HandlerState(str, Enum):
    """Protocol state of a connection."""
    AWAIT_HELLO = "await_hello"
    PROBLEM_ROUND = "problem_round"
    DONE = "done"
    ERRORED = "errored"


class ConnectionHandler:
    """
    Runs the protocol state machine over one accepted connection.

    run() returns the peer address on success and raises a TesterError
    (or OSError for transport failures) otherwise.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        params: TestParams,
        enforce_identity: bool = True,
        generator: Optional[ProblemGenerator] = None,
        address: Optional[str] = None,
    ):
        self.params = params
        self.expected_identity = params.expected_identity if enforce_identity else None
        self.address = address or _peer_address(writer)
        self.channel = MessageChannel(reader, writer, read_timeout_sec=settings.read_timeout_sec)
        self.state = HandlerState.AWAIT_HELLO
        self.rounds_completed = 0
        self._generator = generator

    async def run(self) -> str:
        log = logger.bind(client=self.address)
        try:
            await self._await_hello()
            log.debug("client_hello_accepted")

            # Fresh entropy-seeded generator per connection
            generator = self._generator or ProblemGenerator(self.params.max_message_len)
            self.state = HandlerState.PROBLEM_ROUND
            for _ in range(self.params.message_count):
                await self._problem_round(generator)
                self.rounds_completed += 1

            await self.channel.write_bye(settings.success_token)
            self.state = HandlerState.DONE
            log.info("client_passed", rounds=self.rounds_completed)
            return self.address
        except Exception as exc:
            self.state = HandlerState.ERRORED
            log.info(
                "client_connection_aborted",
                rounds=self.rounds_completed,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            await self.channel.close()

    async def _await_hello(self) -> None:
        message = await self.channel.read_message()

        if isinstance(message, Transform):
            raise ClientProtocolError("Client did not send a HELLO message")

        if self.expected_identity is not None and message.identity != self.expected_identity:
            raise ClientProtocolError(
                "Client sent the wrong email address in HELLO message "
                f"(expected: {self.expected_identity}; got {message.identity})",
                details={"expected": self.expected_identity, "received": message.identity},
            )

    async def _problem_round(self, generator: ProblemGenerator) -> None:
        problem = generator.generate()
        await self.channel.write_problem(problem.cipher, problem.plaintext)

        message = await self.channel.read_message()
        if isinstance(message, Hello):
            raise ClientProtocolError("Client re-sent HELLO message")

        if message.result != problem.expected:
            raise ClientFailureError(
                "Client failed to decrypt a message",
                cipher=problem.cipher.as_string(),
                plaintext=problem.plaintext,
                expected=problem.expected,
            )
