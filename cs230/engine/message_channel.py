"""
Message Channel - line framing for the cs230 wire protocol.

Client lines:
    cs230 HELLO <identity>
    cs230 <transformed-text>

Server lines (each terminated by "\\n\\0" and flushed immediately):
    cs230 STATUS <26-letter-cipher> <plaintext>
    cs230 <token> BYE
"""
import asyncio
from typing import Optional

import structlog

from cs230.exceptions import ClientProtocolError, ReceiveTimeoutError
from cs230.models import PROTOCOL_TAG, Cipher, ClientMessage, Hello, Transform

logger = structlog.get_logger()

LINE_TERMINATOR = b"\n\0"


def parse_client_line(line: str) -> ClientMessage:
    """
    Parse one client line into a ClientMessage.

    Raises:
        ClientProtocolError: Empty line or anything outside the client grammar
    """
    tokens = line.strip().split()

    if not tokens:
        raise ClientProtocolError("Client sent an empty message")

    if tokens[0] != PROTOCOL_TAG or len(tokens) not in (2, 3):
        raise ClientProtocolError(
            "Could not parse client message", details={"line": line.strip()}
        )

    if len(tokens) == 3:
        if tokens[1] != "HELLO":
            raise ClientProtocolError(
                "Could not parse client message", details={"line": line.strip()}
            )
        return Hello(tokens[2])

    return Transform(tokens[1])


class MessageChannel:
    """
    Wraps a connection's stream pair to read client messages and write server messages.

    Every write is drained before returning so the peer sees each message promptly.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_timeout_sec: Optional[float] = None,
    ):
        self._reader = reader
        self._writer = writer
        self.read_timeout_sec = read_timeout_sec

    async def read_message(self) -> ClientMessage:
        """
        Read and parse one newline-terminated line.

        Raises:
            ClientProtocolError: Malformed, oversized or non-UTF-8 line
            ReceiveTimeoutError: No line within read_timeout_sec (when configured)
            OSError: Underlying transport failure
        """
        try:
            raw = await asyncio.wait_for(self._reader.readline(), timeout=self.read_timeout_sec)
        except asyncio.TimeoutError:
            raise ReceiveTimeoutError(
                "Timed out waiting for client message",
                details={"timeout_sec": self.read_timeout_sec},
            )
        except ValueError as exc:
            # StreamReader.readline reports a line over the stream limit as ValueError
            raise ClientProtocolError("Client sent an oversized message", details={"error": str(exc)})

        try:
            line = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ClientProtocolError("Client sent a message that is not valid UTF-8")

        message = parse_client_line(line)
        logger.debug("client_message_received", message_type=type(message).__name__)
        return message

    async def _write_message(self, data: str) -> None:
        self._writer.write(data.strip().encode("utf-8") + LINE_TERMINATOR)
        await self._writer.drain()

    async def write_problem(self, cipher: Cipher, plaintext: str) -> None:
        """Send the client a problem. This represents a STATUS message."""
        await self._write_message(f"{PROTOCOL_TAG} STATUS {cipher.as_string()} {plaintext}")

    async def write_bye(self, token: str) -> None:
        """Send the client a BYE message."""
        await self._write_message(f"{PROTOCOL_TAG} {token} BYE")

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            # Peer already reset the connection
            logger.debug("channel_close_failed", error=str(e), error_type=type(e).__name__)
