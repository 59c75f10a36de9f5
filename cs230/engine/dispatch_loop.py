"""
Dispatch Loop - owns the listening socket and schedules connection handlers.

Two modes, selected by TestParams.stop_at_first:

- Single-shot: accept exactly one connection, run its handler to completion
  with the configured identity check, and return the outcome.
- Continuous: never returns on its own. Each iteration drains every pending
  accept (emitting ClientConnection and spawning a handler task per client),
  reaps finished handlers onto the result channel, then waits for listener
  readiness or a handler completion. Any accept error other than would-block
  is fatal: all handlers are cancelled and ServerFatalError is raised.

Connection-scoped errors never escape their handler; only fatal errors end
the loop.
"""
from __future__ import annotations

import asyncio
import socket
from dataclasses import dataclass
from typing import List, NoReturn, Optional, Tuple

import structlog

from cs230.config import settings
from cs230.engine.connection_handler import ConnectionHandler
from cs230.engine.result_channel import ResultChannel
from cs230.exceptions import (
    ChannelClosedError,
    ClientFailureError,
    ProtocolError,
    ServerFatalError,
    TransportError,
)
from cs230.models import (
    ClientCheckFailure,
    ClientConnection,
    ClientProtocolFailure,
    ClientSuccess,
    ConnectionIOFailure,
    InternalTaskFailure,
    Outcome,
    ServerFatal,
    TestParams,
    format_address,
)

logger = structlog.get_logger()

LISTEN_BACKLOG = 128


def classify_failure(exc: BaseException) -> Outcome:
    """Map a handler failure onto its outcome variant."""
    if isinstance(exc, ClientFailureError):
        return ClientCheckFailure(
            text=exc.message,
            cipher=exc.cipher,
            plaintext=exc.plaintext,
            expected=exc.expected,
        )
    if isinstance(exc, ProtocolError):
        return ClientProtocolFailure(text=exc.message)
    if isinstance(exc, TransportError):
        return ConnectionIOFailure(text=exc.message)
    if isinstance(exc, OSError):
        return ConnectionIOFailure(text=str(exc) or type(exc).__name__)
    if isinstance(exc, ServerFatalError):
        return ServerFatal(text=exc.message)
    # Anything else is a bug on our side, not the client's
    return InternalTaskFailure(text=f"{type(exc).__name__}: {exc}")


def task_outcome(task: asyncio.Task) -> Outcome:
    """Outcome of a finished handler task."""
    if task.cancelled():
        return InternalTaskFailure(text="Handler task was cancelled")
    exc = task.exception()
    if exc is not None:
        return classify_failure(exc)
    return ClientSuccess(address=task.result())


def _mark_ready(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class TesterServer:
    """
    cs230 conformance server.

    Example usage:
        server = TesterServer(params)
        host, port = server.bind()
        outcome = await server.serve_once()
    """

    def __init__(
        self,
        params: TestParams,
        channel: Optional[ResultChannel] = None,
        host: Optional[str] = None,
    ):
        self.params = params
        self.channel = channel or ResultChannel()
        self.host = host or settings.bind_host
        self._sock: Optional[socket.socket] = None

    @property
    def address(self) -> Tuple[str, int]:
        if self._sock is None:
            raise ServerFatalError("Server is not bound")
        host, port = self._sock.getsockname()[:2]
        return host, port

    def bind(self) -> Tuple[str, int]:
        """
        Bind an ephemeral port and start listening.

        Returns:
            (host, port) actually bound

        Raises:
            ServerFatalError: The listener could not be created
        """
        if self._sock is not None:
            return self.address

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self.host, 0))
            sock.listen(LISTEN_BACKLOG)
            sock.setblocking(False)
        except OSError as e:
            sock.close()
            raise ServerFatalError(
                f"Failed to bind listener on {self.host}",
                details={"error": str(e)},
            )

        self._sock = sock
        host, port = self.address
        logger.info("server_listening", host=host, port=port, mode=self.mode)
        return host, port

    @property
    def mode(self) -> str:
        return "once" if self.params.stop_at_first else "continuous"

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    async def run(self) -> Outcome:
        """Serve according to params.stop_at_first."""
        if self.params.stop_at_first:
            return await self.serve_once()
        await self.serve_forever()

    async def _serve_connection(
        self, conn: socket.socket, address: str, enforce_identity: bool
    ) -> str:
        try:
            reader, writer = await asyncio.open_connection(
                sock=conn, limit=settings.stream_limit_bytes
            )
        except BaseException:
            conn.close()
            raise
        try:
            handler = ConnectionHandler(
                reader,
                writer,
                self.params,
                enforce_identity=enforce_identity,
                address=address,
            )
        except BaseException:
            writer.close()
            raise
        return await handler.run()

    # Single-shot mode

    async def serve_once(self) -> Outcome:
        """
        Accept one connection and return its outcome.

        Raises:
            ServerFatalError: Bind or accept failed
        """
        self.bind()
        loop = asyncio.get_running_loop()
        try:
            while True:
                try:
                    conn, peer = await loop.sock_accept(self._sock)
                    break
                except ConnectionAbortedError:
                    # Peer reset while still queued in the backlog
                    logger.debug("client_aborted_before_accept")
                except OSError as e:
                    raise ServerFatalError(
                        "Failed to accept client connection", details={"error": str(e)}
                    )
        finally:
            self.close()

        address = format_address(peer)
        logger.info("client_connected", client=address)

        try:
            await self._serve_connection(conn, address, enforce_identity=True)
        except Exception as exc:
            outcome = classify_failure(exc)
        else:
            outcome = ClientSuccess(address=address)

        logger.info("single_shot_finished", client=address, outcome=outcome.kind.value)
        return outcome

    # Continuous mode

    async def serve_forever(self) -> NoReturn:
        """
        Serve clients concurrently until cancelled or a fatal error occurs.

        Raises:
            ServerFatalError: Accept failed or the result consumer disconnected
        """
        self.bind()
        active: List[asyncio.Task] = []
        try:
            while True:
                self._drain_accepts(active)
                self._reap(active)
                await self._wait_for_activity(active)
        except ServerFatalError as exc:
            logger.error("server_fatal_error", error=exc.message, active_handlers=len(active))
            await self._cancel_all(active)
            if not isinstance(exc, ChannelClosedError) and not self.channel.closed:
                self.channel.send(ServerFatal(text=exc.message))
            raise
        except asyncio.CancelledError:
            logger.info("server_cancelled", active_handlers=len(active))
            await self._cancel_all(active)
            raise
        finally:
            self.close()

    def _drain_accepts(self, active: List[asyncio.Task]) -> None:
        while True:
            try:
                conn, peer = self._sock.accept()
            except (BlockingIOError, InterruptedError):
                return
            except ConnectionAbortedError:
                logger.debug("client_aborted_before_accept")
                continue
            except OSError as e:
                raise ServerFatalError(
                    "Error encountered during listener loop", details={"error": str(e)}
                )

            address = format_address(peer)
            try:
                self.channel.send(ClientConnection(address=address))
            except ChannelClosedError:
                conn.close()
                raise

            logger.debug("client_connected", client=address, active_handlers=len(active) + 1)
            active.append(
                asyncio.create_task(
                    self._serve_connection(conn, address, enforce_identity=False),
                    name=f"cs230-handler-{address}",
                )
            )

    def _reap(self, active: List[asyncio.Task]) -> None:
        for task in [t for t in active if t.done()]:
            active.remove(task)
            self.channel.send(task_outcome(task))

    async def _wait_for_activity(self, active: List[asyncio.Task]) -> None:
        """Yield until the listener is readable, a handler finishes, or the poll interval passes."""
        loop = asyncio.get_running_loop()
        timeout = settings.dispatch_poll_interval_sec
        fd = self._sock.fileno()

        readable = loop.create_future()
        try:
            loop.add_reader(fd, _mark_ready, readable)
        except NotImplementedError:
            # Event loop without reader callbacks (Windows proactor)
            readable.cancel()
            if active:
                await asyncio.wait(active, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
            else:
                await asyncio.sleep(timeout)
            return

        try:
            await asyncio.wait(
                [readable, *active], timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            loop.remove_reader(fd)
            if not readable.done():
                readable.cancel()

    async def _cancel_all(self, active: List[asyncio.Task]) -> None:
        for task in active:
            task.cancel()
        if active:
            await asyncio.gather(*active, return_exceptions=True)
        active.clear()


@dataclass
class ServerHandle:
    """A running server: its task, bound address, and outcome channel."""

    server: TesterServer
    task: asyncio.Task
    address: Tuple[str, int]
    channel: ResultChannel

    def abort(self) -> None:
        self.task.cancel()


def start_server(params: TestParams, channel: Optional[ResultChannel] = None) -> ServerHandle:
    """
    Bind a server and schedule it on the running event loop.

    The bound address is available before any connection is accepted.
    In single-shot mode the task resolves to the Outcome; in continuous
    mode it only ends by cancellation or ServerFatalError.

    Raises:
        ServerFatalError: Bind failed
    """
    server = TesterServer(params, channel=channel)
    address = server.bind()
    task = asyncio.create_task(server.run(), name=f"cs230-server-{server.mode}")
    return ServerHandle(server=server, task=task, address=address, channel=server.channel)


async def run_once(
    message_count: int,
    max_message_len: int,
    expected_identity: Optional[str] = None,
) -> Outcome:
    """Serve exactly one client and return its outcome."""
    params = TestParams(
        message_count=message_count,
        max_message_len=max_message_len,
        stop_at_first=True,
        expected_identity=expected_identity,
    )
    handle = start_server(params)
    return await handle.task


def run_until_cancelled(message_count: int, max_message_len: int) -> ServerHandle:
    """Start continuous mode; outcomes arrive on the returned handle's channel."""
    params = TestParams(
        message_count=message_count,
        max_message_len=max_message_len,
        stop_at_first=False,
    )
    return start_server(params)
