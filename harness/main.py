"""
cs230 conformance tester command line

Modes:
1. once: serve a single client and exit 0 only if it passes
2. until-interrupt: serve clients concurrently and print every outcome
   until Ctrl-C
"""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import structlog
from pydantic import ValidationError

from cs230.config import settings
from cs230.engine.dispatch_loop import ServerHandle, start_server
from cs230.exceptions import ServerFatalError
from cs230.logging import setup_logging
from cs230.models import ClientCheckFailure, Outcome, TestParams
from harness.client_process import ClientProcess

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILED = 1


def _report(outcome: Outcome) -> int:
    if outcome.is_success:
        print(outcome)
        return EXIT_OK

    print(f"Test failed!\n{outcome}", file=sys.stderr)
    if isinstance(outcome, ClientCheckFailure):
        print(outcome.diagnostics(), file=sys.stderr)
    return EXIT_FAILED


async def _await_after_client_exit(handle: ServerHandle) -> Optional[Outcome]:
    try:
        return await asyncio.wait_for(handle.task, timeout=settings.client_exit_grace_sec)
    except asyncio.TimeoutError:
        return None


async def do_once(
    message_count: int,
    max_message_len: int,
    client_exec: Optional[Path],
    netid: str,
    hide_stderr: bool,
) -> int:
    """Run a single-shot test, optionally against a launched client."""
    params = TestParams(
        message_count=message_count,
        max_message_len=max_message_len,
        stop_at_first=True,
        expected_identity=netid if client_exec else None,
    )

    try:
        handle = start_server(params)
    except ServerFatalError as exc:
        print(f"Test failed!\n{exc.message}", file=sys.stderr)
        return EXIT_FAILED

    host, port = handle.address

    try:
        if client_exec is None:
            print(f"Server address at {host}:{port}")
            outcome = await handle.task
            return _report(outcome)

        client = ClientProcess(client_exec, netid, host, port, hide_stderr=hide_stderr)
        try:
            client.start()
        except OSError as exc:
            logger.error("client_launch_failed", executable=str(client_exec), error=str(exc))
            print(f"Test failed!\nCould not launch {client_exec}: {exc}", file=sys.stderr)
            return EXIT_FAILED

        try:
            code = await client.wait()
            print(f"Child process exited with code {code}")
            outcome = await _await_after_client_exit(handle)
        finally:
            await client.shutdown()

        if outcome is None:
            print("Test failed!\nClient exited before completing the test", file=sys.stderr)
            return EXIT_FAILED
        return _report(outcome)

    except ServerFatalError as exc:
        print(f"Test failed!\n{exc.message}", file=sys.stderr)
        return EXIT_FAILED
    finally:
        await _stop(handle)


async def _stop(handle: ServerHandle) -> None:
    if not handle.task.done():
        handle.abort()
        await asyncio.gather(handle.task, return_exceptions=True)


async def do_until_interrupt(message_count: int, max_message_len: int) -> int:
    """Serve clients concurrently, printing outcomes until interrupted or a fatal error."""
    params = TestParams(
        message_count=message_count,
        max_message_len=max_message_len,
        stop_at_first=False,
    )

    try:
        handle = start_server(params)
    except ServerFatalError as exc:
        print(f"Server connection error: {exc.message}", file=sys.stderr)
        return EXIT_FAILED

    host, port = handle.address
    print(f"Server address at {host}:{port}")

    receive: Optional[asyncio.Future] = None
    try:
        while True:
            receive = asyncio.ensure_future(handle.channel.receive())
            done, _ = await asyncio.wait(
                [receive, handle.task], return_when=asyncio.FIRST_COMPLETED
            )
            if receive in done:
                print(receive.result(), file=sys.stderr)
                continue

            # Server task ended: flush what it reported, then surface why
            outcome = handle.channel.try_receive()
            while outcome is not None:
                print(outcome, file=sys.stderr)
                outcome = handle.channel.try_receive()
            try:
                handle.task.result()
            except ServerFatalError as exc:
                logger.error("server_stopped", error=exc.message)
            return EXIT_FAILED
    finally:
        if receive is not None:
            receive.cancel()
        await _stop(handle)
        handle.channel.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cs230-tester",
        description="Conformance tester for cs230 protocol clients",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic log level",
    )
    modes = parser.add_subparsers(dest="mode", required=True)

    once = modes.add_parser(
        "once",
        help="Run once only. Without a client executable the server address is printed.",
    )
    until = modes.add_parser(
        "until-interrupt",
        help="Keep accepting clients until an interrupt is received.",
    )

    for sub in (once, until):
        sub.add_argument(
            "-n",
            "--n-msg",
            dest="message_count",
            type=int,
            default=settings.default_message_count,
            help="The number of messages to send before declaring victory",
        )
        sub.add_argument(
            "-l",
            "--max-len",
            dest="max_message_len",
            type=int,
            default=settings.default_max_message_len,
            help="The maximum length of a message",
        )

    once.add_argument(
        "client_exec",
        nargs="?",
        type=Path,
        help="Client executable to run; receives <netid> <port> <host>",
    )
    once.add_argument(
        "-i",
        "--netid",
        default=settings.default_identity,
        help="The netid the client must send (only enforced with a client executable)",
    )
    once.add_argument(
        "-e",
        dest="hide_stderr",
        action="store_true",
        help="Hide the client's standard error output",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    if args.message_count < 0 or args.max_message_len < 1:
        print("--n-msg must be >= 0 and --max-len must be >= 1", file=sys.stderr)
        return 2

    client_exec = getattr(args, "client_exec", None)
    try:
        TestParams(
            message_count=args.message_count,
            max_message_len=args.max_message_len,
            expected_identity=args.netid if client_exec else None,
        )
    except ValidationError as exc:
        print(f"Invalid arguments: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 2

    setup_logging("tester", level=getattr(logging, args.log_level))

    try:
        if args.mode == "once":
            return asyncio.run(
                do_once(
                    args.message_count,
                    args.max_message_len,
                    args.client_exec,
                    args.netid,
                    args.hide_stderr,
                )
            )
        return asyncio.run(do_until_interrupt(args.message_count, args.max_message_len))
    except KeyboardInterrupt:
        logger.info("interrupted", mode=args.mode)
        return EXIT_OK if args.mode == "until-interrupt" else EXIT_FAILED


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
