"""
Command line interface.

Usage:
    osmoload [-v] [-d tr] [-l SOCKET | -s SERIAL_URL] [--timeout S] COMMAND ...

Each invocation runs exactly one loader command. Addresses and lengths are
hexadecimal, with or without a ``0x`` prefix.

Exit status is 0 on success, 1 when the broker cannot be reached and 2 for
usage errors and failed commands.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from pydantic import ValidationError

from osmoload.client import LoaderClient
from osmoload.exceptions import ConnectionError, OsmoloadError, QueryTimeoutError
from osmoload.hexutil import hexdump, parse_hex_bytes, parse_hex_int
from osmoload.io import FileSink, FileSource
from osmoload.models.settings import LoaderSettings
from osmoload.protocol.constants import CONFIRMATION_MESSAGES, Opcode, ProtocolConstants
from osmoload.transport import AsyncSerialTransport, UnixSocketTransport

if TYPE_CHECKING:
    from osmoload.models.records import Message
    from osmoload.protocol.planner import TransferJob
    from osmoload.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNREACHABLE = 1
EXIT_FAILURE = 2

Handler = Callable[[LoaderClient, argparse.Namespace], Awaitable[None]]


def _hex_int(text: str) -> int:
    try:
        return parse_hex_int(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _hex_bytes(text: str) -> bytes:
    try:
        return parse_hex_bytes(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


# ===== Command handlers =====


async def cmd_simple(client: LoaderClient, args: argparse.Namespace) -> None:
    result = await client.execute(lambda session: session.submit_simple(args.opcode))
    print(CONFIRMATION_MESSAGES[result.opcode])


async def cmd_jump(client: LoaderClient, args: argparse.Namespace) -> None:
    result = await client.jump(args.address)
    print(f"Confirmed jump to 0x{result.reply.address:x}.")


async def cmd_memget(client: LoaderClient, args: argparse.Namespace) -> None:
    data = await client.mem_get(args.address, args.length)
    print(f"Received memory dump of {len(data)} bytes at 0x{args.address:x}:")
    if data:
        print(hexdump(data))


async def cmd_memput(client: LoaderClient, args: argparse.Namespace) -> None:
    result = await client.mem_put(args.address, args.data)
    print(f"Confirmed memory write of {result.reply.length} bytes at 0x{result.reply.address:x}.")


async def cmd_memdump(client: LoaderClient, args: argparse.Namespace) -> None:
    with open(args.file, "wb") as fh:
        print(f"Dumping {args.length} bytes of memory at 0x{args.address:x} to file {args.file}")
        await client.mem_dump(args.address, args.length, FileSink(fh))
    print("done.")


async def cmd_memload(client: LoaderClient, args: argparse.Namespace) -> None:
    length = os.stat(args.file).st_size
    with open(args.file, "rb") as fh:
        print(f"Loading {length} bytes of memory at 0x{args.address:x} from file {args.file}")
        await client.mem_load(args.address, FileSource(fh), length)
    print("done.")


# ===== Output callbacks =====


def _print_progress(job: TransferJob) -> None:
    sys.stdout.write(".")
    sys.stdout.flush()


def _print_notification(message: Message) -> None:
    if message.opcode == Opcode.INIT:
        print("Loader has been started")


def _print_request(frame: bytes) -> None:
    payload = frame[ProtocolConstants.LENGTH_PREFIX_SIZE:]
    print(f"Sending {len(payload)} bytes:")
    print(hexdump(payload))


def _print_reply(frame: bytes) -> None:
    payload = frame[ProtocolConstants.LENGTH_PREFIX_SIZE:]
    print(f"Received {len(payload)} bytes:")
    print(hexdump(payload))


# ===== Parser =====


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per loader command."""
    parser = argparse.ArgumentParser(
        prog="osmoload",
        description="Talk to the Calypso loader through its broker.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument(
        "-d",
        "--debug",
        default="",
        metavar="tr",
        help="dump requests (t) and/or replies (r)",
    )
    endpoint = parser.add_mutually_exclusive_group()
    endpoint.add_argument(
        "-l",
        "--socket",
        default=ProtocolConstants.DEFAULT_SOCKET_PATH,
        help="broker unix socket (default: %(default)s)",
    )
    endpoint.add_argument(
        "-s",
        "--serial",
        default=None,
        help="serial device or pyserial URL, e.g. socket://host:port",
    )
    parser.add_argument(
        "-b",
        "--baudrate",
        type=int,
        default=ProtocolConstants.DEFAULT_BAUD_RATE,
        help="baud rate for --serial (default: %(default)s)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=ProtocolConstants.DEFAULT_QUERY_TIMEOUT,
        help="seconds to wait for each reply (default: %(default)s)",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=ProtocolConstants.MEM_MSG_MAX,
        help="bytes per memory transfer frame (default: %(default)s)",
    )

    commands = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    p = commands.add_parser("memget", help="peek at memory")
    p.add_argument("address", type=_hex_int, help="hex address")
    p.add_argument("length", type=_hex_int, help="hex length")
    p.set_defaults(handler=cmd_memget)

    p = commands.add_parser("memput", help="poke at memory")
    p.add_argument("address", type=_hex_int, help="hex address")
    p.add_argument("data", type=_hex_bytes, help="hex bytes")
    p.set_defaults(handler=cmd_memput)

    p = commands.add_parser("memdump", help="dump memory to file")
    p.add_argument("address", type=_hex_int, help="hex address")
    p.add_argument("length", type=_hex_int, help="hex length")
    p.add_argument("file", help="output file")
    p.set_defaults(handler=cmd_memdump)

    p = commands.add_parser("memload", help="load file into memory")
    p.add_argument("address", type=_hex_int, help="hex address")
    p.add_argument("file", help="input file")
    p.set_defaults(handler=cmd_memload)

    p = commands.add_parser("jump", help="jump to address")
    p.add_argument("address", type=_hex_int, help="hex address")
    p.set_defaults(handler=cmd_jump)

    simple = [
        ("jumpflash", Opcode.ENTER_FLASH_LOADER, "jump to flash loader"),
        ("jumprom", Opcode.ENTER_ROM_LOADER, "jump to rom loader"),
        ("ping", Opcode.PING, "ping the loader"),
        ("reset", Opcode.RESET, "reset device"),
        ("off", Opcode.POWEROFF, "power off device"),
    ]
    for name, opcode, help_text in simple:
        p = commands.add_parser(name, help=help_text)
        p.set_defaults(handler=cmd_simple, opcode=opcode)

    return parser


def make_transport(settings: LoaderSettings) -> AbstractTransport:
    """Create the transport selected by the settings."""
    if settings.serial_url is not None:
        return AsyncSerialTransport(settings.serial_url, baudrate=settings.baudrate)
    return UnixSocketTransport(settings.socket_path)


async def run(settings: LoaderSettings, handler: Handler, args: argparse.Namespace) -> int:
    """
    Connect to the broker and run one command handler.

    Returns:
        Process exit status.
    """
    transport = make_transport(settings)
    client = LoaderClient(
        transport,
        timeout=settings.timeout,
        max_chunk=settings.max_chunk,
        on_notification=_print_notification,
        on_progress=_print_progress,
        on_request=_print_request if settings.print_requests else None,
        on_reply=_print_reply if settings.print_replies else None,
    )

    try:
        await transport.open()
    except ConnectionError as e:
        logger.debug("Connect failed: %s", e)
        print(f"Failed to connect to '{settings.endpoint}'.", file=sys.stderr)
        return EXIT_UNREACHABLE

    try:
        async with client:
            await handler(client, args)
    except QueryTimeoutError:
        print("Query timed out.")
        return EXIT_FAILURE
    except OsmoloadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except ValueError as e:
        print(e)
        return EXIT_FAILURE
    except OSError as e:
        print(f"Could not open {e.filename}: {e.strerror}")
        return EXIT_FAILURE
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """
    Entry point for the ``osmoload`` command.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:]).

    Returns:
        Process exit status.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if set(args.debug) - set("tr"):
        parser.error(f"invalid debug flags {args.debug!r} (use t, r or tr)")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    try:
        settings = LoaderSettings(
            socket_path=args.socket,
            serial_url=args.serial,
            baudrate=args.baudrate,
            timeout=args.timeout,
            max_chunk=args.chunk_size,
            print_requests="t" in args.debug,
            print_replies="r" in args.debug,
        )
    except ValidationError as e:
        parser.error(str(e))

    return asyncio.run(run(settings, args.handler, args))
