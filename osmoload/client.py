"""
Loader Client.

This module provides the main client interface for talking to the
Calypso loader through the broker's byte stream.

Each command runs in its own LoaderSession. The client is the I/O side of
that session: it flushes the frames the session wants sent, reads frames
off the transport and feeds them back in, and wires the session's deadlines
to the event loop. It waits for whichever comes first, the next inbound
frame or the session reaching a terminal state.

Reads never ask for more than the frame being assembled still lacks, and
the partial frame is kept by the client, so a command that ends mid-frame
leaves the stream aligned for the next one.

    IDLE -> execute() -> AWAITING_* -> (frames / timer) -> DONE | FAILED

Example:
    >>> from osmoload import LoaderClient
    >>> from osmoload.transport import UnixSocketTransport
    >>>
    >>> async def main():
    ...     async with LoaderClient(UnixSocketTransport()) as client:
    ...         await client.ping()
    ...         data = await client.mem_get(0x00800000, 16)
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING

from osmoload.exceptions import ConnectionClosedError, OsmoloadError
from osmoload.io import BytesSource, DataSink, DataSource
from osmoload.protocol.constants import Opcode, ProtocolConstants
from osmoload.protocol.frame_reader import FrameBuffer
from osmoload.session import AsyncioTimer, LoaderSession

if TYPE_CHECKING:
    from osmoload.models.records import CommandResult, Message
    from osmoload.protocol.planner import TransferJob
    from osmoload.transport.abc import AbstractTransport

# Module logger
logger = logging.getLogger(__name__)


class LoaderClient:
    """
    Async client for the Calypso loader protocol.

    Attributes:
        transport: The underlying transport layer.
        timeout: Reply deadline per request in seconds.
        max_chunk: Largest memory payload per frame.

    Example:
        >>> client = LoaderClient(UnixSocketTransport("/tmp/osmocom_loader"))
        >>> async with client:
        ...     result = await client.mem_dump(0x0, 0x2000, FileSink(fh))
        ...     print(result.bytes_transferred)
    """

    def __init__(
        self,
        transport: AbstractTransport,
        timeout: float = ProtocolConstants.DEFAULT_QUERY_TIMEOUT,
        max_chunk: int = ProtocolConstants.MEM_MSG_MAX,
        *,
        on_notification: Callable[[Message], None] | None = None,
        on_progress: Callable[[TransferJob], None] | None = None,
        on_request: Callable[[bytes], None] | None = None,
        on_reply: Callable[[bytes], None] | None = None,
    ) -> None:
        """
        Initialize the loader client.

        Args:
            transport: Transport carrying the frame stream.
            timeout: Reply deadline per request in seconds.
            max_chunk: Largest memory payload per frame (1..240).
            on_notification: Called for unsolicited frames such as INIT.
            on_progress: Called after each confirmed transfer chunk.
            on_request: Called with every frame before it is written.
            on_reply: Called with every frame read from the transport.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        if not 1 <= max_chunk <= ProtocolConstants.MEM_MSG_MAX:
            raise ValueError(
                f"max_chunk must be between 1 and {ProtocolConstants.MEM_MSG_MAX}, got {max_chunk}"
            )

        self._transport = transport
        self._timeout = timeout
        self._max_chunk = max_chunk
        self._on_notification = on_notification
        self._on_progress = on_progress
        self._on_request = on_request
        self._on_reply = on_reply
        self._session: LoaderSession | None = None
        self._frames = FrameBuffer()
        self._inbox: deque[bytes] = deque()

    @property
    def transport(self) -> AbstractTransport:
        """Get the underlying transport."""
        return self._transport

    @property
    def timeout(self) -> float:
        """Get the reply deadline in seconds."""
        return self._timeout

    @property
    def max_chunk(self) -> int:
        """Get the chunk size used for transfers."""
        return self._max_chunk

    @property
    def session(self) -> LoaderSession | None:
        """Get the session of the running or most recent command."""
        return self._session

    # ===== Simple commands =====

    async def ping(self) -> CommandResult:
        """Ping the loader."""
        return await self.execute(lambda session: session.submit_simple(Opcode.PING))

    async def reset(self) -> CommandResult:
        """Reset the device."""
        return await self.execute(lambda session: session.submit_simple(Opcode.RESET))

    async def power_off(self) -> CommandResult:
        """Power off the device."""
        return await self.execute(lambda session: session.submit_simple(Opcode.POWEROFF))

    async def enter_rom_loader(self) -> CommandResult:
        """Jump to the ROM loader."""
        return await self.execute(
            lambda session: session.submit_simple(Opcode.ENTER_ROM_LOADER)
        )

    async def enter_flash_loader(self) -> CommandResult:
        """Jump to the flash loader."""
        return await self.execute(
            lambda session: session.submit_simple(Opcode.ENTER_FLASH_LOADER)
        )

    async def jump(self, address: int) -> CommandResult:
        """
        Jump to ``address``.

        Returns:
            Result whose reply carries the address the loader confirmed.
        """
        return await self.execute(lambda session: session.submit_jump(address))

    # ===== Memory access =====

    async def mem_get(self, address: int, length: int) -> bytes:
        """
        Read up to one chunk of memory.

        Args:
            address: First address to read.
            length: Number of bytes, at most ``max_chunk``.

        Returns:
            The bytes the loader returned.

        Raises:
            ValueError: If length exceeds the chunk size.
            QueryTimeoutError: If the loader does not answer in time.
            ProtocolError: If the reply does not match the request.
        """
        result = await self.execute(lambda session: session.submit_mem_read(address, length))
        return result.data or b""

    async def mem_put(self, address: int, data: bytes) -> CommandResult:
        """
        Write up to one chunk of memory.

        Raises:
            ValueError: If data is longer than one chunk.
        """
        return await self.execute(lambda session: session.submit_mem_write(address, data))

    async def mem_dump(
        self,
        address: int,
        length: int,
        sink: DataSink | None = None,
    ) -> CommandResult:
        """
        Read ``length`` bytes of memory in chunks.

        Args:
            address: First address to read.
            length: Total number of bytes.
            sink: Receives the data in order. When omitted, the data is
                returned on ``CommandResult.data``.

        Returns:
            The terminal result of the transfer.
        """
        return await self.execute(
            lambda session: session.submit_read_transfer(address, length, sink)
        )

    async def mem_load(
        self,
        address: int,
        source: DataSource | bytes,
        length: int | None = None,
    ) -> CommandResult:
        """
        Write ``length`` bytes from ``source`` to memory in chunks.

        Args:
            address: First address to write.
            source: Data source, or the bytes to write.
            length: Total number of bytes. Defaults to the length of
                ``source`` when bytes are given.

        Returns:
            The terminal result of the transfer.

        Raises:
            ValueError: If length is missing for a non-bytes source.
            DataSourceError: If the source fails or ends early.
        """
        if isinstance(source, (bytes, bytearray, memoryview)):
            if length is None:
                length = len(source)
            source = BytesSource(source)
        elif length is None:
            raise ValueError("length is required when loading from a data source")

        return await self.execute(
            lambda session: session.submit_write_transfer(address, length, source)
        )

    # ===== Driver =====

    async def execute(self, submit: Callable[[LoaderSession], None]) -> CommandResult:
        """
        Run one command to completion.

        Args:
            submit: Called with a fresh session; must call one of its
                ``submit_*`` entry points.

        Returns:
            The successful CommandResult.

        Raises:
            OsmoloadError: The error the command failed with.
        """
        if not self._transport.is_open:
            logger.debug("Opening transport %s", self._transport.endpoint)
            await self._transport.open()
            self._reset_stream()

        finished = asyncio.Event()
        outbox: list[bytes] = []
        session = LoaderSession(
            outbox.append,
            AsyncioTimer(asyncio.get_running_loop()),
            timeout=self._timeout,
            max_chunk=self._max_chunk,
            on_complete=lambda result: finished.set(),
            on_notification=self._on_notification,
            on_progress=self._on_progress,
        )
        self._session = session

        # A partial frame left by an earlier failed command answers that
        # command, not this one.
        late_reply = self._frames.pending > 0

        submit(session)
        await self._flush(session, outbox)

        while not session.is_finished:
            if self._inbox:
                frame = self._inbox.popleft()
                if self._on_reply is not None:
                    self._on_reply(frame)
                session.receive_frame(frame)
                await self._flush(session, outbox)
                continue

            read_task = asyncio.ensure_future(self._transport.read(self._frames.needed))
            done_task = asyncio.ensure_future(finished.wait())
            try:
                done, _ = await asyncio.wait(
                    {read_task, done_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                for task in (read_task, done_task):
                    if not task.done():
                        task.cancel()
                await asyncio.gather(read_task, done_task, return_exceptions=True)

            if read_task not in done or read_task.cancelled():
                continue

            try:
                frames = self._frames.feed(read_task.result())
            except ConnectionClosedError:
                session.connection_closed()
                continue
            except OsmoloadError as e:
                self._frames.clear()
                session.abort(e)
                continue

            if frames and late_reply:
                logger.warning("Dropping late reply %s", frames[0].hex())
                frames = frames[1:]
                late_reply = False
            self._inbox.extend(frames)

        result = session.result
        if result.error is not None:
            raise result.error
        return result

    def _reset_stream(self) -> None:
        self._frames.clear()
        self._inbox.clear()

    async def _flush(self, session: LoaderSession, outbox: list[bytes]) -> None:
        """Write every frame the session queued, in order."""
        while outbox:
            frame = outbox.pop(0)
            if session.is_finished:
                outbox.clear()
                break
            if self._on_request is not None:
                self._on_request(frame)
            try:
                await self._transport.write(frame)
            except OsmoloadError as e:
                session.abort(e)

    async def __aenter__(self) -> LoaderClient:
        """Async context manager entry."""
        if not self._transport.is_open:
            await self._transport.open()
            self._reset_stream()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - close transport."""
        if self._transport.is_open:
            await self._transport.close()

    def __repr__(self) -> str:
        return (
            f"LoaderClient(endpoint={self._transport.endpoint!r}, "
            f"timeout={self._timeout}, max_chunk={self._max_chunk})"
        )
