"""
Loader session state machine.

A LoaderSession drives exactly one top-level command from issuance to a
terminal outcome. It performs no I/O of its own: outbound frames go to a
``send`` callable, deadlines are armed through a Timer, and the owner feeds
inbound frames and connection loss back in. This keeps the protocol logic
testable without sockets or an event loop.

State machine:
    IDLE -> submit_simple/jump/mem_read/mem_write -> AWAITING_SIMPLE_REPLY
    IDLE -> submit_read_transfer -> AWAITING_READ_CHUNK
    IDLE -> submit_write_transfer -> AWAITING_WRITE_CHUNK
    AWAITING_* -> matching reply(s) -> DONE
    AWAITING_* -> timeout / protocol error / close / data error -> FAILED

At most one request is outstanding; each chunk reply must arrive before
the next chunk is sent. Every request, including every transfer chunk,
arms a fresh deadline.

Example:
    >>> frames = []
    >>> session = LoaderSession(frames.append, timer)
    >>> session.submit_simple(Opcode.PING)
    >>> session.receive_frame(encode(Opcode.PING, reply=True))
    >>> session.state
    <SessionState.DONE: 5>
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Protocol

from osmoload.exceptions import (
    ConnectionClosedError,
    DataError,
    DataSourceError,
    EndOfDataError,
    FrameError,
    OsmoloadError,
    ProtocolError,
    QueryTimeoutError,
    SessionStateError,
    TransportError,
)
from osmoload.io import BytesSink, DataSink, DataSource
from osmoload.models.records import CommandResult, Message
from osmoload.protocol.codec import decode, encode
from osmoload.protocol.constants import (
    SIMPLE_COMMANDS,
    UNSOLICITED_CODES,
    Opcode,
    ProtocolConstants,
)
from osmoload.protocol.planner import (
    Chunk,
    TransferDirection,
    TransferJob,
    next_chunk,
)

# Module logger
logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Loader session states."""

    IDLE = auto()
    """No command submitted yet."""

    AWAITING_SIMPLE_REPLY = auto()
    """Waiting for the reply to a single-frame command."""

    AWAITING_READ_CHUNK = auto()
    """Waiting for the reply to a MEM_READ chunk of a read transfer."""

    AWAITING_WRITE_CHUNK = auto()
    """Waiting for the reply to a MEM_WRITE chunk of a write transfer."""

    DONE = auto()
    """Command completed successfully."""

    FAILED = auto()
    """Command failed; see the result's error."""


AWAITING_STATES = frozenset({
    SessionState.AWAITING_SIMPLE_REPLY,
    SessionState.AWAITING_READ_CHUNK,
    SessionState.AWAITING_WRITE_CHUNK,
})

TERMINAL_STATES = frozenset({SessionState.DONE, SessionState.FAILED})


class Timer(Protocol):
    """Deadline facility used by the session."""

    def arm(self, delay: float, callback: Callable[[], None]) -> Any:
        """Call ``callback`` after ``delay`` seconds; return a handle."""
        ...

    def cancel(self, handle: Any) -> None:
        """Cancel a handle returned by arm()."""
        ...


class AsyncioTimer:
    """Timer backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def arm(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay, callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        handle.cancel()


@dataclass(frozen=True)
class PendingRequest:
    """
    The single outstanding request.

    Attributes:
        opcode: Opcode sent; the only acceptable reply opcode.
        chunk: Memory region requested, for MEM_READ/MEM_WRITE.
        address: Jump target, for JUMP.
        part_of_transfer: Whether the request is one chunk of a transfer.
    """

    opcode: Opcode
    chunk: Chunk | None = None
    address: int | None = None
    part_of_transfer: bool = False


class LoaderSession:
    """
    Request/reply correlation for one loader command.

    Attributes:
        state: Current session state.
        pending: Outstanding request, if any.
        job: Transfer progress for read/write transfers.
        result: Terminal CommandResult once DONE or FAILED.
    """

    def __init__(
        self,
        send: Callable[[bytes], None],
        timer: Timer,
        *,
        timeout: float = ProtocolConstants.DEFAULT_QUERY_TIMEOUT,
        max_chunk: int = ProtocolConstants.MEM_MSG_MAX,
        on_complete: Callable[[CommandResult], None] | None = None,
        on_notification: Callable[[Message], None] | None = None,
        on_progress: Callable[[TransferJob], None] | None = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            send: Called with each encoded request frame.
            timer: Deadline facility.
            timeout: Reply deadline in seconds, armed per request.
            max_chunk: Largest memory payload per frame.
            on_complete: Called once with the terminal result.
            on_notification: Called for unsolicited frames such as INIT.
            on_progress: Called after each confirmed transfer chunk.
        """
        if not 1 <= max_chunk <= ProtocolConstants.MEM_MSG_MAX:
            raise ValueError(
                f"max_chunk must be between 1 and {ProtocolConstants.MEM_MSG_MAX}, got {max_chunk}"
            )
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._send = send
        self._timer = timer
        self._timeout = timeout
        self._max_chunk = max_chunk
        self._on_complete = on_complete
        self._on_notification = on_notification
        self._on_progress = on_progress

        self._state = SessionState.IDLE
        self._command: Opcode | None = None
        self._pending: PendingRequest | None = None
        self._job: TransferJob | None = None
        self._sink: DataSink | None = None
        self._source: DataSource | None = None
        self._result: CommandResult | None = None
        self._timer_handle: Any = None
        self._timer_generation = 0

        self._handlers: dict[SessionState, Callable[[Message], None]] = {
            SessionState.AWAITING_SIMPLE_REPLY: self._handle_simple_reply,
            SessionState.AWAITING_READ_CHUNK: self._handle_read_chunk,
            SessionState.AWAITING_WRITE_CHUNK: self._handle_write_chunk,
        }

    @property
    def state(self) -> SessionState:
        """Get the current session state."""
        return self._state

    @property
    def pending(self) -> PendingRequest | None:
        """Get the outstanding request."""
        return self._pending

    @property
    def job(self) -> TransferJob | None:
        """Get the transfer job, if this is a transfer."""
        return self._job

    @property
    def result(self) -> CommandResult | None:
        """Get the terminal result, None while the command is running."""
        return self._result

    @property
    def is_finished(self) -> bool:
        """Check if the session reached DONE or FAILED."""
        return self._state in TERMINAL_STATES

    @property
    def timeout(self) -> float:
        """Reply deadline in seconds."""
        return self._timeout

    # ===== Entry points =====

    def submit_simple(self, opcode: int) -> None:
        """
        Send a command without fields (ping, reset, power-off, loader jumps).

        Raises:
            SessionStateError: If the opcode is not a simple command or a
                command was already submitted.
        """
        if opcode not in SIMPLE_COMMANDS:
            raise SessionStateError(f"Opcode {opcode!r} is not a simple command")
        op = Opcode(opcode)
        self._begin(op)
        logger.info("Sending %s", op.name)
        self._send_request(PendingRequest(op), SessionState.AWAITING_SIMPLE_REPLY)

    def submit_jump(self, address: int) -> None:
        """Ask the loader to jump to ``address``."""
        _check_address(address)
        self._begin(Opcode.JUMP)
        logger.info("Sending JUMP to 0x%08x", address)
        self._send_request(
            PendingRequest(Opcode.JUMP, address=address),
            SessionState.AWAITING_SIMPLE_REPLY,
            address=address,
        )

    def submit_mem_read(self, address: int, length: int) -> None:
        """
        Read up to one chunk of memory in a single request.

        Raises:
            ValueError: If length exceeds the chunk size.
        """
        _check_address(address)
        if not 0 <= length <= self._max_chunk:
            raise ValueError(f"Too many bytes: {length} (maximum {self._max_chunk})")
        self._begin(Opcode.MEM_READ)
        logger.info("Reading %d bytes at 0x%08x", length, address)
        self._send_request(
            PendingRequest(Opcode.MEM_READ, Chunk(address, length)),
            SessionState.AWAITING_SIMPLE_REPLY,
            length=length,
            address=address,
        )

    def submit_mem_write(self, address: int, data: bytes | bytearray | memoryview) -> None:
        """
        Write up to one chunk of memory in a single request.

        Raises:
            ValueError: If data is longer than one chunk.
        """
        _check_address(address)
        payload = bytes(data)
        if len(payload) > self._max_chunk:
            raise ValueError(
                f"Value too long for single message: {len(payload)} bytes (maximum {self._max_chunk})"
            )
        self._begin(Opcode.MEM_WRITE)
        logger.info("Writing %d bytes at 0x%08x", len(payload), address)
        self._send_request(
            PendingRequest(Opcode.MEM_WRITE, Chunk(address, len(payload))),
            SessionState.AWAITING_SIMPLE_REPLY,
            length=len(payload),
            address=address,
            data=payload,
        )

    def submit_read_transfer(
        self,
        address: int,
        total_length: int,
        sink: DataSink | None = None,
    ) -> None:
        """
        Read ``total_length`` bytes starting at ``address`` in chunks.

        Args:
            address: First address to read.
            total_length: Bytes to read; 0 completes immediately.
            sink: Receives each chunk in order. When omitted, the data is
                collected in memory and returned on the result.
        """
        job = TransferJob(TransferDirection.READ, total_length, address)
        self._begin(Opcode.MEM_READ)
        self._job = job
        self._sink = sink if sink is not None else BytesSink()
        logger.info("Dumping %d bytes of memory at 0x%08x", total_length, address)
        self._send_next_read_chunk()

    def submit_write_transfer(
        self,
        address: int,
        total_length: int,
        source: DataSource,
    ) -> None:
        """
        Write ``total_length`` bytes from ``source`` starting at ``address``.

        Args:
            address: First address to write.
            total_length: Bytes to write; 0 completes immediately.
            source: Provides each chunk's payload in order.
        """
        job = TransferJob(TransferDirection.WRITE, total_length, address)
        self._begin(Opcode.MEM_WRITE)
        self._job = job
        self._source = source
        logger.info("Loading %d bytes of memory at 0x%08x", total_length, address)
        self._send_next_write_chunk()

    # ===== Inbound events =====

    def receive_frame(self, frame: bytes | bytearray | memoryview) -> None:
        """
        Process one complete inbound frame.

        Frames arriving before a command or after a terminal state are
        ignored. Undecodable frames fail the command.
        """
        if self._state not in AWAITING_STATES:
            logger.debug("Ignoring frame in state %s", self._state.name)
            return

        try:
            message = decode(frame)
        except FrameError as e:
            self._fail(e)
            return

        logger.debug("Received %s", message)

        if message.opcode in UNSOLICITED_CODES:
            self._notify(message)
            return

        self._handlers[self._state](message)

    def connection_closed(self) -> None:
        """Report that the transport was closed by the peer."""
        if self._state in AWAITING_STATES:
            self._fail(ConnectionClosedError("Connection closed while awaiting reply"))

    def abort(self, error: OsmoloadError) -> None:
        """Fail the running command with ``error``; no-op when finished."""
        if not self.is_finished:
            self._fail(error)

    # ===== Per-state handlers =====

    def _handle_simple_reply(self, message: Message) -> None:
        pending = self._pending
        if not self._check_reply(message):
            return

        if pending.opcode == Opcode.MEM_READ:
            transferred = message.length
            data = message.data
        elif pending.opcode == Opcode.MEM_WRITE:
            transferred = message.length
            data = None
        else:
            transferred = 0
            data = None

        self._finish(reply=message, data=data, bytes_transferred=transferred)

    def _handle_read_chunk(self, message: Message) -> None:
        if not self._check_reply(message):
            return

        try:
            self._sink.write_chunk(message.data)
        except DataError as e:
            self._fail(e)
            return

        self._job.advance(message.length)
        self._report_progress()
        self._send_next_read_chunk()

    def _handle_write_chunk(self, message: Message) -> None:
        if not self._check_reply(message):
            return

        self._job.advance(message.length)
        self._report_progress()
        self._send_next_write_chunk()

    def _check_reply(self, message: Message) -> bool:
        """Verify a reply answers the pending request; fail otherwise."""
        pending = self._pending
        if message.opcode != pending.opcode:
            self._fail(ProtocolError(
                f"Received {message.opcode.name} reply while awaiting {pending.opcode.name}"
            ))
            return False

        if pending.address is not None and message.address != pending.address:
            logger.warning(
                "Jump confirmed to 0x%08x, requested 0x%08x", message.address, pending.address
            )

        chunk = pending.chunk
        if chunk is not None and (message.address, message.length) != (chunk.address, chunk.length):
            self._fail(ProtocolError(
                f"{message.opcode.name} reply for {message.length} bytes at 0x{message.address:08x}, "
                f"requested {chunk.length} bytes at 0x{chunk.address:08x}"
            ))
            return False
        return True

    # ===== Chunk loop =====

    def _send_next_read_chunk(self) -> None:
        chunk = next_chunk(self._job, self._max_chunk)
        if chunk is None:
            self._finish(bytes_transferred=self._job.transferred)
            return

        self._send_request(
            PendingRequest(Opcode.MEM_READ, chunk, part_of_transfer=True),
            SessionState.AWAITING_READ_CHUNK,
            length=chunk.length,
            address=chunk.address,
        )

    def _send_next_write_chunk(self) -> None:
        chunk = next_chunk(self._job, self._max_chunk)
        if chunk is None:
            self._finish(bytes_transferred=self._job.transferred)
            return

        try:
            data = self._source.read_chunk(chunk.length)
        except DataError as e:
            self._fail(e)
            return
        except OSError as e:
            self._fail(DataSourceError(f"Could not read transfer data: {e}"))
            return

        if len(data) != chunk.length:
            self._fail(EndOfDataError(requested=chunk.length, received=len(data)))
            return

        self._send_request(
            PendingRequest(Opcode.MEM_WRITE, chunk, part_of_transfer=True),
            SessionState.AWAITING_WRITE_CHUNK,
            length=chunk.length,
            address=chunk.address,
            data=data,
        )

    # ===== Internals =====

    def _begin(self, command: Opcode) -> None:
        if self._state != SessionState.IDLE:
            raise SessionStateError(
                f"Cannot submit {command.name}: session is in {self._state.name} state"
            )
        self._command = command

    def _send_request(
        self,
        pending: PendingRequest,
        next_state: SessionState,
        **fields: Any,
    ) -> None:
        frame = encode(pending.opcode, **fields)

        self._cancel_timer()
        self._pending = pending
        self._state = next_state

        # A reply delivered from inside send() cancels this timer
        self._arm_timer()
        logger.debug("Sending %d byte %s frame", len(frame), pending.opcode.name)
        try:
            self._send(frame)
        except (OSError, TransportError) as e:
            self._fail(TransportError(f"Error writing {pending.opcode.name} request: {e}"))

    def _arm_timer(self) -> None:
        self._timer_generation += 1
        generation = self._timer_generation
        self._timer_handle = self._timer.arm(
            self._timeout, lambda: self._on_timeout(generation)
        )

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer.cancel(self._timer_handle)
            self._timer_handle = None
        self._timer_generation += 1

    def _on_timeout(self, generation: int) -> None:
        if generation != self._timer_generation or self._state not in AWAITING_STATES:
            return
        self._timer_handle = None
        opcode = self._pending.opcode
        self._fail(QueryTimeoutError(
            f"Query timed out waiting for {opcode.name} reply",
            timeout_seconds=self._timeout,
            opcode=opcode,
        ))

    def _notify(self, message: Message) -> None:
        if message.opcode == Opcode.INIT:
            logger.info("Loader has been started")
        if self._on_notification is not None:
            self._on_notification(message)

    def _report_progress(self) -> None:
        logger.debug(
            "Transferred %d/%d bytes", self._job.transferred, self._job.total_length
        )
        if self._on_progress is not None:
            self._on_progress(self._job)

    def _collected_data(self) -> bytes | None:
        if isinstance(self._sink, BytesSink):
            return self._sink.getvalue()
        return None

    def _finish(
        self,
        *,
        reply: Message | None = None,
        data: bytes | None = None,
        bytes_transferred: int = 0,
    ) -> None:
        self._cancel_timer()
        self._state = SessionState.DONE
        self._pending = None
        if data is None:
            data = self._collected_data()
        logger.info("%s completed (%d bytes)", self._command.name, bytes_transferred)
        self._complete(CommandResult(
            opcode=self._command,
            reply=reply,
            data=data,
            bytes_transferred=bytes_transferred,
        ))

    def _fail(self, error: OsmoloadError) -> None:
        self._cancel_timer()
        self._state = SessionState.FAILED
        self._pending = None
        logger.error("%s failed: %s", self._command.name, error)
        self._complete(CommandResult(
            opcode=self._command,
            data=self._collected_data(),
            bytes_transferred=self._job.transferred if self._job is not None else 0,
            error=error,
        ))

    def _complete(self, result: CommandResult) -> None:
        self._result = result
        if self._on_complete is not None:
            self._on_complete(result)

    def __repr__(self) -> str:
        command = self._command.name if self._command is not None else "None"
        return f"LoaderSession(state={self._state.name}, command={command})"


def _check_address(address: int) -> None:
    if not 0 <= address <= ProtocolConstants.MAX_ADDRESS:
        raise ValueError(f"Address 0x{address:x} does not fit in 32 bits")
