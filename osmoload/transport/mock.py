"""
Mock transports for testing.

This module provides mock transport implementations that allow testing
the loader client without a broker or device. Responses can be
pre-configured, generated by callback functions, or produced by a small
simulated loader holding a memory image.

Example:
    >>> from osmoload.transport import MockTransport
    >>> from osmoload.protocol.codec import encode
    >>>
    >>> mock = MockTransport()
    >>> mock.add_response(encode(Opcode.PING, reply=True))
    >>>
    >>> async with LoaderClient(mock) as client:
    ...     await client.ping()
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable

from osmoload.exceptions import (
    ConnectionClosedError,
    FrameError,
    TimeoutError,
    TransportError,
)
from osmoload.models.records import Message
from osmoload.protocol.codec import decode, encode
from osmoload.protocol.constants import SIMPLE_COMMANDS, Opcode
from osmoload.protocol.frame_reader import FrameBuffer
from osmoload.transport.abc import AbstractTransport


class MockTransport(AbstractTransport):
    """
    Mock transport for testing without hardware.

    This transport simulates a stream connection by providing pre-configured
    responses. It records all written data for verification in tests.
    Reads wait until enough data has been queued, the timeout expires or
    the simulated peer closes the connection.

    Attributes:
        written_data: List of all bytes written to the transport.

    Example:
        >>> mock = MockTransport()
        >>> mock.add_response(b"\\x00\\x01\\x02")  # PING reply
        >>>
        >>> async with mock:
        ...     await mock.write(b"\\x00\\x01\\x02")
        ...     reply = await mock.read_frame()
        ...     assert mock.written_data == [b"\\x00\\x01\\x02"]
    """

    def __init__(self, endpoint: str = "mock://loader") -> None:
        """
        Initialize the mock transport.

        Args:
            endpoint: Identifier for the mock transport.
        """
        self._endpoint = endpoint
        self._is_open = False
        self._remote_closed = False
        self._responses: deque[bytes] = deque()
        self._written_data: list[bytes] = []
        self._read_buffer = bytearray()
        self._response_callback: Callable[[bytes], bytes | None] | None = None
        self._data_available = asyncio.Event()

    @property
    def is_open(self) -> bool:
        """Check if the mock transport is open."""
        return self._is_open

    @property
    def endpoint(self) -> str:
        """Get the mock endpoint name."""
        return self._endpoint

    @property
    def written_data(self) -> list[bytes]:
        """Get all data written to the transport."""
        return self._written_data.copy()

    @property
    def last_written(self) -> bytes | None:
        """Get the most recently written data."""
        return self._written_data[-1] if self._written_data else None

    def add_response(self, response: bytes) -> None:
        """
        Add a response to the queue.

        Responses are returned in FIFO order on read operations.

        Args:
            response: Bytes to return on later reads.
        """
        self._responses.append(response)
        self._data_available.set()

    def add_responses(self, *responses: bytes) -> None:
        """
        Add multiple responses to the queue.

        Args:
            *responses: Multiple byte responses to add.
        """
        for response in responses:
            self.add_response(response)

    def set_response_callback(
        self,
        callback: Callable[[bytes], bytes | None] | None,
    ) -> None:
        """
        Set a callback to dynamically generate responses.

        The callback receives the written data and returns the bytes to
        make readable, or None to answer nothing.

        Args:
            callback: Function that takes written bytes and returns response.
        """
        self._response_callback = callback

    def close_remote(self) -> None:
        """Simulate the peer closing the connection."""
        self._remote_closed = True
        self._data_available.set()

    def clear(self) -> None:
        """Clear all written data and pending responses."""
        self._written_data.clear()
        self._responses.clear()
        self._read_buffer.clear()

    def clear_written(self) -> None:
        """Clear only the written data history."""
        self._written_data.clear()

    async def open(self) -> None:
        """Open the mock transport."""
        if self._is_open:
            raise TransportError("Mock transport already open")
        self._is_open = True
        self._remote_closed = False

    async def close(self) -> None:
        """Close the mock transport."""
        self._is_open = False

    async def write(self, data: bytes) -> None:
        """
        Write data to the mock transport.

        Records the written data and optionally triggers response callback.

        Args:
            data: Bytes to write.

        Raises:
            TransportError: If transport is not open or the peer closed it.
        """
        if not self._is_open:
            raise TransportError("Mock transport not open")
        if self._remote_closed:
            raise TransportError("Mock connection closed by peer")

        self._written_data.append(bytes(data))

        # Check for callback-generated response
        if self._response_callback:
            response = self._response_callback(bytes(data))
            if response is not None:
                self._read_buffer.extend(response)
                self._data_available.set()

    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read exact number of bytes.

        Args:
            size: Number of bytes to read.
            timeout: Seconds to wait for data. None waits indefinitely.

        Returns:
            Exactly size bytes.

        Raises:
            TimeoutError: If not enough data arrives in time.
            ConnectionClosedError: If the simulated peer closed the stream.
            TransportError: If transport is not open.
        """
        if not self._is_open:
            raise TransportError("Mock transport not open")

        if size <= 0:
            return b""

        try:
            await asyncio.wait_for(self._wait_for(size), timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Not enough mock data: need {size}, have {len(self._read_buffer)}",
                timeout_seconds=timeout,
            ) from None

        result = bytes(self._read_buffer[:size])
        del self._read_buffer[:size]
        return result

    async def _wait_for(self, size: int) -> None:
        while True:
            # Load responses into buffer until we have enough
            while len(self._read_buffer) < size and self._responses:
                self._read_buffer.extend(self._responses.popleft())

            if len(self._read_buffer) >= size:
                return
            if self._remote_closed:
                raise ConnectionClosedError(
                    f"Mock connection closed: expected {size} bytes, got {len(self._read_buffer)}"
                )

            self._data_available.clear()
            await self._data_available.wait()

    def discard_buffers(self) -> None:
        """Discard pending data in buffers."""
        self._read_buffer.clear()

    def assert_written(self, expected: bytes, index: int = -1) -> None:
        """
        Assert that specific data was written.

        Args:
            expected: Expected bytes.
            index: Index in written_data list (-1 for last).

        Raises:
            AssertionError: If data doesn't match.
        """
        if not self._written_data:
            raise AssertionError("No data written to mock transport")

        actual = self._written_data[index]
        if actual != expected:
            raise AssertionError(f"Written data mismatch: expected {expected!r}, got {actual!r}")

    def assert_write_count(self, expected: int) -> None:
        """
        Assert number of write operations.

        Args:
            expected: Expected number of writes.

        Raises:
            AssertionError: If count doesn't match.
        """
        actual = len(self._written_data)
        if actual != expected:
            raise AssertionError(f"Write count mismatch: expected {expected}, got {actual}")


class ScriptedMockTransport(MockTransport):
    """
    Mock transport that checks every request against a fixed exchange script.

    Each step names the exact frame the client must write next and the
    frames the loader answers with: none for a silent loader, several for
    an unsolicited INIT ahead of the reply. Writing anything else, or more
    frames than scripted, fails the test.

    Example:
        >>> mock = ScriptedMockTransport()
        >>> mock.expect_echo(Opcode.JUMP, address=0x820000)
        >>> mock.expect(encode(Opcode.PING))  # loader stays silent
    """

    def __init__(self, endpoint: str = "mock://scripted") -> None:
        super().__init__(endpoint)
        self._steps: deque[tuple[bytes, tuple[bytes, ...]]] = deque()
        self._step_number = 0

    @property
    def remaining_steps(self) -> int:
        """Number of scripted requests not yet written."""
        return len(self._steps)

    def expect(self, request: bytes, *responses: bytes) -> None:
        """
        Script the next request frame and the frames sent back for it.

        Args:
            request: Exact frame the client must write.
            *responses: Frames made readable once the request is written.
        """
        self._steps.append((bytes(request), responses))

    def expect_echo(self, opcode: int, **fields) -> None:
        """
        Script a request answered by the loader's normal echo.

        MEM_READ replies are not covered here since they carry data the
        request does not; script those with expect().
        """
        request = encode(opcode, **fields)
        if opcode == Opcode.MEM_WRITE:
            reply = encode(
                opcode,
                length=len(fields["data"]),
                address=fields["address"],
                reply=True,
            )
        else:
            reply = encode(opcode, reply=True, **fields)
        self.expect(request, reply)

    def assert_script_done(self) -> None:
        """
        Assert every scripted request was written.

        Raises:
            AssertionError: If scripted steps are left.
        """
        if self._steps:
            request, _ = self._steps[0]
            raise AssertionError(
                f"{len(self._steps)} scripted request(s) never written, next {_describe(request)}"
            )

    async def write(self, data: bytes) -> None:
        """Record the write and answer it from the script."""
        await super().write(data)
        self._step_number += 1

        if not self._steps:
            raise AssertionError(
                f"Unscripted request #{self._step_number}: {_describe(data)}"
            )

        request, responses = self._steps.popleft()
        if bytes(data) != request:
            raise AssertionError(
                f"Script mismatch at request #{self._step_number}: "
                f"expected {_describe(request)}, got {_describe(data)}"
            )

        for response in responses:
            self._read_buffer.extend(response)
        if responses:
            self._data_available.set()


def _describe(frame: bytes) -> str:
    try:
        message = decode(frame, reply=False)
    except FrameError:
        return f"undecodable {bytes(frame).hex()}"
    return f"{message.opcode.name} {bytes(frame).hex()}"


class LoaderSimulator:
    """
    Response callback emulating the loader over a memory image.

    Answers every request the way the device does: simple commands are
    echoed, MEM_READ returns the requested bytes, MEM_WRITE stores them,
    JUMP echoes the address. Install it with
    ``MockTransport.set_response_callback(simulator)``.

    Attributes:
        memory: Memory image, indexed by ``address - base_address``.
        requests: Decoded requests in arrival order.
        silent_after: Stop answering after this many requests (None = never).
    """

    def __init__(
        self,
        memory: bytes | bytearray | None = None,
        base_address: int = 0,
        silent_after: int | None = None,
    ) -> None:
        self.memory = bytearray(memory if memory is not None else bytes(0x10000))
        self.base_address = base_address
        self.silent_after = silent_after
        self.requests: list[Message] = []
        self._stream = FrameBuffer()

    def __call__(self, data: bytes) -> bytes | None:
        replies = bytearray()
        for frame in self._stream.feed(data):
            reply = self._answer(frame)
            if reply is not None:
                replies.extend(reply)
        return bytes(replies) if replies else None

    def _answer(self, frame: bytes) -> bytes | None:
        try:
            request = decode(frame, reply=False)
        except FrameError:
            return None

        self.requests.append(request)
        if self.silent_after is not None and len(self.requests) > self.silent_after:
            return None

        if request.opcode in SIMPLE_COMMANDS:
            return encode(request.opcode, reply=True)

        if request.opcode == Opcode.JUMP:
            return encode(Opcode.JUMP, address=request.address, reply=True)

        offset = request.address - self.base_address
        if request.opcode == Opcode.MEM_READ:
            data = bytes(self.memory[offset:offset + request.length])
            return encode(
                Opcode.MEM_READ,
                length=request.length,
                address=request.address,
                data=data,
                reply=True,
            )

        self.memory[offset:offset + request.length] = request.data
        return encode(
            Opcode.MEM_WRITE,
            length=request.length,
            address=request.address,
            reply=True,
        )
