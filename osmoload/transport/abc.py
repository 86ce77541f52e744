"""
Abstract transport interface for loader protocol communication.

This module defines the abstract base class for all transport implementations.
Transports carry the byte stream between this client and the loader broker.

The transport layer is responsible for:
- Opening/closing the connection
- Reading and writing raw bytes
- Reassembling length-prefixed frames from partial reads
- Timeout handling

Implementations:
- UnixSocketTransport: Unix domain socket exposed by the broker
- AsyncSerialTransport: pyserial-asyncio based serial port or URL
- MockTransport: For testing without hardware
"""

from __future__ import annotations

import struct
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from osmoload.exceptions import MalformedFrameError
from osmoload.protocol.constants import ProtocolConstants

if TYPE_CHECKING:
    from types import TracebackType


class AbstractTransport(ABC):
    """
    Abstract base class for loader transports.

    Transports provide async read/write operations over a reliable, ordered
    byte stream. All transport implementations must inherit from this class
    and implement all abstract methods.

    Transports support async context manager protocol for safe resource
    management:

        async with UnixSocketTransport("/tmp/osmocom_loader") as transport:
            await transport.write(frame)
            reply = await transport.read_frame()

    Attributes:
        is_open: Whether the transport connection is currently open.
        endpoint: Identifier for the transport (socket path, serial URL).
    """

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """
        Check if the transport connection is currently open.

        Returns:
            True if connected and ready for I/O, False otherwise.
        """
        ...

    @property
    @abstractmethod
    def endpoint(self) -> str:
        """
        Get the transport identifier.

        Returns:
            Socket path, serial port or URL string.
        """
        ...

    @abstractmethod
    async def open(self) -> None:
        """
        Open the transport connection.

        Raises:
            ConnectionError: If the broker cannot be reached.
            TransportError: If the connection cannot be set up.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the transport connection.

        Releases the connection and any associated resources.
        Safe to call multiple times (idempotent).
        """
        ...

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """
        Write data to the transport.

        Args:
            data: Bytes to send, normally one complete frame.

        Raises:
            TransportError: If the transport is not open or write fails.
        """
        ...

    @abstractmethod
    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read an exact number of bytes from the transport.

        Blocks until exactly `size` bytes have been received or timeout
        expires.

        Args:
            size: Number of bytes to read.
            timeout: Read timeout in seconds. None waits without a deadline.

        Returns:
            Exactly `size` bytes.

        Raises:
            TimeoutError: If timeout expires before all bytes are received.
            ConnectionClosedError: If the peer closes the connection.
            TransportError: If the transport is not open or read fails.
        """
        ...

    @abstractmethod
    def discard_buffers(self) -> None:
        """
        Discard any pending data in input and output buffers.
        """
        ...

    async def read_frame(self, timeout: float | None = None) -> bytes:
        """
        Read one complete length-prefixed frame.

        Reads the 2-byte length prefix, then exactly that many bytes,
        accumulating partial reads. Cancelling it between the two reads
        loses the prefix; callers that cancel reads keep their own
        FrameBuffer instead.

        Args:
            timeout: Timeout for each of the two reads. None waits without
                a deadline.

        Returns:
            The frame including its length prefix.

        Raises:
            MalformedFrameError: If the length prefix is zero or too large.
            TimeoutError: If timeout expires.
            ConnectionClosedError: If the peer closes the connection.
        """
        header = await self.read(ProtocolConstants.LENGTH_PREFIX_SIZE, timeout)
        (length,) = struct.unpack(">H", header)
        if length == 0 or length > ProtocolConstants.MSGB_MAX:
            raise MalformedFrameError(
                f"Invalid frame length {length} (allowed 1..{ProtocolConstants.MSGB_MAX})"
            )
        body = await self.read(length, timeout)
        return header + body

    async def __aenter__(self) -> AbstractTransport:
        """Async context manager entry - opens the transport."""
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit - closes the transport."""
        await self.close()
