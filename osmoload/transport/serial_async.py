"""
Async serial transport using pyserial-asyncio.

This module provides a transport for brokers reachable through a serial
device or any pyserial URL handler, for example a pty created by socat
or ``socket://host:port`` for a broker exported over TCP.

Serial Configuration:
- Baud rate: 115200 (default)
- Data bits: 8
- Parity: None
- Stop bits: 1
- Flow control: None

The byte stream carries the same length-prefixed frames as the Unix
socket transport.

Example:
    >>> transport = AsyncSerialTransport("socket://localhost:4242")
    >>> async with transport:
    ...     await transport.write(frame)
    ...     reply = await transport.read_frame(timeout=0.5)
"""

from __future__ import annotations

import asyncio

import serial
import serial_asyncio

from osmoload.exceptions import (
    ConnectionClosedError,
    ConnectionError,
    TimeoutError,
    TransportError,
)
from osmoload.protocol.constants import ProtocolConstants
from osmoload.transport.abc import AbstractTransport


class AsyncSerialTransport(AbstractTransport):
    """
    Async serial transport using pyserial-asyncio.

    Provides non-blocking serial communication using Python's asyncio
    framework. Any URL understood by ``serial.serial_for_url`` is accepted
    as the port.

    Attributes:
        endpoint: Serial port path or URL (e.g., "/dev/ttyUSB0", "loop://").
        is_open: Whether the port is currently open.

    Example:
        >>> transport = AsyncSerialTransport("/dev/ttyUSB0", baudrate=115200)
        >>> await transport.open()
        >>> try:
        ...     await transport.write(b"\\x00\\x01\\x02")
        ...     reply = await transport.read_frame(timeout=0.5)
        ... finally:
        ...     await transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = ProtocolConstants.DEFAULT_BAUD_RATE,
    ) -> None:
        """
        Initialize the async serial transport.

        Args:
            port: Serial port path or pyserial URL.
            baudrate: Baud rate (default: 115200).
        """
        self._port = port
        self._baudrate = baudrate
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._serial_instance: serial.Serial | None = None

    @property
    def is_open(self) -> bool:
        """Check if the serial port is currently open."""
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
        )

    @property
    def endpoint(self) -> str:
        """Get the serial port path or URL."""
        return self._port

    @property
    def baudrate(self) -> int:
        """Get the configured baud rate."""
        return self._baudrate

    async def open(self) -> None:
        """
        Open the serial port connection.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        if self.is_open:
            return

        try:
            self._reader, self._writer = await serial_asyncio.open_serial_connection(
                url=self._port,
                baudrate=self._baudrate,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                bytesize=serial.EIGHTBITS,
                # No flow control
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
            # Get reference to underlying serial port for buffer operations
            transport = self._writer.transport
            if hasattr(transport, "serial"):
                self._serial_instance = transport.serial

        except serial.SerialException as e:
            raise ConnectionError(f"Failed to open serial port {self._port}: {e}") from e
        except OSError as e:
            raise ConnectionError(f"OS error opening {self._port}: {e}") from e

    async def close(self) -> None:
        """
        Close the serial port connection.

        Safely closes the connection and releases resources. Safe to call
        multiple times.
        """
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (OSError, serial.SerialException):
                # Port already gone
                pass

        self._reader = None
        self._writer = None
        self._serial_instance = None

    async def write(self, data: bytes) -> None:
        """
        Write data to the serial port.

        Args:
            data: Bytes to transmit.

        Raises:
            TransportError: If the port is not open or write fails.
        """
        if not self.is_open:
            raise TransportError("Serial port is not open")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except (OSError, serial.SerialException) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read an exact number of bytes from the serial port.

        Args:
            size: Number of bytes to read.
            timeout: Read timeout in seconds. None waits indefinitely.

        Returns:
            Exactly `size` bytes.

        Raises:
            TimeoutError: If timeout expires before all bytes are received.
            ConnectionClosedError: If the port closes mid-read.
            TransportError: If the port is not open or read fails.
        """
        if not self.is_open:
            raise TransportError("Serial port is not open")

        if size <= 0:
            return b""

        try:
            return await asyncio.wait_for(
                self._reader.readexactly(size),
                timeout=timeout,
            )

        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Timeout waiting for {size} bytes",
                timeout_seconds=timeout,
            ) from None
        except asyncio.IncompleteReadError as e:
            raise ConnectionClosedError(
                f"Connection closed: expected {size} bytes, got {len(e.partial)}"
            ) from e
        except (OSError, serial.SerialException) as e:
            raise TransportError(f"Read failed: {e}") from e

    def discard_buffers(self) -> None:
        """
        Discard any pending data in input and output buffers.

        Note: This operates on the underlying serial port and may not
        affect data already buffered by the asyncio layer.
        """
        if self._serial_instance is not None:
            try:
                self._serial_instance.reset_input_buffer()
                self._serial_instance.reset_output_buffer()
            except (OSError, serial.SerialException):
                # Port may be closed
                pass

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"AsyncSerialTransport({self._port!r}, baudrate={self._baudrate}, {status})"
