"""
Unix domain socket transport.

The loader broker (the process owning the device's serial line) exposes
the loader channel as a Unix stream socket, ``/tmp/osmocom_loader`` by
default. Frames are exchanged on it unchanged.

Example:
    >>> async with UnixSocketTransport() as transport:
    ...     await transport.write(frame)
    ...     reply = await transport.read_frame(timeout=0.5)
"""

from __future__ import annotations

import asyncio
import logging

from osmoload.exceptions import (
    ConnectionClosedError,
    ConnectionError,
    TimeoutError,
    TransportError,
)
from osmoload.protocol.constants import ProtocolConstants
from osmoload.transport.abc import AbstractTransport

logger = logging.getLogger(__name__)


class UnixSocketTransport(AbstractTransport):
    """
    Async transport over a Unix domain stream socket.

    Attributes:
        endpoint: Socket path.
        is_open: Whether the socket is connected.
    """

    def __init__(self, path: str = ProtocolConstants.DEFAULT_SOCKET_PATH) -> None:
        """
        Initialize the transport.

        Args:
            path: Filesystem path of the broker socket.
        """
        self._path = path
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @property
    def is_open(self) -> bool:
        """Check if the socket is connected."""
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
        )

    @property
    def endpoint(self) -> str:
        """Get the socket path."""
        return self._path

    async def open(self) -> None:
        """
        Connect to the broker socket.

        Raises:
            ConnectionError: If the socket does not exist or refuses.
        """
        if self.is_open:
            return

        try:
            self._reader, self._writer = await asyncio.open_unix_connection(self._path)
        except OSError as e:
            raise ConnectionError(f"Failed to connect to '{self._path}': {e}") from e

        logger.debug("Connected to %s", self._path)

    async def close(self) -> None:
        """
        Close the socket. Safe to call multiple times.
        """
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError:
                # Peer already gone
                pass
            logger.debug("Closed %s", self._path)

        self._reader = None
        self._writer = None

    async def write(self, data: bytes) -> None:
        """
        Write data to the socket.

        Raises:
            TransportError: If the socket is not open or write fails.
        """
        if not self.is_open:
            raise TransportError("Socket is not open")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Error writing: {e}") from e

    async def read(self, size: int, timeout: float | None = None) -> bytes:
        """
        Read exactly ``size`` bytes, accumulating partial reads.

        Raises:
            TimeoutError: If timeout expires first.
            ConnectionClosedError: If the broker closes the socket.
            TransportError: If the socket is not open or read fails.
        """
        if not self.is_open:
            raise TransportError("Socket is not open")

        if size <= 0:
            return b""

        try:
            return await asyncio.wait_for(self._reader.readexactly(size), timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"Timeout waiting for {size} bytes",
                timeout_seconds=timeout,
            ) from None
        except asyncio.IncompleteReadError as e:
            raise ConnectionClosedError(
                f"Connection closed: expected {size} bytes, got {len(e.partial)}"
            ) from e
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e

    def discard_buffers(self) -> None:
        """Nothing to discard: stream sockets have no device buffers."""

    def __repr__(self) -> str:
        status = "open" if self.is_open else "closed"
        return f"UnixSocketTransport({self._path!r}, {status})"
