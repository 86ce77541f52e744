"""
Transport layer for loader protocol communication.

This package provides transport implementations for reaching the loader
broker over various byte streams.

Available transports:
- UnixSocketTransport: Unix domain socket exposed by the broker (default)
- AsyncSerialTransport: Serial port or pyserial URL using pyserial-asyncio
- MockTransport: Mock transport for testing without hardware

Example:
    >>> from osmoload.transport import UnixSocketTransport
    >>> async with UnixSocketTransport("/tmp/osmocom_loader") as transport:
    ...     await transport.write(frame)
    ...     reply = await transport.read_frame()

Testing Example:
    >>> from osmoload.transport import LoaderSimulator, MockTransport
    >>> mock = MockTransport()
    >>> mock.set_response_callback(LoaderSimulator())
"""

from osmoload.transport.abc import AbstractTransport
from osmoload.transport.mock import LoaderSimulator, MockTransport, ScriptedMockTransport
from osmoload.transport.serial_async import AsyncSerialTransport
from osmoload.transport.unix_socket import UnixSocketTransport

__all__ = [
    "AbstractTransport",
    "AsyncSerialTransport",
    "LoaderSimulator",
    "MockTransport",
    "ScriptedMockTransport",
    "UnixSocketTransport",
]
