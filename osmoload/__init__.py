"""
osmoload - Python client for the Calypso loader protocol.

This library talks to the loader running on a Calypso baseband device
through the broker that owns the device's serial line, supporting memory
peek/poke, bulk memory dump and load, jumps and power control.

Example:
    >>> from osmoload import LoaderClient
    >>> from osmoload.transport import UnixSocketTransport
    >>>
    >>> async def main():
    ...     async with LoaderClient(UnixSocketTransport()) as client:
    ...         await client.ping()
    ...         print((await client.mem_get(0x00800000, 16)).hex())
"""

from osmoload.client import LoaderClient
from osmoload.exceptions import (
    ConnectionClosedError,
    ConnectionError,
    DataError,
    DataSinkError,
    DataSourceError,
    EndOfDataError,
    FrameError,
    OsmoloadError,
    ProtocolError,
    QueryTimeoutError,
    SessionStateError,
    TimeoutError,
    TransportError,
)
from osmoload.models import CommandResult, LoaderSettings, Message
from osmoload.protocol.constants import Opcode
from osmoload.session import LoaderSession, SessionState
from osmoload.transport import AbstractTransport, AsyncSerialTransport, UnixSocketTransport

__version__ = "0.1.0"
__all__ = [
    # Client
    "LoaderClient",
    "LoaderSession",
    "SessionState",
    # Models
    "Message",
    "CommandResult",
    "LoaderSettings",
    "Opcode",
    # Exceptions
    "OsmoloadError",
    "ProtocolError",
    "FrameError",
    "TimeoutError",
    "QueryTimeoutError",
    "ConnectionError",
    "ConnectionClosedError",
    "TransportError",
    "DataError",
    "DataSourceError",
    "EndOfDataError",
    "DataSinkError",
    "SessionStateError",
    # Transport
    "AbstractTransport",
    "UnixSocketTransport",
    "AsyncSerialTransport",
    # Version
    "__version__",
]
