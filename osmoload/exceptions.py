"""
Exception hierarchy for osmoload.

All exceptions inherit from OsmoloadError, providing a clean hierarchy
for error handling. The design follows these principles:

1. Frame errors (encoding, truncation, unknown opcodes) are protocol errors
2. Timeouts and connection loss are distinct from protocol violations
3. Local data source/sink failures never masquerade as device errors
4. Every error is terminal for the command it occurred in
"""

from __future__ import annotations


class OsmoloadError(Exception):
    """
    Base exception for all osmoload errors.

    All library-specific exceptions inherit from this class, allowing
    callers to catch all osmoload errors with a single except clause.
    """

    pass


class ProtocolError(OsmoloadError):
    """
    Protocol-level error.

    Raised when the protocol is violated, such as:
    - Reply opcode does not match the pending request
    - Reply describes a different chunk than the one requested
    - Malformed frame
    """

    pass


class FrameError(ProtocolError):
    """
    Frame encoding or decoding error.

    Base class for every failure of the frame codec.
    """

    pass


class EncodingTooLargeError(FrameError):
    """
    Frame payload exceeds the maximum frame size.
    """

    def __init__(
        self,
        message: str = "Frame payload too large",
        *,
        size: int | None = None,
        limit: int | None = None,
    ) -> None:
        super().__init__(message)
        self.size = size
        self.limit = limit

    def __str__(self) -> str:
        base = super().__str__()
        if self.size is not None and self.limit is not None:
            return f"{base} ({self.size} bytes, limit {self.limit})"
        return base


class TruncatedFrameError(FrameError):
    """
    Fewer bytes are available than the frame declares.
    """

    def __init__(
        self,
        message: str = "Truncated frame",
        *,
        expected: int | None = None,
        available: int | None = None,
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.available = available

    def __str__(self) -> str:
        base = super().__str__()
        if self.expected is not None and self.available is not None:
            return f"{base} (need {self.expected} bytes, have {self.available})"
        return base


class UnknownOpcodeError(FrameError):
    """
    Opcode byte matches none of the loader opcodes.
    """

    def __init__(self, opcode: int, message: str | None = None) -> None:
        self.opcode = opcode
        super().__init__(message or f"Unknown opcode 0x{opcode:02X}")


class MalformedFrameError(FrameError):
    """
    Frame structure is invalid.

    Raised for empty payloads, oversized length prefixes and trailing
    bytes after the declared payload.
    """

    pass


class TimeoutError(OsmoloadError):  # noqa: A001 - intentionally shadows builtin
    """
    Communication timeout.

    Raised when a transport read does not complete within its deadline.
    """

    def __init__(
        self,
        message: str = "Communication timeout",
        *,
        timeout_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds

    def __str__(self) -> str:
        base = super().__str__()
        if self.timeout_seconds is not None:
            return f"{base} (after {self.timeout_seconds:.1f}s)"
        return base


class QueryTimeoutError(TimeoutError):
    """
    No reply within the deadline.

    Raised when the loader does not answer a request in time. This may
    indicate the device is not running the loader or the broker is stuck.
    """

    def __init__(
        self,
        message: str = "Query timed out",
        *,
        timeout_seconds: float | None = None,
        opcode: int | None = None,
    ) -> None:
        super().__init__(message, timeout_seconds=timeout_seconds)
        self.opcode = opcode


class ConnectionError(OsmoloadError):  # noqa: A001 - intentionally shadows builtin
    """
    Broker connection error.

    Raised when:
    - Cannot connect to the broker socket
    - The connection is unexpectedly lost
    """

    pass


class ConnectionClosedError(ConnectionError):
    """
    The peer closed the connection while a reply was outstanding.
    """

    pass


class TransportError(OsmoloadError):
    """
    Transport-level error.

    Raised for low-level transport issues:
    - Socket or serial port errors
    - I/O errors on write
    - Operations on a transport that is not open
    """

    pass


class DataError(OsmoloadError):
    """
    Local transfer data error.

    Raised when the caller-provided data source or sink fails. The
    protocol state is intact; the transfer is aborted without sending
    further chunks.
    """

    pass


class DataSourceError(DataError):
    """
    Reading the payload for a write transfer failed.
    """

    pass


class EndOfDataError(DataSourceError):
    """
    The data source ended before the requested length was read.
    """

    def __init__(
        self,
        message: str = "Data source exhausted",
        *,
        requested: int | None = None,
        received: int | None = None,
    ) -> None:
        super().__init__(message)
        self.requested = requested
        self.received = received

    def __str__(self) -> str:
        base = super().__str__()
        if self.requested is not None and self.received is not None:
            return f"{base} (requested {self.requested} bytes, got {self.received})"
        return base


class DataSinkError(DataError):
    """
    Storing data received by a read transfer failed.
    """

    pass


class SessionStateError(OsmoloadError):
    """
    A session was used in a way its current state does not allow.

    Raised for caller errors such as submitting a second command on the
    same session or passing an opcode that is not a simple command.
    """

    pass
