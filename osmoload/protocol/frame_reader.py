"""
Length-prefixed stream reassembly.

Stream transports deliver bytes in arbitrary pieces: one read may hold half
a frame, or two frames and the start of a third. This module splits such a
byte stream back into complete frames using the 2-byte big-endian length
prefix:

    [LEN_HI][LEN_LO][PAYLOAD: LEN bytes]

The reader only checks the framing. Interpreting the payload is the codec's
job.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum, auto

from osmoload.exceptions import MalformedFrameError
from osmoload.protocol.constants import ProtocolConstants


class FrameParseResult(Enum):
    """
    Result codes for frame parsing operations.

    These indicate the outcome of attempting to parse a frame from
    a byte buffer.
    """

    SUCCESS = auto()
    """A complete frame was found at the start of the buffer."""

    EMPTY_BUFFER = auto()
    """Buffer is empty, no data to parse."""

    INCOMPLETE_FRAME = auto()
    """Buffer contains partial frame data, more bytes needed."""

    INVALID_FORMAT = auto()
    """Length prefix is zero or exceeds MSGB_MAX."""


@dataclass(frozen=True)
class ParsedFrame:
    """
    A complete length-prefixed frame.

    Attributes:
        length: Declared payload length.
        payload: Payload bytes (opcode and fields).
        raw_frame: Complete frame including the prefix.
        bytes_consumed: Number of bytes consumed from the input buffer.
    """

    length: int
    payload: bytes
    raw_frame: bytes
    bytes_consumed: int

    def __repr__(self) -> str:
        return f"ParsedFrame(length={self.length})"


@dataclass(frozen=True)
class FrameParseError:
    """
    Details about a frame parsing failure.

    Provides diagnostic information when parsing fails.
    """

    result: FrameParseResult
    message: str
    needed: int = 0


class FrameReader:
    """
    Length-prefixed frame parser.

    The parser is stateless and can be reused for multiple parse
    operations.

    Example:
        >>> reader = FrameReader()
        >>> result, frame = reader.parse(b"\\x00\\x01\\x02")
        >>> assert result == FrameParseResult.SUCCESS
        >>> assert frame.payload == b"\\x02"
    """

    _prefix = struct.Struct(">H")

    def parse(
        self,
        buffer: bytes | bytearray | memoryview,
    ) -> tuple[FrameParseResult, ParsedFrame | FrameParseError]:
        """
        Parse one frame from the start of the input buffer.

        Args:
            buffer: Input buffer containing stream data.

        Returns:
            Tuple of (result, frame_or_error):
            - On success: (SUCCESS, ParsedFrame)
            - On failure: (error_code, FrameParseError)
        """
        if not buffer:
            return FrameParseResult.EMPTY_BUFFER, FrameParseError(
                result=FrameParseResult.EMPTY_BUFFER,
                message="Buffer is empty",
                needed=ProtocolConstants.LENGTH_PREFIX_SIZE,
            )

        prefix_size = ProtocolConstants.LENGTH_PREFIX_SIZE
        if len(buffer) < prefix_size:
            return FrameParseResult.INCOMPLETE_FRAME, FrameParseError(
                result=FrameParseResult.INCOMPLETE_FRAME,
                message="Buffer too small for length prefix",
                needed=prefix_size - len(buffer),
            )

        (length,) = self._prefix.unpack_from(buffer)

        if length == 0 or length > ProtocolConstants.MSGB_MAX:
            return FrameParseResult.INVALID_FORMAT, FrameParseError(
                result=FrameParseResult.INVALID_FORMAT,
                message=f"Invalid frame length {length} (allowed 1..{ProtocolConstants.MSGB_MAX})",
            )

        expected_size = prefix_size + length
        if len(buffer) < expected_size:
            return FrameParseResult.INCOMPLETE_FRAME, FrameParseError(
                result=FrameParseResult.INCOMPLETE_FRAME,
                message=f"Incomplete frame (need {expected_size}, have {len(buffer)})",
                needed=expected_size - len(buffer),
            )

        raw = bytes(buffer[:expected_size])
        frame = ParsedFrame(
            length=length,
            payload=raw[prefix_size:],
            raw_frame=raw,
            bytes_consumed=expected_size,
        )
        return FrameParseResult.SUCCESS, frame


class FrameBuffer:
    """
    Accumulates stream data and yields complete frames.

    Example:
        >>> buffer = FrameBuffer()
        >>> buffer.feed(b"\\x00\\x01")
        []
        >>> buffer.feed(b"\\x02\\x00")
        [b'\\x00\\x01\\x02']
        >>> buffer.pending
        1
    """

    def __init__(self, reader: FrameReader | None = None) -> None:
        self._reader = reader or DEFAULT_FRAME_READER
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet forming a complete frame."""
        return len(self._buffer)

    @property
    def needed(self) -> int:
        """
        Bytes still missing from the frame being assembled.

        Reading exactly this many bytes never crosses a frame boundary.
        """
        result, parsed = self._reader.parse(self._buffer)
        if result in (FrameParseResult.EMPTY_BUFFER, FrameParseResult.INCOMPLETE_FRAME):
            return parsed.needed
        return ProtocolConstants.LENGTH_PREFIX_SIZE

    def feed(self, data: bytes | bytearray | memoryview) -> list[bytes]:
        """
        Append stream data and extract every complete frame.

        Args:
            data: Newly received bytes.

        Returns:
            Complete frames (with prefix) in arrival order.

        Raises:
            MalformedFrameError: If a length prefix is invalid. The stream
                cannot be resynchronized after this.
        """
        self._buffer.extend(data)
        frames: list[bytes] = []

        while True:
            result, parsed = self._reader.parse(self._buffer)
            if result == FrameParseResult.SUCCESS:
                frames.append(parsed.raw_frame)
                del self._buffer[:parsed.bytes_consumed]
                continue
            if result == FrameParseResult.INVALID_FORMAT:
                raise MalformedFrameError(parsed.message)
            return frames

    def clear(self) -> None:
        """Drop any buffered partial frame."""
        self._buffer.clear()


# Module-level convenience instance
DEFAULT_FRAME_READER: FrameReader = FrameReader()
"""Default FrameReader instance for convenience."""


def parse_frame(
    buffer: bytes | bytearray | memoryview,
) -> tuple[FrameParseResult, ParsedFrame | FrameParseError]:
    """
    Parse a frame using the default frame reader.

    Args:
        buffer: Input buffer containing stream data.

    Returns:
        Tuple of (result, frame_or_error).
    """
    return DEFAULT_FRAME_READER.parse(buffer)
