"""
Data sources and sinks for memory transfers.

A read transfer hands every received chunk to a DataSink; a write transfer
pulls each chunk's payload from a DataSource. Both are accessed strictly
sequentially by one session. OS-level failures are wrapped in DataSinkError
or DataSourceError so the session can tell them apart from protocol errors.
"""

from __future__ import annotations

from typing import BinaryIO, Protocol, runtime_checkable

from osmoload.exceptions import DataSinkError, DataSourceError, EndOfDataError


@runtime_checkable
class DataSink(Protocol):
    """Receives the data of a read transfer, in address order."""

    def write_chunk(self, data: bytes) -> None:
        """Store the next chunk."""
        ...


@runtime_checkable
class DataSource(Protocol):
    """Provides the data of a write transfer, in address order."""

    def read_chunk(self, max_length: int) -> bytes:
        """Return exactly max_length bytes or raise EndOfDataError."""
        ...


class BytesSink:
    """
    Collects a read transfer in memory.

    Example:
        >>> sink = BytesSink()
        >>> sink.write_chunk(b"ab")
        >>> sink.write_chunk(b"cd")
        >>> sink.getvalue()
        b'abcd'
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def write_chunk(self, data: bytes) -> None:
        self._buffer.extend(data)

    def getvalue(self) -> bytes:
        """Everything written so far."""
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)


class FileSink:
    """
    Writes a read transfer to an open binary file.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj
        self.bytes_written = 0

    def write_chunk(self, data: bytes) -> None:
        try:
            self._file.write(data)
        except OSError as e:
            raise DataSinkError(f"Error writing to dump file: {e}") from e
        self.bytes_written += len(data)


class BytesSource:
    """
    Serves a write transfer from memory.
    """

    def __init__(self, data: bytes | bytearray | memoryview) -> None:
        self._data = bytes(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        """Bytes not yet served."""
        return len(self._data) - self._offset

    def read_chunk(self, max_length: int) -> bytes:
        if self.remaining < max_length:
            raise EndOfDataError(requested=max_length, received=self.remaining)
        chunk = self._data[self._offset:self._offset + max_length]
        self._offset += max_length
        return chunk


class FileSource:
    """
    Serves a write transfer from an open binary file.

    Short reads are retried until the chunk is full; the file ending early
    raises EndOfDataError instead of sending a partly filled chunk.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._file = fileobj
        self.bytes_read = 0

    def read_chunk(self, max_length: int) -> bytes:
        parts: list[bytes] = []
        received = 0
        while received < max_length:
            try:
                part = self._file.read(max_length - received)
            except OSError as e:
                raise DataSourceError(f"Could not read from file: {e}") from e
            if not part:
                raise EndOfDataError(requested=max_length, received=received)
            parts.append(part)
            received += len(part)

        self.bytes_read += received
        return b"".join(parts)
