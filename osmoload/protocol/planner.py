"""
Chunk planning for memory transfers.

A read or write of N bytes is split into chunks that each fit one frame.
Chunks are computed one at a time from the job's progress, greedily filling
each chunk up to ``max_chunk`` bytes, which gives the minimum number of
round trips.

Example:
    >>> [(hex(c.address), c.length) for c in plan_chunks(500, 0x1000, 240)]
    [('0x1000', 240), ('0x10f0', 240), ('0x11e0', 20)]
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

from osmoload.protocol.constants import ProtocolConstants


class TransferDirection(Enum):
    """Direction of a memory transfer, seen from the host."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Chunk:
    """One bounded slice of a transfer."""

    address: int
    length: int


@dataclass
class TransferJob:
    """
    Progress of a multi-chunk memory transfer.

    Invariants:
        cursor_address == start_address + transferred
        0 <= transferred <= total_length
    """

    direction: TransferDirection
    total_length: int
    start_address: int
    transferred: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.total_length < 0:
            raise ValueError(f"Transfer length must not be negative, got {self.total_length}")
        if not 0 <= self.start_address <= ProtocolConstants.MAX_ADDRESS:
            raise ValueError(f"Start address 0x{self.start_address:x} does not fit in 32 bits")
        if self.start_address + self.total_length > ProtocolConstants.MAX_ADDRESS + 1:
            raise ValueError("Transfer runs past the end of the 32-bit address space")

    @property
    def cursor_address(self) -> int:
        """Address of the next byte to transfer."""
        return self.start_address + self.transferred

    @property
    def remaining(self) -> int:
        """Bytes not yet transferred."""
        return self.total_length - self.transferred

    @property
    def is_complete(self) -> bool:
        """Check if every requested byte has been transferred."""
        return self.transferred == self.total_length

    def advance(self, length: int) -> None:
        """
        Record ``length`` more bytes as transferred.

        Raises:
            ValueError: If length is negative or overruns the job.
        """
        if length < 0 or length > self.remaining:
            raise ValueError(
                f"Cannot advance by {length} bytes with {self.remaining} remaining"
            )
        self.transferred += length


def _check_max_chunk(max_chunk: int) -> None:
    if not 1 <= max_chunk <= ProtocolConstants.MAX_LENGTH_FIELD:
        raise ValueError(
            f"max_chunk must be between 1 and {ProtocolConstants.MAX_LENGTH_FIELD}, got {max_chunk}"
        )


def next_chunk(job: TransferJob, max_chunk: int) -> Chunk | None:
    """
    Compute the next chunk of a job without advancing it.

    Args:
        job: Transfer in progress.
        max_chunk: Largest chunk length.

    Returns:
        The next chunk, or None when the job is complete.
    """
    _check_max_chunk(max_chunk)
    remaining = job.remaining
    if remaining == 0:
        return None
    return Chunk(job.cursor_address, min(remaining, max_chunk))


def plan_chunks(
    total_length: int,
    start_address: int,
    max_chunk: int = ProtocolConstants.MEM_MSG_MAX,
) -> Iterator[Chunk]:
    """
    Lazily yield the chunks covering a transfer.

    Each call starts a fresh plan, so the sequence can be restarted by
    calling again.

    Args:
        total_length: Bytes to transfer.
        start_address: Address of the first byte.
        max_chunk: Largest chunk length.

    Yields:
        Chunks in address order; none when total_length is 0.
    """
    _check_max_chunk(max_chunk)
    job = TransferJob(TransferDirection.READ, total_length, start_address)
    while True:
        chunk = next_chunk(job, max_chunk)
        if chunk is None:
            return
        yield chunk
        job.advance(chunk.length)
