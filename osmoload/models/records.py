"""
Pydantic models for loader protocol records.

This module defines the data structures exchanged between the codec, the
session state machine and callers, implemented as immutable Pydantic models
with validation.

Design principles:
- All models are frozen (immutable)
- Field ranges mirror the wire widths (u8 length, u32 address)
- A result carries either a success payload or a typed failure, never both
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from osmoload.exceptions import OsmoloadError
from osmoload.protocol.constants import Opcode, ProtocolConstants


class Message(BaseModel):
    """
    Decoded loader message.

    Only the fields present in the opcode's layout are set; the others
    stay None.

    Example:
        >>> msg = Message(opcode=Opcode.MEM_READ, length=4, address=0x1000)
        >>> msg.opcode.name
        'MEM_READ'
    """

    model_config = ConfigDict(frozen=True)

    opcode: Opcode = Field(description="Loader opcode")
    length: int | None = Field(
        default=None,
        ge=0,
        le=ProtocolConstants.MAX_LENGTH_FIELD,
        description="Memory length (u8)",
    )
    address: int | None = Field(
        default=None,
        ge=0,
        le=ProtocolConstants.MAX_ADDRESS,
        description="Memory address (u32)",
    )
    data: bytes | None = Field(default=None, description="Memory contents")

    @model_validator(mode="after")
    def check_data_length(self) -> Message:
        """Ensure data agrees with the length field."""
        if self.data is not None and self.length is not None and len(self.data) != self.length:
            raise ValueError(
                f"Data length {len(self.data)} does not match length field {self.length}"
            )
        return self

    def __str__(self) -> str:
        parts = [self.opcode.name]
        if self.length is not None:
            parts.append(f"length={self.length}")
        if self.address is not None:
            parts.append(f"address=0x{self.address:08x}")
        return " ".join(parts)


class CommandResult(BaseModel):
    """
    Terminal outcome of one top-level command.

    Attributes:
        opcode: Opcode of the top-level command.
        reply: Matched reply for single-frame commands.
        data: Collected data for memory reads held in memory.
        bytes_transferred: Bytes moved by a transfer (or a single read/write).
        error: The failure, if the command did not succeed.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    opcode: Opcode
    reply: Message | None = None
    data: bytes | None = None
    bytes_transferred: int = Field(default=0, ge=0)
    error: OsmoloadError | None = None

    @property
    def succeeded(self) -> bool:
        """Check if the command completed without error."""
        return self.error is None

    def raise_for_error(self) -> None:
        """
        Raise the stored failure, if any.

        Raises:
            OsmoloadError: The error that terminated the command.
        """
        if self.error is not None:
            raise self.error

    def __repr__(self) -> str:
        status = "ok" if self.succeeded else type(self.error).__name__
        return f"CommandResult({self.opcode.name}, {status}, bytes={self.bytes_transferred})"
