"""
Loader frame codec.

Every message travels as a length-prefixed frame:

    [LEN_HI][LEN_LO][OPCODE][FIELDS...]

- LEN: big-endian u16 counting the bytes after the prefix
- OPCODE: one byte, see Opcode
- FIELDS: per-opcode layout, always in the order length (u8),
  address (u32, big-endian), data (raw bytes, last)

Requests and replies of MEM_READ and MEM_WRITE have different layouts, so
both directions take a ``reply`` flag. The codec is pure: it never touches
the transport or timers.
"""

from __future__ import annotations

import struct
from enum import Enum, auto
from typing import Final

from osmoload.exceptions import (
    EncodingTooLargeError,
    MalformedFrameError,
    TruncatedFrameError,
    UnknownOpcodeError,
)
from osmoload.models.records import Message
from osmoload.protocol.constants import Opcode, ProtocolConstants


class FieldKind(Enum):
    """Fields that can follow the opcode byte."""

    LENGTH = auto()
    """Unsigned 8-bit memory length."""

    ADDRESS = auto()
    """Unsigned 32-bit big-endian memory address."""

    DATA = auto()
    """Raw memory contents, ``length`` bytes."""


_LENGTH = FieldKind.LENGTH
_ADDRESS = FieldKind.ADDRESS
_DATA = FieldKind.DATA

REQUEST_LAYOUTS: Final[dict[Opcode, tuple[FieldKind, ...]]] = {
    Opcode.PING: (),
    Opcode.RESET: (),
    Opcode.POWEROFF: (),
    Opcode.ENTER_ROM_LOADER: (),
    Opcode.ENTER_FLASH_LOADER: (),
    Opcode.MEM_READ: (_LENGTH, _ADDRESS),
    Opcode.MEM_WRITE: (_LENGTH, _ADDRESS, _DATA),
    Opcode.JUMP: (_ADDRESS,),
}
"""Field layout of each request opcode. INIT is never requested."""

REPLY_LAYOUTS: Final[dict[Opcode, tuple[FieldKind, ...]]] = {
    Opcode.INIT: (),
    Opcode.PING: (),
    Opcode.RESET: (),
    Opcode.POWEROFF: (),
    Opcode.ENTER_ROM_LOADER: (),
    Opcode.ENTER_FLASH_LOADER: (),
    Opcode.MEM_READ: (_LENGTH, _ADDRESS, _DATA),
    Opcode.MEM_WRITE: (_LENGTH, _ADDRESS),
    Opcode.JUMP: (_ADDRESS,),
}
"""Field layout of each reply opcode."""

_PREFIX = struct.Struct(">H")
_U8 = struct.Struct(">B")
_U32 = struct.Struct(">I")


def _layout_for(opcode: int, reply: bool) -> tuple[Opcode, tuple[FieldKind, ...]]:
    try:
        op = Opcode(opcode)
    except ValueError:
        raise UnknownOpcodeError(opcode) from None

    layouts = REPLY_LAYOUTS if reply else REQUEST_LAYOUTS
    layout = layouts.get(op)
    if layout is None:
        direction = "reply" if reply else "request"
        raise UnknownOpcodeError(opcode, f"{op.name} is not a valid {direction}")
    return op, layout


def encode(
    opcode: int,
    *,
    length: int | None = None,
    address: int | None = None,
    data: bytes | bytearray | memoryview | None = None,
    reply: bool = False,
) -> bytes:
    """
    Encode one frame.

    Args:
        opcode: Loader opcode.
        length: Memory length; defaults to ``len(data)`` when data is given.
        address: Memory address.
        data: Memory contents.
        reply: Encode with the reply layout instead of the request layout.

    Returns:
        Complete frame including the length prefix.

    Raises:
        UnknownOpcodeError: If the opcode has no layout in this direction.
        EncodingTooLargeError: If the payload exceeds MSGB_MAX.
        ValueError: If a field is missing, superfluous or out of range.
    """
    op, layout = _layout_for(opcode, reply)

    if length is None and data is not None and _LENGTH in layout:
        length = len(data)

    supplied = {_LENGTH: length, _ADDRESS: address, _DATA: data}
    for kind, value in supplied.items():
        if value is not None and kind not in layout:
            raise ValueError(f"{op.name} takes no {kind.name.lower()} field")

    payload = bytearray(_U8.pack(op))
    for kind in layout:
        if kind is _LENGTH:
            if length is None:
                raise ValueError(f"{op.name} requires a length")
            if not 0 <= length <= ProtocolConstants.MAX_LENGTH_FIELD:
                raise ValueError(f"Length {length} does not fit in one byte")
            payload += _U8.pack(length)
        elif kind is _ADDRESS:
            if address is None:
                raise ValueError(f"{op.name} requires an address")
            if not 0 <= address <= ProtocolConstants.MAX_ADDRESS:
                raise ValueError(f"Address 0x{address:x} does not fit in 32 bits")
            payload += _U32.pack(address)
        else:
            if data is None:
                raise ValueError(f"{op.name} requires data")
            if len(data) != length:
                raise ValueError(
                    f"Data length {len(data)} does not match length field {length}"
                )
            payload += data

    if len(payload) > ProtocolConstants.MSGB_MAX:
        raise EncodingTooLargeError(
            f"{op.name} frame too large",
            size=len(payload),
            limit=ProtocolConstants.MSGB_MAX,
        )

    return _PREFIX.pack(len(payload)) + bytes(payload)


def encode_message(message: Message, *, reply: bool = False) -> bytes:
    """Encode a Message; see encode()."""
    return encode(
        message.opcode,
        length=message.length,
        address=message.address,
        data=message.data,
        reply=reply,
    )


def decode(frame: bytes | bytearray | memoryview, *, reply: bool = True) -> Message:
    """
    Decode one complete frame.

    Args:
        frame: Frame bytes including the length prefix.
        reply: Decode with the reply layout (default) or the request layout.

    Returns:
        The decoded Message.

    Raises:
        TruncatedFrameError: If fewer bytes are available than declared,
            or a field runs past the end of the payload.
        MalformedFrameError: If the payload is empty, oversized or followed
            by trailing bytes.
        UnknownOpcodeError: If the opcode byte is not a loader opcode.
    """
    buffer = bytes(frame)
    prefix_size = ProtocolConstants.LENGTH_PREFIX_SIZE

    if len(buffer) < prefix_size:
        raise TruncatedFrameError(
            "Truncated length prefix", expected=prefix_size, available=len(buffer)
        )

    (declared,) = _PREFIX.unpack_from(buffer)
    if declared > ProtocolConstants.MSGB_MAX:
        raise MalformedFrameError(
            f"Declared length {declared} exceeds maximum {ProtocolConstants.MSGB_MAX}"
        )

    end = prefix_size + declared
    if len(buffer) < end:
        raise TruncatedFrameError(expected=end, available=len(buffer))
    if len(buffer) > end:
        raise MalformedFrameError(f"{len(buffer) - end} trailing bytes after frame")
    if declared == 0:
        raise MalformedFrameError("Empty frame payload")

    op, layout = _layout_for(buffer[prefix_size], reply)

    offset = prefix_size + 1
    fields: dict[str, int | bytes] = {}
    length = 0
    for kind in layout:
        if kind is _LENGTH:
            size = _U8.size
        elif kind is _ADDRESS:
            size = _U32.size
        else:
            size = length

        if offset + size > end:
            raise TruncatedFrameError(
                f"{op.name} {kind.name.lower()} field truncated",
                expected=offset + size,
                available=end,
            )

        if kind is _LENGTH:
            (length,) = _U8.unpack_from(buffer, offset)
            fields["length"] = length
        elif kind is _ADDRESS:
            (fields["address"],) = _U32.unpack_from(buffer, offset)
        else:
            fields["data"] = buffer[offset:offset + size]
        offset += size

    if offset != end:
        raise MalformedFrameError(
            f"{op.name} payload has {end - offset} unexpected trailing bytes"
        )

    return Message(opcode=op, **fields)
