"""
Protocol layer for loader communication.

This module contains the low-level protocol handling:
- Opcodes and protocol constants
- Frame encoding/decoding
- Stream frame reassembly
- Transfer chunk planning
"""

from osmoload.protocol.codec import (
    REPLY_LAYOUTS,
    REQUEST_LAYOUTS,
    FieldKind,
    decode,
    encode,
    encode_message,
)
from osmoload.protocol.constants import (
    SIMPLE_COMMANDS,
    UNSOLICITED_CODES,
    Opcode,
    ProtocolConstants,
)
from osmoload.protocol.frame_reader import (
    DEFAULT_FRAME_READER,
    FrameBuffer,
    FrameParseError,
    FrameParseResult,
    FrameReader,
    ParsedFrame,
    parse_frame,
)
from osmoload.protocol.planner import (
    Chunk,
    TransferDirection,
    TransferJob,
    next_chunk,
    plan_chunks,
)

__all__ = [
    # Constants
    "Opcode",
    "ProtocolConstants",
    "SIMPLE_COMMANDS",
    "UNSOLICITED_CODES",
    # Codec
    "FieldKind",
    "REQUEST_LAYOUTS",
    "REPLY_LAYOUTS",
    "encode",
    "encode_message",
    "decode",
    # Frame Parsing
    "FrameReader",
    "FrameBuffer",
    "FrameParseResult",
    "ParsedFrame",
    "FrameParseError",
    "parse_frame",
    "DEFAULT_FRAME_READER",
    # Transfer Planning
    "Chunk",
    "TransferDirection",
    "TransferJob",
    "next_chunk",
    "plan_chunks",
]
