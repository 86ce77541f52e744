"""
Calypso loader protocol opcodes and constants.

Opcode values mirror the loader firmware's command enumeration and must not
be renumbered: the device compares them byte for byte.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final


class Opcode(IntEnum):
    """
    Loader protocol opcodes.

    Every request is answered by a reply carrying the same opcode. INIT is
    the exception: it is sent by the loader on its own when it starts and
    never correlates to a request.
    """

    INIT = 0x00
    """Loader has been started (unsolicited, reply-only)."""

    PING = 0x01
    """Liveness check."""

    RESET = 0x02
    """Reset the device."""

    POWEROFF = 0x03
    """Power off the device."""

    JUMP = 0x04
    """Jump to an address."""

    ENTER_ROM_LOADER = 0x05
    """Leave this loader for the ROM loader."""

    ENTER_FLASH_LOADER = 0x06
    """Leave this loader for the flash loader."""

    MEM_READ = 0x07
    """Read up to one chunk of memory."""

    MEM_WRITE = 0x08
    """Write up to one chunk of memory."""


class ProtocolConstants:
    """
    Loader protocol constants.

    Contains frame sizing, timing values and connection defaults used
    throughout the implementation.
    """

    # ===== Framing =====

    LENGTH_PREFIX_SIZE: Final[int] = 2
    """Size of the big-endian length prefix in bytes."""

    MSGB_MAX: Final[int] = 256
    """Maximum payload size of one frame (value of the length prefix)."""

    MEM_MSG_MAX: Final[int] = MSGB_MAX - 16
    """Maximum memory payload carried by one MEM_READ/MEM_WRITE chunk."""

    MAX_LENGTH_FIELD: Final[int] = 0xFF
    """Largest value of the u8 length field."""

    MAX_ADDRESS: Final[int] = 0xFFFFFFFF
    """Largest value of the u32 address field."""

    # ===== Timing (seconds) =====

    DEFAULT_QUERY_TIMEOUT: Final[float] = 0.5
    """Deadline for each reply."""

    # ===== Connection defaults =====

    DEFAULT_SOCKET_PATH: Final[str] = "/tmp/osmocom_loader"
    """Unix domain socket exposed by the loader broker."""

    DEFAULT_BAUD_RATE: Final[int] = 115200
    """Baud rate for serial-attached brokers."""


SIMPLE_COMMANDS: Final[frozenset[int]] = frozenset({
    Opcode.PING,
    Opcode.RESET,
    Opcode.POWEROFF,
    Opcode.ENTER_ROM_LOADER,
    Opcode.ENTER_FLASH_LOADER,
})
"""Request opcodes without fields."""

UNSOLICITED_CODES: Final[frozenset[int]] = frozenset({
    Opcode.INIT,
})
"""Opcodes that may arrive at any time without a matching request."""

CONFIRMATION_MESSAGES: Final[dict[int, str]] = {
    Opcode.PING: "Received pong.",
    Opcode.RESET: "Reset confirmed.",
    Opcode.POWEROFF: "Poweroff confirmed.",
    Opcode.ENTER_ROM_LOADER: "Jump to ROM loader confirmed.",
    Opcode.ENTER_FLASH_LOADER: "Jump to flash loader confirmed.",
}
"""Human readable confirmation for each simple command."""
