"""
Hex parsing and dump helpers for the command line.

Example:
    >>> parse_hex_int("0x1000")
    4096
    >>> parse_hex_bytes("deadbeef")
    b'\\xde\\xad\\xbe\\xef'
"""

from __future__ import annotations

import string

BYTES_PER_LINE = 32
GROUP_SIZE = 4
HEX_COLUMN_WIDTH = 71

_GRAPHIC = frozenset(
    (string.ascii_letters + string.digits + string.punctuation).encode("ascii")
)


def parse_hex_int(text: str) -> int:
    """
    Parse a hexadecimal number, with or without a ``0x`` prefix.

    Raises:
        ValueError: If the text is not a non-negative hex number.
    """
    value = text.strip()
    if value[:2].lower() == "0x":
        value = value[2:]
    if not value or any(c not in string.hexdigits for c in value):
        raise ValueError(f"Invalid hex number: {text!r}")
    return int(value, 16)


def parse_hex_bytes(text: str) -> bytes:
    """
    Parse a string of hex digit pairs into bytes.

    Raises:
        ValueError: If the string is empty, has an odd length or contains
            non-hex characters.
    """
    value = text.strip()
    if not value or len(value) % 2 or any(c not in string.hexdigits for c in value):
        raise ValueError("Invalid hex string.")
    return bytes.fromhex(value)


def hexdump(data: bytes) -> str:
    """
    Format bytes as a hex dump.

    Each line holds up to 32 bytes as hex, grouped by four, padded to a
    fixed column and followed by the printable characters (``.`` for
    anything else).
    """
    lines = []
    for offset in range(0, len(data), BYTES_PER_LINE):
        line = data[offset:offset + BYTES_PER_LINE]
        groups = [
            line[i:i + GROUP_SIZE].hex() for i in range(0, len(line), GROUP_SIZE)
        ]
        text = "".join(chr(b) if b in _GRAPHIC else "." for b in line)
        lines.append(f"{' '.join(groups):<{HEX_COLUMN_WIDTH}} {text}")
    return "\n".join(lines)
