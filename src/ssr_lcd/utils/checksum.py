"""8-bit additive checksum used by the command/response frame envelope."""

from __future__ import annotations


def checksum8(data: bytes) -> int:
    """Return the low 8 bits of the sum of all bytes in ``data``.

    Args:
        data: Bytes to sum (length field followed by the unescaped payload).

    Returns:
        Checksum value 0-255.
    """
    return sum(data) & 0xFF


def verify_checksum8(data: bytes, expected: int) -> bool:
    """Check ``data`` against a received checksum byte."""
    return checksum8(data) == (expected & 0xFF)
