"""Parsers for the device-info (0x01) and capability (0x14) feature reports.

Capability report layout::

    +-----------+-----+-----+---------+-----+-----+---------+-----
    | Report ID | Tag | Len |  Value  | Tag | Len |  Value  | ...
    | 1 byte    | 1 B | 1 B | Len B   | 1 B | 1 B | Len B   |
    +-----------+-----+-----+---------+-----+-----+---------+-----

Multi-byte values are little-endian, except tag 0x0B (decode support)
which the firmware sends big-endian.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Iterator

from ..models.device import (
    Capabilities,
    DeviceFirmwareInfo,
    FirmwareVersion,
    HardwareVersion,
)

logger = logging.getLogger(__name__)

DEVICE_INFO_MIN_SIZE = 7


class CapabilityTag(IntEnum):
    """TLV tags in the capability report."""

    DISPLAY_MODE = 0x01
    INTERFACE = 0x02
    WIDTH = 0x03
    HEIGHT = 0x04
    FORMAT = 0x05
    MAX_FPS = 0x06
    TRANSFER_INTERFACE = 0x07
    ROTATION_SUPPORT = 0x08
    MAX_FILE_SIZE = 0x09
    MAX_FRAME_COUNT = 0x0A
    DECODE_SUPPORT = 0x0B
    OVERLAY_SUPPORT = 0x0C
    CMD_FORMAT = 0x0D


# tag -> (field name, expected length, byte order)
_NUMERIC_FIELDS: dict[int, tuple[str, int, str]] = {
    CapabilityTag.INTERFACE: ("interface", 1, "little"),
    CapabilityTag.WIDTH: ("width", 2, "little"),
    CapabilityTag.HEIGHT: ("height", 2, "little"),
    CapabilityTag.FORMAT: ("format", 1, "little"),
    CapabilityTag.MAX_FPS: ("max_fps", 1, "little"),
    CapabilityTag.TRANSFER_INTERFACE: ("transfer_interface", 1, "little"),
    CapabilityTag.ROTATION_SUPPORT: ("rotation_support", 1, "little"),
    CapabilityTag.MAX_FILE_SIZE: ("max_file_size", 4, "little"),
    CapabilityTag.MAX_FRAME_COUNT: ("max_frame_count", 2, "little"),
    CapabilityTag.DECODE_SUPPORT: ("decode_support", 2, "big"),
    CapabilityTag.OVERLAY_SUPPORT: ("overlay_support", 1, "little"),
    CapabilityTag.CMD_FORMAT: ("cmd_format", 1, "little"),
}


def iter_tlv(data: bytes, offset: int = 1) -> Iterator[tuple[int, bytes]]:
    """Yield ``(tag, value)`` pairs from a TLV buffer.

    Iteration stops when fewer than two bytes remain or an entry's
    declared length would run past the end of the buffer.
    """
    while offset < len(data) - 1:
        tag = data[offset]
        length = data[offset + 1]
        if offset + 2 + length > len(data):
            logger.debug(
                "Truncated TLV entry: tag=0x%02X, length=%d, remaining=%d",
                tag,
                length,
                len(data) - offset - 2,
            )
            break
        yield tag, data[offset + 2 : offset + 2 + length]
        offset += 2 + length


def parse_capabilities(data: bytes) -> Capabilities:
    """Decode the capability feature report.

    Args:
        data: The raw feature report, report id at byte 0.

    Returns:
        A ``Capabilities`` record. Fields whose tag is absent or carries an
        unexpected length keep their zero/False defaults.
    """
    fields: dict[str, object] = {}

    for tag, value in iter_tlv(data):
        if tag == CapabilityTag.DISPLAY_MODE:
            if len(value) == 2:
                # Flags live in the second value byte.
                fields["off_mode_supported"] = bool(value[1] & 0x01)
                fields["ssr_mode_supported"] = bool(value[1] & 0x02)
            continue

        entry = _NUMERIC_FIELDS.get(tag)
        if entry is None:
            logger.debug("Unknown capability tag 0x%02X", tag)
            continue

        name, size, byteorder = entry
        if len(value) != size:
            logger.debug(
                "Capability tag 0x%02X has length %d, expected %d",
                tag,
                len(value),
                size,
            )
            continue
        fields[name] = int.from_bytes(value, byteorder)

    return Capabilities(**fields)


def parse_firmware_info(data: bytes) -> DeviceFirmwareInfo | None:
    """Decode the device-info feature report.

    Layout: byte 0 report id, bytes 1-2 hardware major/minor, bytes 3-6
    firmware major/minor/revision/build. 0xFF marks a value the device
    does not have.

    Returns:
        ``DeviceFirmwareInfo``, or ``None`` if the report is too short.
    """
    if data is None or len(data) < DEVICE_INFO_MIN_SIZE:
        return None

    return DeviceFirmwareInfo(
        hardware=HardwareVersion(major=data[1], minor=data[2]),
        firmware=FirmwareVersion(
            major=data[3], minor=data[4], revision=data[5], build=data[6]
        ),
    )
