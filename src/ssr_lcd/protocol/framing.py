r"""Command/response frame builder and parser for the escaped HID envelope.

Frame layout::

    +-----------+--------+---------+------------------+----------+--------+
    | Report ID | Marker | Length  |     Payload      | Checksum | Marker |
    | 1 byte    | 0x5A   | 2 bytes |  variable length |  1 byte  | 0x5A   |
    +-----------+--------+---------+------------------+----------+--------+
                         \_______________ escaped ______________/

- Report ID: 0x1E for host-to-device commands, 0x20 for device responses
- Length: big-endian distance from the first marker to the second marker,
  both markers included, measured on the unescaped bytes (payload + 5)
- Checksum: low 8 bits of the sum of the two length bytes and the payload
- Escaping: inside the markers 0x5A becomes 0x5B 0x01 and 0x5B becomes
  0x5B 0x02; the two markers themselves are written as-is
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import FrameDecodeError
from ..utils.checksum import checksum8, verify_checksum8

logger = logging.getLogger(__name__)

MARKER = 0x5A
ESCAPE = 0x5B
ESCAPED_MARKER = 0x01
ESCAPED_ESCAPE = 0x02

COMMAND_REPORT_ID = 0x1E
RESPONSE_REPORT_ID = 0x20
RESPONSE_REPORT_IDS = (RESPONSE_REPORT_ID, COMMAND_REPORT_ID)

FRAME_OVERHEAD = 5  # length(2) + checksum(1) + markers(2)
MIN_FRAME_SIZE = 6  # report id + marker + length(2) + checksum + marker
LENGTH_TOLERANCE = 2
MAX_PAYLOAD_SIZE = 0xFFFF - FRAME_OVERHEAD


@dataclass
class Frame:
    """A decoded protocol frame."""

    report_id: int
    payload: bytes
    consumed: int
    checksum_ok: bool = True

    def __repr__(self) -> str:
        return (
            f"Frame(report_id=0x{self.report_id:02X}, "
            f"payload_len={len(self.payload)}, consumed={self.consumed}, "
            f"checksum_ok={self.checksum_ok})"
        )


def escape(data: bytes) -> bytes:
    """Byte-stuff ``data`` so it contains no bare 0x5A marker bytes."""
    out = bytearray()
    for b in data:
        if b == MARKER:
            out += bytes([ESCAPE, ESCAPED_MARKER])
        elif b == ESCAPE:
            out += bytes([ESCAPE, ESCAPED_ESCAPE])
        else:
            out.append(b)
    return bytes(out)


def unescape(data: bytes) -> bytes:
    """Reverse :func:`escape`.

    A 0x5B that is not followed by 0x01 or 0x02 is kept as a literal byte.
    """
    out = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if b == ESCAPE and i + 1 < len(data):
            nxt = data[i + 1]
            if nxt == ESCAPED_MARKER:
                out.append(MARKER)
                i += 2
                continue
            if nxt == ESCAPED_ESCAPE:
                out.append(ESCAPE)
                i += 2
                continue
        out.append(b)
        i += 1
    return bytes(out)


def build_frame(payload: bytes, report_id: int = COMMAND_REPORT_ID) -> bytes:
    """Build a complete HID report carrying ``payload`` in an escaped frame.

    Args:
        payload: Unescaped payload bytes (the pseudo-HTTP request text).
        report_id: HID report id to prefix, 0x1E for commands.

    Returns:
        Report bytes ready for :meth:`HIDConnection.write`.
    """
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(
            f"Payload too large for one frame: {len(payload)} bytes "
            f"(max {MAX_PAYLOAD_SIZE})"
        )
    length = (len(payload) + FRAME_OVERHEAD).to_bytes(2, "big")
    body = length + payload
    body += bytes([checksum8(body)])
    return bytes([report_id, MARKER]) + escape(body) + bytes([MARKER])


def decode_frame(
    data: bytes,
    report_ids: tuple[int, ...] = RESPONSE_REPORT_IDS,
    verify_checksum: bool = False,
) -> Frame:
    """Decode one escaped frame from a raw HID report.

    The end marker is located by scanning backward from the end of the
    buffer, so zero padding after it is ignored. A declared length that
    differs from the actual marker-to-marker distance by up to two bytes
    is accepted. Checksum mismatches are logged and recorded on the frame;
    they only reject the frame when ``verify_checksum`` is set.

    Raises:
        FrameDecodeError: If the report does not hold a usable frame.
    """
    if len(data) < MIN_FRAME_SIZE:
        raise FrameDecodeError(f"Report too short: {len(data)} bytes")
    if data[0] not in report_ids:
        raise FrameDecodeError(f"Unexpected report id 0x{data[0]:02X}")
    if data[1] != MARKER:
        raise FrameDecodeError(f"Bad start marker 0x{data[1]:02X}")

    end = data.rfind(bytes([MARKER]), 2)
    if end == -1:
        raise FrameDecodeError("End marker not found")

    body = unescape(data[2:end])
    if len(body) < 3:
        raise FrameDecodeError(f"Frame body too short: {len(body)} bytes")

    declared = int.from_bytes(body[0:2], "big")
    actual = len(body) + 2
    if abs(declared - actual) > LENGTH_TOLERANCE:
        raise FrameDecodeError(
            f"Length mismatch: declared={declared}, actual={actual}"
        )

    payload = body[2:-1]
    checksum_ok = verify_checksum8(body[:-1], body[-1])
    if not checksum_ok:
        logger.debug(
            "Checksum mismatch: expected=0x%02X, received=0x%02X",
            checksum8(body[:-1]),
            body[-1],
        )
        if verify_checksum:
            raise FrameDecodeError("Checksum mismatch")

    return Frame(
        report_id=data[0],
        payload=payload,
        consumed=end + 1,
        checksum_ok=checksum_ok,
    )


def parse_frame(
    data: bytes,
    report_ids: tuple[int, ...] = RESPONSE_REPORT_IDS,
    verify_checksum: bool = False,
) -> Frame | None:
    """Parse a raw HID report into a Frame.

    Returns:
        A ``Frame`` if the report contains a usable frame, or ``None``
        if it is malformed.
    """
    try:
        return decode_frame(data, report_ids, verify_checksum)
    except FrameDecodeError as e:
        logger.debug("Dropping report: %s", e)
        return None
