"""Command names, sequence numbering and pseudo-HTTP request builders.

Every command travels as ASCII request text inside an escaped frame::

    POST <command> 1\\r\\n
    SeqNumber=<n>\\r\\n
    ContentType=json\\r\\n
    ContentLength=<len>\\r\\n
    \\r\\n
    <json>

The keep-alive uses the request line ``STATE timestamp 1`` instead.
The device answers with ``AckNumber = SeqNumber + 1``.
"""

from __future__ import annotations

import json
import string
from enum import Enum
from typing import Any, Container

from .framing import COMMAND_REPORT_ID, build_frame

SEQUENCE_START = 1
SEQUENCE_LIMIT = 0xFFFFFFFF - 1  # counter resets before reaching this value

VALID_ROTATIONS = (0, 90, 180, 270)
DELETE_ALL = "all"


class CommandName(str, Enum):
    """Command tokens used in the request line."""

    BRIGHTNESS = "brightness"
    ROTATE = "rotate"
    DISPLAY_IN_SLEEP = "displayInSleep"
    REALTIME_DISPLAY = "realtimeDisplay"
    KEEPALIVE_TIMER = "timeout"
    PARAM = "param"
    TRANSPORT = "transport"
    TRANSPORTED = "transported"
    DELETE_MEDIA = "delMedia"
    SET_SERIAL_NUMBER = "setDeviceSN"
    GET_SERIAL_NUMBER = "getDeviceSN"
    SET_SKU_COLOR = "setSKUColor"
    GET_SKU_COLOR = "getSKUColor"
    KEEPALIVE = "timestamp"


class TransportKind(str, Enum):
    """``type`` value announced by a ``transport`` command."""

    MEDIA = "media"
    SUSPEND = "suspend"
    LOGO = "logo"
    FIRMWARE = "firmware"


class SequenceCounter:
    """Monotonic SeqNumber source that wraps back to 1.

    Values are never 0 and never reach ``SEQUENCE_LIMIT``. Not thread-safe
    on its own; callers share it under the pending-request lock.
    """

    def __init__(self, start: int = SEQUENCE_START) -> None:
        if not SEQUENCE_START <= start < SEQUENCE_LIMIT:
            raise ValueError(f"Sequence start must be 1-{SEQUENCE_LIMIT - 1}, got {start}")
        self._current = start

    @property
    def current(self) -> int:
        return self._current

    def _advance(self) -> int:
        value = self._current
        self._current += 1
        if self._current >= SEQUENCE_LIMIT:
            self._current = SEQUENCE_START
        return value

    def next(self, in_use: Container[int] = ()) -> int:
        """Return the next sequence number, skipping any still in flight."""
        value = self._advance()
        # Only possible after a wrap.
        while value in in_use:
            value = self._advance()
        return value


def _json_text(body: dict[str, Any] | None) -> str:
    if body is None:
        return ""
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False)


def _request_text(request_line: str, sequence_number: int, content: str) -> str:
    content_length = len(content.encode("utf-8"))
    return (
        f"{request_line}\r\n"
        f"SeqNumber={sequence_number}\r\n"
        f"ContentType=json\r\n"
        f"ContentLength={content_length}\r\n"
        f"\r\n"
        f"{content}"
    )


def _command_token(command: CommandName | str) -> str:
    return command.value if isinstance(command, CommandName) else str(command)


def build_command_text(
    command: CommandName | str,
    sequence_number: int,
    body: dict[str, Any] | None = None,
) -> str:
    """Render the pseudo-HTTP request text for ``command``."""
    return _request_text(
        f"POST {_command_token(command)} 1", sequence_number, _json_text(body)
    )


def build_keepalive_text(sequence_number: int, timestamp: int) -> str:
    """Render the ``STATE timestamp`` keep-alive request text."""
    return _request_text(
        f"STATE {CommandName.KEEPALIVE.value} 1",
        sequence_number,
        _json_text({"timestamp": int(timestamp)}),
    )


def build_command(
    command: CommandName | str,
    sequence_number: int,
    body: dict[str, Any] | None = None,
) -> bytes:
    """Build a framed HID report for a command."""
    text = build_command_text(command, sequence_number, body)
    return build_frame(text.encode("utf-8"), COMMAND_REPORT_ID)


def build_keepalive(sequence_number: int, timestamp: int) -> bytes:
    """Build a framed HID report for the keep-alive command."""
    text = build_keepalive_text(sequence_number, timestamp)
    return build_frame(text.encode("utf-8"), COMMAND_REPORT_ID)


# ─── BODY BUILDERS ────────────────────────────────────────────────────


def brightness_body(value: int) -> dict[str, int]:
    """Body for ``brightness``.

    Args:
        value: Brightness 0-100.
    """
    if not 0 <= value <= 100:
        raise ValueError(f"Brightness must be 0-100, got {value}")
    return {"value": value}


def rotation_body(degrees: int) -> dict[str, int]:
    """Body for ``rotate``. Degrees must be 0, 90, 180 or 270."""
    if degrees not in VALID_ROTATIONS:
        raise ValueError(f"Rotation must be one of {VALID_ROTATIONS}, got {degrees}")
    return {"degree": degrees}


def enable_body(enable: bool) -> dict[str, bool]:
    return {"enable": bool(enable)}


def keepalive_timer_body(seconds: int) -> dict[str, int]:
    """Body for ``timeout``: keep-alive timeout (also per-file suspend duration)."""
    if seconds < 0:
        raise ValueError(f"Keep-alive timeout must be >= 0, got {seconds}")
    return {"value": seconds}


def transport_body(
    kind: TransportKind | str, file_name: str, file_size: int
) -> dict[str, Any]:
    """Body announcing an upcoming file transfer."""
    if not file_name:
        raise ValueError("File name cannot be empty")
    if file_size <= 0:
        raise ValueError(f"File size must be positive, got {file_size}")
    return {
        "type": TransportKind(kind).value,
        "fileName": file_name,
        "fileSize": file_size,
    }


def transported_body(file_name: str, md5: str) -> dict[str, str]:
    """Body confirming a finished transfer."""
    if not file_name:
        raise ValueError("File name cannot be empty")
    return {"fileName": file_name, "md5": md5}


def delete_media_body(
    kind: TransportKind | str = TransportKind.SUSPEND, file_name: str = DELETE_ALL
) -> dict[str, str]:
    """Body for ``delMedia``. ``fileName="all"`` clears every file of ``kind``."""
    if not file_name:
        raise ValueError("File name cannot be empty")
    return {"type": TransportKind(kind).value, "fileName": file_name}


def serial_number_body(serial_number: str) -> dict[str, str]:
    serial_number = serial_number.strip()
    if not serial_number:
        raise ValueError("Serial number cannot be empty")
    return {"sn": serial_number.upper()}


def sku_color_body(color: str | int) -> dict[str, str]:
    """Body for ``setSKUColor``.

    Integers are sent as ``0xNNNN``. Strings must be ``0x``-prefixed hex
    and are sent as given.
    """
    if isinstance(color, int):
        if not 0 <= color <= 0xFFFF:
            raise ValueError(f"SKU color value must be 0-0xFFFF, got {color}")
        color = f"0x{color:04X}"
    if not color:
        raise ValueError("SKU color cannot be empty")
    if not color.lower().startswith("0x"):
        raise ValueError(f"SKU color must start with '0x', got {color!r}")
    digits = color[2:]
    if not digits or any(c not in string.hexdigits for c in digits):
        raise ValueError(f"SKU color must be a hex value, got {color!r}")
    return {"color": color}
