"""Exception types raised by the display engine."""

from __future__ import annotations


class DisplayError(Exception):
    """Base class for all display engine errors."""


class TransportError(DisplayError, ConnectionError):
    """Opening, reading from, or writing to the HID device failed."""


class FrameDecodeError(DisplayError, ValueError):
    """An inbound report is not a well-formed command/response frame."""


class ResponseTimeoutError(DisplayError, TimeoutError):
    """No response matching a request arrived before its deadline."""

    def __init__(self, command: str, sequence_number: int, timeout: float) -> None:
        super().__init__(
            f"No response to '{command}' (SeqNumber={sequence_number}) "
            f"within {timeout:.1f}s"
        )
        self.command = command
        self.sequence_number = sequence_number
        self.timeout = timeout


class ProtocolStatusError(DisplayError):
    """The device answered with an application-level error status (>= 400)."""

    def __init__(self, command: str, status_code: int, body: str | None = None) -> None:
        message = f"'{command}' failed with status {status_code}"
        if body:
            message += f": {body}"
        super().__init__(message)
        self.command = command
        self.status_code = status_code
        self.body = body
