"""Response parsing for device messages.

A response frame carries pseudo-HTTP text::

    <token> <status>
    AckNumber=<seq + 1>
    ContentType=json
    ContentLength=<len>

    {"brightness":100,...}
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import ProtocolStatusError
from ..models.device import DeviceStatus

logger = logging.getLogger(__name__)

STATUS_OK = 200
STATUS_ERROR_MIN = 400

_ACK_HEADER = "AckNumber="
_CONTENT_TYPE_HEADER = "ContentType="
_CONTENT_LENGTH_HEADER = "ContentLength="


def _parse_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


@dataclass
class Response:
    """A parsed device response."""

    command: str
    status_code: int
    ack_number: int = 0
    content_type: str | None = None
    content_length: int = 0
    body: str | None = None
    received_at: float = field(default_factory=time.monotonic, compare=False)

    @property
    def ok(self) -> bool:
        return self.status_code == STATUS_OK

    @property
    def is_error(self) -> bool:
        return self.status_code >= STATUS_ERROR_MIN

    @property
    def deliverable(self) -> bool:
        """Only responses with a positive AckNumber belong to a request."""
        return self.ack_number > 0

    @property
    def sequence_number(self) -> int:
        """SeqNumber of the request this response answers."""
        return self.ack_number - 1

    def json(self) -> dict[str, Any] | None:
        """Decode the body as a JSON object, or ``None`` if it is not one."""
        if not self.body:
            return None
        try:
            data = json.loads(self.body)
        except json.JSONDecodeError as e:
            logger.debug("Response body is not valid JSON: %s", e)
            return None
        return data if isinstance(data, dict) else None

    def raise_for_status(self) -> None:
        """Raise ``ProtocolStatusError`` if the status is an error (>= 400)."""
        if self.is_error:
            raise ProtocolStatusError(self.command, self.status_code, self.body)

    def __repr__(self) -> str:
        return (
            f"Response(command={self.command!r}, status={self.status_code}, "
            f"ack={self.ack_number}, body={self.body!r})"
        )


def parse_response(text: str) -> Response | None:
    """Parse pseudo-HTTP response text.

    Returns:
        The ``Response``, or ``None`` if the status line is missing or
        malformed. Header values that are not integers parse as 0.
    """
    text = text.replace("\x00", "").strip()
    lines = [line for line in text.replace("\r", "\n").split("\n") if line]
    if not lines:
        return None

    status_line = lines[0].split()
    if len(status_line) < 2:
        return None
    try:
        status_code = int(status_line[1])
    except ValueError:
        return None

    response = Response(command=status_line[0], status_code=status_code)
    body_lines: list[str] = []
    in_body = False

    for line in lines[1:]:
        if "{" in line:
            in_body = True
        if in_body:
            body_lines.append(line)
        elif line.startswith(_ACK_HEADER):
            response.ack_number = _parse_int(line[len(_ACK_HEADER):])
        elif line.startswith(_CONTENT_TYPE_HEADER):
            response.content_type = line[len(_CONTENT_TYPE_HEADER):] or None
        elif line.startswith(_CONTENT_LENGTH_HEADER):
            response.content_length = _parse_int(line[len(_CONTENT_LENGTH_HEADER):])

    if body_lines:
        response.body = "\n".join(body_lines)
    return response


def parse_response_payload(payload: bytes) -> Response | None:
    """Parse the de-escaped payload of a response frame."""
    return parse_response(payload.decode("utf-8", errors="replace"))


def parse_status(response: Response | None) -> DeviceStatus | None:
    """Build a ``DeviceStatus`` from a successful ``param`` response."""
    if response is None or not response.ok:
        return None
    data = response.json()
    if data is None:
        logger.debug("Status response has no JSON body: %r", response.body)
        return None
    return DeviceStatus.from_dict(data)
