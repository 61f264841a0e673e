"""Shared fixtures: an in-memory HID connection that can answer commands."""

from __future__ import annotations

import json
import queue

import pytest

from ssr_lcd.errors import TransportError
from ssr_lcd.protocol.framing import (
    COMMAND_REPORT_ID,
    RESPONSE_REPORT_ID,
    build_frame,
    decode_frame,
)
from ssr_lcd.transport.usb_connection import DeviceInfo

# Upper bound on a single fake read so listener threads stop quickly.
FAKE_READ_SLICE = 0.02


def response_report(command, status=200, ack=1, body=None):
    """Build a framed device response report."""
    content = "" if body is None else json.dumps(body, separators=(",", ":"))
    text = (
        f"{command} {status}\r\n"
        f"AckNumber={ack}\r\n"
        f"ContentType=json\r\n"
        f"ContentLength={len(content)}\r\n"
        f"\r\n"
        f"{content}"
    )
    return build_frame(text.encode(), RESPONSE_REPORT_ID)


def parse_request(report):
    """Decode a command report into ``(command, seq, body)``."""
    frame = decode_frame(report, report_ids=(COMMAND_REPORT_ID,))
    text = frame.payload.decode()
    head, _, content = text.partition("\r\n\r\n")
    lines = head.split("\r\n")
    command = lines[0].split()[1]
    seq = next(int(line.split("=", 1)[1]) for line in lines if line.startswith("SeqNumber="))
    return command, seq, json.loads(content) if content else None


def make_responder(bodies=None, status=200, silent=()):
    """Answer every command with ``status``; ``bodies`` maps command -> reply body."""
    bodies = bodies or {}

    def responder(command, seq, body):
        if command in silent:
            return None
        reply = bodies.get(command)
        if callable(reply):
            reply = reply(body)
        code = status(command) if callable(status) else status
        return response_report(command, code, seq + 1, reply)

    return responder


class FakeConnection:
    """Records writes and queues responses for the listener to read."""

    def __init__(self, responder=None, feature_reports=None, serial_number="SN0001"):
        self.writes: list[bytes] = []
        self.responder = responder
        self.feature_reports = dict(feature_reports or {})
        self.connected = True
        self.closed = False
        self.fail_writes = False
        self.read_errors = 0
        self.device_info = DeviceInfo(serial_number=serial_number, path="fake-path")
        self._inbox: queue.Queue = queue.Queue()

    def write(self, data):
        if self.fail_writes:
            raise TransportError("write failed")
        data = bytes(data)
        self.writes.append(data)
        if self.responder is not None and data[0] == COMMAND_REPORT_ID:
            reply = self.responder(*parse_request(data))
            if reply is not None:
                self._inbox.put(reply)
        return len(data)

    def read(self, size=1024, timeout_ms=1000):
        if self.read_errors:
            self.read_errors -= 1
            raise TransportError("read failed")
        try:
            return self._inbox.get(timeout=min(timeout_ms / 1000, FAKE_READ_SLICE))
        except queue.Empty:
            return None

    def push(self, report):
        self._inbox.put(report)

    def get_feature_report(self, report_id, size=1024):
        if report_id not in self.feature_reports:
            raise TransportError(f"no feature report 0x{report_id:02X}")
        return self.feature_reports[report_id]

    def close(self):
        self.closed = True
        self.connected = False

    def command_writes(self):
        """Decoded ``(command, seq, body)`` for every command report written."""
        return [parse_request(w) for w in self.writes if w[0] == COMMAND_REPORT_ID]

    def block_writes(self):
        return [w for w in self.writes if w[0] == 0x1F]


DEVICE_INFO_REPORT = bytes([0x01, 1, 0, 2, 3, 4, 5])
CAPABILITIES_REPORT = bytes(
    [0x14]
    + [0x01, 0x02, 0x00, 0x03]  # display mode: off + ssr
    + [0x03, 0x02, 0x40, 0x01]  # width 320
    + [0x04, 0x02, 0xF0, 0x00]  # height 240
    + [0x06, 0x01, 30]  # max fps
    + [0x0B, 0x02, 0x00, 0x02]  # decode support: JPEG
)

STATUS_BODY = {
    "brightness": 80,
    "degree": 90,
    "osdState": 0,
    "keepAliveTimeout": 5,
    "maxSuspendMediaCount": 5,
    "displayInSleep": 1,
    "suspendMediaActive": [1, 0, 0, 1, 1],
}


@pytest.fixture
def connection():
    """A connection that answers every command with 200 and a status body for ``param``."""
    return FakeConnection(
        responder=make_responder({"param": STATUS_BODY}),
        feature_reports={0x01: DEVICE_INFO_REPORT, 0x14: CAPABILITIES_REPORT},
    )
