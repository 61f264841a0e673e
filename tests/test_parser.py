"""Tests for response parsing."""

import pytest

from ssr_lcd.errors import ProtocolStatusError
from ssr_lcd.protocol.framing import RESPONSE_REPORT_ID, build_frame, parse_frame
from ssr_lcd.protocol.parser import (
    Response,
    parse_response,
    parse_response_payload,
    parse_status,
)

STATUS_TEXT = (
    "param 200\r\n"
    "AckNumber=43\r\n"
    "ContentType=json\r\n"
    "ContentLength=150\r\n"
    "\r\n"
    '{"brightness":100,"degree":0,"osdState":0,"keepAliveTimeout":5,'
    '"maxSuspendMediaCount":5,"displayInSleep":0,"suspendMediaActive":[1,0,0,1,1]}'
)


def test_parse_headers_and_body():
    response = parse_response(STATUS_TEXT)
    assert response.command == "param"
    assert response.status_code == 200
    assert response.ack_number == 43
    assert response.sequence_number == 42
    assert response.content_type == "json"
    assert response.content_length == 150
    assert response.body.startswith('{"brightness":100')
    assert response.ok
    assert response.deliverable


def test_parse_multiline_body_joined_with_newlines():
    """Once a line contains '{', all following lines are body."""
    text = 'sn 200\r\nAckNumber=2\r\n\r\n{\r\n"sn":"X1"\r\n}'
    response = parse_response(text)
    assert response.body == '{\n"sn":"X1"\n}'
    assert response.json() == {"sn": "X1"}


def test_parse_strips_nul_padding():
    response = parse_response("brightness 200\r\nAckNumber=5\r\n\x00\x00\x00")
    assert response.status_code == 200
    assert response.ack_number == 5
    assert response.body is None


def test_parse_bad_header_value_is_zero():
    response = parse_response("rotate 200\r\nAckNumber=abc\r\nContentLength=?\r\n")
    assert response.ack_number == 0
    assert response.content_length == 0
    assert not response.deliverable


@pytest.mark.parametrize("text", ["", "   ", "onlytoken", "param OK\r\nAckNumber=2"])
def test_parse_malformed_status_line(text):
    assert parse_response(text) is None


def test_parse_payload_bytes():
    """Frame payload bytes decode through the same parser."""
    report = build_frame(b"timestamp 200\r\nAckNumber=10\r\n", RESPONSE_REPORT_ID)
    response = parse_response_payload(parse_frame(report).payload)
    assert response.command == "timestamp"
    assert response.ack_number == 10


def test_json_invalid_body_is_none():
    response = Response(command="param", status_code=200, body="{not json")
    assert response.json() is None


def test_raise_for_status():
    """Status >= 400 raises ProtocolStatusError with the details."""
    Response(command="brightness", status_code=200).raise_for_status()

    response = Response(command="transport", status_code=500, body='{"err":"busy"}')
    assert response.is_error
    with pytest.raises(ProtocolStatusError) as excinfo:
        response.raise_for_status()
    assert excinfo.value.status_code == 500
    assert excinfo.value.command == "transport"
    assert excinfo.value.body == '{"err":"busy"}'


def test_parse_status():
    status = parse_status(parse_response(STATUS_TEXT))
    assert status.brightness == 100
    assert status.rotation == 0
    assert not status.osd_active
    assert status.keepalive_timeout == 5
    assert status.max_suspend_slots == 5
    assert not status.display_in_sleep
    assert status.suspend_slots == (True, False, False, True, True)
    assert status.active_slots == [0, 3, 4]
    assert status.active_slot_count == 3


def test_parse_status_ignores_oversized_slot_array():
    text = STATUS_TEXT.replace("[1,0,0,1,1]", "[1,1,1,1,1,1]")
    status = parse_status(parse_response(text))
    assert status.suspend_slots == (False,) * 5
    assert status.brightness == 100


def test_parse_status_missing_fields_default():
    response = Response(command="param", status_code=200, body='{"brightness":40}')
    status = parse_status(response)
    assert status.brightness == 40
    assert status.max_suspend_slots == 0
    assert status.suspend_slots == (False,) * 5


def test_parse_status_rejects_error_and_empty():
    assert parse_status(None) is None
    assert parse_status(Response(command="param", status_code=404, body="{}")) is None
    assert parse_status(Response(command="param", status_code=200)) is None
