"""Tests for the response listener and request correlation."""

import queue
import threading
import time

import pytest

from conftest import FakeConnection, make_responder, parse_request, response_report
from ssr_lcd.errors import ResponseTimeoutError, TransportError
from ssr_lcd.listener import ResponseListener
from ssr_lcd.protocol.commands import CommandName
from ssr_lcd.protocol.parser import Response


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


@pytest.fixture
def listener():
    conn = FakeConnection(responder=make_responder())
    listener = ResponseListener(conn, retry_delay=0.01)
    listener.start()
    yield listener
    listener.stop()


def test_request_receives_matching_response(listener):
    """The response carries AckNumber = SeqNumber + 1."""
    response = listener.request(CommandName.BRIGHTNESS, {"value": 80}, timeout=2.0)
    assert response is not None
    assert response.ok
    assert response.command == "brightness"
    assert response.ack_number == 2
    assert listener.pending_count == 0


def test_request_timeout_returns_none():
    """No response within the timeout yields None and no leaked entry."""
    conn = FakeConnection(responder=make_responder(silent={"param"}))
    listener = ResponseListener(conn)
    listener.start()
    try:
        assert listener.request(CommandName.PARAM, timeout=0.05) is None
        assert listener.pending_count == 0
    finally:
        listener.stop()


def test_request_timeout_can_raise():
    listener = ResponseListener(FakeConnection())
    with pytest.raises(ResponseTimeoutError) as excinfo:
        listener.request(CommandName.PARAM, timeout=0.01, raise_on_timeout=True)
    assert excinfo.value.command == "param"
    assert excinfo.value.sequence_number == 1
    assert listener.pending_count == 0


def test_write_failure_propagates_and_deregisters():
    conn = FakeConnection()
    conn.fail_writes = True
    listener = ResponseListener(conn)
    with pytest.raises(TransportError):
        listener.request(CommandName.BRIGHTNESS, {"value": 10}, timeout=0.5)
    assert listener.pending_count == 0


def test_concurrent_requests_get_their_own_responses():
    """Many threads in flight at once each receive the reply to their request."""
    conn = FakeConnection(responder=make_responder({"brightness": lambda body: body}))
    listener = ResponseListener(conn)
    listener.start()
    results = {}

    def worker(value):
        response = listener.request(CommandName.BRIGHTNESS, {"value": value}, timeout=2.0)
        results[value] = response.json() if response else None

    threads = [threading.Thread(target=worker, args=(v,)) for v in range(0, 100, 5)]
    try:
        for t in threads:
            t.start()
        for t in threads:
            t.join(5.0)
    finally:
        listener.stop()

    assert results == {v: {"value": v} for v in range(0, 100, 5)}
    assert listener.pending_count == 0


def test_out_of_order_responses_are_correlated():
    """Responses dispatched in reverse order still reach the right waiter."""
    conn = FakeConnection()
    listener = ResponseListener(conn)
    results = {}

    def worker(value):
        response = listener.request(CommandName.ROTATE, {"degree": value}, timeout=2.0)
        results[value] = response.json()

    threads = [threading.Thread(target=worker, args=(v,)) for v in (90, 180)]
    for t in threads:
        t.start()
    assert _wait_for(lambda: len(conn.writes) == 2)

    sent = [parse_request(w) for w in conn.writes]
    for command, seq, body in reversed(sent):
        listener.handle_report(response_report(command, 200, seq + 1, body))
    for t in threads:
        t.join(2.0)

    assert results == {90: {"degree": 90}, 180: {"degree": 180}}


def test_unmatched_response_goes_to_subscribers_only():
    listener = ResponseListener(FakeConnection())
    q = listener.subscribe()
    response = Response(command="brightness", status_code=200, ack_number=999)
    assert listener.dispatch(response) is False
    assert q.get_nowait() is response


def test_matched_response_also_notifies_subscribers(listener):
    q = listener.subscribe()
    response = listener.request(CommandName.PARAM, timeout=2.0)
    assert q.get(timeout=1.0) is response
    listener.unsubscribe(q)
    listener.request(CommandName.PARAM, timeout=2.0)
    assert q.empty()


def test_full_subscriber_queue_drops_notification():
    listener = ResponseListener(FakeConnection())
    q = listener.subscribe(maxsize=1)
    listener.dispatch(Response(command="a", status_code=200, ack_number=5))
    listener.dispatch(Response(command="b", status_code=200, ack_number=6))
    assert q.qsize() == 1
    assert q.get_nowait().command == "a"


def test_zero_ack_is_dropped():
    """Responses without a positive AckNumber are not dispatched."""
    listener = ResponseListener(FakeConnection())
    q = listener.subscribe()
    assert listener.handle_report(response_report("param", 200, ack=0)) is None
    assert q.empty()


def test_listener_survives_malformed_reports(listener):
    """Garbage on the wire is dropped and later responses still arrive."""
    conn = listener._connection
    for garbage in (
        b"\x20",
        b"\x20\x5a\xff\xff\x00\x5a",
        b"\x1f\x5c\x00\x15" + bytes(20),
        response_report("x", 200, ack=1)[:-1],
        b"\x20\x5a\x00\x09junk\x00\x5a",
    ):
        conn.push(garbage)
    response = listener.request(CommandName.PARAM, timeout=2.0)
    assert response is not None and response.ok
    assert listener.listening


def test_listener_retries_after_read_error():
    conn = FakeConnection(responder=make_responder())
    conn.read_errors = 3
    listener = ResponseListener(conn, retry_delay=0.01)
    listener.start()
    try:
        response = listener.request(CommandName.PARAM, timeout=2.0)
        assert response is not None
        assert conn.read_errors == 0
    finally:
        listener.stop()


def test_send_is_fire_and_forget():
    conn = FakeConnection()
    listener = ResponseListener(conn)
    seq = listener.send(CommandName.DISPLAY_IN_SLEEP, {"enable": True})
    assert seq == 1
    assert parse_request(conn.writes[0]) == ("displayInSleep", 1, {"enable": True})
    assert listener.pending_count == 0


def test_keepalive_request(listener):
    response = listener.keepalive(1700000000, timeout=2.0)
    assert response is not None
    assert response.command == "timestamp"
    command, _, body = parse_request(listener._connection.writes[-1])
    assert command == "timestamp"
    assert body == {"timestamp": 1700000000}


def test_stop_and_restart():
    listener = ResponseListener(FakeConnection(responder=make_responder()))
    listener.start()
    assert listener.listening
    listener.stop()
    assert not listener.listening
    listener.start()
    try:
        assert listener.request(CommandName.PARAM, timeout=2.0) is not None
    finally:
        listener.stop()


class BlockingReadConnection(FakeConnection):
    """A connection whose reads hang until ``release`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = threading.Event()

    def read(self, size=1024, timeout_ms=1000):
        self.release.wait(5.0)
        return super().read(size, timeout_ms)


def _listener_threads():
    return [t for t in threading.enumerate() if t.name == "ssr-lcd-listener"]


def test_restart_after_stop_timeout_keeps_single_reader():
    """A reader stuck in read() is kept, not replaced, when start() follows stop()."""
    conn = BlockingReadConnection(responder=make_responder())
    existing = set(_listener_threads())
    listener = ResponseListener(conn)
    listener.start()
    reader = listener._thread
    try:
        listener.stop(timeout=0.01)
        assert listener.listening
        listener.start()
        assert listener._thread is reader
        assert [t for t in _listener_threads() if t not in existing] == [reader]

        conn.release.set()
        assert listener.request(CommandName.PARAM, timeout=2.0) is not None
        assert listener._thread is reader
    finally:
        conn.release.set()
        listener.stop()
    assert not listener.listening
    assert not reader.is_alive()


def test_registry_empty_after_mixed_outcomes():
    """Successes, timeouts and failures all leave no pending entries."""
    conn = FakeConnection(responder=make_responder(silent={"param"}))
    listener = ResponseListener(conn)
    listener.start()
    try:
        listener.request(CommandName.BRIGHTNESS, {"value": 1}, timeout=1.0)
        listener.request(CommandName.PARAM, timeout=0.02)
        conn.fail_writes = True
        with pytest.raises(TransportError):
            listener.request(CommandName.ROTATE, {"degree": 0}, timeout=1.0)
    finally:
        listener.stop()
    assert listener.pending_count == 0
