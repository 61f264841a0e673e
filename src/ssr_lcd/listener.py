"""Background response listener and request/response correlation.

One daemon thread reads input reports, decodes response frames and hands
each response to the request waiting on ``AckNumber - 1``. Every response
is also published to subscriber queues, whether or not a request claimed it.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import ResponseTimeoutError, TransportError
from .protocol.commands import (
    CommandName,
    SequenceCounter,
    build_command,
    build_keepalive,
)
from .protocol.framing import parse_frame
from .protocol.parser import Response, parse_response_payload
from .transport.usb_connection import READ_TIMEOUT_MS, REPORT_BUFFER_SIZE

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_TIMEOUT = 5.0
LISTENER_RETRY_DELAY = 1.0
STOP_JOIN_TIMEOUT = 2.0


@dataclass
class PendingRequest:
    """A request waiting for the response whose AckNumber is SeqNumber + 1."""

    sequence_number: int
    command: str
    event: threading.Event = field(default_factory=threading.Event)
    response: Response | None = None
    created_at: float = field(default_factory=time.monotonic)

    def complete(self, response: Response) -> None:
        self.response = response
        self.event.set()

    def wait(self, timeout: float) -> Response | None:
        if self.event.wait(timeout):
            return self.response
        return None


class ResponseListener:
    """Reads responses on a daemon thread and routes them to waiting requests.

    Usage::

        listener = ResponseListener(conn)
        listener.start()
        response = listener.request(CommandName.BRIGHTNESS, {"value": 80})
        listener.stop()

    ``request`` blocks the calling thread on the request's own event, so
    any number of threads may have requests in flight at once.
    """

    def __init__(
        self,
        connection,
        read_timeout_ms: int = READ_TIMEOUT_MS,
        retry_delay: float = LISTENER_RETRY_DELAY,
        report_size: int = REPORT_BUFFER_SIZE,
    ) -> None:
        self._connection = connection
        self._read_timeout_ms = read_timeout_ms
        self._retry_delay = retry_delay
        self._report_size = report_size

        self._lock = threading.Lock()
        self._pending: dict[int, PendingRequest] = {}
        self._sequence = SequenceCounter()

        self._subscribers_lock = threading.Lock()
        self._subscribers: list[queue.Queue] = []

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    @property
    def listening(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def start(self) -> None:
        """Start the reader thread.

        A reader that is still running, including one left behind by a
        timed-out :meth:`stop`, is kept and told to carry on.
        """
        if self.listening:
            self._stop_event.clear()
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="ssr-lcd-listener", daemon=True
        )
        self._thread.start()
        logger.info("Response listener started")

    def stop(self, timeout: float = STOP_JOIN_TIMEOUT) -> None:
        """Signal the reader thread to exit and wait for it.

        If the thread is still running after ``timeout`` it stays attached,
        so :meth:`start` will not launch a second reader on the same handle.
        """
        self._stop_event.set()
        thread = self._thread
        if thread is None:
            return
        if thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Response listener did not stop within %.1fs", timeout)
                return
        self._thread = None
        logger.info("Response listener stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                data = self._connection.read(self._report_size, self._read_timeout_ms)
            except TransportError as e:
                logger.warning("Listener read failed: %s", e)
                self._stop_event.wait(self._retry_delay)
                continue
            if data:
                self.handle_report(data)

    # ─── INBOUND ─────────────────────────────────────────────────────

    def handle_report(self, data: bytes) -> Response | None:
        """Decode one input report and dispatch it.

        Malformed reports and responses without a positive AckNumber are
        dropped.

        Returns:
            The dispatched ``Response``, or ``None`` if the report was dropped.
        """
        frame = parse_frame(data)
        if frame is None:
            return None

        response = parse_response_payload(frame.payload)
        if response is None:
            logger.debug("Dropping frame with unparseable payload: %r", frame.payload[:64])
            return None
        if not response.deliverable:
            logger.debug("Dropping response without AckNumber: %r", response)
            return None

        self.dispatch(response)
        return response

    def dispatch(self, response: Response) -> bool:
        """Complete the matching pending request and notify subscribers.

        Returns:
            True if a waiting request received the response.
        """
        with self._lock:
            pending = self._pending.pop(response.sequence_number, None)
        if pending is not None:
            pending.complete(response)
        else:
            logger.debug(
                "No pending request for AckNumber=%d (%s)",
                response.ack_number,
                response.command,
            )

        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for q in subscribers:
            try:
                q.put_nowait(response)
            except queue.Full:
                logger.warning("Subscriber queue full, dropping %r", response)
        return pending is not None

    def subscribe(self, maxsize: int = 0) -> queue.Queue:
        """Return a queue that receives every dispatched ``Response``."""
        q: queue.Queue = queue.Queue(maxsize)
        with self._subscribers_lock:
            self._subscribers.append(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._subscribers_lock:
            if q in self._subscribers:
                self._subscribers.remove(q)

    # ─── OUTBOUND ────────────────────────────────────────────────────

    def _register(self, command: str) -> PendingRequest:
        with self._lock:
            seq = self._sequence.next(in_use=self._pending)
            pending = PendingRequest(sequence_number=seq, command=command)
            self._pending[seq] = pending
        return pending

    def _deregister(self, pending: PendingRequest) -> None:
        with self._lock:
            if self._pending.get(pending.sequence_number) is pending:
                del self._pending[pending.sequence_number]

    def _send_and_await(
        self,
        command: str,
        build: Callable[[int], bytes],
        timeout: float,
        raise_on_timeout: bool,
    ) -> Response | None:
        pending = self._register(command)
        try:
            report = build(pending.sequence_number)
            self._connection.write(report)
            logger.debug(
                "Sent '%s' SeqNumber=%d (%d bytes)",
                command,
                pending.sequence_number,
                len(report),
            )
            response = pending.wait(timeout)
        finally:
            self._deregister(pending)

        if response is None:
            logger.info(
                "Timed out waiting for '%s' (SeqNumber=%d) after %.1fs",
                command,
                pending.sequence_number,
                timeout,
            )
            if raise_on_timeout:
                raise ResponseTimeoutError(command, pending.sequence_number, timeout)
        return response

    def request(
        self,
        command: CommandName | str,
        body: dict[str, Any] | None = None,
        timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        raise_on_timeout: bool = False,
    ) -> Response | None:
        """Send a command and wait for its response.

        Returns:
            The matching ``Response``, or ``None`` on timeout.

        Raises:
            TransportError: If the write fails.
            ResponseTimeoutError: On timeout, only when ``raise_on_timeout``.
        """
        name = command.value if isinstance(command, CommandName) else str(command)
        return self._send_and_await(
            name,
            lambda seq: build_command(command, seq, body),
            timeout,
            raise_on_timeout,
        )

    def keepalive(
        self,
        timestamp: int,
        timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        raise_on_timeout: bool = False,
    ) -> Response | None:
        """Send a ``STATE timestamp`` keep-alive and wait for its response."""
        return self._send_and_await(
            CommandName.KEEPALIVE.value,
            lambda seq: build_keepalive(seq, timestamp),
            timeout,
            raise_on_timeout,
        )

    def send(self, command: CommandName | str, body: dict[str, Any] | None = None) -> int:
        """Send a command without waiting for a response.

        Returns:
            The SeqNumber used.
        """
        with self._lock:
            seq = self._sequence.next(in_use=self._pending)
        self._connection.write(build_command(command, seq, body))
        return seq
