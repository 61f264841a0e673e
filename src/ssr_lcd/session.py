"""High-level session with one display: commands, queries and file workflows.

Usage::

    with DisplaySession() as display:
        display.set_brightness(80)
        status = display.get_status()
        display.set_background("wallpaper.jpg")
"""

from __future__ import annotations

import hashlib
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Any, Iterable

from .errors import TransportError
from .listener import DEFAULT_RESPONSE_TIMEOUT, ResponseListener
from .models.device import Capabilities, DeviceFirmwareInfo, DeviceStatus
from .protocol import commands
from .protocol.capabilities import parse_capabilities, parse_firmware_info
from .protocol.commands import DELETE_ALL, CommandName, TransportKind
from .protocol.parser import Response, parse_status
from .protocol.transfer import (
    MAX_BLOCK_SIZE,
    MediaType,
    TransferIdAllocator,
    build_transfer_blocks,
    media_type_for,
    send_file,
)
from .transport.usb_connection import (
    DEFAULT_PRODUCT_ID,
    DEFAULT_VENDOR_ID,
    REPORT_BUFFER_SIZE,
    HIDConnection,
)

logger = logging.getLogger(__name__)

DEVICE_INFO_REPORT_ID = 0x01
SUBCOMMAND_REPORT_ID = 0x02
CAPABILITIES_REPORT_ID = 0x14

SUBCOMMAND_FACTORY_RESET = 0x01
SUBCOMMAND_REBOOT = 0x02

KEEPALIVE_INTERVAL = 4.0
# Pause between consecutive suspend-file pushes and deletions.
SUSPEND_STEP_PAUSE = 0.1
TRANSFER_ID_MODULUS = 60


def _ok(response: Response | None) -> bool:
    return response is not None and response.ok


def _describe(response: Response | None) -> str:
    if response is None:
        return "no response"
    if response.body:
        return f"status {response.status_code}: {response.body}"
    return f"status {response.status_code}"


class DisplaySession:
    """One open display with its response listener.

    Atomic commands return the device's ``Response`` or ``None`` on timeout.
    Multi-step workflows return ``True``/``False`` and log the failing step.
    Invalid arguments raise ``ValueError`` before anything is written.
    """

    def __init__(
        self,
        connection=None,
        *,
        vendor_id: int = DEFAULT_VENDOR_ID,
        product_id: int = DEFAULT_PRODUCT_ID,
        serial_number: str | None = None,
        path: str | bytes | None = None,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        start_listener: bool = True,
    ) -> None:
        if connection is None:
            connection = HIDConnection(vendor_id, product_id, serial_number, path)
            connection.open()
        self._connection = connection
        self._response_timeout = response_timeout
        self._listener = ResponseListener(connection)
        self._transfer_ids = TransferIdAllocator()

        self._keepalive_stop = threading.Event()
        self._keepalive_thread: threading.Thread | None = None
        self._closed = False

        self.firmware_info: DeviceFirmwareInfo | None = None
        self.capabilities: Capabilities | None = None
        self.refresh_device_properties()

        if start_listener:
            self._listener.start()

    @property
    def connection(self):
        return self._connection

    @property
    def listener(self) -> ResponseListener:
        return self._listener

    @property
    def device_info(self):
        return self._connection.device_info

    def refresh_device_properties(self) -> None:
        """Reload firmware info (report 0x01) and capabilities (report 0x14)."""
        try:
            info = self._connection.get_feature_report(
                DEVICE_INFO_REPORT_ID, REPORT_BUFFER_SIZE
            )
            self.firmware_info = parse_firmware_info(info)
            caps = self._connection.get_feature_report(
                CAPABILITIES_REPORT_ID, REPORT_BUFFER_SIZE
            )
            self.capabilities = parse_capabilities(caps)
        except TransportError as e:
            logger.warning("Failed to load device properties: %s", e)
            self.firmware_info = None
            self.capabilities = None
            return

        logger.info("Device info: %s", self.firmware_info)
        logger.info("Capabilities: %s", self.capabilities)

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    def close(self) -> None:
        """Stop background threads and close the connection."""
        if self._closed:
            return
        self._closed = True
        self.stop_keepalive()
        self._listener.stop()
        self._connection.close()

    def __enter__(self) -> DisplaySession:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def subscribe(self, maxsize: int = 0) -> queue.Queue:
        """Return a queue receiving every response from this display."""
        return self._listener.subscribe(maxsize)

    def unsubscribe(self, q: queue.Queue) -> None:
        self._listener.unsubscribe(q)

    # ─── ATOMIC COMMANDS ─────────────────────────────────────────────

    def _request(
        self, command: CommandName, body: dict[str, Any] | None = None
    ) -> Response | None:
        return self._listener.request(command, body, self._response_timeout)

    def set_brightness(self, value: int) -> Response | None:
        """Set backlight brightness, 0-100."""
        return self._request(CommandName.BRIGHTNESS, commands.brightness_body(value))

    def set_rotation(self, degrees: int) -> Response | None:
        """Rotate the picture by 0, 90, 180 or 270 degrees."""
        return self._request(CommandName.ROTATE, commands.rotation_body(degrees))

    def set_display_in_sleep(self, enable: bool) -> Response | None:
        return self._request(CommandName.DISPLAY_IN_SLEEP, commands.enable_body(enable))

    def set_realtime_display(self, enable: bool) -> Response | None:
        """Switch between real-time streaming and stored (suspend) media."""
        return self._request(CommandName.REALTIME_DISPLAY, commands.enable_body(enable))

    def set_keepalive_timer(self, seconds: int) -> Response | None:
        return self._request(
            CommandName.KEEPALIVE_TIMER, commands.keepalive_timer_body(seconds)
        )

    def send_keepalive(self, timestamp: int | None = None) -> Response | None:
        """Send a keep-alive carrying ``timestamp`` (default: now, Unix seconds)."""
        if timestamp is None:
            timestamp = int(time.time())
        return self._listener.keepalive(timestamp, self._response_timeout)

    def read_params(self) -> Response | None:
        return self._request(CommandName.PARAM)

    def set_serial_number(self, serial_number: str) -> Response | None:
        return self._request(
            CommandName.SET_SERIAL_NUMBER, commands.serial_number_body(serial_number)
        )

    def set_sku_color(self, color: str | int) -> Response | None:
        return self._request(CommandName.SET_SKU_COLOR, commands.sku_color_body(color))

    def delete_media(
        self, kind: TransportKind | str, file_name: str = DELETE_ALL
    ) -> Response | None:
        return self._request(
            CommandName.DELETE_MEDIA, commands.delete_media_body(kind, file_name)
        )

    # ─── QUERIES ─────────────────────────────────────────────────────

    def get_status(self) -> DeviceStatus | None:
        """Read and parse the current device status."""
        return parse_status(self.read_params())

    def _query_field(self, command: CommandName, key: str) -> str | None:
        response = self._request(command)
        if not _ok(response):
            logger.warning("'%s' failed: %s", command.value, _describe(response))
            return None
        data = response.json()
        if data is None or key not in data:
            logger.warning("'%s' response has no '%s' field", command.value, key)
            return None
        return str(data[key])

    def get_serial_number(self) -> str | None:
        return self._query_field(CommandName.GET_SERIAL_NUMBER, "sn")

    def get_sku_color(self) -> str | None:
        return self._query_field(CommandName.GET_SKU_COLOR, "color")

    # ─── SUBCOMMANDS ─────────────────────────────────────────────────

    def _send_subcommand(self, subcommand: int) -> None:
        try:
            self._connection.write(bytes([SUBCOMMAND_REPORT_ID, subcommand, 0x00]))
        except TransportError as e:
            logger.warning("Subcommand 0x%02X failed: %s", subcommand, e)

    def reboot(self) -> None:
        self._send_subcommand(SUBCOMMAND_REBOOT)

    def factory_reset(self) -> None:
        self._send_subcommand(SUBCOMMAND_FACTORY_RESET)

    # ─── MEDIA PUSH ──────────────────────────────────────────────────

    def push_media_bytes(
        self,
        kind: TransportKind | str,
        file_name: str,
        data: bytes,
        transfer_id: int = 1,
        block_size: int = MAX_BLOCK_SIZE,
        media_type: int | None = None,
    ) -> bool:
        """Announce, transfer and confirm one file.

        Steps:
            1. ``transport`` with type, name and size; must answer 200.
            2. File blocks over the transfer report.
            3. ``transported`` with the MD5 of the data; must answer 200.

        Returns:
            True if every step succeeded.

        Raises:
            ValueError: Invalid name, empty data or out-of-range transfer
                arguments. Nothing is sent.
        """
        if media_type is None:
            media_type = media_type_for(file_name)
        announce = commands.transport_body(kind, file_name, len(data))
        # Validates transfer id, block size and block count up front.
        build_transfer_blocks(data, media_type, transfer_id, block_size)

        kind_name = announce["type"]
        logger.info(
            "Pushing %s file %s (%d bytes, transfer %d)",
            kind_name,
            file_name,
            len(data),
            transfer_id,
        )
        try:
            response = self._request(CommandName.TRANSPORT, announce)
            if not _ok(response):
                logger.warning(
                    "Transfer of %s not accepted: %s", file_name, _describe(response)
                )
                return False

            send_file(self._connection, data, media_type, transfer_id, block_size)

            md5 = hashlib.md5(data).hexdigest()
            response = self._request(
                CommandName.TRANSPORTED, commands.transported_body(file_name, md5)
            )
            if not _ok(response):
                logger.warning(
                    "Transfer of %s not confirmed: %s", file_name, _describe(response)
                )
                return False
        except TransportError as e:
            logger.warning("Transfer of %s aborted: %s", file_name, e)
            return False

        logger.info("Pushed %s file %s", kind_name, file_name)
        return True

    def push_media(
        self,
        kind: TransportKind | str,
        path: str | Path,
        transfer_id: int = 1,
        block_size: int = MAX_BLOCK_SIZE,
    ) -> bool:
        """Push a file from disk. See :meth:`push_media_bytes`."""
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            logger.warning("Cannot read %s: %s", path, e)
            return False
        if not data:
            logger.warning("Cannot push empty file %s", path)
            return False
        return self.push_media_bytes(kind, path.name, data, transfer_id, block_size)

    def set_background(self, path: str | Path, transfer_id: int = 1) -> bool:
        return self.push_media(TransportKind.MEDIA, path, transfer_id)

    def set_osd(self, path: str | Path, transfer_id: int = 1) -> bool:
        """Push an on-screen-display overlay image."""
        return self.push_media(TransportKind.MEDIA, path, transfer_id)

    def set_powerup_media(self, path: str | Path, transfer_id: int = 1) -> bool:
        return self.push_media(TransportKind.LOGO, path, transfer_id)

    def upgrade_firmware(self, path: str | Path, transfer_id: int = 1) -> bool:
        return self.push_media(TransportKind.FIRMWARE, path, transfer_id)

    def push_suspend_media(self, path: str | Path, transfer_id: int = 1) -> bool:
        return self.push_media(TransportKind.SUSPEND, path, transfer_id)

    # ─── SUSPEND MODE ────────────────────────────────────────────────

    def enter_suspend_mode(self) -> bool:
        """Leave real-time display so stored suspend media is shown."""
        response = self.set_realtime_display(False)
        if not _ok(response):
            logger.warning("Entering suspend mode failed: %s", _describe(response))
            return False
        return True

    def push_suspend_files(
        self,
        paths: Iterable[str | Path],
        starting_transfer_id: int = 1,
        brightness: int | None = None,
        keepalive_seconds: int | None = None,
    ) -> bool:
        """Push several suspend files, then optionally set brightness and timer.

        File ``i`` uses transfer id ``(starting_transfer_id + i) % 60``.
        Every file must exist and be non-empty before the first one is sent.
        Brightness and keep-alive timer failures are logged but do not fail
        the call.

        Returns:
            True if every file was pushed.
        """
        paths = [Path(p) for p in paths]
        if not paths:
            logger.warning("No suspend files to push")
            return False
        if brightness is not None:
            commands.brightness_body(brightness)
        if keepalive_seconds is not None:
            commands.keepalive_timer_body(keepalive_seconds)
        for path in paths:
            try:
                size = path.stat().st_size
            except OSError as e:
                logger.warning("Cannot read suspend file %s: %s", path, e)
                return False
            if size == 0:
                logger.warning("Suspend file %s is empty", path)
                return False

        status = self.get_status()
        if status is not None and status.max_suspend_slots:
            if len(paths) > status.max_suspend_slots:
                logger.warning(
                    "Too many suspend files: %d given, device holds %d",
                    len(paths),
                    status.max_suspend_slots,
                )
                return False

        for i, path in enumerate(paths):
            transfer_id = (starting_transfer_id + i) % TRANSFER_ID_MODULUS
            logger.info("Suspend file %d/%d: %s", i + 1, len(paths), path.name)
            if not self.push_media(TransportKind.SUSPEND, path, transfer_id):
                return False
            time.sleep(SUSPEND_STEP_PAUSE)

        if brightness is not None:
            response = self.set_brightness(brightness)
            if not _ok(response):
                logger.warning("Setting brightness failed: %s", _describe(response))
        if keepalive_seconds is not None:
            response = self.set_keepalive_timer(keepalive_seconds)
            if not _ok(response):
                logger.warning("Setting keep-alive timer failed: %s", _describe(response))
        return True

    def clear_suspend_mode(self) -> bool:
        """Delete every stored suspend file."""
        response = self.delete_media(TransportKind.SUSPEND, DELETE_ALL)
        if not _ok(response):
            logger.warning("Clearing suspend media failed: %s", _describe(response))
            return False
        return True

    def delete_suspend_files(self, names: Iterable[str]) -> bool:
        """Delete suspend files by name, stopping at the first failure."""
        names = list(names)
        if not names:
            logger.warning("No suspend files to delete")
            return False
        for name in names:
            response = self.delete_media(TransportKind.SUSPEND, name)
            if not _ok(response):
                logger.warning("Deleting %s failed: %s", name, _describe(response))
                return False
            time.sleep(SUSPEND_STEP_PAUSE)
        return True

    def delete_suspend_slots(self, indices: Iterable[int]) -> bool:
        """Delete suspend files by 1-based slot index (``suspend_<i-1>.jpg``)."""
        indices = list(indices)
        for index in indices:
            if index < 1:
                raise ValueError(f"Suspend slot indices are 1-based, got {index}")
        return self.delete_suspend_files(f"suspend_{index - 1}.jpg" for index in indices)

    # ─── REAL-TIME ───────────────────────────────────────────────────

    def send_frame(self, data: bytes, media_type: int = MediaType.JPEG) -> int:
        """Stream one encoded frame; returns the number of blocks written.

        Raises:
            TransportError: If a block write fails.
        """
        return send_file(
            self._connection, data, media_type, self._transfer_ids.next()
        )

    @property
    def keepalive_running(self) -> bool:
        return self._keepalive_thread is not None and self._keepalive_thread.is_alive()

    def start_keepalive(self, interval: float = KEEPALIVE_INTERVAL) -> None:
        """Send keep-alives every ``interval`` seconds on a daemon thread."""
        if interval <= 0:
            raise ValueError(f"Keep-alive interval must be positive, got {interval}")
        if self.keepalive_running:
            return
        self._keepalive_stop.clear()
        self._keepalive_thread = threading.Thread(
            target=self._keepalive_loop,
            args=(interval,),
            name="ssr-lcd-keepalive",
            daemon=True,
        )
        self._keepalive_thread.start()

    def stop_keepalive(self) -> None:
        self._keepalive_stop.set()
        thread, self._keepalive_thread = self._keepalive_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(self._response_timeout + 1.0)

    def _keepalive_loop(self, interval: float) -> None:
        while not self._keepalive_stop.wait(interval):
            try:
                response = self.send_keepalive()
            except TransportError as e:
                logger.warning("Keep-alive failed: %s", e)
                continue
            if response is None:
                logger.debug("Keep-alive not acknowledged")
