"""Hot-plug monitoring and fan-out control of several displays."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from .models.device import DeviceStatus
from .protocol.commands import brightness_body, rotation_body
from .protocol.parser import Response
from .session import DisplaySession
from .transport.usb_connection import (
    DEFAULT_PRODUCT_ID,
    DEFAULT_USAGE_PAGE,
    DEFAULT_VENDOR_ID,
    DeviceInfo,
    enumerate_devices,
)

logger = logging.getLogger(__name__)

MONITOR_INTERVAL = 1.0

DeviceCallback = Callable[[DeviceInfo], None]


class DeviceMonitor:
    """Polls HID enumeration and reports devices that appear or disappear.

    Devices are keyed by their HID path. ``poll()`` runs one diff on the
    calling thread; ``start()`` runs it every ``interval`` seconds on a
    daemon thread.
    """

    def __init__(
        self,
        vendor_id: int = DEFAULT_VENDOR_ID,
        product_id: int = DEFAULT_PRODUCT_ID,
        usage_page: int | None = DEFAULT_USAGE_PAGE,
        interval: float = MONITOR_INTERVAL,
        enumerate_fn: Callable[..., list[DeviceInfo]] = enumerate_devices,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._usage_page = usage_page
        self._interval = interval
        self._enumerate = enumerate_fn

        self._lock = threading.Lock()
        self._known: dict[str, DeviceInfo] = {}
        self._connected_callbacks: list[DeviceCallback] = []
        self._disconnected_callbacks: list[DeviceCallback] = []

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def on_connected(self, callback: DeviceCallback) -> None:
        self._connected_callbacks.append(callback)

    def on_disconnected(self, callback: DeviceCallback) -> None:
        self._disconnected_callbacks.append(callback)

    @property
    def monitoring(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def devices(self) -> list[DeviceInfo]:
        """Devices seen by the most recent poll."""
        with self._lock:
            return list(self._known.values())

    def poll(self) -> tuple[list[DeviceInfo], list[DeviceInfo]]:
        """Enumerate once and fire callbacks for the differences.

        Returns:
            ``(added, removed)`` device lists.
        """
        try:
            current = {
                info.path: info
                for info in self._enumerate(
                    self._vendor_id, self._product_id, self._usage_page
                )
            }
        except Exception as e:
            logger.warning("Device enumeration failed: %s", e)
            return [], []

        with self._lock:
            added = [info for path, info in current.items() if path not in self._known]
            removed = [info for path, info in self._known.items() if path not in current]
            self._known = current

        for info in removed:
            logger.info("Device disconnected: %s (SN %s)", info.product, info.serial_number)
            self._notify(self._disconnected_callbacks, info)
        for info in added:
            logger.info("Device connected: %s (SN %s)", info.product, info.serial_number)
            self._notify(self._connected_callbacks, info)
        return added, removed

    def _notify(self, callbacks: list[DeviceCallback], info: DeviceInfo) -> None:
        for callback in list(callbacks):
            try:
                callback(info)
            except Exception:
                logger.exception("Device callback failed for %s", info.path)

    def start(self) -> None:
        if self.monitoring:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="ssr-lcd-monitor", daemon=True
        )
        self._thread.start()
        logger.info(
            "Monitoring %#06x:%#06x every %.1fs",
            self._vendor_id,
            self._product_id,
            self._interval,
        )

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.poll()
            self._stop_event.wait(self._interval)


def _succeeded(result: Any) -> bool:
    if isinstance(result, Response):
        return result.ok
    return bool(result)


class MultiDeviceManager:
    """Keeps one ``DisplaySession`` open per connected display.

    Usage::

        with MultiDeviceManager() as manager:
            manager.set_brightness_all(60)
            statuses = manager.get_status_all()
    """

    def __init__(
        self,
        vendor_id: int = DEFAULT_VENDOR_ID,
        product_id: int = DEFAULT_PRODUCT_ID,
        usage_page: int | None = DEFAULT_USAGE_PAGE,
        session_factory: Callable[[DeviceInfo], DisplaySession] | None = None,
        interval: float = MONITOR_INTERVAL,
        enumerate_fn: Callable[..., list[DeviceInfo]] = enumerate_devices,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._session_factory = session_factory or self._open_session
        self._lock = threading.Lock()
        self._sessions: dict[str, DisplaySession] = {}
        self._devices: dict[str, DeviceInfo] = {}

        self.monitor = DeviceMonitor(
            vendor_id, product_id, usage_page, interval, enumerate_fn
        )
        self.monitor.on_connected(self._add_device)
        self.monitor.on_disconnected(self._remove_device)

    def _open_session(self, info: DeviceInfo) -> DisplaySession:
        return DisplaySession(
            vendor_id=self._vendor_id, product_id=self._product_id, path=info.path
        )

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    def start(self) -> None:
        """Open sessions for connected displays and start hot-plug monitoring."""
        self.monitor.poll()
        self.monitor.start()

    def stop(self) -> None:
        """Stop monitoring and close every session."""
        self.monitor.stop()
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._devices.clear()
        for session in sessions:
            self._close_session(session)

    def __enter__(self) -> MultiDeviceManager:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    def _add_device(self, info: DeviceInfo) -> None:
        with self._lock:
            if info.path in self._sessions:
                return
        try:
            session = self._session_factory(info)
        except Exception as e:
            logger.warning("Failed to open display at %s: %s", info.path, e)
            return
        with self._lock:
            self._sessions[info.path] = session
            self._devices[info.path] = info
        logger.info("Added display %s (SN %s)", info.path, info.serial_number)

    def _remove_device(self, info: DeviceInfo) -> None:
        with self._lock:
            session = self._sessions.pop(info.path, None)
            self._devices.pop(info.path, None)
        if session is not None:
            self._close_session(session)
            logger.info("Removed display %s", info.path)

    @staticmethod
    def _close_session(session: DisplaySession) -> None:
        try:
            session.close()
        except Exception as e:
            logger.warning("Error closing display session: %s", e)

    # ─── LOOKUP ──────────────────────────────────────────────────────

    def sessions(self) -> dict[str, DisplaySession]:
        """Snapshot of open sessions keyed by device path."""
        with self._lock:
            return dict(self._sessions)

    def get(self, path: str) -> DisplaySession | None:
        with self._lock:
            return self._sessions.get(path)

    def get_by_serial(self, serial_number: str) -> DisplaySession | None:
        """Find a session by USB serial number (case-insensitive)."""
        wanted = serial_number.casefold()
        with self._lock:
            for path, info in self._devices.items():
                if info.serial_number.casefold() == wanted:
                    return self._sessions.get(path)
        return None

    # ─── FAN-OUT ─────────────────────────────────────────────────────

    def _map(self, fn: Callable[[DisplaySession], Any]) -> dict[str, Any]:
        sessions = self.sessions()
        if not sessions:
            return {}
        results: dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=len(sessions)) as pool:
            futures = {path: pool.submit(fn, s) for path, s in sessions.items()}
            for path, future in futures.items():
                try:
                    results[path] = future.result()
                except Exception as e:
                    logger.warning("Command failed on %s: %s", path, e)
                    results[path] = e
        return results

    def execute_all(self, fn: Callable[[DisplaySession], Any]) -> dict[str, bool]:
        """Run ``fn`` on every session in parallel.

        A result counts as success when it is an OK ``Response`` or any
        other truthy value. Exceptions count as failure.
        """
        return {
            path: not isinstance(result, Exception) and _succeeded(result)
            for path, result in self._map(fn).items()
        }

    def set_brightness_all(self, value: int) -> dict[str, bool]:
        brightness_body(value)
        return self.execute_all(lambda s: s.set_brightness(value))

    def set_rotation_all(self, degrees: int) -> dict[str, bool]:
        rotation_body(degrees)
        return self.execute_all(lambda s: s.set_rotation(degrees))

    def get_status_all(self) -> dict[str, DeviceStatus | None]:
        return {
            path: None if isinstance(result, Exception) else result
            for path, result in self._map(lambda s: s.get_status()).items()
        }
