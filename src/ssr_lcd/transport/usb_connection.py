"""USB HID connection to an SSR LCD panel.

Supports both ``hidapi`` (preferred) and ``pyusb`` backends. The panel
exposes a vendor-defined HID collection (usage page 0xFFFF) that carries
input/output reports for commands and file transfer plus feature reports
for device info (0x01) and capabilities (0x14).
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_VENDOR_ID = 0x2516
DEFAULT_PRODUCT_ID = 0x0228
DEFAULT_USAGE_PAGE = 0xFFFF
READ_TIMEOUT_MS = 1000
WRITE_TIMEOUT_MS = 1000
REPORT_BUFFER_SIZE = 1024

USB_CLASS_HID = 0x03
HID_GET_REPORT = 0x01
HID_REPORT_TYPE_FEATURE = 0x03
# Device-to-host, class request, recipient interface.
HID_GET_REPORT_REQUEST_TYPE = 0xA1


@dataclass
class DeviceInfo:
    """Basic device identification from USB descriptors."""

    vendor_id: int = DEFAULT_VENDOR_ID
    product_id: int = DEFAULT_PRODUCT_ID
    manufacturer: str = ""
    product: str = ""
    serial_number: str = ""
    path: str = ""
    usage_page: int = 0


def _path_str(path) -> str:
    return path.decode() if isinstance(path, bytes) else str(path or "")


def enumerate_devices(
    vendor_id: int = DEFAULT_VENDOR_ID,
    product_id: int = DEFAULT_PRODUCT_ID,
    usage_page: int | None = DEFAULT_USAGE_PAGE,
) -> list[DeviceInfo]:
    """List connected panels via hidapi.

    Args:
        vendor_id: USB vendor id to match.
        product_id: USB product id to match.
        usage_page: Only return interfaces on this HID usage page, or all
            interfaces when ``None``.

    Returns:
        One ``DeviceInfo`` per matching HID interface path.
    """
    import hid

    devices = []
    seen_paths = set()
    for item in hid.enumerate(vendor_id, product_id):
        if usage_page is not None and item.get("usage_page") != usage_page:
            continue
        path = _path_str(item.get("path"))
        if path in seen_paths:
            continue
        seen_paths.add(path)
        devices.append(
            DeviceInfo(
                vendor_id=item.get("vendor_id", vendor_id),
                product_id=item.get("product_id", product_id),
                manufacturer=item.get("manufacturer_string") or "",
                product=item.get("product_string") or "",
                serial_number=item.get("serial_number") or "",
                path=path,
                usage_page=item.get("usage_page") or 0,
            )
        )
    return devices


class HIDConnection:
    """Manages the USB HID connection to one panel.

    Usage::

        conn = HIDConnection()
        conn.open()
        conn.write(report_bytes)
        response = conn.read()
        conn.close()

    Writes are serialised by an internal lock so the listener, keep-alive
    and workflow threads can share one connection. Reads are expected
    from a single thread.
    """

    def __init__(
        self,
        vendor_id: int = DEFAULT_VENDOR_ID,
        product_id: int = DEFAULT_PRODUCT_ID,
        serial_number: str | None = None,
        path: str | bytes | None = None,
    ) -> None:
        self._vendor_id = vendor_id
        self._product_id = product_id
        self._serial_number = serial_number
        self._path = path
        self._device = None
        self._backend: str = ""
        self._connected = False
        self._write_lock = threading.Lock()
        # pyusb only
        self._interface = 0
        self._ep_in = None
        self._ep_out = None
        self._device_info = DeviceInfo(
            vendor_id=vendor_id,
            product_id=product_id,
            serial_number=serial_number or "",
            path=_path_str(path),
        )

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def backend(self) -> str:
        return self._backend

    @property
    def device_info(self) -> DeviceInfo:
        return self._device_info

    def open(self) -> DeviceInfo:
        """Open a connection to the panel, trying hidapi first, then pyusb.

        Returns:
            DeviceInfo with USB descriptor information.

        Raises:
            TransportError: If the device cannot be found or opened.
        """
        if self._connected:
            return self._device_info

        try:
            return self._open_hidapi()
        except Exception as e:
            logger.debug("hidapi backend failed: %s, trying pyusb", e)

        try:
            return self._open_pyusb()
        except Exception as e:
            raise TransportError(
                f"Could not connect to display "
                f"({self._vendor_id:#06x}:{self._product_id:#06x}). "
                f"Ensure the device is connected and you have permissions. "
                f"Last error: {e}"
            ) from e

    def _open_hidapi(self) -> DeviceInfo:
        """Open using the hidapi library."""
        import hid

        device = hid.device()
        if self._path:
            path = self._path.encode() if isinstance(self._path, str) else self._path
            device.open_path(path)
        elif self._serial_number:
            device.open(self._vendor_id, self._product_id, self._serial_number)
        else:
            device.open(self._vendor_id, self._product_id)
        device.set_nonblocking(False)

        self._device = device
        self._backend = "hidapi"
        self._connected = True
        self._device_info = DeviceInfo(
            vendor_id=self._vendor_id,
            product_id=self._product_id,
            manufacturer=device.get_manufacturer_string() or "",
            product=device.get_product_string() or "",
            serial_number=device.get_serial_number_string() or self._serial_number or "",
            path=_path_str(self._path),
        )

        logger.info(
            "Connected via hidapi: %s %s (SN %s)",
            self._device_info.manufacturer,
            self._device_info.product,
            self._device_info.serial_number or "unknown",
        )
        return self._device_info

    def _open_pyusb(self) -> DeviceInfo:
        """Open using pyusb + libusb on the first HID interface."""
        import usb.core
        import usb.util

        kwargs = {"idVendor": self._vendor_id, "idProduct": self._product_id}
        if self._serial_number:
            kwargs["serial_number"] = self._serial_number
        dev = usb.core.find(**kwargs)
        if dev is None:
            raise TransportError("Device not found via pyusb")

        cfg = dev.get_active_configuration()
        intf = usb.util.find_descriptor(cfg, bInterfaceClass=USB_CLASS_HID)
        if intf is None:
            raise TransportError("No HID interface found")
        self._interface = intf.bInterfaceNumber

        if dev.is_kernel_driver_active(self._interface):
            dev.detach_kernel_driver(self._interface)
        usb.util.claim_interface(dev, self._interface)

        self._ep_in = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_IN,
        )
        self._ep_out = usb.util.find_descriptor(
            intf,
            custom_match=lambda e: usb.util.endpoint_direction(e.bEndpointAddress)
            == usb.util.ENDPOINT_OUT,
        )
        if self._ep_in is None or self._ep_out is None:
            usb.util.release_interface(dev, self._interface)
            raise TransportError("HID interface is missing interrupt endpoints")

        self._device = dev
        self._backend = "pyusb"
        self._connected = True
        self._device_info = DeviceInfo(
            vendor_id=self._vendor_id,
            product_id=self._product_id,
            manufacturer=usb.util.get_string(dev, dev.iManufacturer) or "",
            product=usb.util.get_string(dev, dev.iProduct) or "",
            serial_number=usb.util.get_string(dev, dev.iSerialNumber) or "",
        )

        logger.info(
            "Connected via pyusb: %s %s",
            self._device_info.manufacturer,
            self._device_info.product,
        )
        return self._device_info

    def close(self) -> None:
        """Close the USB connection."""
        if not self._connected:
            return

        try:
            if self._backend == "hidapi":
                self._device.close()
            elif self._backend == "pyusb":
                import usb.util
                usb.util.release_interface(self._device, self._interface)
                usb.util.dispose_resources(self._device)
        except Exception as e:
            logger.warning("Error closing device: %s", e)
        finally:
            self._device = None
            self._connected = False
            logger.info("Disconnected")

    def write(self, data: bytes) -> int:
        """Write one output report (report id at byte 0) to the device.

        Returns:
            Number of bytes written.

        Raises:
            TransportError: If not connected or the write fails.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        with self._write_lock:
            try:
                if self._backend == "hidapi":
                    written = self._device.write(bytes(data))
                else:
                    written = self._ep_out.write(bytes(data), timeout=WRITE_TIMEOUT_MS)
            except Exception as e:
                raise TransportError(f"Write failed: {e}") from e

        if written is not None and written < 0:
            raise TransportError(f"Write failed for {len(data)}-byte report")
        return written

    def read(
        self, size: int = REPORT_BUFFER_SIZE, timeout_ms: int = READ_TIMEOUT_MS
    ) -> bytes | None:
        """Read one input report from the device.

        Args:
            size: Maximum report size in bytes.
            timeout_ms: Read timeout in milliseconds.

        Returns:
            The report bytes, or None if the read timed out.

        Raises:
            TransportError: If not connected or the read fails.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        if self._backend == "hidapi":
            try:
                data = self._device.read(size, timeout_ms)
            except Exception as e:
                raise TransportError(f"Read failed: {e}") from e
            return bytes(data) if data else None

        import usb.core

        try:
            data = self._ep_in.read(size, timeout=timeout_ms)
        except usb.core.USBTimeoutError:
            return None
        except Exception as e:
            raise TransportError(f"Read failed: {e}") from e
        return bytes(data) if data else None

    def get_feature_report(self, report_id: int, size: int = REPORT_BUFFER_SIZE) -> bytes:
        """Read a feature report. Byte 0 of the result is the report id.

        Raises:
            TransportError: If not connected or the request fails.
        """
        if not self._connected:
            raise TransportError("Not connected to device")

        try:
            if self._backend == "hidapi":
                data = self._device.get_feature_report(report_id, size)
            else:
                data = self._device.ctrl_transfer(
                    HID_GET_REPORT_REQUEST_TYPE,
                    HID_GET_REPORT,
                    (HID_REPORT_TYPE_FEATURE << 8) | report_id,
                    self._interface,
                    size,
                    timeout=READ_TIMEOUT_MS,
                )
        except Exception as e:
            raise TransportError(
                f"Feature report 0x{report_id:02X} failed: {e}"
            ) from e

        if not data:
            raise TransportError(f"Feature report 0x{report_id:02X} returned no data")
        data = bytes(data)
        logger.debug("Feature report 0x%02X: %s", report_id, data.hex(" "))
        return data

    def __enter__(self) -> HIDConnection:
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
