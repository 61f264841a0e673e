"""USB HID transport."""

from .usb_connection import DeviceInfo, HIDConnection, enumerate_devices
