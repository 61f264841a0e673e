"""USB HID protocol engine for small LCD panels in PC cooling hardware."""

from .errors import (
    DisplayError,
    FrameDecodeError,
    ProtocolStatusError,
    ResponseTimeoutError,
    TransportError,
)
from .listener import ResponseListener
from .manager import DeviceMonitor, MultiDeviceManager
from .models import Capabilities, DeviceFirmwareInfo, DeviceStatus
from .protocol.commands import CommandName, TransportKind
from .protocol.parser import Response
from .protocol.transfer import MediaType
from .session import DisplaySession
from .transport.usb_connection import DeviceInfo, HIDConnection, enumerate_devices

__version__ = "0.1.0"
