"""Data models for device identification, capabilities and status."""

from .device import (
    Capabilities,
    DeviceFirmwareInfo,
    DeviceStatus,
    FirmwareVersion,
    HardwareVersion,
)
