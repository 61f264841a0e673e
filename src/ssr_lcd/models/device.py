"""Device identification, capability and status models."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, ClassVar

NOT_AVAILABLE = 0xFF
SUSPEND_SLOT_COUNT = 5


@dataclass(frozen=True)
class HardwareVersion:
    """Hardware revision stored in the device flash."""

    major: int
    minor: int

    @property
    def available(self) -> bool:
        return self.major != NOT_AVAILABLE and self.minor != NOT_AVAILABLE

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}" if self.available else "N/A"


@dataclass(frozen=True)
class FirmwareVersion:
    """Firmware version reported by the device."""

    major: int
    minor: int
    revision: int
    build: int

    @property
    def available(self) -> bool:
        return self.major != NOT_AVAILABLE

    def __str__(self) -> str:
        if not self.available:
            return "N/A"
        return f"{self.major}.{self.minor}.{self.revision}.{self.build}"


@dataclass(frozen=True)
class DeviceFirmwareInfo:
    """Hardware and firmware versions read from the device-info report."""

    hardware: HardwareVersion
    firmware: FirmwareVersion

    def to_dict(self) -> dict[str, Any]:
        return {
            "hardware_version": str(self.hardware) if self.hardware.available else None,
            "firmware_version": str(self.firmware) if self.firmware.available else None,
        }

    def __str__(self) -> str:
        return f"Hardware Version {self.hardware}, Firmware Version {self.firmware}"


@dataclass(frozen=True)
class Capabilities:
    """Display-control capabilities negotiated from the TLV feature report.

    ``decode_support`` is a bitmask: bit 0 is H.264, bit 1 is JPEG.
    ``max_file_size`` is in megabytes.
    """

    H264: ClassVar[int] = 0x01
    JPEG: ClassVar[int] = 0x02

    off_mode_supported: bool = False
    ssr_mode_supported: bool = False
    interface: int = 0
    width: int = 0
    height: int = 0
    format: int = 0
    max_fps: int = 0
    transfer_interface: int = 0
    rotation_support: int = 0
    max_file_size: int = 0
    max_frame_count: int = 0
    decode_support: int = 0
    overlay_support: int = 0
    cmd_format: int = 0

    @property
    def h264_supported(self) -> bool:
        return bool(self.decode_support & self.H264)

    @property
    def jpeg_supported(self) -> bool:
        return bool(self.decode_support & self.JPEG)

    @property
    def decode_formats(self) -> list[str]:
        formats = []
        if self.h264_supported:
            formats.append("H.264")
        if self.jpeg_supported:
            formats.append("JPEG")
        return formats

    @property
    def resolution(self) -> tuple[int, int]:
        return (self.width, self.height)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["decode_formats"] = self.decode_formats
        return d

    def __str__(self) -> str:
        return (
            f"Display Mode: Off={self.off_mode_supported}, SSR={self.ssr_mode_supported}, "
            f"Resolution: {self.width}x{self.height}, Format: {self.format:02X}, "
            f"MaxFPS: {self.max_fps}, Interface: {self.interface}, "
            f"Rotation: {self.rotation_support:02X}, MaxFileSize: {self.max_file_size}MB, "
            f"HW Decode: [{', '.join(self.decode_formats)}]"
        )


def _int_field(data: dict, key: str) -> int:
    try:
        return int(data.get(key, 0))
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class DeviceStatus:
    """Snapshot of the device state returned by the ``param`` command.

    A new instance is built for every status query.
    """

    brightness: int = 0
    rotation: int = 0
    osd_active: bool = False
    keepalive_timeout: int = 0
    max_suspend_slots: int = 0
    display_in_sleep: bool = False
    suspend_slots: tuple[bool, ...] = field(
        default_factory=lambda: (False,) * SUSPEND_SLOT_COUNT
    )

    @property
    def active_slots(self) -> list[int]:
        """Indices (0-based) of suspend slots holding media."""
        return [i for i, active in enumerate(self.suspend_slots) if active]

    @property
    def active_slot_count(self) -> int:
        return len(self.active_slots)

    @classmethod
    def from_dict(cls, data: dict) -> DeviceStatus:
        """Build a status from the decoded JSON body.

        Example body::

            {"brightness":100,"degree":0,"osdState":0,"keepAliveTimeout":5,
             "maxSuspendMediaCount":5,"displayInSleep":0,
             "suspendMediaActive":[1,0,0,1,1]}
        """
        slots = [False] * SUSPEND_SLOT_COUNT
        active = data.get("suspendMediaActive")
        if isinstance(active, list) and len(active) <= SUSPEND_SLOT_COUNT:
            for i, value in enumerate(active):
                try:
                    slots[i] = int(value) != 0
                except (TypeError, ValueError):
                    slots[i] = False

        return cls(
            brightness=_int_field(data, "brightness"),
            rotation=_int_field(data, "degree"),
            osd_active=_int_field(data, "osdState") != 0,
            keepalive_timeout=_int_field(data, "keepAliveTimeout"),
            max_suspend_slots=_int_field(data, "maxSuspendMediaCount"),
            display_in_sleep=_int_field(data, "displayInSleep") != 0,
            suspend_slots=tuple(slots),
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["suspend_slots"] = list(self.suspend_slots)
        d["active_slots"] = self.active_slots
        return d

    def __str__(self) -> str:
        text = (
            f"Brightness: {self.brightness}%, Rotation: {self.rotation}°, "
            f"OSD: {'Active' if self.osd_active else 'Inactive'}, "
            f"KeepAlive: {self.keepalive_timeout}s, "
            f"DisplaySleep: {'On' if self.display_in_sleep else 'Off'}, "
            f"SuspendMedia: {self.active_slot_count}/{self.max_suspend_slots} active"
        )
        if self.active_slots:
            text += f" [indices: {','.join(str(i) for i in self.active_slots)}]"
        return text
