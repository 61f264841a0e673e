"""File transfer sub-protocol: split a file into one HID report per block.

Block report layout::

    +-----------+------+--------+----+---------+---------+------+----------+---------+
    | Report ID | 0x5C | Length | ID |  Count  |  Index  | Type | Reserved | Payload |
    | 0x1F      | 1 B  | 2 B BE | 1B | 2 B BE  | 2 B BE  | 1 B  | 14 B     | <=1000B |
    +-----------+------+--------+----+---------+---------+------+----------+---------+

- Length: metadata (20 bytes) + payload length
- ID: transfer id 0-59, Count: total blocks, Index: 0-based block index
- No escaping and no checksum; blocks carry no per-block acknowledgement
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)

FILE_TRANSFER_REPORT_ID = 0x1F
BLOCK_MARKER = 0x5C
METADATA_SIZE = 20
RESERVED_SIZE = 14
MAX_TRANSFER_ID = 59
MAX_BLOCK_SIZE = 1000
MAX_BLOCK_COUNT = 0xFFFF


class MediaType(IntEnum):
    """File type byte carried in each block's metadata."""

    ANY = 0
    JPEG = 1
    PNG = 2


_EXTENSION_TYPES = {
    ".jpg": MediaType.JPEG,
    ".jpeg": MediaType.JPEG,
    ".png": MediaType.PNG,
}


def media_type_for(path: str | Path) -> MediaType:
    """Pick the block media type from a file extension."""
    return _EXTENSION_TYPES.get(Path(path).suffix.lower(), MediaType.ANY)


@dataclass
class FileTransferBlock:
    """One block of a file transfer."""

    transfer_id: int
    total_blocks: int
    index: int
    media_type: int
    payload: bytes
    reserved: bytes = field(default_factory=lambda: b"\x00" * RESERVED_SIZE)

    def metadata(self) -> bytes:
        return (
            bytes([self.transfer_id])
            + self.total_blocks.to_bytes(2, "big")
            + self.index.to_bytes(2, "big")
            + bytes([self.media_type])
            + self.reserved[:RESERVED_SIZE].ljust(RESERVED_SIZE, b"\x00")
        )

    def to_report(self) -> bytes:
        """Serialize the block as a complete HID report."""
        length = METADATA_SIZE + len(self.payload)
        return (
            bytes([FILE_TRANSFER_REPORT_ID, BLOCK_MARKER])
            + length.to_bytes(2, "big")
            + self.metadata()
            + self.payload
        )

    def __repr__(self) -> str:
        return (
            f"FileTransferBlock(id={self.transfer_id}, "
            f"index={self.index}/{self.total_blocks}, "
            f"type={self.media_type}, payload_len={len(self.payload)})"
        )


def build_transfer_blocks(
    data: bytes,
    media_type: int = MediaType.ANY,
    transfer_id: int = 0,
    block_size: int = MAX_BLOCK_SIZE,
) -> Iterator[FileTransferBlock]:
    """Split ``data`` into transfer blocks in index order.

    Args:
        data: Complete file contents.
        media_type: Block type byte (see ``MediaType``).
        transfer_id: Transfer id 0-59.
        block_size: Payload bytes per block, 1-1000.

    Raises:
        ValueError: On empty data, out-of-range arguments, or a file that
            would need more than 65535 blocks. Raised before any block is
            produced.
    """
    if not data:
        raise ValueError("File data cannot be empty")
    if not 0 <= transfer_id <= MAX_TRANSFER_ID:
        raise ValueError(f"Transfer id must be 0-{MAX_TRANSFER_ID}, got {transfer_id}")
    if not 1 <= block_size <= MAX_BLOCK_SIZE:
        raise ValueError(f"Block size must be 1-{MAX_BLOCK_SIZE}, got {block_size}")
    if not 0 <= media_type <= 0xFF:
        raise ValueError(f"Media type must be 0-255, got {media_type}")

    total = math.ceil(len(data) / block_size)
    if total > MAX_BLOCK_COUNT:
        raise ValueError(
            f"File too large: {len(data)} bytes would need {total} blocks "
            f"(max {MAX_BLOCK_COUNT})"
        )

    return _iter_blocks(data, int(media_type), transfer_id, block_size, total)


def _iter_blocks(
    data: bytes, media_type: int, transfer_id: int, block_size: int, total: int
) -> Iterator[FileTransferBlock]:
    for index in range(total):
        offset = index * block_size
        yield FileTransferBlock(
            transfer_id=transfer_id,
            total_blocks=total,
            index=index,
            media_type=media_type,
            payload=data[offset : offset + block_size],
        )


def send_file(
    connection,
    data: bytes,
    media_type: int = MediaType.ANY,
    transfer_id: int = 0,
    block_size: int = MAX_BLOCK_SIZE,
) -> int:
    """Write every block of ``data`` to ``connection`` in index order.

    Each write is synchronous; the device sends no per-block acknowledgement.

    Returns:
        Number of blocks written.

    Raises:
        ValueError: Invalid arguments (nothing is written).
        TransportError: A block write failed; the transfer is abandoned.
    """
    blocks = build_transfer_blocks(data, media_type, transfer_id, block_size)
    count = 0
    for block in blocks:
        connection.write(block.to_report())
        count += 1
    logger.info(
        "File transfer %d complete: %d bytes in %d blocks",
        transfer_id,
        len(data),
        count,
    )
    return count


class TransferIdAllocator:
    """Hands out transfer ids 1..59 in rotation for streamed frames."""

    def __init__(self, start: int = 1) -> None:
        if not 1 <= start <= MAX_TRANSFER_ID:
            raise ValueError(f"Start id must be 1-{MAX_TRANSFER_ID}, got {start}")
        self._next = start
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            current = self._next
            self._next = current % MAX_TRANSFER_ID + 1
            return current
