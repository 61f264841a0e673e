"""Tests for the file transfer chunker."""

from unittest.mock import MagicMock

import pytest

from ssr_lcd.errors import TransportError
from ssr_lcd.protocol.transfer import (
    BLOCK_MARKER,
    FILE_TRANSFER_REPORT_ID,
    METADATA_SIZE,
    MediaType,
    TransferIdAllocator,
    build_transfer_blocks,
    media_type_for,
    send_file,
)


def test_2500_bytes_in_three_blocks():
    """2500 bytes at block size 1000 gives blocks of 1000, 1000 and 500."""
    data = bytes(i % 251 for i in range(2500))
    blocks = list(build_transfer_blocks(data, MediaType.JPEG, transfer_id=7))
    assert [len(b.payload) for b in blocks] == [1000, 1000, 500]
    assert [b.index for b in blocks] == [0, 1, 2]
    assert all(b.total_blocks == 3 for b in blocks)
    assert all(b.transfer_id == 7 for b in blocks)
    assert b"".join(b.payload for b in blocks) == data


def test_block_report_layout():
    """Header, metadata and payload of a serialised block."""
    block = next(build_transfer_blocks(b"\xAA" * 10, MediaType.PNG, transfer_id=5))
    report = block.to_report()
    assert report[0] == FILE_TRANSFER_REPORT_ID
    assert report[1] == BLOCK_MARKER
    assert int.from_bytes(report[2:4], "big") == METADATA_SIZE + 10
    assert report[4] == 5  # transfer id
    assert int.from_bytes(report[5:7], "big") == 1  # count
    assert int.from_bytes(report[7:9], "big") == 0  # index
    assert report[9] == MediaType.PNG
    assert report[10:24] == bytes(14)
    assert report[24:] == b"\xAA" * 10
    assert len(report) == 4 + METADATA_SIZE + 10


def test_exact_multiple_has_no_empty_block():
    blocks = list(build_transfer_blocks(bytes(2000)))
    assert [len(b.payload) for b in blocks] == [1000, 1000]


def test_custom_block_size():
    blocks = list(build_transfer_blocks(bytes(10), block_size=4))
    assert [len(b.payload) for b in blocks] == [4, 4, 2]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"data": b""},
        {"data": b"x", "transfer_id": 60},
        {"data": b"x", "transfer_id": -1},
        {"data": b"x", "block_size": 0},
        {"data": b"x", "block_size": 1001},
    ],
)
def test_invalid_arguments(kwargs):
    """Bad arguments raise before any block is produced."""
    with pytest.raises(ValueError):
        build_transfer_blocks(**kwargs)


def test_too_many_blocks():
    """More than 65535 blocks is rejected."""
    with pytest.raises(ValueError, match="too large"):
        build_transfer_blocks(bytes(65536), block_size=1)


def test_send_file_writes_blocks_in_order():
    conn = MagicMock()
    count = send_file(conn, bytes(2500), MediaType.JPEG, transfer_id=3)
    assert count == 3
    reports = [call.args[0] for call in conn.write.call_args_list]
    assert [int.from_bytes(r[7:9], "big") for r in reports] == [0, 1, 2]
    assert all(r[4] == 3 for r in reports)


def test_send_file_validation_writes_nothing():
    conn = MagicMock()
    with pytest.raises(ValueError):
        send_file(conn, bytes(10), transfer_id=99)
    conn.write.assert_not_called()


def test_send_file_write_failure_abandons_transfer():
    """A failed block write stops the transfer and propagates."""
    conn = MagicMock()
    conn.write.side_effect = [4, TransportError("gone")]
    with pytest.raises(TransportError):
        send_file(conn, bytes(2500))
    assert conn.write.call_count == 2


def test_media_type_from_extension():
    assert media_type_for("photo.JPG") == MediaType.JPEG
    assert media_type_for("photo.jpeg") == MediaType.JPEG
    assert media_type_for("icon.png") == MediaType.PNG
    assert media_type_for("firmware.bin") == MediaType.ANY


def test_transfer_id_allocator_wraps():
    """Ids rotate through 1..59."""
    ids = TransferIdAllocator(start=58)
    assert [ids.next() for _ in range(4)] == [58, 59, 1, 2]
