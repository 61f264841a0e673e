"""Tests for the 8-bit additive checksum."""

from ssr_lcd.utils.checksum import checksum8, verify_checksum8


def test_checksum_empty():
    """Checksum of no bytes is zero."""
    assert checksum8(b"") == 0


def test_checksum_wraps_to_low_byte():
    """Only the low 8 bits of the sum are kept."""
    assert checksum8(bytes([0xFF, 0x02])) == 0x01
    assert checksum8(bytes([0x80] * 4)) == 0x00


def test_checksum_known_value():
    """Length bytes 0x00 0x11 plus payload 'abc'."""
    data = bytes([0x00, 0x11]) + b"abc"
    assert checksum8(data) == (0x11 + 0x61 + 0x62 + 0x63) & 0xFF


def test_verify_checksum():
    """verify_checksum8 accepts the matching byte only."""
    data = b"\x01\x02\x03"
    assert verify_checksum8(data, 0x06)
    assert not verify_checksum8(data, 0x07)
